from fastapi import Depends
from fastapi.testclient import TestClient

from api.dependencies import rate_limit_dependency


def test_payment_class_limits_route(app, clock):
    @app.post("/payments/checkout", dependencies=[Depends(rate_limit_dependency("payment"))])
    async def checkout():
        return {"ok": True}

    with TestClient(app) as client:
        for _ in range(3):
            assert client.post("/payments/checkout").status_code == 200

        blocked = client.post("/payments/checkout")
        assert blocked.status_code == 429
        assert 0 < int(blocked.headers["Retry-After"]) <= 60

        events = client.portal.call(app.state.container.events.list_recent, 10, "rate_limit_exceeded")
        assert events[0].metadata["endpoint_class"] == "payment"

        clock.advance(seconds=61)
        assert client.post("/payments/checkout").status_code == 200
