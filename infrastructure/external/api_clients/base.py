"""
出站 HTTP 客户端基类

泄露库查询与邮件网关共用：
- tenacity 指数退避重试（超时、网络错误、429/5xx）
- 非 2xx 统一转换为 APIError
- 结构化日志中不输出 Authorization
"""
import asyncio
import json
import time
from dataclasses import dataclass
from typing import Any, Dict, Optional

import httpx
from tenacity import (
    AsyncRetrying,
    RetryCallState,
    retry_if_exception_type,
    stop_after_attempt,
    wait_exponential,
)

from core.logging_config import get_logger

logger = get_logger(__name__)

RETRY_STATUS_CODES = {429, 500, 502, 503, 504}


@dataclass
class APIResponse:
    status_code: int
    headers: Dict[str, str]
    data: Any
    raw_content: bytes
    elapsed_ms: float

    @property
    def is_error(self) -> bool:
        return self.status_code >= 400

    def text(self) -> str:
        return self.raw_content.decode("utf-8")


class APIError(Exception):
    """出站调用失败（重试耗尽或不可重试的错误响应）"""

    def __init__(self, message: str, status_code: Optional[int] = None, response: Optional[APIResponse] = None):
        self.message = message
        self.status_code = status_code
        self.response = response
        super().__init__(message)


class RetryableAPIError(APIError):
    def __init__(self, response: APIResponse, retry_after: Optional[float] = None):
        super().__init__(
            f"Transient API error with status {response.status_code}",
            status_code=response.status_code,
            response=response,
        )
        self.retry_after = retry_after


def _log_before_sleep(retry_state: RetryCallState) -> None:
    exc = retry_state.outcome.exception() if retry_state.outcome else None
    logger.warning(
        "api_request_retrying",
        attempt=retry_state.attempt_number,
        error=str(exc) if exc else None,
    )


def _error_message(response: APIResponse) -> str:
    if isinstance(response.data, dict):
        for key in ("message", "error", "detail"):
            if response.data.get(key):
                return str(response.data[key])
    return f"API request failed with status {response.status_code}"


class BaseAPIClient:
    """
    出站 HTTP 客户端基类

    Args:
        base_url: 服务基础 URL
        timeout: 单次请求超时（秒）
        max_retries: 首次请求之外的最大重试次数
        retry_delay: 退避基数（秒）
        headers: 附加默认请求头
        auth_token: Bearer 令牌
        transport: 自定义传输层（测试时注入 httpx.MockTransport）
    """

    def __init__(
        self,
        base_url: str,
        timeout: float = 5.0,
        max_retries: int = 2,
        retry_delay: float = 0.5,
        headers: Optional[Dict[str, str]] = None,
        auth_token: Optional[str] = None,
        transport: Optional[httpx.AsyncBaseTransport] = None,
    ):
        self.base_url = base_url.rstrip("/")
        self.timeout = timeout
        self.max_retries = max_retries
        self.retry_delay = retry_delay
        self._transport = transport

        self.default_headers = {
            "Content-Type": "application/json",
            "Accept": "application/json",
            "User-Agent": "Travel-Auth-Guard/1.0",
        }
        if headers:
            self.default_headers.update(headers)
        if auth_token:
            self.default_headers["Authorization"] = f"Bearer {auth_token}"

        self._client: Optional[httpx.AsyncClient] = None

    def _get_client(self) -> httpx.AsyncClient:
        if self._client is None:
            self._client = httpx.AsyncClient(
                timeout=httpx.Timeout(self.timeout),
                follow_redirects=True,
                transport=self._transport,
            )
        return self._client

    async def close(self):
        if self._client:
            await self._client.aclose()
            self._client = None

    async def __aenter__(self):
        return self

    async def __aexit__(self, exc_type, exc_val, exc_tb):
        await self.close()

    async def _send_once(self, method: str, url: str, **kwargs) -> APIResponse:
        started = time.perf_counter()
        response = await self._get_client().request(method, url, headers=self.default_headers, **kwargs)
        elapsed_ms = (time.perf_counter() - started) * 1000

        data = None
        if "application/json" in response.headers.get("content-type", ""):
            try:
                data = response.json()
            except json.JSONDecodeError:
                data = None

        api_response = APIResponse(
            status_code=response.status_code,
            headers=dict(response.headers),
            data=data,
            raw_content=response.content,
            elapsed_ms=elapsed_ms,
        )
        logger.debug("api_response", url=url, status_code=api_response.status_code, elapsed_ms=round(elapsed_ms, 2))

        if api_response.status_code in RETRY_STATUS_CODES:
            retry_after: Optional[float] = None
            if api_response.status_code == 429:
                try:
                    retry_after = float(api_response.headers.get("retry-after", ""))
                except ValueError:
                    retry_after = None
                if retry_after:
                    await asyncio.sleep(min(retry_after, self.timeout))
            raise RetryableAPIError(api_response, retry_after=retry_after)

        if api_response.is_error:
            raise APIError(_error_message(api_response), status_code=api_response.status_code, response=api_response)
        return api_response

    async def _request(self, method: str, endpoint: str, **kwargs) -> APIResponse:
        """
        发送请求，按退避策略重试

        Raises:
            APIError: 重试耗尽或收到不可重试的错误响应
        """
        url = f"{self.base_url}/{endpoint.lstrip('/')}"
        retrying = AsyncRetrying(
            reraise=True,
            stop=stop_after_attempt(self.max_retries + 1),
            wait=wait_exponential(multiplier=self.retry_delay, min=self.retry_delay, max=self.retry_delay * 8),
            retry=retry_if_exception_type((httpx.TimeoutException, httpx.NetworkError, RetryableAPIError)),
            before_sleep=_log_before_sleep,
        )

        try:
            async for attempt in retrying:
                with attempt:
                    return await self._send_once(method, url, **kwargs)
        except httpx.TimeoutException as exc:
            raise APIError(f"Request timeout after {self.timeout}s") from exc
        except httpx.NetworkError as exc:
            raise APIError(f"Network error: {exc}") from exc
        except RetryableAPIError as exc:
            raise APIError(exc.message, status_code=exc.status_code, response=exc.response) from exc
        except APIError:
            raise
        except httpx.HTTPError as exc:
            logger.error("api_request_unexpected_error", url=url, error=str(exc))
            raise APIError(f"Unexpected error: {exc}") from exc

    async def get(self, endpoint: str, params: Optional[Dict[str, Any]] = None) -> APIResponse:
        return await self._request("GET", endpoint, params=params)

    async def post(self, endpoint: str, json_data: Optional[Dict[str, Any]] = None) -> APIResponse:
        return await self._request("POST", endpoint, json=json_data)
