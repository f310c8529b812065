"""
令牌服务 - 签发/校验访问令牌与刷新令牌，维护撤销列表
"""
from __future__ import annotations

from dataclasses import dataclass
from datetime import datetime, timedelta, timezone
from typing import Optional
import hashlib
import math
import uuid

import jwt

from application.ports.revocation_store import RevocationEntry, RevocationStorePort
from core.config import TokenSettings
from core.logging_config import get_logger
from shared.clock import Clock, utc_now


logger = get_logger(__name__)

TOKEN_TYPE_ACCESS = "access"
TOKEN_TYPE_REFRESH = "refresh"

_REQUIRED_CLAIMS = ["exp", "iat", "sub", "iss", "aud", "jti", "sid"]


class TokenInvalidError(Exception):
    """令牌格式错误、签名无效、类型/受众不符或已过期"""


@dataclass(frozen=True)
class AccessClaims:
    user_id: int
    email: str
    role: str
    session_id: str
    jti: str
    issued_at: datetime
    expires_at: datetime


@dataclass(frozen=True)
class RefreshClaims:
    user_id: int
    session_id: str
    jti: str
    issued_at: datetime
    expires_at: datetime


def hash_token(token: str) -> str:
    """计算令牌的SHA-256哈希（存储与查找只使用哈希）"""
    return hashlib.sha256(token.encode()).hexdigest()


class TokenService:
    """
    令牌服务

    安全特性：
    1. 访问令牌与刷新令牌使用不同密钥和 audience，互相不能重放
    2. 校验时同时检查签名、issuer、audience、类型与过期时间
    3. 撤销列表只保存令牌哈希，条目 TTL 等于令牌剩余寿命
    4. 撤销操作幂等，重复撤销不会覆盖首条记录
    """

    def __init__(
        self,
        config: TokenSettings,
        revocation_store: RevocationStorePort,
        clock: Clock = utc_now,
    ):
        self._config = config
        self._store = revocation_store
        self._clock = clock

    @property
    def access_ttl_seconds(self) -> int:
        return self._config.access_ttl_minutes * 60

    @property
    def refresh_ttl_seconds(self) -> int:
        return self._config.refresh_ttl_days * 86400

    def _encode(self, claims: dict, secret: str, audience: str, ttl: timedelta) -> str:
        now = self._clock()
        to_encode = {
            **claims,
            "iss": self._config.issuer,
            "aud": audience,
            "iat": int(now.timestamp()),
            "exp": int((now + ttl).timestamp()),
            "jti": uuid.uuid4().hex,
        }
        return jwt.encode(to_encode, secret, algorithm=self._config.algorithm)

    def issue_access_token(self, user_id: int, email: str, role: str, session_id: str) -> str:
        """创建访问令牌"""
        return self._encode(
            {
                "sub": str(user_id),
                "email": email,
                "role": role,
                "sid": session_id,
                "type": TOKEN_TYPE_ACCESS,
            },
            self._config.access_secret,
            self._config.access_audience,
            timedelta(minutes=self._config.access_ttl_minutes),
        )

    def issue_refresh_token(self, user_id: int, session_id: str) -> str:
        """创建刷新令牌（只携带用户ID与会话ID）"""
        return self._encode(
            {
                "sub": str(user_id),
                "sid": session_id,
                "type": TOKEN_TYPE_REFRESH,
            },
            self._config.refresh_secret,
            self._config.refresh_audience,
            timedelta(days=self._config.refresh_ttl_days),
        )

    def _decode_verified(self, token: str, secret: str, audience: str, token_type: str) -> dict:
        try:
            payload = jwt.decode(
                token,
                secret,
                algorithms=[self._config.algorithm],
                audience=audience,
                issuer=self._config.issuer,
                # 过期时间使用注入的时钟校验
                options={"verify_exp": False, "verify_iat": False, "require": _REQUIRED_CLAIMS},
            )
        except jwt.InvalidTokenError as e:
            logger.debug("token_decode_failed", token_type=token_type, error=type(e).__name__)
            raise TokenInvalidError("invalid token") from None

        if payload.get("type") != token_type:
            raise TokenInvalidError("wrong token type")
        try:
            iat = int(payload["iat"])
            exp = int(payload["exp"])
            int(payload["sub"])
        except (TypeError, ValueError):
            raise TokenInvalidError("malformed claims") from None
        if exp <= iat:
            raise TokenInvalidError("expiry not after issued-at")
        if self._clock().timestamp() >= exp:
            raise TokenInvalidError("token expired")
        return payload

    def verify_access_token(self, token: str) -> AccessClaims:
        """校验访问令牌；不检查撤销状态（见 is_revoked）"""
        payload = self._decode_verified(
            token, self._config.access_secret, self._config.access_audience, TOKEN_TYPE_ACCESS
        )
        return AccessClaims(
            user_id=int(payload["sub"]),
            email=str(payload.get("email") or ""),
            role=str(payload.get("role") or ""),
            session_id=str(payload["sid"]),
            jti=str(payload["jti"]),
            issued_at=datetime.fromtimestamp(int(payload["iat"]), tz=timezone.utc),
            expires_at=datetime.fromtimestamp(int(payload["exp"]), tz=timezone.utc),
        )

    def verify_refresh_token(self, token: str) -> RefreshClaims:
        payload = self._decode_verified(
            token, self._config.refresh_secret, self._config.refresh_audience, TOKEN_TYPE_REFRESH
        )
        return RefreshClaims(
            user_id=int(payload["sub"]),
            session_id=str(payload["sid"]),
            jti=str(payload["jti"]),
            issued_at=datetime.fromtimestamp(int(payload["iat"]), tz=timezone.utc),
            expires_at=datetime.fromtimestamp(int(payload["exp"]), tz=timezone.utc),
        )

    async def is_revoked(self, token: str) -> bool:
        return await self._store.contains(hash_token(token))

    def _decode_for_revocation(self, token: str) -> Optional[dict]:
        """解码用于撤销：校验签名，但不校验过期与受众"""
        options = {"verify_exp": False, "verify_iat": False, "verify_aud": False}
        for secret in (self._config.access_secret, self._config.refresh_secret):
            try:
                return jwt.decode(
                    token,
                    secret,
                    algorithms=[self._config.algorithm],
                    options=options,
                )
            except jwt.InvalidTokenError:
                continue
        return None

    async def revoke(self, token: str, reason: str) -> bool:
        """撤销令牌。返回 True 表示新写入了撤销记录"""
        payload = self._decode_for_revocation(token)
        if payload is None:
            logger.warning("token_revoke_skipped_undecodable")
            return False

        now = self._clock()
        try:
            exp = int(payload.get("exp"))
        except (TypeError, ValueError):
            exp = int(now.timestamp()) + self.refresh_ttl_seconds
        expires_at = datetime.fromtimestamp(exp, tz=timezone.utc)
        ttl = max(1, math.ceil(exp - now.timestamp()))

        sub = payload.get("sub")
        entry = RevocationEntry(
            user_id=int(sub) if isinstance(sub, str) and sub.isdigit() else None,
            session_id=payload.get("sid"),
            reason=reason,
            expires_at=expires_at,
            revoked_at=now,
        )
        added = await self._store.add(hash_token(token), entry, ttl)
        if added:
            logger.info(
                "token_revoked",
                user_id=entry.user_id,
                session_id=entry.session_id,
                token_type=payload.get("type"),
                reason=reason,
                ttl=ttl,
            )
        return added

    async def revoke_pair(self, access_token: str, refresh_token: Optional[str], reason: str) -> int:
        """撤销访问令牌及（可选的）刷新令牌，返回新写入的撤销记录数"""
        revoked = int(await self.revoke(access_token, reason))
        if refresh_token:
            revoked += int(await self.revoke(refresh_token, reason))
        return revoked
