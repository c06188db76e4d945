"""
Service-Account Token Exchange — Google OAuth 2.0 JWT-bearer grant

Flow (RFC 7523):
  1. Build a JWT assertion signed with the service account's RSA private key
       iss   = client_email
       scope = https://www.googleapis.com/auth/cloud-platform
       aud   = token_uri
       iat   = now, exp = now + 3600
  2. POST application/x-www-form-urlencoded to token_uri:
       grant_type = urn:ietf:params:oauth:grant-type:jwt-bearer
       assertion  = <signed JWT>
  3. Response: { access_token, expires_in, token_type }

The access token is cached in-process until shortly before it expires.
A lock serialises refreshes so concurrent OCR jobs share one exchange.
"""

from __future__ import annotations

import asyncio
import logging
import time
from dataclasses import dataclass
from typing import Any

import httpx
from jose import JOSEError, jwt
from pydantic import BaseModel

from cvscreen.core.errors import OcrFailure
from cvscreen.core.retry import RetryObserver, RetryPolicy, retry_with_policy

logger = logging.getLogger(__name__)

GOOGLE_TOKEN_URI   = "https://oauth2.googleapis.com/token"
CLOUD_PLATFORM_SCOPE = "https://www.googleapis.com/auth/cloud-platform"
JWT_BEARER_GRANT   = "urn:ietf:params:oauth:grant-type:jwt-bearer"

_ASSERTION_LIFETIME = 3600   # seconds, Google's maximum
_EXPIRY_SKEW        = 60     # refresh this many seconds before expiry


# ---------------------------------------------------------------------------
# Credential + token models
# ---------------------------------------------------------------------------

class ServiceAccountInfo(BaseModel):
    """Subset of the Google service-account JSON key file we need."""
    client_email:   str
    private_key:    str
    private_key_id: str = ""
    token_uri:      str = GOOGLE_TOKEN_URI

    @classmethod
    def from_mapping(cls, data: dict[str, Any]) -> "ServiceAccountInfo":
        return cls.model_validate(data)


@dataclass(frozen=True)
class AccessToken:
    token:      str
    expires_at: float   # time.monotonic() deadline

    def is_valid(self, now: float | None = None) -> bool:
        now = time.monotonic() if now is None else now
        return now < self.expires_at - _EXPIRY_SKEW


def is_retryable_http_error(exc: BaseException) -> bool:
    """429, 5xx and transport-level failures are transient; other 4xx are not."""
    if isinstance(exc, httpx.HTTPStatusError):
        code = exc.response.status_code
        return code == 429 or code >= 500
    return isinstance(exc, httpx.TransportError)


# ---------------------------------------------------------------------------
# Token provider
# ---------------------------------------------------------------------------

class ServiceAccountTokenProvider:
    """
    Exchanges a signed JWT assertion for a short-lived OAuth access token.

    Usage:
        provider = ServiceAccountTokenProvider(ServiceAccountInfo.from_mapping(key))
        token = await provider.get_token(client)
    """

    def __init__(
        self,
        info:         ServiceAccountInfo,
        scope:        str = CLOUD_PLATFORM_SCOPE,
        retry_policy: RetryPolicy | None = None,
        clock=time.time,
    ) -> None:
        self._info   = info
        self._scope  = scope
        self._policy = retry_policy or RetryPolicy()
        self._clock  = clock
        self._cached: AccessToken | None = None
        self._lock   = asyncio.Lock()

    def build_assertion(self) -> str:
        """Sign the JWT-bearer assertion with the service account key (RS256)."""
        now = int(self._clock())
        claims = {
            "iss":   self._info.client_email,
            "scope": self._scope,
            "aud":   self._info.token_uri,
            "iat":   now,
            "exp":   now + _ASSERTION_LIFETIME,
        }
        headers = {"kid": self._info.private_key_id} if self._info.private_key_id else None
        try:
            return jwt.encode(
                claims,
                self._info.private_key,
                algorithm="RS256",
                headers=headers,
            )
        except JOSEError as exc:
            raise OcrFailure("authentication failed: could not sign assertion", detail=str(exc)) from exc

    async def get_token(
        self,
        client:   httpx.AsyncClient,
        on_retry: RetryObserver | None = None,
    ) -> str:
        if self._cached and self._cached.is_valid():
            return self._cached.token

        async with self._lock:
            if self._cached and self._cached.is_valid():
                return self._cached.token
            self._cached = await self._exchange(client, on_retry)
            return self._cached.token

    def invalidate(self) -> None:
        self._cached = None

    async def _exchange(
        self,
        client:   httpx.AsyncClient,
        on_retry: RetryObserver | None,
    ) -> AccessToken:
        form = {
            "grant_type": JWT_BEARER_GRANT,
            "assertion":  self.build_assertion(),
        }

        async def _post() -> httpx.Response:
            resp = await client.post(self._info.token_uri, data=form)
            resp.raise_for_status()
            return resp

        try:
            resp = await retry_with_policy(
                _post,
                self._policy,
                retry_if=is_retryable_http_error,
                on_retry=on_retry,
                label="token_exchange",
            )
        except httpx.HTTPStatusError as exc:
            logger.error(
                "Token exchange failed | account=%s status=%d",
                self._info.client_email, exc.response.status_code,
            )
            raise OcrFailure(
                "authentication failed",
                status_code=exc.response.status_code,
                detail=exc.response.text[:500],
            ) from exc
        except httpx.TransportError as exc:
            raise OcrFailure("authentication failed", detail=f"{type(exc).__name__}: {exc}") from exc

        payload = resp.json()
        token = payload.get("access_token")
        if not token:
            raise OcrFailure(
                "authentication failed: no access_token in response",
                status_code=resp.status_code,
            )

        expires_in = int(payload.get("expires_in", _ASSERTION_LIFETIME))
        logger.info(
            "Token exchanged | account=%s expires_in=%ds",
            self._info.client_email, expires_in,
        )
        return AccessToken(token=token, expires_at=time.monotonic() + expires_in)
