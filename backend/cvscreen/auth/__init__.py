from cvscreen.auth.service_account import (
    AccessToken,
    ServiceAccountInfo,
    ServiceAccountTokenProvider,
    is_retryable_http_error,
)

__all__ = [
    "AccessToken", "ServiceAccountInfo", "ServiceAccountTokenProvider",
    "is_retryable_http_error",
]
