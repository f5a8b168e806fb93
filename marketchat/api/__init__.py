"""Marketplace backend transport layer."""

from .types import (
    ApiError,
    ApiTimeoutError,
    ApiUnavailableError,
    ApiResponseError,
    AuthenticationExpiredError,
    PermissionDeniedError,
    NotFoundError,
    ConflictError,
    DuplicateReviewError,
    TokenStore,
)
from .protocol import MarketplaceBackend
from .client import MarketplaceClient

__all__ = [
    "ApiError",
    "ApiTimeoutError",
    "ApiUnavailableError",
    "ApiResponseError",
    "AuthenticationExpiredError",
    "PermissionDeniedError",
    "NotFoundError",
    "ConflictError",
    "DuplicateReviewError",
    "TokenStore",
    "MarketplaceBackend",
    "MarketplaceClient",
]
