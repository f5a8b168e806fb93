"""
Transport types and exceptions.

WHAT: Exceptions raised by the HTTP collaborator and the bearer-token holder
WHY: Services react to transport failures without touching httpx
HOW: Plain exception hierarchy plus a small token store with sign-out listeners
"""

from typing import Any, Callable, Optional

from ..utils.logger import get_logger

logger = get_logger(__name__)


class ApiError(Exception):
    """Base class for backend transport failures."""
    pass


class ApiTimeoutError(ApiError):
    """Request to the backend timed out."""
    pass


class ApiUnavailableError(ApiError):
    """Backend is not reachable."""
    pass


class ApiResponseError(ApiError):
    """Backend answered with an error status or an unreadable body."""
    
    def __init__(self, message: str, status_code: Optional[int] = None, detail: Any = None):
        super().__init__(message)
        self.status_code = status_code
        self.detail = detail


class AuthenticationExpiredError(ApiResponseError):
    """Access token rejected and could not be refreshed; the user has been signed out."""
    pass


class PermissionDeniedError(ApiResponseError):
    """Backend refused the action for this user (403)."""
    pass


class NotFoundError(ApiResponseError):
    """Resource does not exist (404)."""
    pass


class ConflictError(ApiResponseError):
    """Request violates a domain rule (400/409), e.g. offer no longer pending."""
    pass


class DuplicateReviewError(ConflictError):
    """Reviewer already reviewed this product."""
    pass


class TokenStore:
    """
    In-memory holder for the bearer/refresh token pair.
    
    Sign-out listeners are how the client tells the owning view that the
    session is gone.
    """
    
    def __init__(self, access_token: Optional[str] = None, refresh_token: Optional[str] = None):
        self.access_token = access_token
        self.refresh_token = refresh_token
        self._sign_out_listeners: list[Callable[[], None]] = []
    
    @property
    def signed_in(self) -> bool:
        return bool(self.access_token)
    
    def set_tokens(self, access_token: Optional[str], refresh_token: Optional[str] = None):
        """Store a new access token (and refresh token, when rotated)."""
        self.access_token = access_token
        if refresh_token is not None:
            self.refresh_token = refresh_token
    
    def on_sign_out(self, listener: Callable[[], None]) -> Callable[[], None]:
        """Register a sign-out listener; returns a function that removes it."""
        self._sign_out_listeners.append(listener)
        
        def remove():
            if listener in self._sign_out_listeners:
                self._sign_out_listeners.remove(listener)
        
        return remove
    
    def sign_out(self):
        """Clear both tokens and notify listeners."""
        was_signed_in = self.signed_in or bool(self.refresh_token)
        self.access_token = None
        self.refresh_token = None
        if not was_signed_in:
            return
        logger.warning("Session expired, signing out")
        for listener in list(self._sign_out_listeners):
            try:
                listener()
            except Exception as e:
                logger.error(f"Sign-out listener failed: {e}")
