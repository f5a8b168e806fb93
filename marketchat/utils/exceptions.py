"""
Custom business exceptions for conversation and offer operations.

WHAT: Domain-specific exceptions with stable error codes
WHY: Callers render user-visible messages without parsing transport errors
HOW: Custom exception classes with error codes and details
"""

from typing import Optional, Any


class BusinessException(Exception):
    """Base class for business logic exceptions."""
    
    def __init__(self, message: str, code: str, details: Optional[Any] = None):
        super().__init__(message)
        self.message = message
        self.code = code
        self.details = details


class ValidationException(BusinessException):
    """Raised for input rejected before any network call."""
    
    def __init__(self, message: str, field: Optional[str] = None):
        super().__init__(
            message=message,
            code="VALIDATION_ERROR",
            details={"field": field} if field else None
        )


class RoleDeniedException(BusinessException):
    """Raised when the current user's role may not perform an action."""
    
    def __init__(self, action: str, required_role: str, user_id: str):
        super().__init__(
            message=f"Only the {required_role} can {action}",
            code="ROLE_DENIED",
            details={"action": action, "required_role": required_role, "user_id": user_id}
        )


class OfferAlreadyPendingException(BusinessException):
    """Raised when making an offer while another one is still pending."""
    
    def __init__(self, offer_id: str):
        super().__init__(
            message=f"Offer {offer_id} is still pending; amend or cancel it first",
            code="OFFER_ALREADY_PENDING",
            details={"offer_id": offer_id}
        )


class NoPendingOfferException(BusinessException):
    """Raised when amending without a pending offer."""
    
    def __init__(self, conversation_id: str):
        super().__init__(
            message=f"No pending offer in conversation {conversation_id}",
            code="NO_PENDING_OFFER",
            details={"conversation_id": conversation_id}
        )


class OfferNotFoundException(BusinessException):
    """Raised when an offer id is not present in the transcript."""
    
    def __init__(self, offer_id: str):
        super().__init__(
            message=f"Offer not found: {offer_id}",
            code="OFFER_NOT_FOUND",
            details={"offer_id": offer_id}
        )


class OfferNotPendingException(BusinessException):
    """Raised when transitioning an offer that already reached a terminal state."""
    
    def __init__(self, offer_id: str, current_status: str):
        super().__init__(
            message=f"Offer {offer_id} is no longer pending. Current status: {current_status}",
            code="OFFER_NOT_PENDING",
            details={"offer_id": offer_id, "current_status": current_status}
        )


class ReviewNotAllowedException(BusinessException):
    """Raised when a review is submitted before the transaction allows it."""
    
    def __init__(self, reason: str):
        super().__init__(
            message=f"Review not allowed: {reason}",
            code="REVIEW_NOT_ALLOWED",
            details={"reason": reason}
        )


class InitialLoadException(BusinessException):
    """Raised when the conversation view cannot be loaded."""
    
    def __init__(self, conversation_id: str, reason: str):
        super().__init__(
            message=f"Failed to load conversation {conversation_id}: {reason}",
            code="INITIAL_LOAD_FAILED",
            details={"conversation_id": conversation_id}
        )


class SessionExpiredException(BusinessException):
    """Raised when the session could not be refreshed and the user was signed out."""
    
    def __init__(self):
        super().__init__(
            message="Your session has expired. Please sign in again.",
            code="SESSION_EXPIRED"
        )


class MessageSendException(BusinessException):
    """Raised when a message could not be delivered; the optimistic copy is rolled back."""
    
    def __init__(self, conversation_id: str, reason: str):
        super().__init__(
            message=f"Message not sent: {reason}",
            code="MESSAGE_SEND_FAILED",
            details={"conversation_id": conversation_id}
        )


class OperationFailedException(BusinessException):
    """Raised when the backend could not complete an action; local state is unchanged and it may be retried."""
    
    def __init__(self, operation: str, reason: str):
        super().__init__(
            message=f"Could not {operation}: {reason}",
            code="OPERATION_FAILED",
            details={"operation": operation}
        )
