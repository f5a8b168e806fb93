"""
Offer parsing and formatting utilities.

WHAT: Validate offer amounts and render offer message text
WHY: Reject bad amounts before any network call; keep offer text consistent
HOW: Decimal parsing with explicit finiteness and sign checks
"""

from decimal import Decimal, InvalidOperation
from typing import Any, Iterable

from ..core.config import settings
from ..models.chat import Message
from .exceptions import ValidationException
from .logger import get_logger

logger = get_logger(__name__)


def parse_offer_amount(value: Any) -> Decimal:
    """
    Parse and validate an offer amount.
    
    Accepts ints, Decimals and numeric strings (optionally prefixed with the
    currency symbol, thousands separators allowed). Floats go through str()
    so 450.1 stays 450.1 rather than its binary expansion.
    
    Args:
        value: Raw amount from the caller
    
    Returns:
        Positive, finite Decimal
    
    Raises:
        ValidationException: If the amount is missing, non-numeric, or not > 0
    """
    if value is None or isinstance(value, bool):
        raise ValidationException("Offer amount is required", field="amount")
    
    if isinstance(value, str):
        cleaned = value.strip().replace(settings.OFFER_CURRENCY_SYMBOL, "").replace(",", "").strip()
        if not cleaned:
            raise ValidationException("Offer amount is required", field="amount")
    elif isinstance(value, float):
        cleaned = str(value)
    else:
        cleaned = value
    
    try:
        amount = Decimal(cleaned)
    except (InvalidOperation, TypeError, ValueError):
        raise ValidationException(f"Offer amount is not a number: {value!r}", field="amount")
    
    if not amount.is_finite():
        raise ValidationException(f"Offer amount is not a number: {value!r}", field="amount")
    if amount <= 0:
        logger.debug(f"Rejected non-positive offer amount: {amount}")
        raise ValidationException("Offer amount must be greater than zero", field="amount")
    
    return amount


def format_amount(amount: Decimal) -> str:
    """Render 450 as "450" and 450.50 as "450.50"."""
    if amount == amount.to_integral_value():
        return str(amount.quantize(Decimal(1)))
    return f"{amount:.2f}"


def format_offer_content(amount: Decimal) -> str:
    """Message text for a new offer, e.g. "Made offer: ₹450"."""
    return f"Made offer: {settings.OFFER_CURRENCY_SYMBOL}{format_amount(amount)}"


def offer_fingerprint(messages: Iterable[Message]) -> tuple[tuple[str, str], ...]:
    """
    Summarise the offer statuses in a message list.
    
    Two lists with the same length but a changed offer status (the other
    party accepted, say) produce different fingerprints.
    """
    return tuple(
        (msg.offer.id, msg.offer.status.value)
        for msg in messages
        if msg.is_offer and msg.offer is not None
    )
