"""
Conversation event bus.

WHAT: Explicit publish/subscribe channel owned by a conversation view
WHY: Sibling components (chat list, badges) learn about changes without global events
HOW: Event name -> callback list; failing subscribers are logged and skipped
"""

from typing import Any, Callable, Dict, List

from ..utils.logger import get_logger

logger = get_logger(__name__)

MESSAGES_UPDATED = "messages_updated"
OFFER_CHANGED = "offer_changed"
REVIEW_SUBMITTED = "review_submitted"
SIGNED_OUT = "signed_out"

Subscriber = Callable[[Any], None]


class ChatEventBus:
    """Per-view pub/sub."""
    
    def __init__(self):
        self._subscribers: Dict[str, List[Subscriber]] = {}
    
    def subscribe(self, event: str, callback: Subscriber) -> Callable[[], None]:
        """
        Register a callback for an event.
        
        Returns:
            Function that removes the subscription
        """
        self._subscribers.setdefault(event, []).append(callback)
        
        def unsubscribe():
            callbacks = self._subscribers.get(event, [])
            if callback in callbacks:
                callbacks.remove(callback)
        
        return unsubscribe
    
    def publish(self, event: str, payload: Any = None) -> int:
        """
        Deliver an event to every subscriber.
        
        Returns:
            Number of subscribers that handled the event without raising
        """
        delivered = 0
        for callback in list(self._subscribers.get(event, [])):
            try:
                callback(payload)
                delivered += 1
            except Exception as e:
                logger.error(f"Subscriber for '{event}' failed: {e}")
        return delivered
    
    def clear(self):
        """Drop all subscriptions (view teardown)."""
        self._subscribers.clear()
