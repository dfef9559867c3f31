"""Best-effort delivery of post-commit notification events."""

from __future__ import annotations

import logging
from typing import Iterable

from ..persistence.database import PostCommitEvent

logger = logging.getLogger(__name__)

NOTIFICATION_FUNCTION = "send-notification"


class NotificationDispatcher:
    """Invokes the notification edge function once per event."""

    def __init__(self, client, function_name: str = NOTIFICATION_FUNCTION) -> None:
        self.client = client
        self.function_name = function_name

    def dispatch(self, events: Iterable[PostCommitEvent]) -> int:
        """Send events; failures are logged and skipped. Returns the sent count."""
        if self.client is None:
            return 0
        sent = 0
        for event in events:
            try:
                self.client.functions.invoke(
                    self.function_name,
                    invoke_options={
                        "body": {
                            "event_type": event.event_type,
                            "recipient_id": event.recipient_id,
                            "data": event.payload,
                        }
                    },
                )
                sent += 1
            except Exception as exc:
                logger.error(f"Notification error (non-blocking) for {event.recipient_id}: {exc}")
        return sent
