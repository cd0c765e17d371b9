"""In-process outbox standing in for a mail provider."""

from __future__ import annotations

import logging
import threading
from collections import deque

from authgate.adapters.email.base import EmailMessage, EmailSender
from authgate.core.logging import hash_identifier

logger = logging.getLogger(__name__)


class OutboxEmailSender(EmailSender):
    """Keep the most recent messages in memory.

    Links carry raw token secrets, so only the recipient hash and template
    name are logged.
    """

    def __init__(self, *, max_messages: int = 1000) -> None:
        self._messages: deque[EmailMessage] = deque(maxlen=max_messages)
        self._lock = threading.Lock()

    def send(self, message: EmailMessage) -> None:
        with self._lock:
            self._messages.append(message)
        logger.info(
            "email.queued",
            extra={"template": message.template, "recipient_hash": hash_identifier(message.to)},
        )

    @property
    def messages(self) -> list[EmailMessage]:
        with self._lock:
            return list(self._messages)

    def last_to(self, recipient: str, template: str | None = None) -> EmailMessage | None:
        """Most recent message for ``recipient`` (optionally of one template)."""
        with self._lock:
            for message in reversed(self._messages):
                if message.to == recipient and (template is None or message.template == template):
                    return message
        return None

    def clear(self) -> None:
        with self._lock:
            self._messages.clear()
