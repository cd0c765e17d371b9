"""Email sender interface."""

from __future__ import annotations

from abc import ABC, abstractmethod
from dataclasses import dataclass, field


@dataclass(frozen=True)
class EmailMessage:
    """Transactional email addressed to a single recipient.

    Attributes:
        to: Recipient address.
        template: Template name (e.g. "verify_email", "password_reset").
        subject: Subject line.
        link: Action URL embedded in the message body.
        context: Extra template variables.
    """

    to: str
    template: str
    subject: str
    link: str
    context: dict[str, str] = field(default_factory=dict)


class EmailSender(ABC):
    """Interface for transactional email delivery."""

    @abstractmethod
    def send(self, message: EmailMessage) -> None:
        """Deliver ``message``.

        Raises:
            Exception: Provider failures propagate; callers decide whether a
                failed send is fatal.
        """
        raise NotImplementedError
