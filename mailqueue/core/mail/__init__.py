"""Mail delivery collaborators."""

from mailqueue.core.mail.sender import (
    HttpMailSender,
    LogMailSender,
    MailSender,
    SendResult,
    create_mail_sender,
)

__all__ = [
    "HttpMailSender",
    "LogMailSender",
    "MailSender",
    "SendResult",
    "create_mail_sender",
]
