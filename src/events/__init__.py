"""Claim events published after committed transitions, and their consumers."""

from .bus import ClaimEvent, ClaimEventBus, ClaimEventKind
from .notifier import (
    EmailNotifier,
    LoggingMailSender,
    SmtpMailSender,
    build_mail_sender,
)

__all__ = [
    "ClaimEvent",
    "ClaimEventBus",
    "ClaimEventKind",
    "EmailNotifier",
    "LoggingMailSender",
    "SmtpMailSender",
    "build_mail_sender",
]
