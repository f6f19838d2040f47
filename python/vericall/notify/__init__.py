"""Call notification side channel."""
from .email import CallNotification, EmailNotifier

__all__ = ["CallNotification", "EmailNotifier"]
