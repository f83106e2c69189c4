"""Notification channels, dispatcher and staff role resolution."""

from .channels import InAppNotifier, SmtpEmailSender, TwilioSmsSender
from .dispatcher import NotificationDispatcher
from .roles import RoleMap, StaffDirectory

__all__ = [
    "InAppNotifier",
    "SmtpEmailSender",
    "TwilioSmsSender",
    "NotificationDispatcher",
    "RoleMap",
    "StaffDirectory",
]
