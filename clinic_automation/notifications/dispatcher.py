"""
Notification Dispatcher

Fans one NotificationIntent out to SMS, email and in-app. Each channel is
attempted independently and bounded by its own timeout; a channel failure
becomes a ChannelResult(sent=False) and never propagates to the job step.
"""
import asyncio
import logging
from typing import Iterable, List, Optional

from clinic_automation.models import (
    Channel,
    ChannelResult,
    DispatchResult,
    NotificationIntent,
    SendResult,
    StaffRole,
)
from clinic_automation.notifications.channels import InAppNotifier, SmtpEmailSender, TwilioSmsSender
from clinic_automation.notifications.roles import StaffDirectory
from clinic_automation.notifications.templates import render_email_html
from clinic_automation.utils.timeouts import with_timeout

logger = logging.getLogger(__name__)


class NotificationDispatcher:
    """Sends intents to every configured channel the recipient has an address for."""

    def __init__(
        self,
        sms: Optional[TwilioSmsSender] = None,
        email: Optional[SmtpEmailSender] = None,
        in_app: Optional[InAppNotifier] = None,
        timeout_seconds: float = 15.0,
        clinic_name: str = "Our Clinic",
    ):
        self.sms = sms
        self.email = email
        self.in_app = in_app
        self.timeout_seconds = timeout_seconds
        self.clinic_name = clinic_name

    async def _attempt(self, channel: Channel, send) -> ChannelResult:
        try:
            result: SendResult = await with_timeout(send(), self.timeout_seconds, f"{channel.value} send")
        except Exception as e:
            logger.warning(f"{channel.value} delivery failed: {type(e).__name__}: {e}")
            return ChannelResult(channel=channel, sent=False, error=f"{type(e).__name__}: {e}")

        if not result.success:
            logger.warning(f"{channel.value} delivery rejected: {result.error}")
        return ChannelResult(channel=channel, sent=result.success, error=result.error)

    def _plan(self, intent: NotificationIntent):
        """(channel, send-callable or None, reason not attempted) per channel."""
        if self.sms is None:
            yield Channel.SMS, None, "channel not configured"
        elif not intent.phone:
            yield Channel.SMS, None, "no phone number"
        else:
            yield Channel.SMS, lambda: self.sms.send_sms(intent.phone, intent.message), None

        if self.email is None:
            yield Channel.EMAIL, None, "channel not configured"
        elif not intent.email:
            yield Channel.EMAIL, None, "no email address"
        else:
            html = intent.email_html or render_email_html(intent, self.clinic_name)
            yield Channel.EMAIL, lambda: self.email.send_email(intent.email, intent.title, html, intent.message), None

        if self.in_app is None:
            yield Channel.IN_APP, None, "channel not configured"
        else:
            yield Channel.IN_APP, lambda: self.in_app.create_notification(intent), None

    async def send(self, intent: NotificationIntent) -> DispatchResult:
        """Attempt every channel; never raises."""
        results = {}
        attempts = []
        for channel, send, reason in self._plan(intent):
            if send is None:
                results[channel] = ChannelResult(channel=channel, sent=False, error=reason, attempted=False)
            else:
                attempts.append((channel, self._attempt(channel, send)))

        outcomes = await asyncio.gather(*(coro for _, coro in attempts))
        for (channel, _), outcome in zip(attempts, outcomes):
            results[channel] = outcome

        dispatch = DispatchResult(
            recipient_id=intent.recipient_id,
            channel_results=tuple(results[c] for c in Channel if c in results),
        )
        logger.debug(
            f"Dispatched '{intent.title}' to {intent.recipient_id}: "
            + ", ".join(f"{r.channel.value}={'sent' if r.sent else 'not sent'}" for r in dispatch.channel_results)
        )
        return dispatch

    async def notify_staff(
        self,
        directory: StaffDirectory,
        roles: Iterable[StaffRole],
        intent: NotificationIntent,
    ) -> List[DispatchResult]:
        """
        Send a copy of the intent to every active staff member holding one of the roles.

        A failed staff lookup is reported as one undelivered result rather than raised.
        """
        roles = tuple(roles)
        try:
            members = await directory.members(roles)
        except Exception as e:
            error = f"staff lookup failed: {type(e).__name__}: {e}"
            logger.error(f"Staff alert '{intent.title}' for tenant {directory.tenant_id} not sent, {error}")
            return [DispatchResult(
                recipient_id="staff:" + ",".join(role.value for role in roles),
                channel_results=tuple(
                    ChannelResult(channel=channel, sent=False, error=error, attempted=False) for channel in Channel
                ),
            )]

        results = []
        for member in members:
            copy = intent.for_recipient(member.id, phone=member.phone, email=member.email)
            results.append(await self.send(copy))
        return results
