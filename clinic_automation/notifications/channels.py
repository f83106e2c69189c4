"""
Notification channel senders: SMS (Twilio), email (SMTP), in-app (record store).

Blocking SDK calls run on a worker thread. Senders report provider-level
rejections as SendResult(success=False); transport failures propagate as
exceptions so the circuit breaker can count them, and the dispatcher turns
them into a "not sent" channel result.
"""
import asyncio
import logging
import smtplib
from email.mime.multipart import MIMEMultipart
from email.mime.text import MIMEText
from typing import Optional

from twilio.base.exceptions import TwilioRestException
from twilio.rest import Client

from clinic_automation.config import AutomationSettings
from clinic_automation.exceptions import ChannelDeliveryError
from clinic_automation.models import NotificationIntent, SendResult
from clinic_automation.store.base import RecordStore
from clinic_automation.utils.circuit_breaker import CircuitBreaker, smtp_breaker, twilio_breaker
from clinic_automation.utils.phone import normalize_phone
from clinic_automation.utils.timeouts import SMTP_SOCKET_TIMEOUT_SECONDS

logger = logging.getLogger(__name__)


class TwilioSmsSender:
    """Sends SMS through the Twilio REST API."""

    def __init__(
        self,
        account_sid: str,
        auth_token: str,
        from_number: str,
        default_country_code: str = "+1",
        breaker: CircuitBreaker = twilio_breaker,
        client: Optional[Client] = None,
    ):
        self.account_sid = account_sid
        self.auth_token = auth_token
        self.from_number = from_number
        self.default_country_code = default_country_code
        self.breaker = breaker
        self._client = client

    @classmethod
    def from_settings(cls, settings: AutomationSettings) -> Optional["TwilioSmsSender"]:
        if not settings.sms_configured:
            logger.info("Twilio not configured - SMS channel disabled")
            return None
        return cls(
            settings.TWILIO_ACCOUNT_SID,
            settings.TWILIO_AUTH_TOKEN,
            settings.TWILIO_PHONE_NUMBER,
            default_country_code=settings.DEFAULT_PHONE_COUNTRY_CODE,
        )

    @property
    def client(self) -> Client:
        if self._client is None:
            self._client = Client(self.account_sid, self.auth_token)
        return self._client

    def _send_sync(self, to: str, text: str) -> SendResult:
        try:
            message = self.client.messages.create(body=text, from_=self.from_number, to=to)
        except TwilioRestException as e:
            return SendResult(success=False, error=f"Twilio {e.status}: {e.msg}")
        return SendResult(success=True, message_id=message.sid)

    async def send_sms(self, to: str, text: str) -> SendResult:
        phone = normalize_phone(to, self.default_country_code)
        if not phone:
            raise ChannelDeliveryError("sms", f"invalid phone number: {to!r}")

        result = await self.breaker.call(asyncio.to_thread, self._send_sync, phone, text)
        if result.success:
            logger.info(f"SMS sent to {phone} ({result.message_id})")
        return result


class SmtpEmailSender:
    """Sends HTML email via SMTP."""

    def __init__(
        self,
        host: str,
        port: int = 587,
        username: Optional[str] = None,
        password: Optional[str] = None,
        from_email: str = "noreply@clinic.local",
        from_name: str = "Clinic",
        use_tls: bool = True,
        breaker: CircuitBreaker = smtp_breaker,
    ):
        self.host = host
        self.port = port
        self.username = username
        self.password = password
        self.from_email = from_email
        self.from_name = from_name
        self.use_tls = use_tls
        self.breaker = breaker

    @classmethod
    def from_settings(cls, settings: AutomationSettings) -> Optional["SmtpEmailSender"]:
        if not settings.email_configured:
            logger.info("SMTP not configured - email channel disabled")
            return None
        return cls(
            host=settings.SMTP_HOST,
            port=settings.SMTP_PORT,
            username=settings.SMTP_USERNAME,
            password=settings.SMTP_PASSWORD,
            from_email=settings.SMTP_FROM_EMAIL,
            from_name=settings.SMTP_FROM_NAME,
            use_tls=settings.SMTP_USE_TLS,
        )

    def _build_message(self, to: str, subject: str, html: str, text: Optional[str]) -> MIMEMultipart:
        msg = MIMEMultipart('alternative')
        msg['Subject'] = subject
        msg['From'] = f"{self.from_name} <{self.from_email}>"
        msg['To'] = to
        if text:
            msg.attach(MIMEText(text, 'plain'))
        msg.attach(MIMEText(html, 'html'))
        return msg

    def send_email_sync(self, to: str, subject: str, html: str, text: Optional[str] = None) -> SendResult:
        """Send email via SMTP (synchronous, use via asyncio.to_thread)."""
        msg = self._build_message(to, subject, html, text)
        try:
            with smtplib.SMTP(self.host, self.port, timeout=SMTP_SOCKET_TIMEOUT_SECONDS) as server:
                if self.use_tls:
                    server.starttls()
                if self.username and self.password:
                    server.login(self.username, self.password)
                server.send_message(msg)
        except (smtplib.SMTPRecipientsRefused, smtplib.SMTPSenderRefused,
                smtplib.SMTPDataError, smtplib.SMTPAuthenticationError) as e:
            return SendResult(success=False, error=f"SMTP rejected message: {e}")
        return SendResult(success=True)

    async def send_email(self, to: str, subject: str, html: str, text: Optional[str] = None) -> SendResult:
        """Send email via SMTP (async wrapper to avoid blocking event loop)."""
        result = await self.breaker.call(asyncio.to_thread, self.send_email_sync, to, subject, html, text)
        if result.success:
            logger.info(f"Email sent to {to}")
        return result


class InAppNotifier:
    """Creates in-app notifications through the record store."""

    def __init__(self, store: RecordStore):
        self.store = store

    async def create_notification(self, intent: NotificationIntent) -> SendResult:
        notification_id = await self.store.insert_notification(intent)
        return SendResult(success=True, message_id=notification_id or None)
