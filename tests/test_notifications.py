"""
Tests for notification dispatch, channels and staff role resolution
"""

import asyncio
from unittest.mock import Mock

import pytest

from clinic_automation.exceptions import ChannelDeliveryError, DependencyUnavailable
from clinic_automation.models import Channel, NotificationIntent, StaffMember, StaffRole
from clinic_automation.notifications import (
    InAppNotifier,
    NotificationDispatcher,
    RoleMap,
    StaffDirectory,
    TwilioSmsSender,
)
from clinic_automation.notifications.templates import render_email_html
from clinic_automation.utils.circuit_breaker import CircuitBreaker
from clinic_automation.utils.phone import normalize_phone

from tests.fakes import TENANT, RecordingEmailSender, RecordingSmsSender


def intent(**kwargs):
    defaults = dict(
        recipient_id="pat-1",
        tenant_id=TENANT,
        title="Appointment Reminder",
        message="See you tomorrow",
        phone="+15551234567",
        email="ana@example.com",
    )
    defaults.update(kwargs)
    return NotificationIntent(**defaults)


def by_channel(result):
    return {r.channel: r for r in result.channel_results}


class TestNotificationDispatcher:
    """Channel isolation"""

    async def test_all_channels_attempted(self, dispatcher, sms, email, store):
        result = await dispatcher.send(intent())

        channels = by_channel(result)
        assert all(channels[c].sent for c in Channel)
        assert result.delivered
        assert sms.sent == [("+15551234567", "See you tomorrow")]
        assert email.sent == [("ana@example.com", "Appointment Reminder")]
        assert len(store.notifications) == 1

    async def test_failing_channel_does_not_block_others(self, store):
        dispatcher = NotificationDispatcher(
            sms=RecordingSmsSender(error=ConnectionError("twilio unreachable")),
            email=RecordingEmailSender(),
            in_app=InAppNotifier(store),
        )

        result = await dispatcher.send(intent())

        channels = by_channel(result)
        assert not channels[Channel.SMS].sent
        assert "ConnectionError" in channels[Channel.SMS].error
        assert channels[Channel.EMAIL].sent
        assert channels[Channel.IN_APP].sent
        assert result.delivered

    async def test_unconfigured_and_missing_addresses_not_attempted(self, store):
        dispatcher = NotificationDispatcher(sms=None, email=RecordingEmailSender(), in_app=InAppNotifier(store))

        result = await dispatcher.send(intent(email=None))

        channels = by_channel(result)
        assert channels[Channel.SMS].attempted is False
        assert channels[Channel.SMS].error == "channel not configured"
        assert channels[Channel.EMAIL].attempted is False
        assert channels[Channel.EMAIL].error == "no email address"
        assert channels[Channel.IN_APP].sent

    async def test_nothing_delivered(self):
        dispatcher = NotificationDispatcher()
        result = await dispatcher.send(intent())
        assert not result.delivered
        assert set(result.errors) == {"sms", "email", "in_app"}

    async def test_slow_channel_times_out(self, store):
        class SlowSms:
            async def send_sms(self, to, text):
                await asyncio.sleep(1)

        dispatcher = NotificationDispatcher(sms=SlowSms(), in_app=InAppNotifier(store), timeout_seconds=0.01)
        result = await dispatcher.send(intent())

        channels = by_channel(result)
        assert not channels[Channel.SMS].sent
        assert channels[Channel.IN_APP].sent

    async def test_notify_staff_sends_one_copy_per_member(self, dispatcher, store, staff):
        directory = StaffDirectory(store, TENANT)
        results = await dispatcher.notify_staff(
            directory, [StaffRole.ADMIN, StaffRole.FRONT_DESK, StaffRole.ADMIN], intent(phone=None, email=None)
        )

        assert [r.recipient_id for r in results] == ["staff-admin", "staff-desk"]
        assert {n.recipient_id for n in store.notifications} == {"staff-admin", "staff-desk"}

    async def test_notify_staff_reports_lookup_failure(self, dispatcher, store, staff):
        store.failures["list_active_staff"] = DependencyUnavailable("record store", "timed out")
        directory = StaffDirectory(store, TENANT)

        results = await dispatcher.notify_staff(directory, [StaffRole.ADMIN], intent(phone=None, email=None))

        assert len(results) == 1
        assert not results[0].delivered
        assert results[0].recipient_id == "staff:admin"
        assert all("staff lookup failed" in error for error in results[0].errors.values())
        assert store.notifications == []


class TestStaffDirectory:
    """Tenant role names resolved once per run"""

    def test_role_map(self):
        roles = RoleMap()
        assert roles.resolve("Clinic Admin") == StaffRole.ADMIN
        assert roles.resolve("front-desk") == StaffRole.FRONT_DESK
        assert roles.resolve("Billing") == StaffRole.ACCOUNTANT
        assert roles.resolve("Janitor") == StaffRole.OTHER
        assert roles.resolve(None) == StaffRole.OTHER

    async def test_directory_loads_once(self, store, staff):
        directory = StaffDirectory(store, TENANT)
        await directory.members([StaffRole.ADMIN])
        await directory.members([StaffRole.ACCOUNTANT])
        assert store.calls.count("list_active_staff") == 1

    async def test_inactive_staff_excluded(self, store):
        store.add(StaffMember(id="old", tenant_id=TENANT, role_name="admin", active=False))
        directory = StaffDirectory(store, TENANT)
        assert await directory.members([StaffRole.ADMIN]) == ()


class TestTwilioSmsSender:
    """SMS channel"""

    def _sender(self, client):
        return TwilioSmsSender("AC123", "token", "+15550001111", breaker=CircuitBreaker("test-twilio"), client=client)

    async def test_sends_normalized_number(self):
        client = Mock()
        client.messages.create.return_value = Mock(sid="SM1")

        result = await self._sender(client).send_sms("555 123 4567", "hello")

        assert result.success
        assert result.message_id == "SM1"
        client.messages.create.assert_called_once_with(body="hello", from_="+15550001111", to="+15551234567")

    async def test_invalid_number(self):
        with pytest.raises(ChannelDeliveryError):
            await self._sender(Mock()).send_sms("call me", "hello")


class TestRendering:
    """Email body and phone normalization"""

    def test_email_html_escapes_content(self):
        html = render_email_html(intent(message="<b>5 < 6</b>", action_url="https://app/x"), "Test Clinic")
        assert "&lt;b&gt;" in html
        assert "https://app/x" in html
        assert "Test Clinic" in html

    def test_normalize_phone(self):
        assert normalize_phone("+52 (55) 1234-5678") == "+525512345678"
        assert normalize_phone("5551234567", "+1") == "+15551234567"
        assert normalize_phone("") is None
