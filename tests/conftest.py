"""Shared fixtures for automation tests."""

import pytest

from clinic_automation.bootstrap import create_engine
from clinic_automation.config import AutomationSettings
from clinic_automation.engine.job import AutomationContext
from clinic_automation.engine.ops_alerts import OpsAlerter
from clinic_automation.models import Patient, StaffMember
from clinic_automation.notifications.channels import InAppNotifier
from clinic_automation.notifications.dispatcher import NotificationDispatcher
from clinic_automation.notifications.roles import RoleMap
from clinic_automation.store.settings_service import StaticSettingsService
from clinic_automation.utils.clock import FixedClock

from tests.fakes import NOW, TENANT, InMemoryRecordStore, RecordingEmailSender, RecordingSmsSender


@pytest.fixture
def clock():
    return FixedClock(NOW)


@pytest.fixture
def settings():
    return AutomationSettings(
        _env_file=None,
        SUPABASE_URL=None,
        SUPABASE_SERVICE_ROLE_KEY=None,
        TWILIO_ACCOUNT_SID=None,
        SMTP_HOST=None,
        SCHEDULER_TIMEZONE="UTC",
        APP_BASE_URL="https://app.example.com",
        CLINIC_NAME="Test Clinic",
        DEFAULT_CONSULTATION_FEE=500.0,
        TAX_RATE_PERCENT=0.0,
        SLACK_OPS_WEBHOOK_URL=None,
        DISABLED_AUTOMATIONS="",
    )


@pytest.fixture
def store():
    store = InMemoryRecordStore()
    store.tenants = [TENANT]
    return store


@pytest.fixture
def settings_service():
    return StaticSettingsService()


@pytest.fixture
def sms():
    return RecordingSmsSender()


@pytest.fixture
def email():
    return RecordingEmailSender()


@pytest.fixture
def dispatcher(store, sms, email):
    return NotificationDispatcher(sms=sms, email=email, in_app=InAppNotifier(store),
                                  timeout_seconds=5, clinic_name="Test Clinic")


@pytest.fixture
def context(store, settings_service, dispatcher, clock, settings):
    return AutomationContext(
        store=store,
        settings_service=settings_service,
        dispatcher=dispatcher,
        clock=clock,
        settings=settings,
        role_map=RoleMap(),
    )


@pytest.fixture
def engine(store, settings_service, dispatcher, clock, settings):
    return create_engine(
        settings=settings,
        store=store,
        settings_service=settings_service,
        clock=clock,
        dispatcher=dispatcher,
        alerter=OpsAlerter(None),
    )


@pytest.fixture
def patient(store):
    patient = Patient(
        id="pat-1",
        tenant_id=TENANT,
        first_name="Ana",
        last_name="Lopez",
        email="ana@example.com",
        phone="+15551234567",
        created_at=NOW,
    )
    store.add(patient)
    return patient


@pytest.fixture
def staff(store):
    members = [
        StaffMember(id="staff-admin", tenant_id=TENANT, name="Alice", role_name="Clinic Admin",
                    email="alice@example.com"),
        StaffMember(id="staff-desk", tenant_id=TENANT, name="Bob", role_name="Receptionist",
                    phone="+15550000001"),
        StaffMember(id="staff-billing", tenant_id=TENANT, name="Carol", role_name="Billing",
                    email="carol@example.com"),
        StaffMember(id="staff-doc", tenant_id=TENANT, name="Dan", role_name="Doctor"),
    ]
    store.add(*members)
    return members
