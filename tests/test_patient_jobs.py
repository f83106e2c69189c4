"""
Tests for document, membership and prescription expiry plus welcome messages
"""

from datetime import timedelta

from clinic_automation.jobs import (
    DocumentExpiryJob,
    MembershipExpiryJob,
    PrescriptionExpiryJob,
    WelcomeMessageJob,
)
from clinic_automation.models import Document, Membership, NotificationPriority, Patient, Prescription

from tests.fakes import NOW, TENANT

TODAY = NOW.date()


def staff_recipients(store):
    return {n.recipient_id for n in store.notifications if n.recipient_id.startswith("staff-")}


class TestDocumentExpiry:
    """Escalating document warnings"""

    def _document(self, patient, days, category="insurance", **kwargs):
        return Document(id="doc-1", tenant_id=TENANT, patient=patient, title="Insurance card",
                        category=category, expiry_date=TODAY + timedelta(days=days), **kwargs)

    async def test_urgent_critical_document_alerts_staff(self, context, store, patient, staff):
        store.add(self._document(patient, 20))

        result = await DocumentExpiryJob(context).run(TENANT)

        assert result.succeeded == 1
        assert store.documents["doc-1"].last_warning_level == "urgent"
        assert staff_recipients(store) == {"staff-admin", "staff-desk"}
        patient_copies = [n for n in store.notifications if n.recipient_id == patient.id]
        assert patient_copies[0].priority == NotificationPriority.URGENT

    async def test_non_critical_document_only_warns_patient(self, context, store, patient, staff):
        store.add(self._document(patient, 20, category="referral"))

        await DocumentExpiryJob(context).run(TENANT)

        assert store.documents["doc-1"].last_warning_level == "warning"
        assert staff_recipients(store) == set()

    async def test_same_level_not_repeated(self, context, store, patient, sms):
        store.add(self._document(patient, 45))
        job = DocumentExpiryJob(context)

        await job.run(TENANT)
        second = await job.run(TENANT)

        assert second.skipped == 1
        assert len(sms.sent) == 1

    async def test_escalation_sends_again(self, context, store, patient, clock, sms):
        store.add(self._document(patient, 45))
        job = DocumentExpiryJob(context)

        await job.run(TENANT)
        assert store.documents["doc-1"].last_warning_level == "warning"

        clock.advance(days=20)
        result = await job.run(TENANT)

        assert result.succeeded == 1
        assert store.documents["doc-1"].last_warning_level == "urgent"
        assert len(sms.sent) == 2

    async def test_non_critical_document_not_reminded_early(self, context, store, patient, clock, sms):
        store.add(self._document(patient, 60, category="consent"))
        job = DocumentExpiryJob(context)

        early = await job.run(TENANT)

        assert early.skipped == 1
        assert sms.sent == []
        assert store.documents["doc-1"].last_warning_level is None

        clock.advance(days=35)
        later = await job.run(TENANT)

        assert later.succeeded == 1
        assert store.documents["doc-1"].last_warning_level == "warning"
        assert len(sms.sent) == 1

    async def test_expired_documents_ignored(self, context, store, patient):
        store.add(self._document(patient, -1))
        result = await DocumentExpiryJob(context).run(TENANT)
        assert result.processed == 0


class TestMembershipExpiry:
    """Renewal reminders and expiry"""

    def _membership(self, patient, delta, **kwargs):
        return Membership(id="mem-1", tenant_id=TENANT, patient=patient, tier="gold",
                          expiry_date=NOW + delta, **kwargs)

    async def test_reminder_on_stage_day(self, context, store, patient, sms):
        store.add(self._membership(patient, timedelta(days=6, hours=12)))

        result = await MembershipExpiryJob(context).run(TENANT)

        assert result.succeeded == 1
        assert store.memberships["mem-1"].status == "active"
        assert len(sms.sent) == 1
        assert store.notifications[0].priority == NotificationPriority.NORMAL

    async def test_last_days_are_high_priority(self, context, store, patient):
        store.add(self._membership(patient, timedelta(days=3)))
        await MembershipExpiryJob(context).run(TENANT)
        assert store.notifications[0].priority == NotificationPriority.HIGH

    async def test_between_stages_skipped(self, context, store, patient, sms):
        store.add(self._membership(patient, timedelta(days=10)))

        result = await MembershipExpiryJob(context).run(TENANT)

        assert result.skipped == 1
        assert sms.sent == []

    async def test_past_due_membership_expires_once(self, context, store, patient, sms):
        store.add(self._membership(patient, -timedelta(hours=1)))
        job = MembershipExpiryJob(context)

        first = await job.run(TENANT)
        second = await job.run(TENANT)

        assert first.succeeded == 1
        assert store.memberships["mem-1"].status == "expired"
        assert second.processed == 0
        assert len(sms.sent) == 1


class TestPrescriptionExpiry:
    """Shorter watch window for controlled substances"""

    def _prescription(self, patient, days, controlled=False, **kwargs):
        return Prescription(id="rx-1", tenant_id=TENANT, patient=patient, code="RX-1",
                            expires_at=NOW + timedelta(days=days), controlled_substance=controlled, **kwargs)

    async def test_regular_prescription_levels(self, context, store, patient):
        store.add(self._prescription(patient, 20))
        await PrescriptionExpiryJob(context).run(TENANT)
        assert store.prescriptions["rx-1"].last_warning_level == "warning"

    async def test_controlled_prescription_urgent_sooner(self, context, store, patient):
        store.add(self._prescription(patient, 10, controlled=True))
        await PrescriptionExpiryJob(context).run(TENANT)
        assert store.prescriptions["rx-1"].last_warning_level == "warning"

        store.add(self._prescription(patient, 10))
        await PrescriptionExpiryJob(context).run(TENANT)
        assert store.prescriptions["rx-1"].last_warning_level == "urgent"

    async def test_controlled_outside_window_skipped(self, context, store, patient, sms):
        store.add(self._prescription(patient, 20, controlled=True))

        result = await PrescriptionExpiryJob(context).run(TENANT)

        assert result.skipped == 1
        assert sms.sent == []

    async def test_same_level_not_repeated(self, context, store, patient, sms):
        store.add(self._prescription(patient, 5))
        job = PrescriptionExpiryJob(context)

        await job.run(TENANT)
        second = await job.run(TENANT)

        assert second.skipped == 1
        assert len(sms.sent) == 1


class TestWelcomeMessages:
    """Backfill and on-registration welcome messages"""

    async def test_backfill_welcomes_recent_patients(self, context, store, patient, sms):
        store.add(Patient(id="pat-old", tenant_id=TENANT, first_name="Old", phone="+15550009999",
                          created_at=NOW - timedelta(days=10)))
        job = WelcomeMessageJob(context)

        first = await job.run(TENANT)
        second = await job.run(TENANT)

        assert first.succeeded == 1
        assert store.patients["pat-1"].welcome_sent_at == NOW
        assert store.patients["pat-old"].welcome_sent_at is None
        assert second.processed == 0
        assert len(sms.sent) == 1
        assert "Test Clinic" in sms.sent[0][1]

    async def test_new_patient_welcomed_through_pool(self, engine, store, patient, sms):
        engine.welcome.schedule(patient)
        await engine.pool.drain()

        assert store.patients["pat-1"].welcome_sent_at == NOW
        assert engine.pool.stats["completed"] == 1
        assert len(sms.sent) == 1

    async def test_pool_welcome_after_backfill_is_skipped(self, engine, store, patient, sms):
        await engine.run(WelcomeMessageJob.job_id, TENANT)

        result = await engine.jobs[WelcomeMessageJob.job_id].welcome_one(patient)

        assert result.detail == "welcome already sent"
        assert len(sms.sent) == 1

    async def test_disabled_for_tenant(self, engine, settings_service, store, patient, sms):
        settings_service.set(TENANT, WelcomeMessageJob.settings_key, False)

        assert await engine.jobs[WelcomeMessageJob.job_id].welcome_one(patient) is None
        assert store.patients["pat-1"].welcome_sent_at is None
        assert sms.sent == []
