"""
Data retention policies.

Records are archived (flagged, never moved) once they are older than
archive_after_days; only audit logs are ever deleted, and only after they
have been archived for delete_after_days. Zero means never.
"""

from dataclasses import dataclass
from typing import Tuple


@dataclass(frozen=True)
class RetentionPolicy:
    resource: str
    archive_after_days: int
    delete_after_days: int = 0

    @property
    def id(self) -> str:
        return self.resource

    @property
    def has_work(self) -> bool:
        return self.archive_after_days > 0 or self.delete_after_days > 0


DEFAULT_RETENTION_POLICIES: Tuple[RetentionPolicy, ...] = (
    RetentionPolicy("patients", archive_after_days=0),
    RetentionPolicy("appointments", archive_after_days=365),
    RetentionPolicy("visits", archive_after_days=365),
    # Tax records
    RetentionPolicy("invoices", archive_after_days=730),
    RetentionPolicy("lab_results", archive_after_days=365),
    RetentionPolicy("prescriptions", archive_after_days=365),
    RetentionPolicy("documents", archive_after_days=730),
    RetentionPolicy("audit_logs", archive_after_days=90, delete_after_days=1095),
)

DELETABLE_RESOURCES = frozenset({"audit_logs"})
