"""
Staff role resolution.

Tenants name their staff roles freely ("Receptionist", "Clinic Admin",
"Billing"). RoleMap is the one explicit table from those names to engine
roles; StaffDirectory resolves a tenant's active staff once per job run.
"""
import logging
from typing import Dict, Iterable, List, Mapping, Optional, Tuple

from clinic_automation.models import StaffMember, StaffRole
from clinic_automation.store.base import RecordStore

logger = logging.getLogger(__name__)

DEFAULT_ROLE_NAMES: Mapping[str, StaffRole] = {
    "admin": StaffRole.ADMIN,
    "administrator": StaffRole.ADMIN,
    "clinic_admin": StaffRole.ADMIN,
    "owner": StaffRole.ADMIN,
    "manager": StaffRole.ADMIN,
    "receptionist": StaffRole.FRONT_DESK,
    "reception": StaffRole.FRONT_DESK,
    "front_desk": StaffRole.FRONT_DESK,
    "frontdesk": StaffRole.FRONT_DESK,
    "accountant": StaffRole.ACCOUNTANT,
    "billing": StaffRole.ACCOUNTANT,
    "finance": StaffRole.ACCOUNTANT,
    "doctor": StaffRole.DOCTOR,
    "physician": StaffRole.DOCTOR,
    "dentist": StaffRole.DOCTOR,
    "provider": StaffRole.DOCTOR,
    "nurse": StaffRole.NURSE,
    "pharmacist": StaffRole.PHARMACIST,
}


def _normalize(role_name: str) -> str:
    return role_name.strip().lower().replace("-", "_").replace(" ", "_")


class RoleMap:
    """Total mapping from tenant role names to StaffRole; unknown names map to OTHER."""

    def __init__(self, names: Optional[Mapping[str, StaffRole]] = None):
        self._names: Dict[str, StaffRole] = {
            _normalize(name): role for name, role in (names or DEFAULT_ROLE_NAMES).items()
        }

    def resolve(self, role_name: Optional[str]) -> StaffRole:
        if not role_name:
            return StaffRole.OTHER
        return self._names.get(_normalize(role_name), StaffRole.OTHER)


class StaffDirectory:
    """Active staff of one tenant, grouped by engine role. Loaded lazily, once."""

    def __init__(self, store: RecordStore, tenant_id: Optional[str], role_map: Optional[RoleMap] = None):
        self.store = store
        self.tenant_id = tenant_id
        self.role_map = role_map or RoleMap()
        self._by_role: Optional[Dict[StaffRole, List[StaffMember]]] = None

    async def _load(self) -> Dict[StaffRole, List[StaffMember]]:
        if self._by_role is None:
            by_role: Dict[StaffRole, List[StaffMember]] = {}
            for member in await self.store.list_active_staff(self.tenant_id):
                by_role.setdefault(self.role_map.resolve(member.role_name), []).append(member)
            self._by_role = by_role
            logger.debug(
                f"Staff directory for tenant {self.tenant_id}: "
                f"{ {role.value: len(members) for role, members in by_role.items()} }"
            )
        return self._by_role

    async def members(self, roles: Iterable[StaffRole]) -> Tuple[StaffMember, ...]:
        """Active staff holding any of the roles, each member once."""
        by_role = await self._load()
        seen = set()
        members = []
        for role in roles:
            for member in by_role.get(role, []):
                if member.id not in seen:
                    seen.add(member.id)
                    members.append(member)
        return tuple(members)
