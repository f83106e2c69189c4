"""
Inventory expiry checkpoints and reorder decisions.

Expiry alerts use exact-match checkpoints so the same item is not reported
every day. Reorder priority is a small scoring table over stock level and
days until expiry.
"""

from enum import Enum
from typing import Optional

from clinic_automation.models import InventoryItem

EXPIRY_CHECKPOINTS = (30, 7, 1)
REORDER_EXPIRY_WINDOW_DAYS = 90

DEFAULT_REORDER_LEVEL = 10
DEFAULT_REORDER_QUANTITY = 50


class ReorderReason(str, Enum):
    OUT_OF_STOCK = "out_of_stock"
    LOW_STOCK = "low_stock"
    EXPIRING_SOON = "expiring_soon"


class ReorderPriority(str, Enum):
    URGENT = "urgent"
    HIGH = "high"
    MEDIUM = "medium"
    LOW = "low"

    @property
    def rank(self) -> int:
        return list(ReorderPriority).index(self)


def expiry_checkpoint(days_until_expiry: int) -> Optional[int]:
    """The checkpoint hit today, if any (exact match only)."""
    return days_until_expiry if days_until_expiry in EXPIRY_CHECKPOINTS else None


def classify_reorder(item: InventoryItem, days_until_expiry: Optional[int]) -> Optional[ReorderReason]:
    """Why the item needs reordering, or None."""
    reorder_level = item.reorder_level or DEFAULT_REORDER_LEVEL
    if item.quantity <= 0 or item.status == "out-of-stock":
        return ReorderReason.OUT_OF_STOCK
    if item.quantity <= reorder_level or item.status == "low-stock":
        return ReorderReason.LOW_STOCK
    if days_until_expiry is not None and 0 <= days_until_expiry <= REORDER_EXPIRY_WINDOW_DAYS:
        return ReorderReason.EXPIRING_SOON
    return None


def reorder_priority(
    reason: ReorderReason,
    item: InventoryItem,
    days_until_expiry: Optional[int] = None,
) -> ReorderPriority:
    if reason == ReorderReason.OUT_OF_STOCK:
        return ReorderPriority.URGENT

    if reason == ReorderReason.LOW_STOCK:
        reorder_level = item.reorder_level or DEFAULT_REORDER_LEVEL
        percentage = item.quantity / reorder_level * 100
        if percentage < 25:
            return ReorderPriority.URGENT
        if percentage < 50:
            return ReorderPriority.HIGH
        if percentage < 75:
            return ReorderPriority.MEDIUM
        return ReorderPriority.LOW

    if days_until_expiry is None:
        return ReorderPriority.LOW
    if days_until_expiry <= 30:
        return ReorderPriority.HIGH
    if days_until_expiry <= 60:
        return ReorderPriority.MEDIUM
    return ReorderPriority.LOW


def order_quantity(reason: ReorderReason, item: InventoryItem) -> float:
    reorder_level = item.reorder_level or DEFAULT_REORDER_LEVEL
    reorder_quantity = item.reorder_quantity or DEFAULT_REORDER_QUANTITY
    if reason == ReorderReason.OUT_OF_STOCK:
        return max(reorder_quantity, reorder_level * 2)
    if reason == ReorderReason.LOW_STOCK:
        return reorder_quantity
    return min(reorder_quantity, item.quantity)
