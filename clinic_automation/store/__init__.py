"""Record store and settings collaborators."""

from .base import RecordStore, SettingsService
from .settings_service import StaticSettingsService, SupabaseSettingsService
from .supabase_store import SupabaseRecordStore

__all__ = [
    "RecordStore",
    "SettingsService",
    "StaticSettingsService",
    "SupabaseSettingsService",
    "SupabaseRecordStore",
]
