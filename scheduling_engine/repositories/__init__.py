"""Persistence backends for the scheduling engine."""

from .base import SchedulingRepository
from .memory import InMemorySchedulingRepository
from .supabase_repository import SupabaseSchedulingRepository

__all__ = [
    "SchedulingRepository",
    "InMemorySchedulingRepository",
    "SupabaseSchedulingRepository",
]
