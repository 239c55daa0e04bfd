"""
Reward Ledger for habits, events, store purchases and community posts

This module provides:
- Habit completion with per-habit and per-user streaks
- Event attendance and completion points
- Store purchases paid in points
- Point appreciation on community posts
- One unit of work per operation, so balances and counters move together
"""

from .models import (
    EventPointsKind,
    EventStatus,
    HabitProgress,
    AppreciationRecord,
    CommunityPost,
    Product,
    Event,
    UserBalance,
)
from .service import RewardLedger

__all__ = [
    "EventPointsKind",
    "EventStatus",
    "HabitProgress",
    "AppreciationRecord",
    "CommunityPost",
    "Product",
    "Event",
    "UserBalance",
    "RewardLedger",
]
