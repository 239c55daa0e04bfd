from datetime import datetime, timedelta, timezone

import pytest

from reward_ledger.models import CreateHabitRequest, RegisterUserRequest
from reward_ledger.service import RewardLedger
from reward_ledger.settings import Settings
from reward_ledger.storage import InMemoryStorage


START = datetime(2026, 3, 10, 9, 0, tzinfo=timezone.utc)


class FixedClock:
    """Clock that only moves when told to."""

    def __init__(self, now: datetime = START):
        self.now = now

    def __call__(self) -> datetime:
        return self.now

    def advance(self, **kwargs) -> datetime:
        self.now = self.now + timedelta(**kwargs)
        return self.now


@pytest.fixture
def clock():
    return FixedClock()


@pytest.fixture
def settings():
    return Settings(timezone="UTC", seed_demo_data=False, log_level="DEBUG")


@pytest.fixture
def ledger(clock, settings):
    return RewardLedger(storage=InMemoryStorage(), settings=settings, clock=clock)


@pytest.fixture
def user(ledger):
    return ledger.register_user(RegisterUserRequest(full_name="Jane Green"))


@pytest.fixture
def habit(ledger, user):
    return ledger.create_habit(CreateHabitRequest(
        user_id=user.user_id,
        title="Cycle to work",
        category="transportation",
        points=10,
    ))


@pytest.fixture
def set_balance(ledger):
    """Overwrite a user's balance directly in storage."""
    def _set(user_id, points: int) -> None:
        user_data = ledger.storage.get("users", user_id)
        user_data["total_points"] = points
        ledger.storage.put("users", user_id, user_data)
    return _set
