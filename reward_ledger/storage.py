import copy
import threading
from contextlib import contextmanager
from datetime import datetime, timezone
from typing import Iterator, Optional
from uuid import UUID

from loguru import logger


class InMemoryStorage:
    """
    Record store keyed by id, one dict per table.

    Every read and write holds the store lock. Writes made inside
    ``unit_of_work()`` are applied together: the lock is held for the whole
    block, and if it raises, each key the block touched is put back to the
    value it had on entry.
    """

    TABLES = ("users", "habits", "products", "posts", "events")

    def __init__(self, seed: bool = False):
        self.users: dict[UUID, dict] = {}
        self.habits: dict[UUID, dict] = {}
        self.products: dict[UUID, dict] = {}
        self.posts: dict[UUID, dict] = {}
        self.events: dict[UUID, dict] = {}
        self._lock = threading.RLock()
        self._depth = 0
        self._journal: Optional[dict[tuple[str, UUID], Optional[dict]]] = None
        if seed:
            self._seed_data()

    def _table(self, name: str) -> dict[UUID, dict]:
        if name not in self.TABLES:
            raise KeyError(f"Unknown table {name}")
        return getattr(self, name)

    def get(self, table: str, key: UUID) -> Optional[dict]:
        with self._lock:
            record = self._table(table).get(key)
            return copy.deepcopy(record) if record is not None else None

    def put(self, table: str, key: UUID, record: dict) -> None:
        with self._lock:
            rows = self._table(table)
            self._remember(table, key, rows)
            rows[key] = copy.deepcopy(record)

    def delete(self, table: str, key: UUID) -> bool:
        with self._lock:
            rows = self._table(table)
            self._remember(table, key, rows)
            return rows.pop(key, None) is not None

    def values(self, table: str) -> list[dict]:
        with self._lock:
            return [copy.deepcopy(r) for r in self._table(table).values()]

    def _remember(self, table: str, key: UUID, rows: dict[UUID, dict]) -> None:
        # stored records are replaced on put, never mutated in place
        if self._journal is not None and (table, key) not in self._journal:
            self._journal[(table, key)] = rows.get(key)

    @contextmanager
    def unit_of_work(self) -> Iterator["InMemoryStorage"]:
        with self._lock:
            # nested blocks join the outermost one
            if self._depth:
                self._depth += 1
                try:
                    yield self
                finally:
                    self._depth -= 1
                return

            self._journal = {}
            self._depth = 1
            try:
                yield self
            except BaseException:
                self._rollback()
                raise
            finally:
                self._journal = None
                self._depth = 0

    def _rollback(self) -> None:
        journal, self._journal = self._journal, None
        for (table, key), previous in journal.items():
            rows = self._table(table)
            if previous is None:
                rows.pop(key, None)
            else:
                rows[key] = previous
        logger.warning(f"Unit of work rolled back {len(journal)} record(s)")

    def _seed_data(self):
        now = datetime.now(timezone.utc)
        user1_id = UUID("550e8400-e29b-41d4-a716-446655440000")
        user2_id = UUID("660e8400-e29b-41d4-a716-446655440001")
        seller_id = UUID("770e8400-e29b-41d4-a716-446655440002")

        for user_id, name, points in (
            (user1_id, "Jane Green", 100),
            (user2_id, "Sam Rivers", 40),
            (seller_id, "Eco Goods NGO", 0),
        ):
            self.users[user_id] = {
                "user_id": user_id, "full_name": name,
                "total_points": points, "current_streak": 0, "longest_streak": 0,
                "last_streak_date": None, "points_given": 0,
                "is_active": True, "created_at": now,
            }

        habit_id = UUID("11111111-1111-1111-1111-111111111111")
        self.habits[habit_id] = {
            "habit_id": habit_id, "user_id": user1_id,
            "title": "Cycle to work", "description": None,
            "category": "transportation", "frequency": "daily",
            "points": 10, "streak": 0, "longest_streak": 0,
            "total_completions": 0, "last_completed": None,
            "is_active": True, "created_at": now,
        }

        product_id = UUID("22222222-2222-2222-2222-222222222222")
        self.products[product_id] = {
            "product_id": product_id, "seller_id": seller_id,
            "name": "Bamboo Toothbrush", "description": "Compostable handle",
            "points_cost": 30, "stock": 25,
            "is_active": True, "created_at": now,
        }
