from datetime import datetime, timezone
from typing import Callable, Optional
from uuid import UUID, uuid4

from loguru import logger

from .models import (
    APPRECIATION_MAX_POINTS,
    APPRECIATION_MIN_POINTS,
    AppreciationRecord,
    AppreciationResponse,
    CommunityPost,
    CreateEventRequest,
    CreateHabitRequest,
    CreatePostRequest,
    CreateProductRequest,
    Event,
    EventCompletionResponse,
    EventJoinResponse,
    EventPointsKind,
    EventPointsResponse,
    EventStatus,
    HabitCompletionResponse,
    HabitProgress,
    HabitStats,
    LeaderboardEntry,
    LeaderboardResponse,
    Product,
    PurchaseResponse,
    RegisterUserRequest,
    UpdateHabitRequest,
    UpdateProductRequest,
    UserBalance,
    UserRank,
)
from .settings import Settings, get_settings
from .storage import InMemoryStorage
from .streaks import advance_streak, to_calendar_day


class LedgerServiceError(Exception):
    code = "LEDGER_ERROR"


class NotFoundError(LedgerServiceError):
    code = "NOT_FOUND"


class AlreadyCompletedTodayError(LedgerServiceError):
    code = "ALREADY_COMPLETED_TODAY"


class InsufficientStockError(LedgerServiceError):
    code = "INSUFFICIENT_STOCK"


class InsufficientPointsError(LedgerServiceError):
    code = "INSUFFICIENT_POINTS"


class ForbiddenError(LedgerServiceError):
    code = "FORBIDDEN"


class InvalidStateTransitionError(LedgerServiceError):
    code = "INVALID_STATE"


class LedgerValidationError(LedgerServiceError):
    code = "VALIDATION_ERROR"


def _utc_now() -> datetime:
    return datetime.now(timezone.utc)


class RewardLedger:
    """
    Sole writer of user balances and habit progress.

    Every mutating operation runs in one storage unit of work, so a habit
    is never saved without its matching balance credit (and a purchase
    never debits points without taking the stock).
    """

    def __init__(
        self,
        storage: Optional[InMemoryStorage] = None,
        settings: Optional[Settings] = None,
        clock: Optional[Callable[[], datetime]] = None,
    ):
        self.settings = settings or get_settings()
        self.storage = storage or InMemoryStorage(seed=self.settings.seed_demo_data)
        self.clock = clock or _utc_now

    def register_user(self, request: RegisterUserRequest) -> UserBalance:
        user_id = uuid4()
        user_data = {
            "user_id": user_id,
            "full_name": request.full_name.strip(),
            "total_points": 0,
            "current_streak": 0,
            "longest_streak": 0,
            "last_streak_date": None,
            "points_given": 0,
            "is_active": True,
            "created_at": self._now(),
        }
        with self.storage.unit_of_work():
            self.storage.put("users", user_id, user_data)
        logger.info(f"Registered user {user_id}")
        return UserBalance(**user_data)

    def deactivate_user(self, user_id: UUID) -> UserBalance:
        with self.storage.unit_of_work():
            user_data = self._load_user(user_id)
            user_data["is_active"] = False
            self.storage.put("users", user_id, user_data)
        logger.info(f"Deactivated user {user_id}")
        return UserBalance(**user_data)

    def get_balance(self, user_id: UUID) -> UserBalance:
        return UserBalance(**self._load_user(user_id))

    def create_habit(self, request: CreateHabitRequest) -> HabitProgress:
        points = request.points if request.points is not None else self.settings.default_habit_points
        habit_id = uuid4()
        habit_data = {
            "habit_id": habit_id,
            "user_id": request.user_id,
            "title": request.title.strip(),
            "description": (request.description or "").strip() or None,
            "category": request.category,
            "frequency": request.frequency,
            "points": points,
            "streak": 0,
            "longest_streak": 0,
            "total_completions": 0,
            "last_completed": None,
            "is_active": True,
            "created_at": self._now(),
        }
        with self.storage.unit_of_work():
            self._load_active_user(request.user_id)
            self.storage.put("habits", habit_id, habit_data)
        logger.info(f"Created habit {habit_id} for user {request.user_id} worth {points} points")
        return HabitProgress(**habit_data)

    def get_habit(self, habit_id: UUID, user_id: UUID) -> HabitProgress:
        return HabitProgress(**self._load_habit(habit_id, user_id))

    def list_habits(self, user_id: UUID) -> list[HabitProgress]:
        habits = [
            HabitProgress(**h) for h in self.storage.values("habits")
            if h["user_id"] == user_id
        ]
        habits.sort(key=lambda h: h.created_at, reverse=True)
        return habits

    def update_habit(self, habit_id: UUID, request: UpdateHabitRequest) -> HabitProgress:
        """Edit a habit's descriptive fields. Streaks and completions are ledger-owned."""
        changes = request.model_dump(exclude={"user_id"}, exclude_none=True)
        if "title" in changes:
            changes["title"] = changes["title"].strip()
        if "description" in changes:
            changes["description"] = changes["description"].strip() or None

        with self.storage.unit_of_work():
            habit_data = self._load_habit(habit_id, request.user_id)
            habit_data.update(changes)
            self.storage.put("habits", habit_id, habit_data)
        logger.info(f"Updated habit {habit_id}: {sorted(changes)}")
        return HabitProgress(**habit_data)

    def delete_habit(self, habit_id: UUID, user_id: UUID) -> None:
        with self.storage.unit_of_work():
            self._load_habit(habit_id, user_id)
            self.storage.delete("habits", habit_id)
        logger.info(f"Deleted habit {habit_id}")

    def complete_habit(
        self, habit_id: UUID, user_id: UUID, now: Optional[datetime] = None
    ) -> HabitCompletionResponse:
        now = self._aware(now) if now is not None else self._now()
        today = to_calendar_day(now, self.settings.tz)

        with self.storage.unit_of_work():
            habit_data = self._load_habit(habit_id, user_id)
            user_data = self._load_active_user(user_id)
            if not habit_data["is_active"]:
                raise InvalidStateTransitionError("Habit is archived")

            previous = habit_data["last_completed"]
            last_day = to_calendar_day(previous, self.settings.tz) if previous else None
            if last_day == today:
                logger.warning(f"Habit {habit_id} already completed on {today}")
                raise AlreadyCompletedTodayError("Habit already completed today")
            if last_day is not None and today < last_day:
                raise LedgerValidationError(f"Completion on {today} predates last completion on {last_day}")

            habit_data["streak"], habit_data["longest_streak"] = advance_streak(
                last_day, habit_data["streak"], habit_data["longest_streak"], today
            )
            habit_data["total_completions"] += 1
            habit_data["last_completed"] = now
            self.storage.put("habits", habit_id, habit_data)

            points = habit_data["points"]
            user_data["total_points"] += points
            last_streak_date = user_data["last_streak_date"]
            # the user streak only moves forward, even if another habit was completed later
            if last_streak_date is None or last_streak_date <= today:
                user_data["current_streak"], user_data["longest_streak"] = advance_streak(
                    last_streak_date,
                    user_data["current_streak"],
                    user_data["longest_streak"],
                    today,
                )
                user_data["last_streak_date"] = today
            self.storage.put("users", user_id, user_data)

        logger.info(
            f"Habit {habit_id} completed by {user_id}: streak={habit_data['streak']} "
            f"+{points} points (total {user_data['total_points']})"
        )
        return HabitCompletionResponse(
            habit=HabitProgress(**habit_data),
            balance=UserBalance(**user_data),
            points_earned=points,
            message="Habit completed successfully",
        )

    def habit_stats(self, user_id: UUID, now: Optional[datetime] = None) -> HabitStats:
        now = self._aware(now) if now is not None else self._now()
        today = to_calendar_day(now, self.settings.tz)
        with self.storage.unit_of_work():
            self._load_user(user_id)
            habits = self.list_habits(user_id)
        streaks = [h.streak for h in habits]

        return HabitStats(
            user_id=user_id,
            total_habits=len(habits),
            total_completions=sum(h.total_completions for h in habits),
            total_points=sum(h.points for h in habits),
            average_streak=sum(streaks) / len(streaks) if streaks else 0.0,
            max_streak=max(streaks, default=0),
            today_completions=sum(
                1 for h in habits
                if h.last_completed and to_calendar_day(h.last_completed, self.settings.tz) == today
            ),
        )

    def create_product(self, request: CreateProductRequest) -> Product:
        product_id = uuid4()
        product_data = {
            "product_id": product_id,
            "seller_id": request.seller_id,
            "name": request.name.strip(),
            "description": (request.description or "").strip() or None,
            "points_cost": request.points_cost,
            "stock": request.stock,
            "is_active": True,
            "created_at": self._now(),
        }
        with self.storage.unit_of_work():
            self._load_active_user(request.seller_id)
            self.storage.put("products", product_id, product_data)
        logger.info(f"Created product {product_id} costing {request.points_cost} points")
        return Product(**product_data)

    def get_product(self, product_id: UUID) -> Product:
        product_data = self.storage.get("products", product_id)
        if not product_data or not product_data["is_active"]:
            raise NotFoundError(f"Product {product_id} not found")
        return Product(**product_data)

    def update_product(self, product_id: UUID, request: UpdateProductRequest) -> Product:
        changes = request.model_dump(exclude={"actor_id"}, exclude_none=True)
        with self.storage.unit_of_work():
            product_data = self.storage.get("products", product_id)
            if not product_data:
                raise NotFoundError(f"Product {product_id} not found")
            if product_data["seller_id"] != request.actor_id:
                raise ForbiddenError("Only seller can update product")
            product_data.update(changes)
            self.storage.put("products", product_id, product_data)
        logger.info(f"Updated product {product_id}: {sorted(changes)}")
        return Product(**product_data)

    def delete_product(self, product_id: UUID, actor_id: UUID) -> None:
        with self.storage.unit_of_work():
            product_data = self.storage.get("products", product_id)
            if not product_data:
                raise NotFoundError(f"Product {product_id} not found")
            if product_data["seller_id"] != actor_id:
                raise ForbiddenError("Only seller can delete product")
            self.storage.delete("products", product_id)
        logger.info(f"Deleted product {product_id}")

    def purchase_product(self, product_id: UUID, user_id: UUID, quantity: int = 1) -> PurchaseResponse:
        if quantity < 1:
            raise LedgerValidationError("Quantity must be at least 1")

        with self.storage.unit_of_work():
            product_data = self.storage.get("products", product_id)
            if not product_data or not product_data["is_active"]:
                raise NotFoundError(f"Product {product_id} not found")

            if product_data["stock"] < quantity:
                logger.warning(f"Purchase of {product_id} x{quantity} rejected: stock {product_data['stock']}")
                raise InsufficientStockError("Insufficient stock")

            user_data = self._load_active_user(user_id)
            total_cost = product_data["points_cost"] * quantity
            if user_data["total_points"] < total_cost:
                logger.warning(
                    f"Purchase by {user_id} rejected: needs {total_cost}, has {user_data['total_points']}"
                )
                raise InsufficientPointsError("Insufficient points")

            user_data["total_points"] -= total_cost
            self.storage.put("users", user_id, user_data)

            product_data["stock"] -= quantity
            self.storage.put("products", product_id, product_data)

        logger.info(f"User {user_id} bought {quantity} x {product_id} for {total_cost} points")
        return PurchaseResponse(
            product=Product(**product_data),
            balance=UserBalance(**user_data),
            quantity=quantity,
            points_spent=total_cost,
            message="Product purchased successfully",
        )

    def create_post(self, request: CreatePostRequest) -> CommunityPost:
        post_id = uuid4()
        post_data = {
            "post_id": post_id,
            "author_id": request.author_id,
            "content": request.content.strip(),
            "appreciations": [],
            "total_appreciation_points": 0,
            "created_at": self._now(),
        }
        with self.storage.unit_of_work():
            self._load_active_user(request.author_id)
            self.storage.put("posts", post_id, post_data)
        logger.info(f"Created post {post_id} by {request.author_id}")
        return CommunityPost(**post_data)

    def get_post(self, post_id: UUID) -> CommunityPost:
        post_data = self.storage.get("posts", post_id)
        if not post_data:
            raise NotFoundError(f"Post {post_id} not found")
        return CommunityPost(**post_data)

    def appreciate_post(
        self, post_id: UUID, from_user: UUID, points: int, message: Optional[str] = None
    ) -> AppreciationResponse:
        if not APPRECIATION_MIN_POINTS <= points <= APPRECIATION_MAX_POINTS:
            raise LedgerValidationError(
                f"Points must be between {APPRECIATION_MIN_POINTS} and {APPRECIATION_MAX_POINTS}"
            )

        with self.storage.unit_of_work():
            post_data = self.storage.get("posts", post_id)
            if not post_data:
                raise NotFoundError(f"Post {post_id} not found")
            user_data = self._load_active_user(from_user)

            record = {
                "post_id": post_id,
                "from_user": from_user,
                "points": points,
                "message": (message or "").strip() or None,
                "created_at": self._now(),
            }
            post_data["appreciations"].append(record)
            post_data["total_appreciation_points"] = sum(a["points"] for a in post_data["appreciations"])
            self.storage.put("posts", post_id, post_data)

            user_data["points_given"] += points
            self.storage.put("users", from_user, user_data)

        logger.info(
            f"Post {post_id} appreciated by {from_user} with {points} points "
            f"(total {post_data['total_appreciation_points']})"
        )
        return AppreciationResponse(
            post=CommunityPost(**post_data),
            appreciation=AppreciationRecord(**record),
            message="Post appreciated successfully",
        )

    def create_event(self, request: CreateEventRequest) -> Event:
        event_id = uuid4()
        event_data = {
            "event_id": event_id,
            "organizer_id": request.organizer_id,
            "title": request.title.strip(),
            "start_date": self._aware(request.start_date),
            "end_date": self._aware(request.end_date),
            "max_participants": request.max_participants,
            "participants": [],
            "points_for_attendance": (
                request.points_for_attendance if request.points_for_attendance is not None
                else self.settings.default_attendance_points
            ),
            "points_for_completion": (
                request.points_for_completion if request.points_for_completion is not None
                else self.settings.default_completion_points
            ),
            "status": EventStatus.UPCOMING,
            "created_at": self._now(),
        }
        with self.storage.unit_of_work():
            self._load_active_user(request.organizer_id)
            self._save_event(event_data)
        logger.info(f"Created event {event_id} ({event_data['status'].value})")
        return Event(**event_data)

    def get_event(self, event_id: UUID) -> Event:
        event_data = self.storage.get("events", event_id)
        if not event_data:
            raise NotFoundError(f"Event {event_id} not found")
        if self._refresh_status(event_data):
            with self.storage.unit_of_work():
                event_data = self._load_event(event_id)
        return Event(**event_data)

    def join_event(self, event_id: UUID, user_id: UUID) -> EventJoinResponse:
        with self.storage.unit_of_work():
            event_data = self._load_event(event_id)
            self._load_active_user(user_id)

            if event_data["status"] != EventStatus.UPCOMING:
                raise InvalidStateTransitionError("Event is not accepting participants")
            if user_id in event_data["participants"]:
                raise InvalidStateTransitionError("Already registered for this event")
            if Event(**event_data).is_full():
                raise InvalidStateTransitionError("Event is full")

            event_data["participants"].append(user_id)
            self._save_event(event_data)
            settled = self.credit_event_points(event_id, user_id, EventPointsKind.ATTENDANCE)

        return EventJoinResponse(
            event=Event(**event_data),
            points_awarded=settled.points_awarded,
            total_points=settled.balance.total_points,
            message=f"Successfully joined event! +{settled.points_awarded} points awarded",
        )

    def complete_event(self, event_id: UUID, actor_id: UUID) -> EventCompletionResponse:
        with self.storage.unit_of_work():
            event_data = self._load_event(event_id)
            if event_data["organizer_id"] != actor_id:
                raise ForbiddenError("Only organizer can complete event")
            if event_data["status"] != EventStatus.ONGOING:
                raise InvalidStateTransitionError("Event must be ongoing to be completed")

            event_data["status"] = EventStatus.COMPLETED
            self._save_event(event_data)

            for participant_id in event_data["participants"]:
                participant = self.storage.get("users", participant_id)
                if not participant or not participant["is_active"]:
                    logger.warning(f"Skipping completion points for inactive user {participant_id}")
                    continue
                self.credit_event_points(event_id, participant_id, EventPointsKind.COMPLETION)

        logger.info(f"Event {event_id} completed with {len(event_data['participants'])} participants")
        return EventCompletionResponse(
            event=Event(**event_data),
            participants_count=len(event_data["participants"]),
            points_awarded=event_data["points_for_completion"],
            message="Event marked as completed",
        )

    def leave_event(self, event_id: UUID, user_id: UUID) -> Event:
        """Drop out of an event. Attendance points already credited are kept."""
        with self.storage.unit_of_work():
            event_data = self._load_event(event_id)
            if user_id not in event_data["participants"]:
                raise InvalidStateTransitionError("Not registered for this event")
            if event_data["status"] in (EventStatus.COMPLETED, EventStatus.CANCELLED):
                raise InvalidStateTransitionError(f"Cannot leave a {event_data['status'].value} event")

            event_data["participants"].remove(user_id)
            self._save_event(event_data)
        logger.info(f"User {user_id} left event {event_id}")
        return Event(**event_data)

    def cancel_event(self, event_id: UUID, actor_id: UUID) -> Event:
        with self.storage.unit_of_work():
            event_data = self._load_event(event_id)
            if event_data["organizer_id"] != actor_id:
                raise ForbiddenError("Only organizer can cancel event")
            if event_data["status"] in (EventStatus.COMPLETED, EventStatus.CANCELLED):
                raise InvalidStateTransitionError(f"Cannot cancel a {event_data['status'].value} event")

            event_data["status"] = EventStatus.CANCELLED
            self._save_event(event_data)
        logger.info(f"Event {event_id} cancelled")
        return Event(**event_data)

    def delete_event(self, event_id: UUID, actor_id: UUID) -> None:
        with self.storage.unit_of_work():
            event_data = self.storage.get("events", event_id)
            if not event_data:
                raise NotFoundError(f"Event {event_id} not found")
            if event_data["organizer_id"] != actor_id:
                raise ForbiddenError("Only organizer can delete event")
            self.storage.delete("events", event_id)
        logger.info(f"Deleted event {event_id}")

    def credit_event_points(
        self, event_id: UUID, user_id: UUID, kind: EventPointsKind
    ) -> EventPointsResponse:
        kind = EventPointsKind(kind)
        with self.storage.unit_of_work():
            event_data = self._load_event(event_id)
            if user_id not in event_data["participants"]:
                raise InvalidStateTransitionError(f"User {user_id} is not a participant of event {event_id}")
            user_data = self._load_active_user(user_id)

            if kind == EventPointsKind.ATTENDANCE:
                points = event_data["points_for_attendance"]
            else:
                points = event_data["points_for_completion"]
            user_data["total_points"] += points
            self.storage.put("users", user_id, user_data)

        logger.info(f"Event {event_id} {kind.value}: +{points} points to {user_id}")
        return EventPointsResponse(
            event_id=event_id,
            balance=UserBalance(**user_data),
            kind=kind,
            points_awarded=points,
        )

    def leaderboard(self, limit: Optional[int] = None, offset: int = 0) -> LeaderboardResponse:
        limit = limit or self.settings.leaderboard_page_size
        ranked = self._ranked_users()
        page = ranked[offset:offset + limit]

        return LeaderboardResponse(
            entries=[
                LeaderboardEntry(
                    rank=offset + i + 1,
                    user_id=u["user_id"],
                    full_name=u["full_name"],
                    total_points=u["total_points"],
                    current_streak=u["current_streak"],
                )
                for i, u in enumerate(page)
            ],
            total_count=len(ranked),
            limit=limit,
            offset=offset,
        )

    def user_rank(self, user_id: UUID) -> UserRank:
        with self.storage.unit_of_work():
            user_data = self._load_user(user_id)
            ranked = self._ranked_users()
        ahead = sum(1 for u in ranked if u["total_points"] > user_data["total_points"])
        return UserRank(
            user_id=user_id,
            rank=ahead + 1,
            total_points=user_data["total_points"],
            total_users=len(ranked),
        )

    def _now(self) -> datetime:
        return self._aware(self.clock())

    def _aware(self, moment: datetime) -> datetime:
        if moment.tzinfo is None:
            return moment.replace(tzinfo=self.settings.tz)
        return moment

    def _load_user(self, user_id: UUID) -> dict:
        user_data = self.storage.get("users", user_id)
        if not user_data:
            raise NotFoundError(f"User {user_id} not found")
        return user_data

    def _load_active_user(self, user_id: UUID) -> dict:
        user_data = self._load_user(user_id)
        if not user_data["is_active"]:
            raise ForbiddenError(f"User {user_id} is deactivated")
        return user_data

    def _load_habit(self, habit_id: UUID, user_id: UUID) -> dict:
        habit_data = self.storage.get("habits", habit_id)
        # habits are owner-scoped: someone else's habit looks absent
        if not habit_data or habit_data["user_id"] != user_id:
            raise NotFoundError(f"Habit {habit_id} not found")
        return habit_data

    def _load_event(self, event_id: UUID) -> dict:
        event_data = self.storage.get("events", event_id)
        if not event_data:
            raise NotFoundError(f"Event {event_id} not found")
        if self._refresh_status(event_data):
            self.storage.put("events", event_id, event_data)
        return event_data

    def _save_event(self, event_data: dict) -> None:
        self._refresh_status(event_data)
        self.storage.put("events", event_data["event_id"], event_data)

    def _refresh_status(self, event_data: dict) -> bool:
        """Derive status from the clock; completed and cancelled are final."""
        status = event_data["status"]
        if status in (EventStatus.COMPLETED, EventStatus.CANCELLED):
            return False
        now = self._now()
        if event_data["start_date"] <= now <= event_data["end_date"]:
            new_status = EventStatus.ONGOING
        elif event_data["end_date"] < now:
            new_status = EventStatus.COMPLETED
        else:
            new_status = status
        event_data["status"] = new_status
        return new_status != status

    def _ranked_users(self) -> list[dict]:
        active = [u for u in self.storage.values("users") if u["is_active"]]
        active.sort(key=lambda u: (-u["total_points"], u["created_at"]))
        return active
