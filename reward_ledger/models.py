from datetime import date, datetime
from enum import Enum
from typing import Optional
from uuid import UUID
from pydantic import BaseModel, Field, ConfigDict, model_validator


APPRECIATION_MIN_POINTS = 1
APPRECIATION_MAX_POINTS = 100


class HabitCategory(str, Enum):
    WASTE_REDUCTION = "waste-reduction"
    ENERGY_CONSERVATION = "energy-conservation"
    WATER_CONSERVATION = "water-conservation"
    TRANSPORTATION = "transportation"
    FOOD_SUSTAINABILITY = "food-sustainability"
    SHOPPING = "shopping"
    OTHER = "other"


class HabitFrequency(str, Enum):
    DAILY = "daily"
    WEEKLY = "weekly"
    MONTHLY = "monthly"


class EventStatus(str, Enum):
    UPCOMING = "upcoming"
    ONGOING = "ongoing"
    COMPLETED = "completed"
    CANCELLED = "cancelled"


class EventPointsKind(str, Enum):
    ATTENDANCE = "attendance"
    COMPLETION = "completion"


# Requests

class RegisterUserRequest(BaseModel):
    full_name: str = Field(..., min_length=1, max_length=100)

    model_config = ConfigDict(json_schema_extra={
        "example": {"full_name": "Jane Green"}
    })


class CreateHabitRequest(BaseModel):
    user_id: UUID
    title: str = Field(..., min_length=1, max_length=100)
    description: Optional[str] = Field(default=None, max_length=500)
    category: HabitCategory = HabitCategory.OTHER
    frequency: HabitFrequency = HabitFrequency.DAILY
    points: Optional[int] = Field(default=None, ge=0, description="Points credited per completion")

    model_config = ConfigDict(json_schema_extra={
        "example": {
            "user_id": "550e8400-e29b-41d4-a716-446655440000",
            "title": "Carry a reusable bottle",
            "category": "waste-reduction",
            "frequency": "daily",
            "points": 10
        }
    })


class CompleteHabitRequest(BaseModel):
    user_id: UUID


class UpdateHabitRequest(BaseModel):
    user_id: UUID
    title: Optional[str] = Field(default=None, min_length=1, max_length=100)
    description: Optional[str] = Field(default=None, max_length=500)
    category: Optional[HabitCategory] = None
    frequency: Optional[HabitFrequency] = None
    points: Optional[int] = Field(default=None, ge=0)
    is_active: Optional[bool] = Field(default=None, description="Archived habits cannot be completed")


class CreateProductRequest(BaseModel):
    seller_id: UUID
    name: str = Field(..., min_length=1, max_length=100)
    description: Optional[str] = Field(default=None, max_length=1000)
    points_cost: int = Field(..., ge=0)
    stock: int = Field(..., ge=0)


class UpdateProductRequest(BaseModel):
    actor_id: UUID
    name: Optional[str] = Field(default=None, min_length=1, max_length=100)
    description: Optional[str] = Field(default=None, max_length=1000)
    points_cost: Optional[int] = Field(default=None, ge=0)
    stock: Optional[int] = Field(default=None, ge=0)
    is_active: Optional[bool] = None


class PurchaseRequest(BaseModel):
    user_id: UUID
    quantity: int = Field(default=1, ge=1)


class CreatePostRequest(BaseModel):
    author_id: UUID
    content: str = Field(..., min_length=1, max_length=2000)


class AppreciatePostRequest(BaseModel):
    from_user: UUID
    points: int = Field(..., ge=APPRECIATION_MIN_POINTS, le=APPRECIATION_MAX_POINTS)
    message: Optional[str] = Field(default=None, max_length=200)


class CreateEventRequest(BaseModel):
    organizer_id: UUID
    title: str = Field(..., min_length=1, max_length=200)
    start_date: datetime
    end_date: datetime
    max_participants: Optional[int] = Field(default=None, ge=1)
    points_for_attendance: Optional[int] = Field(default=None, ge=0)
    points_for_completion: Optional[int] = Field(default=None, ge=0)

    @model_validator(mode="after")
    def check_dates(self):
        if (self.start_date.tzinfo is None) != (self.end_date.tzinfo is None):
            raise ValueError("Start and end date must both carry a timezone or both omit it")
        if self.end_date <= self.start_date:
            raise ValueError("End date must be after start date")
        return self


class EventParticipationRequest(BaseModel):
    user_id: UUID


class OrganizerActionRequest(BaseModel):
    actor_id: UUID


# Records

class UserBalance(BaseModel):
    user_id: UUID
    full_name: str
    total_points: int = Field(default=0, ge=0)
    current_streak: int = Field(default=0, ge=0)
    longest_streak: int = Field(default=0, ge=0)
    last_streak_date: Optional[date] = None
    points_given: int = Field(default=0, ge=0)
    is_active: bool = True
    created_at: datetime

    model_config = ConfigDict(from_attributes=True)


class HabitProgress(BaseModel):
    habit_id: UUID
    user_id: UUID
    title: str
    description: Optional[str] = None
    category: HabitCategory
    frequency: HabitFrequency
    points: int = Field(ge=0)
    streak: int = Field(default=0, ge=0)
    longest_streak: int = Field(default=0, ge=0)
    total_completions: int = Field(default=0, ge=0)
    last_completed: Optional[datetime] = None
    is_active: bool = True
    created_at: datetime

    model_config = ConfigDict(from_attributes=True)


class Product(BaseModel):
    product_id: UUID
    seller_id: UUID
    name: str
    description: Optional[str] = None
    points_cost: int = Field(ge=0)
    stock: int = Field(ge=0)
    is_active: bool = True
    created_at: datetime

    model_config = ConfigDict(from_attributes=True)


class AppreciationRecord(BaseModel):
    post_id: UUID
    from_user: UUID
    points: int = Field(ge=APPRECIATION_MIN_POINTS, le=APPRECIATION_MAX_POINTS)
    message: Optional[str] = None
    created_at: datetime

    model_config = ConfigDict(from_attributes=True)


class CommunityPost(BaseModel):
    post_id: UUID
    author_id: UUID
    content: str
    appreciations: list[AppreciationRecord] = Field(default_factory=list)
    total_appreciation_points: int = 0
    created_at: datetime

    model_config = ConfigDict(from_attributes=True)

    @property
    def appreciations_count(self) -> int:
        return len(self.appreciations)


class Event(BaseModel):
    event_id: UUID
    organizer_id: UUID
    title: str
    start_date: datetime
    end_date: datetime
    max_participants: Optional[int] = None
    participants: list[UUID] = Field(default_factory=list)
    points_for_attendance: int = Field(ge=0)
    points_for_completion: int = Field(ge=0)
    status: EventStatus = EventStatus.UPCOMING
    created_at: datetime

    model_config = ConfigDict(from_attributes=True)

    def is_full(self) -> bool:
        return self.max_participants is not None and len(self.participants) >= self.max_participants


# Responses

class HabitCompletionResponse(BaseModel):
    habit: HabitProgress
    balance: UserBalance
    points_earned: int
    message: str


class PurchaseResponse(BaseModel):
    product: Product
    balance: UserBalance
    quantity: int
    points_spent: int
    message: str


class AppreciationResponse(BaseModel):
    post: CommunityPost
    appreciation: AppreciationRecord
    message: str


class EventPointsResponse(BaseModel):
    event_id: UUID
    balance: UserBalance
    kind: EventPointsKind
    points_awarded: int


class EventJoinResponse(BaseModel):
    event: Event
    points_awarded: int
    total_points: int
    message: str


class EventCompletionResponse(BaseModel):
    event: Event
    participants_count: int
    points_awarded: int
    message: str


class HabitStats(BaseModel):
    user_id: UUID
    total_habits: int
    total_completions: int
    total_points: int
    average_streak: float
    max_streak: int
    today_completions: int


class LeaderboardEntry(BaseModel):
    rank: int
    user_id: UUID
    full_name: str
    total_points: int
    current_streak: int


class LeaderboardResponse(BaseModel):
    entries: list[LeaderboardEntry]
    total_count: int
    limit: int
    offset: int


class UserRank(BaseModel):
    user_id: UUID
    rank: int
    total_points: int
    total_users: int
