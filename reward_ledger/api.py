from typing import Optional
from uuid import UUID

from fastapi import FastAPI, Query, Request, status
from fastapi.middleware.cors import CORSMiddleware
from fastapi.responses import JSONResponse
from loguru import logger

from .log_setup import setup_logging
from .models import (
    AppreciatePostRequest,
    AppreciationResponse,
    CommunityPost,
    CompleteHabitRequest,
    CreateEventRequest,
    CreateHabitRequest,
    CreatePostRequest,
    CreateProductRequest,
    Event,
    EventCompletionResponse,
    EventJoinResponse,
    EventParticipationRequest,
    HabitCompletionResponse,
    HabitProgress,
    HabitStats,
    LeaderboardResponse,
    OrganizerActionRequest,
    Product,
    PurchaseRequest,
    PurchaseResponse,
    RegisterUserRequest,
    UpdateHabitRequest,
    UpdateProductRequest,
    UserBalance,
    UserRank,
)
from .service import (
    AlreadyCompletedTodayError,
    ForbiddenError,
    InsufficientPointsError,
    InsufficientStockError,
    InvalidStateTransitionError,
    LedgerServiceError,
    LedgerValidationError,
    NotFoundError,
    RewardLedger,
)
from .settings import get_settings

ERROR_STATUS = {
    NotFoundError: status.HTTP_404_NOT_FOUND,
    AlreadyCompletedTodayError: status.HTTP_400_BAD_REQUEST,
    InsufficientStockError: status.HTTP_400_BAD_REQUEST,
    InsufficientPointsError: status.HTTP_400_BAD_REQUEST,
    ForbiddenError: status.HTTP_403_FORBIDDEN,
    InvalidStateTransitionError: status.HTTP_400_BAD_REQUEST,
    LedgerValidationError: status.HTTP_400_BAD_REQUEST,
}


def status_for(exc: LedgerServiceError) -> int:
    for error_type, code in ERROR_STATUS.items():
        if isinstance(exc, error_type):
            return code
    return status.HTTP_400_BAD_REQUEST


def create_app(ledger: Optional[RewardLedger] = None, root_path: str = "") -> FastAPI:
    settings = ledger.settings if ledger else get_settings()
    ledger = ledger or RewardLedger(settings=settings)

    app = FastAPI(
        title="Reward Ledger API",
        description="Points, streaks and appreciation bookkeeping for habits, events, store and community posts",
        version="1.0.0",
        root_path=root_path,
    )

    app.add_middleware(
        CORSMiddleware,
        allow_origins=settings.cors_allow_origins,
        allow_credentials=True,
        allow_methods=["*"],
        allow_headers=["*"],
    )

    @app.exception_handler(LedgerServiceError)
    async def ledger_error_handler(request: Request, exc: LedgerServiceError) -> JSONResponse:
        code = status_for(exc)
        logger.warning(f"{request.method} {request.url.path} -> {code} {exc.code}: {exc}")
        return JSONResponse(
            status_code=code,
            content={"success": False, "error": exc.code, "message": str(exc)},
        )

    @app.get("/health", tags=["System"])
    def health_check():
        return {"status": "healthy", "service": settings.app_name}

    # Users

    @app.post("/users", response_model=UserBalance, status_code=status.HTTP_201_CREATED, tags=["Users"])
    def register_user(request: RegisterUserRequest) -> UserBalance:
        return ledger.register_user(request)

    @app.get("/users/{user_id}/balance", response_model=UserBalance, tags=["Users"])
    def get_user_balance(user_id: UUID) -> UserBalance:
        return ledger.get_balance(user_id)

    @app.post("/users/{user_id}/deactivate", response_model=UserBalance, tags=["Users"])
    def deactivate_user(user_id: UUID) -> UserBalance:
        return ledger.deactivate_user(user_id)

    @app.get("/users/{user_id}/rank", response_model=UserRank, tags=["Leaderboard"])
    def get_user_rank(user_id: UUID) -> UserRank:
        return ledger.user_rank(user_id)

    # Habits

    @app.post("/habits", response_model=HabitProgress, status_code=status.HTTP_201_CREATED, tags=["Habits"])
    def create_habit(request: CreateHabitRequest) -> HabitProgress:
        return ledger.create_habit(request)

    @app.get("/users/{user_id}/habits", response_model=list[HabitProgress], tags=["Habits"])
    def list_habits(user_id: UUID) -> list[HabitProgress]:
        return ledger.list_habits(user_id)

    @app.get("/users/{user_id}/habits/stats", response_model=HabitStats, tags=["Habits"])
    def get_habit_stats(user_id: UUID) -> HabitStats:
        return ledger.habit_stats(user_id)

    @app.get("/habits/{habit_id}", response_model=HabitProgress, tags=["Habits"])
    def get_habit(habit_id: UUID, user_id: UUID) -> HabitProgress:
        return ledger.get_habit(habit_id, user_id)

    @app.patch("/habits/{habit_id}", response_model=HabitProgress, tags=["Habits"])
    def update_habit(habit_id: UUID, request: UpdateHabitRequest) -> HabitProgress:
        return ledger.update_habit(habit_id, request)

    @app.post("/habits/{habit_id}/complete", response_model=HabitCompletionResponse, tags=["Habits"])
    def complete_habit(habit_id: UUID, request: CompleteHabitRequest) -> HabitCompletionResponse:
        return ledger.complete_habit(habit_id, request.user_id)

    @app.delete("/habits/{habit_id}", tags=["Habits"])
    def delete_habit(habit_id: UUID, user_id: UUID):
        ledger.delete_habit(habit_id, user_id)
        return {"success": True, "message": "Habit deleted successfully"}

    # Store

    @app.post("/products", response_model=Product, status_code=status.HTTP_201_CREATED, tags=["Store"])
    def create_product(request: CreateProductRequest) -> Product:
        return ledger.create_product(request)

    @app.get("/products/{product_id}", response_model=Product, tags=["Store"])
    def get_product(product_id: UUID) -> Product:
        return ledger.get_product(product_id)

    @app.patch("/products/{product_id}", response_model=Product, tags=["Store"])
    def update_product(product_id: UUID, request: UpdateProductRequest) -> Product:
        return ledger.update_product(product_id, request)

    @app.delete("/products/{product_id}", tags=["Store"])
    def delete_product(product_id: UUID, actor_id: UUID):
        ledger.delete_product(product_id, actor_id)
        return {"success": True, "message": "Product deleted successfully"}

    @app.post("/products/{product_id}/purchase", response_model=PurchaseResponse, tags=["Store"])
    def purchase_product(product_id: UUID, request: PurchaseRequest) -> PurchaseResponse:
        return ledger.purchase_product(product_id, request.user_id, request.quantity)

    # Community posts

    @app.post("/posts", response_model=CommunityPost, status_code=status.HTTP_201_CREATED, tags=["Community"])
    def create_post(request: CreatePostRequest) -> CommunityPost:
        return ledger.create_post(request)

    @app.get("/posts/{post_id}", response_model=CommunityPost, tags=["Community"])
    def get_post(post_id: UUID) -> CommunityPost:
        return ledger.get_post(post_id)

    @app.post("/posts/{post_id}/appreciate", response_model=AppreciationResponse, tags=["Community"])
    def appreciate_post(post_id: UUID, request: AppreciatePostRequest) -> AppreciationResponse:
        return ledger.appreciate_post(post_id, request.from_user, request.points, request.message)

    # Events

    @app.post("/events", response_model=Event, status_code=status.HTTP_201_CREATED, tags=["Events"])
    def create_event(request: CreateEventRequest) -> Event:
        return ledger.create_event(request)

    @app.get("/events/{event_id}", response_model=Event, tags=["Events"])
    def get_event(event_id: UUID) -> Event:
        return ledger.get_event(event_id)

    @app.post("/events/{event_id}/join", response_model=EventJoinResponse, tags=["Events"])
    def join_event(event_id: UUID, request: EventParticipationRequest) -> EventJoinResponse:
        return ledger.join_event(event_id, request.user_id)

    @app.post("/events/{event_id}/complete", response_model=EventCompletionResponse, tags=["Events"])
    def complete_event(event_id: UUID, request: OrganizerActionRequest) -> EventCompletionResponse:
        return ledger.complete_event(event_id, request.actor_id)

    @app.post("/events/{event_id}/leave", response_model=Event, tags=["Events"])
    def leave_event(event_id: UUID, request: EventParticipationRequest) -> Event:
        return ledger.leave_event(event_id, request.user_id)

    @app.post("/events/{event_id}/cancel", response_model=Event, tags=["Events"])
    def cancel_event(event_id: UUID, request: OrganizerActionRequest) -> Event:
        return ledger.cancel_event(event_id, request.actor_id)

    @app.delete("/events/{event_id}", tags=["Events"])
    def delete_event(event_id: UUID, actor_id: UUID):
        ledger.delete_event(event_id, actor_id)
        return {"success": True, "message": "Event deleted successfully"}

    # Leaderboard

    @app.get("/leaderboard", response_model=LeaderboardResponse, tags=["Leaderboard"])
    def get_leaderboard(
        limit: Optional[int] = Query(default=None, ge=1, le=100),
        offset: int = Query(default=0, ge=0),
    ) -> LeaderboardResponse:
        return ledger.leaderboard(limit, offset)

    return app


setup_logging(get_settings())
app = create_app()


if __name__ == "__main__":
    import uvicorn
    uvicorn.run(app, host="0.0.0.0", port=8000)
