from contextlib import asynccontextmanager
from typing import Optional

from fastapi import BackgroundTasks, Depends, FastAPI, Header, HTTPException, Request, WebSocket, WebSocketDisconnect, status
from fastapi.concurrency import run_in_threadpool
from fastapi.middleware.cors import CORSMiddleware
from fastapi.responses import JSONResponse
from loguru import logger

from .auth import InvalidTokenError, decode_admin_token
from .config import CORS_ORIGINS
from .errors import ConflictError, NotFoundError, StorageError, ValidationError
from .events import AdminEventHub
from .models import (
    AnalysisPeriod,
    AnalysisPurchaseRequest,
    BetApprovalResult,
    BetReport,
    BotLogoRequest,
    CreateAnalysisPeriodRequest,
    CreateRewardCodeRequest,
    LedgerHistoryResponse,
    PromoteUserRequest,
    PurchaseResult,
    RedeemRewardRequest,
    RedemptionResult,
    RegisterUserRequest,
    RejectBetRequest,
    ReportBetRequest,
    RewardCode,
    SettingUpdateRequest,
    SubmitBetRequest,
    SystemSetting,
    UpdateAnalysisPeriodRequest,
    User,
    UserBalance,
)
from .service import LedgerService


def _error_handler(status_code: int):
    async def handler(request: Request, exc: Exception) -> JSONResponse:
        return JSONResponse(status_code=status_code, content={"detail": str(exc)})
    return handler


async def _storage_error_handler(request: Request, exc: StorageError) -> JSONResponse:
    logger.error(f"Storage failure on {request.method} {request.url.path}: {exc}")
    return JSONResponse(status_code=status.HTTP_500_INTERNAL_SERVER_ERROR, content={"detail": "Storage failure"})


def create_app(service: Optional[LedgerService] = None) -> FastAPI:
    service = service or LedgerService()
    events = AdminEventHub()

    @asynccontextmanager
    async def lifespan(app: FastAPI):
        service.store.create_schema()
        yield

    app = FastAPI(
        title="Points Ledger API",
        description="Point balances driven by approved bet reports, reward codes and analysis purchases",
        version="1.0.0",
        lifespan=lifespan,
    )
    app.state.service = service
    app.state.events = events

    app.add_middleware(
        CORSMiddleware,
        allow_origins=CORS_ORIGINS,
        allow_credentials=True,
        allow_methods=["*"],
        allow_headers=["*"],
    )

    app.add_exception_handler(ValidationError, _error_handler(status.HTTP_400_BAD_REQUEST))
    app.add_exception_handler(NotFoundError, _error_handler(status.HTTP_404_NOT_FOUND))
    app.add_exception_handler(ConflictError, _error_handler(status.HTTP_409_CONFLICT))
    app.add_exception_handler(StorageError, _storage_error_handler)

    def resolve_admin(token: Optional[str]) -> User:
        try:
            external_id = decode_admin_token(token)
        except InvalidTokenError as e:
            raise HTTPException(status_code=status.HTTP_401_UNAUTHORIZED, detail=str(e))
        try:
            user = service.get_user_by_external_id(external_id)
        except NotFoundError:
            raise HTTPException(status_code=status.HTTP_403_FORBIDDEN, detail="Admin access required")
        if not user.is_admin or user.is_banned:
            raise HTTPException(status_code=status.HTTP_403_FORBIDDEN, detail="Admin access required")
        return user

    def require_admin(authorization: Optional[str] = Header(default=None)) -> User:
        token = None
        if authorization and authorization.lower().startswith("bearer "):
            token = authorization[7:].strip()
        return resolve_admin(token)

    @app.get("/health", tags=["System"])
    def health_check():
        return {"status": "healthy", "service": "points-ledger"}

    # Users

    @app.post("/users/register", response_model=User, status_code=status.HTTP_201_CREATED, tags=["Users"])
    def register_user(request: RegisterUserRequest) -> User:
        return service.register_user(request.model_copy(update={"is_admin": False}))

    @app.get("/users/{external_id}/points", response_model=UserBalance, tags=["Users"])
    def get_points(external_id: int) -> UserBalance:
        user = service.get_user_by_external_id(external_id)
        return service.get_balance(user.id)

    @app.get("/users/{external_id}/history", response_model=list[BetReport], tags=["Users"])
    def get_bet_history(external_id: int) -> list[BetReport]:
        user = service.get_user_by_external_id(external_id)
        return service.list_user_bets(user.id)

    @app.get("/users/{external_id}/ledger", response_model=LedgerHistoryResponse, tags=["Users"])
    def get_ledger(external_id: int, limit: int = 50, offset: int = 0) -> LedgerHistoryResponse:
        user = service.get_user_by_external_id(external_id)
        return service.get_history(user.id, limit, offset)

    @app.post("/users/promote", response_model=User, tags=["Admin"])
    def promote_user(request: PromoteUserRequest, admin: User = Depends(require_admin)) -> User:
        return service.promote_user(request.external_id)

    @app.post("/users/{external_id}/ban", response_model=User, tags=["Admin"])
    def ban_user(external_id: int, admin: User = Depends(require_admin)) -> User:
        return service.set_banned(external_id, True)

    @app.post("/users/{external_id}/unban", response_model=User, tags=["Admin"])
    def unban_user(external_id: int, admin: User = Depends(require_admin)) -> User:
        return service.set_banned(external_id, False)

    # Bets

    @app.post("/report-bet", response_model=BetReport, status_code=status.HTTP_201_CREATED, tags=["Bets"])
    def report_bet(request: ReportBetRequest, background_tasks: BackgroundTasks) -> BetReport:
        user = service.get_user_by_external_id(request.external_id)
        bet = service.submit_bet(SubmitBetRequest(user_id=user.id, **request.model_dump(exclude={"external_id"})))
        background_tasks.add_task(events.broadcast, "bet_submitted", bet=bet.model_dump(mode="json"))
        return bet

    @app.get("/bets/pending", response_model=list[BetReport], tags=["Admin"])
    def list_pending_bets(admin: User = Depends(require_admin)) -> list[BetReport]:
        return service.list_pending_bets()

    @app.post("/bets/{bet_id}/approve", response_model=BetApprovalResult, tags=["Admin"])
    def approve_bet(bet_id: int, background_tasks: BackgroundTasks, admin: User = Depends(require_admin)) -> BetApprovalResult:
        result = service.approve_bet(bet_id, admin.id)
        background_tasks.add_task(
            events.broadcast, "bet_approved",
            bet=result.bet.model_dump(mode="json"),
            balance=str(result.ledger_entry.balance_after),
        )
        return result

    @app.post("/bets/{bet_id}/reject", response_model=BetReport, tags=["Admin"])
    def reject_bet(
        bet_id: int,
        background_tasks: BackgroundTasks,
        request: Optional[RejectBetRequest] = None,
        admin: User = Depends(require_admin),
    ) -> BetReport:
        bet = service.reject_bet(bet_id, request.reason if request else None)
        background_tasks.add_task(events.broadcast, "bet_rejected", betId=bet.id)
        return bet

    # Reward codes

    @app.post("/rewards", response_model=RewardCode, status_code=status.HTTP_201_CREATED, tags=["Admin"])
    def create_reward_code(request: CreateRewardCodeRequest, admin: User = Depends(require_admin)) -> RewardCode:
        return service.create_reward_code(request)

    @app.get("/rewards/active", response_model=list[RewardCode], tags=["Admin"])
    def list_active_rewards(admin: User = Depends(require_admin)) -> list[RewardCode]:
        return service.list_active_reward_codes()

    @app.post("/rewards/redeem", response_model=RedemptionResult, tags=["Rewards"])
    def redeem_reward(request: RedeemRewardRequest, background_tasks: BackgroundTasks) -> RedemptionResult:
        user = service.get_user_by_external_id(request.external_id)
        result = service.redeem_reward_code(request.code, user.id)
        if result.success:
            background_tasks.add_task(events.broadcast, "reward_redeemed", code=result.code, userId=user.id)
        return result

    # Analysis purchases

    @app.post("/analyze", response_model=PurchaseResult, tags=["Analysis"])
    def purchase_analysis(request: AnalysisPurchaseRequest) -> PurchaseResult:
        user = service.get_user_by_external_id(request.external_id)
        return service.purchase_individual_analysis(user.id, request.period_id)

    @app.post("/analyze_all", response_model=PurchaseResult, tags=["Analysis"])
    def purchase_group_analysis(request: AnalysisPurchaseRequest) -> PurchaseResult:
        user = service.get_user_by_external_id(request.external_id)
        return service.purchase_group_analysis(user.id, request.period_id)

    # Settings

    @app.get("/system-settings", response_model=list[SystemSetting], tags=["Admin"])
    def list_settings(admin: User = Depends(require_admin)) -> list[SystemSetting]:
        return service.list_settings()

    @app.put("/system-settings", response_model=SystemSetting, tags=["Admin"])
    def update_setting(request: SettingUpdateRequest, admin: User = Depends(require_admin)) -> SystemSetting:
        return service.set_setting(request.key, request.value)

    @app.get("/bot/logo", tags=["System"])
    def get_bot_logo():
        return {"logo_url": service.get_bot_logo()}

    @app.post("/bot/logo", tags=["Admin"])
    def update_bot_logo(request: BotLogoRequest, admin: User = Depends(require_admin)):
        service.update_bot_logo(request.logo_url)
        return {"success": True}

    # Analysis periods

    @app.get("/analysis-periods", response_model=list[AnalysisPeriod], tags=["Admin"])
    def list_periods(admin: User = Depends(require_admin)) -> list[AnalysisPeriod]:
        return service.list_analysis_periods()

    @app.post("/analysis-periods", response_model=AnalysisPeriod, status_code=status.HTTP_201_CREATED, tags=["Admin"])
    def create_period(
        request: CreateAnalysisPeriodRequest,
        background_tasks: BackgroundTasks,
        admin: User = Depends(require_admin),
    ) -> AnalysisPeriod:
        period = service.create_analysis_period(request)
        background_tasks.add_task(events.broadcast, "analysis_period_created", period=period.model_dump(mode="json"))
        return period

    @app.put("/analysis-periods/{period_id}", response_model=AnalysisPeriod, tags=["Admin"])
    def update_period(
        period_id: int,
        request: UpdateAnalysisPeriodRequest,
        background_tasks: BackgroundTasks,
        admin: User = Depends(require_admin),
    ) -> AnalysisPeriod:
        period = service.update_analysis_period(period_id, request)
        background_tasks.add_task(events.broadcast, "analysis_period_updated", periodId=period_id)
        return period

    @app.delete("/analysis-periods/{period_id}", tags=["Admin"])
    def delete_period(period_id: int, background_tasks: BackgroundTasks, admin: User = Depends(require_admin)):
        service.deactivate_analysis_period(period_id)
        background_tasks.add_task(events.broadcast, "analysis_period_deleted", periodId=period_id)
        return {"success": True}

    # Admin dashboard stream

    @app.websocket("/ws")
    async def admin_events(websocket: WebSocket, token: Optional[str] = None):
        try:
            await run_in_threadpool(resolve_admin, token)
        except HTTPException:
            await websocket.close(code=status.WS_1008_POLICY_VIOLATION)
            return

        await events.connect(websocket)
        try:
            while True:
                message = await websocket.receive_text()
                if message == "ping":
                    await websocket.send_json({"type": "pong"})
                else:
                    logger.debug(f"Dashboard message ignored: {message[:200]}")
        except WebSocketDisconnect:
            logger.debug("Dashboard closed the connection")
        finally:
            events.disconnect(websocket)

    return app


if __name__ == "__main__":
    import uvicorn

    from .logging_config import setup_logging

    setup_logging()
    uvicorn.run(create_app(), host="0.0.0.0", port=8000)
