# SPDX-License-Identifier: MIT
# Copyright (c) 2026 Mirrowel

"""
Headless HTTP service over the shared account store.

The same app serves both modes: opened READ_WRITE it accepts mutations,
opened READ_ONLY every mutation answers 403 while reads keep working.
"""

import asyncio
import logging
from contextlib import asynccontextmanager
from dataclasses import dataclass
from typing import Any, Callable, List, Optional

from fastapi import FastAPI, HTTPException, Request, Response
from pydantic import BaseModel, Field

from account_library import (
    Account,
    AccountNotFound,
    AccountSnapshotCache,
    ApplicationControlError,
    LivenessMonitor,
    ModelQuota,
    ModelVisibility,
    OpenMode,
    ProbeError,
    ProbeGate,
    QuotaAggregator,
    StoreError,
    StoreHandle,
    SyncSettings,
    WriteRejected,
    WriterConflict,
    create_liveness_monitor,
    open_store,
)
from account_library.liveness import ProcessLauncher, ProcessLister

logger = logging.getLogger(__name__)


# =============================================================================
# APPLICATION CONTEXT
# =============================================================================


@dataclass
class AppContext:
    """Everything one service process holds open."""

    settings: SyncSettings
    store: StoreHandle
    liveness: LivenessMonitor
    snapshots: AccountSnapshotCache
    aggregator: QuotaAggregator
    visibility: ModelVisibility

    @property
    def mode(self) -> OpenMode:
        return self.store.mode


def build_context(
    settings: SyncSettings,
    mode: OpenMode,
    process_lister: Optional[ProcessLister] = None,
    process_launcher: Optional[ProcessLauncher] = None,
) -> AppContext:
    """
    Open the store and wire the caches around it.

    Raises:
        WriterConflict: READ_WRITE while another process owns the store
        StoreUnavailable: The store cannot be opened in this mode
    """
    store = open_store(settings.store_path, mode, busy_timeout=settings.store_timeout)
    liveness = create_liveness_monitor(
        settings.target_process_name,
        min_call_interval=settings.liveness_min_call_interval,
        cache_ttl=settings.liveness_cache_ttl,
        probe_timeout=settings.probe_timeout,
        extra_helper_patterns=settings.extra_helper_patterns,
        process_lister=process_lister,
        process_launcher=process_launcher,
    )
    snapshots = AccountSnapshotCache(
        store,
        ProbeGate(settings.quota_min_call_interval, settings.quota_cache_ttl),
        timeout=settings.store_timeout,
    )
    return AppContext(
        settings=settings,
        store=store,
        liveness=liveness,
        snapshots=snapshots,
        aggregator=QuotaAggregator(),
        visibility=ModelVisibility(settings.visibility_path),
    )


# =============================================================================
# REQUEST / RESPONSE MODELS
# =============================================================================


class LivenessOut(BaseModel):
    running: bool


class AccountOut(BaseModel):
    id: str
    provider: str
    email: Optional[str] = None
    last_refreshed_at: Optional[float] = None


class QuotaOut(BaseModel):
    model_name: str
    used: int
    limit: int
    reset_at: Optional[float] = None


class ProviderGroupOut(BaseModel):
    provider: str
    avg_percent_remaining: Optional[float] = None
    earliest_reset: Optional[float] = None
    visible_model_count: int


class AccountSummaryOut(BaseModel):
    account_id: str
    avg_percent_remaining: Optional[float] = None
    earliest_reset: Optional[float] = None
    visible_model_count: int
    providers: List[ProviderGroupOut] = []


class HealthOut(BaseModel):
    status: str
    mode: str
    account_count: Optional[int] = None
    running: bool


class CreateAccountRequest(BaseModel):
    provider: str = Field(min_length=1)
    token: str = Field(min_length=1)
    email: Optional[str] = None
    account_id: Optional[str] = None


class UpdateTokenRequest(BaseModel):
    token: str = Field(min_length=1)


class QuotaRowIn(BaseModel):
    model_name: str = Field(min_length=1)
    used: int = Field(ge=0)
    limit: int = Field(ge=0)
    reset_at: Optional[float] = None


class UpdateQuotaRequest(BaseModel):
    rows: List[QuotaRowIn]


class CloseApplicationOut(BaseModel):
    stopped: List[int]


class StartApplicationRequest(BaseModel):
    executable: Optional[str] = None
    args: List[str] = []


class StartApplicationOut(BaseModel):
    pid: int


def _account_out(account: Account) -> AccountOut:
    # The encrypted token never leaves the process
    return AccountOut(
        id=account.id,
        provider=account.provider,
        email=account.email,
        last_refreshed_at=account.last_refreshed_at,
    )


def _quota_out(row: ModelQuota) -> QuotaOut:
    return QuotaOut(
        model_name=row.model_name,
        used=row.used,
        limit=row.limit,
        reset_at=row.reset_at,
    )


# =============================================================================
# ERROR MAPPING
# =============================================================================


def _http_error(e: Exception) -> HTTPException:
    if isinstance(e, WriteRejected):
        return HTTPException(status_code=403, detail=str(e))
    if isinstance(e, AccountNotFound):
        return HTTPException(status_code=404, detail=str(e))
    if isinstance(e, WriterConflict):
        return HTTPException(status_code=409, detail=str(e))
    if isinstance(e, ProbeError):
        return HTTPException(status_code=503, detail=f"Process table unavailable: {e}")
    if isinstance(e, ApplicationControlError):
        return HTTPException(status_code=500, detail=str(e))
    if isinstance(e, StoreError):
        return HTTPException(status_code=503, detail=f"Service Unavailable: {e}")
    if isinstance(e, asyncio.TimeoutError):
        return HTTPException(status_code=504, detail="Gateway Timeout: store call timed out")
    return HTTPException(status_code=400, detail=f"Invalid Request: {e}")


async def _run_store(context: AppContext, func: Callable[..., Any], *args: Any) -> Any:
    """Run a blocking store call off the event loop, mapped to HTTP errors."""
    try:
        return await asyncio.wait_for(
            asyncio.to_thread(func, *args), timeout=context.settings.store_timeout
        )
    except (StoreError, asyncio.TimeoutError, ValueError) as e:
        raise _http_error(e) from e


async def _snapshot(context: AppContext):
    try:
        return await context.snapshots.snapshot()
    except StoreError as e:
        logger.error(f"Account snapshot unavailable: {e}")
        raise _http_error(e) from e


def get_context(request: Request) -> AppContext:
    """Get the app context from the app state."""
    return request.app.state.context


# =============================================================================
# APP FACTORY
# =============================================================================


def create_app(context: AppContext) -> FastAPI:
    """Build the FastAPI app serving one opened store."""

    @asynccontextmanager
    async def lifespan(app: FastAPI):
        logger.info(
            f"Account service started ({context.mode.value}) on store {context.store.path}"
        )
        yield
        context.store.close()
        logger.info("Account service stopped, store closed.")

    app = FastAPI(lifespan=lifespan)
    app.state.context = context

    # --- Reads ---

    @app.get("/liveness", response_model=LivenessOut)
    async def liveness(request: Request):
        ctx = get_context(request)
        return LivenessOut(running=await ctx.liveness.is_running())

    @app.get("/accounts", response_model=List[AccountOut])
    async def list_accounts(request: Request):
        snapshot = await _snapshot(get_context(request))
        return [_account_out(account) for account in snapshot.accounts]

    @app.get("/accounts/{account_id}/quota", response_model=List[QuotaOut])
    async def account_quota(account_id: str, request: Request):
        snapshot = await _snapshot(get_context(request))
        try:
            rows = snapshot.quota_for(account_id)
        except AccountNotFound as e:
            raise _http_error(e) from e
        return [_quota_out(row) for row in rows]

    @app.get("/accounts/{account_id}/summary", response_model=AccountSummaryOut)
    async def account_summary(account_id: str, request: Request):
        ctx = get_context(request)
        snapshot = await _snapshot(ctx)
        try:
            rows = snapshot.quota_for(account_id)
        except AccountNotFound as e:
            raise _http_error(e) from e
        # The Settings process may have rewritten the map since startup
        ctx.visibility.reload_if_changed()
        summary = ctx.aggregator.account_summary(account_id, rows, ctx.visibility)
        return AccountSummaryOut(
            account_id=summary.account_id,
            avg_percent_remaining=summary.avg_percent_remaining,
            earliest_reset=summary.earliest_reset,
            visible_model_count=summary.visible_model_count,
            providers=[
                ProviderGroupOut(
                    provider=group.provider,
                    avg_percent_remaining=group.avg_percent_remaining,
                    earliest_reset=group.earliest_reset,
                    visible_model_count=group.visible_model_count,
                )
                for group in summary.providers
            ],
        )

    @app.get("/health", response_model=HealthOut)
    async def health(request: Request):
        ctx = get_context(request)
        running = await ctx.liveness.is_running()
        try:
            snapshot = await ctx.snapshots.snapshot()
        except StoreError as e:
            logger.warning(f"Health check could not read the store: {e}")
            return HealthOut(status="degraded", mode=ctx.mode.value, running=running)
        return HealthOut(
            status="ok",
            mode=ctx.mode.value,
            account_count=len(snapshot.accounts),
            running=running,
        )

    # --- Application control ---

    @app.post("/application/close", response_model=CloseApplicationOut)
    async def close_application(request: Request):
        ctx = get_context(request)
        try:
            stopped = await ctx.liveness.close_application(ctx.settings.close_timeout)
        except (ProbeError, ApplicationControlError) as e:
            logger.error(f"Closing the application failed: {e}")
            raise _http_error(e) from e
        return CloseApplicationOut(stopped=stopped)

    @app.post("/application/start", response_model=StartApplicationOut)
    async def start_application(body: StartApplicationRequest, request: Request):
        ctx = get_context(request)
        executable = body.executable or ctx.settings.application_executable
        if not executable:
            raise HTTPException(
                status_code=400,
                detail="No executable given and APPLICATION_EXECUTABLE is not set",
            )
        try:
            pid = await ctx.liveness.start_application(executable, body.args)
        except ApplicationControlError as e:
            logger.error(f"Starting the application failed: {e}")
            raise _http_error(e) from e
        return StartApplicationOut(pid=pid)

    # --- Writes (READ_WRITE only) ---
    # Every write drops the cached snapshot, even after a 504: the worker
    # thread can still commit once the request has given up.

    @app.post("/accounts", response_model=AccountOut, status_code=201)
    async def create_account(body: CreateAccountRequest, request: Request):
        ctx = get_context(request)
        try:
            account = await _run_store(
                ctx,
                ctx.store.create_account,
                body.provider,
                body.token,
                body.email,
                body.account_id,
            )
        finally:
            ctx.snapshots.invalidate()
        return _account_out(account)

    @app.put("/accounts/{account_id}/token", response_model=AccountOut)
    async def update_token(account_id: str, body: UpdateTokenRequest, request: Request):
        ctx = get_context(request)
        try:
            account = await _run_store(ctx, ctx.store.update_token, account_id, body.token)
        finally:
            ctx.snapshots.invalidate()
        return _account_out(account)

    @app.delete("/accounts/{account_id}", status_code=204)
    async def delete_account(account_id: str, request: Request):
        ctx = get_context(request)
        try:
            deleted = await _run_store(ctx, ctx.store.delete_account, account_id)
        finally:
            ctx.snapshots.invalidate()
        if not deleted:
            raise _http_error(AccountNotFound(account_id))
        return Response(status_code=204)

    @app.put("/accounts/{account_id}/quota")
    async def update_quota(account_id: str, body: UpdateQuotaRequest, request: Request):
        ctx = get_context(request)
        rows = [
            ModelQuota(
                account_id=account_id,
                model_name=row.model_name,
                used=row.used,
                limit=row.limit,
                reset_at=row.reset_at,
            )
            for row in body.rows
        ]
        try:
            updated = await _run_store(ctx, ctx.store.upsert_quota, rows)
        finally:
            ctx.snapshots.invalidate()
        return {"updated": updated}

    return app
