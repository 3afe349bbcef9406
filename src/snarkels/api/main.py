"""FastAPI backend - market mirror, sync triggers and quiz rooms."""

from __future__ import annotations

from contextlib import asynccontextmanager
from datetime import datetime, timezone
from decimal import Decimal, InvalidOperation
from pathlib import Path
from typing import Any

import structlog
from fastapi import FastAPI, Query, Request
from fastapi.encoders import jsonable_encoder
from fastapi.exceptions import RequestValidationError
from fastapi.middleware.cors import CORSMiddleware
from fastapi.responses import JSONResponse
from pydantic import ValidationError as PydanticValidationError
from web3 import Web3
from web3.exceptions import Web3Exception

from snarkels.api.schemas import (
    CreateSnarkelRequest,
    ErrorResponse,
    HealthResponse,
    JoinSnarkelRequest,
    MarketResolveData,
    MarketTotalsData,
    ProcessTransactionRequest,
    RoomActionRequest,
    RoomFinishRequest,
    RoomStartRequest,
    SnarkelInfoRequest,
    SubmitAnswerRequest,
    UpdateMarketRequest,
    UpdateParticipantRequest,
)
from snarkels.config import Settings, get_settings
from snarkels.exceptions import NotFoundError, SnarkelsError, ValidationError
from snarkels.models import ApiModel, CreateMarketParams, SyncResult
from snarkels.services import quizzes, rooms
from snarkels.storage import quiz as quiz_store
from snarkels.storage.db import get_connection, init_schema
from snarkels.storage.event_log import get_market_events
from snarkels.storage.markets import (
    get_categories,
    get_market_by_id,
    get_market_stats,
    get_markets_paginated,
    resolve_market,
    update_market_totals,
    upsert_market,
)
from snarkels.storage.participants import get_market_participants, get_participant, record_purchase

log = structlog.get_logger(__name__)

ZERO_ADDRESS = "0x0000000000000000000000000000000000000000"

# Set by run_api(); tests replace these directly.
_config_profile: str | None = None
_config_dir: Path | None = None
_settings: Settings | None = None
_listener = None
_market_creation_service = None
_chain_reader = None


def _get_settings() -> Settings:
    global _settings
    if _settings is None:
        _settings = get_settings(_config_profile, _config_dir)
    return _settings


def _get_conn():
    return get_connection(_get_settings().db_path)


def _get_chain_reader():
    global _chain_reader
    if _chain_reader is None:
        from snarkels.chain.reader import ChainReader

        _chain_reader = ChainReader.from_settings(_get_settings())
    return _chain_reader


def _get_listener():
    global _listener
    if _listener is None:
        from snarkels.ingestion.listener import EventListener

        settings = _get_settings()
        _listener = EventListener(
            db_path=settings.db_path,
            reader=_get_chain_reader(),
            start_block=settings.start_block,
            max_block_range=settings.max_block_range,
            name=settings.listener_name,
        )
    return _listener


def _get_market_creation_service():
    global _market_creation_service
    if _market_creation_service is None:
        from snarkels.services.market_creation import MarketCreationService

        settings = _get_settings()
        _market_creation_service = MarketCreationService(
            _get_chain_reader().w3,
            settings.core_contract_address,
            settings.market_creation_cost_wei,
        )
    return _market_creation_service


@asynccontextmanager
async def lifespan(app: FastAPI):
    conn = _get_conn()
    try:
        init_schema(conn)
    finally:
        conn.close()
    yield
    if _listener is not None:
        _listener.stop_listening()
        _listener.close()


app = FastAPI(title="Snarkels API", version="0.1.0", lifespan=lifespan)
app.add_middleware(CORSMiddleware, allow_origins=["*"], allow_methods=["*"], allow_headers=["*"])


def _now_iso() -> str:
    return datetime.now(timezone.utc).isoformat()


def _error_json(error: str, status_code: int, details: Any = None) -> JSONResponse:
    """Return consistent error JSON: { success: false, error, details }."""
    return JSONResponse(
        status_code=status_code,
        content=jsonable_encoder(ErrorResponse(error=error, details=jsonable_encoder(details))),
    )


@app.exception_handler(SnarkelsError)
async def _snarkels_error(request: Request, exc: SnarkelsError) -> JSONResponse:
    if exc.status_code >= 500:
        log.error("request_failed", path=request.url.path, error=exc.message, details=exc.details)
    else:
        log.info("request_rejected", path=request.url.path, status=exc.status_code, error=exc.message)
    return _error_json(exc.message, exc.status_code, exc.details)


@app.exception_handler(RequestValidationError)
async def _request_validation_error(request: Request, exc: RequestValidationError) -> JSONResponse:
    return _error_json("Invalid request", 400, exc.errors())


@app.exception_handler(Exception)
async def _unhandled_error(request: Request, exc: Exception) -> JSONResponse:
    log.exception("unhandled_error", path=request.url.path)
    return _error_json("Internal server error", 500, str(exc))


def _sync_payload(result: SyncResult | None) -> dict[str, Any] | None:
    if result is None:
        return None
    return {**result.to_api(), "eventsProcessed": result.events_processed}


@app.get("/health", response_model=HealthResponse)
def health() -> HealthResponse:
    return HealthResponse(status="ok")


# --- Markets ---


@app.get("/api/markets")
def markets_list(
    page: int = Query(1),
    limit: int = Query(12),
    search: str | None = Query(None),
    category: str | None = Query(None),
    sort_by: str = Query("newest", alias="sortBy"),
    status: int | None = Query(None),
) -> dict[str, Any]:
    """Paginated markets plus categories and stats."""
    conn = _get_conn()
    try:
        data = get_markets_paginated(conn, page, limit, search, category, sort_by, status)
        return {
            "success": True,
            "markets": [m.to_api() for m in data["markets"]],
            "pagination": data["pagination"],
            "categories": get_categories(conn),
            "stats": get_market_stats(conn),
        }
    finally:
        conn.close()


@app.get("/api/markets/{market_id}")
def market_detail(market_id: str) -> dict[str, Any]:
    conn = _get_conn()
    try:
        market = get_market_by_id(conn, market_id)
        if market is None:
            raise NotFoundError("Market not found", details={"marketId": market_id})
        return {"success": True, "market": market.to_api()}
    finally:
        conn.close()


@app.get("/api/markets/{market_id}/participants")
def market_participants(market_id: str) -> dict[str, Any]:
    conn = _get_conn()
    try:
        participants = get_market_participants(conn, market_id)
        return {
            "success": True,
            "participants": [p.to_api() for p in participants],
            "count": len(participants),
        }
    finally:
        conn.close()


@app.get("/api/markets/{market_id}/events")
def market_events(market_id: str) -> dict[str, Any]:
    conn = _get_conn()
    try:
        events = get_market_events(conn, market_id)
        return {"success": True, "events": [e.to_api() for e in events], "count": len(events)}
    finally:
        conn.close()


@app.post("/api/markets/create")
def market_create(params: CreateMarketParams) -> dict[str, Any]:
    """Unsigned createMarket transaction, gas estimate and creation fee."""
    service = _get_market_creation_service()
    tx = service.create_market_transaction(params)
    gas_estimate: str | None
    try:
        gas_estimate = str(service.estimate_gas(params, ZERO_ADDRESS))
    except Web3Exception as e:
        log.warning("gas_estimate_failed", error=str(e))
        gas_estimate = None
    return {
        "success": True,
        "transactionData": tx,
        "gasEstimate": gas_estimate,
        "estimatedCost": str(service.get_market_creation_cost()),
    }


def _invalid_data(exc: PydanticValidationError) -> ValidationError:
    fields = [".".join(str(part) for part in err["loc"]) for err in exc.errors()]
    return ValidationError(f"Invalid update data: {', '.join(fields)}", details=fields)


def _parse_data(model: type[ApiModel], data: dict[str, Any]) -> Any:
    try:
        return model.model_validate(data)
    except PydanticValidationError as e:
        raise _invalid_data(e) from e


@app.post("/api/markets/update")
def market_update(body: UpdateMarketRequest) -> dict[str, Any]:
    conn = _get_conn()
    try:
        if body.type == "create":
            try:
                market = upsert_market(conn, {**body.data, "id": body.market_id})
            except PydanticValidationError as e:
                raise _invalid_data(e) from e
        elif body.type == "update_totals":
            totals = _parse_data(MarketTotalsData, body.data)
            market = update_market_totals(
                conn, body.market_id, totals.total_pool, totals.total_yes, totals.total_no
            )
        else:
            resolution = _parse_data(MarketResolveData, body.data)
            market = resolve_market(conn, body.market_id, resolution.outcome)
        if market is None:
            raise NotFoundError("Market not found", details={"marketId": body.market_id})
        log.info("market_updated", market_id=body.market_id, type=body.type)
        return {
            "success": True,
            "result": market.to_api(),
            "message": f"Market {body.type} completed successfully",
        }
    finally:
        conn.close()


@app.post("/api/markets/update-participant")
def market_update_participant(body: UpdateParticipantRequest) -> dict[str, Any]:
    """Record one purchase reported by the client (amount in CELO)."""
    try:
        amount_wei = Web3.to_wei(Decimal(body.amount), "ether")
    except (InvalidOperation, ValueError) as e:
        raise ValidationError("Invalid amount", details=body.amount) from e
    if amount_wei <= 0:
        raise ValidationError("Amount must be greater than 0", details=body.amount)
    conn = _get_conn()
    try:
        existing = get_participant(conn, body.market_id, body.address)
        tx_hash = body.transaction_hash.lower()
        if existing is not None and tx_hash in existing.transaction_hashes:
            return {
                "success": True,
                "participant": existing.to_api(),
                "message": "Transaction already recorded",
            }
        participant = record_purchase(conn, body.market_id, body.address, body.outcome, amount_wei, tx_hash)
        log.info("participant_updated", market_id=body.market_id, address=participant.address, amount_wei=amount_wei)
        return {
            "success": True,
            "participant": participant.to_api(),
            "message": "Participant data updated successfully",
        }
    finally:
        conn.close()


@app.post("/api/markets/process-transaction")
def market_process_transaction(body: ProcessTransactionRequest) -> dict[str, Any]:
    result = _get_listener().process_transaction(body.transaction_hash)
    return {
        "success": True,
        "result": _sync_payload(result),
        "message": f"Processed {result.events_processed} market events",
    }


# --- Sync ---


def _sync_failed(route: str, exc: Exception) -> JSONResponse:
    log.error("sync_failed", route=route, error=str(exc))
    return JSONResponse(
        status_code=500,
        content={
            "success": False,
            "error": "Failed to sync markets",
            "details": str(exc),
            "timestamp": _now_iso(),
        },
    )


@app.get("/api/sync-now")
def sync_now():
    """Start the listener if idle, then scan to the chain head."""
    listener = _get_listener()
    try:
        if not listener.is_listening:
            result = listener.start_listening()
        else:
            result = listener.check_for_new_events()
    except Exception as e:
        return _sync_failed("sync-now", e)
    return {
        "success": True,
        "message": "Market sync completed successfully",
        "isListening": listener.is_listening,
        "lastProcessedBlock": listener.last_processed_block,
        "result": _sync_payload(result),
        "timestamp": _now_iso(),
    }


@app.get("/api/cron/sync-markets")
def cron_sync_markets():
    listener = _get_listener()
    try:
        result = listener.check_for_new_events()
    except Exception as e:
        return _sync_failed("cron", e)
    return {
        "success": True,
        "message": "Market sync completed",
        "result": _sync_payload(result),
        "timestamp": _now_iso(),
    }


@app.get("/api/polling/status")
def polling_status() -> dict[str, Any]:
    return {"success": True, **_get_listener().get_status(), "timestamp": _now_iso()}


@app.post("/api/polling/start")
def polling_start():
    """Start the listener and run its initial scan. Idempotent."""
    listener = _get_listener()
    try:
        result = listener.start_listening()
    except Exception as e:
        return _sync_failed("polling-start", e)
    return {
        "success": True,
        "message": "Event listener started" if result is not None else "Event listener already running",
        "result": _sync_payload(result),
        **listener.get_status(),
        "timestamp": _now_iso(),
    }


@app.delete("/api/polling/start")
def polling_stop() -> dict[str, Any]:
    listener = _get_listener()
    listener.stop_listening()
    return {"success": True, "message": "Event listener stopped", **listener.get_status(), "timestamp": _now_iso()}


# --- Rooms ---


def _room_status_payload(status: dict[str, Any]) -> dict[str, Any]:
    return {
        "room": status["room"].to_api(),
        "participants": [p.to_api() for p in status["participants"]],
        "state": status["state"],
        "timeUntilStart": status["timeUntilStart"],
        "countdownActive": status["countdownActive"],
    }


@app.get("/api/room/{room_id}")
def room_status(room_id: str) -> dict[str, Any]:
    conn = _get_conn()
    try:
        return {"success": True, **_room_status_payload(rooms.get_room_status(conn, room_id))}
    finally:
        conn.close()


@app.post("/api/room/{room_id}")
def room_action(room_id: str, body: RoomActionRequest) -> dict[str, Any]:
    """join / ready / leave."""
    conn = _get_conn()
    try:
        if body.action == "join":
            result = rooms.join_room(conn, room_id, body.user_id)
            return {
                "success": True,
                "room": result["room"].to_api(),
                "participant": result["participant"].to_api(),
            }
        if body.action == "ready":
            participant = rooms.set_participant_ready(conn, room_id, body.user_id, body.is_ready)
            return {"success": True, "participant": participant.to_api()}
        if body.action == "leave":
            participant = rooms.leave_room(conn, room_id, body.user_id)
            return {"success": True, "participant": participant.to_api()}
        raise ValidationError("Invalid action", details=body.action)
    finally:
        conn.close()


@app.post("/api/room/{room_id}/start")
def room_start(room_id: str, body: RoomStartRequest) -> dict[str, Any]:
    conn = _get_conn()
    try:
        if body.start_type == "countdown":
            result = rooms.start_room_countdown(conn, body.admin_id, room_id)
            return {
                "success": True,
                "message": "Countdown started",
                "room": result["room"].to_api(),
                "countdownDuration": result["countdownDuration"],
            }
        if body.start_type == "immediate":
            room = rooms.start_snarkel_immediately(conn, body.admin_id, room_id)
            return {"success": True, "message": "Snarkel started immediately", "room": room.to_api()}
        raise ValidationError("Invalid start type", details=body.start_type)
    finally:
        conn.close()


@app.post("/api/room/{room_id}/answer")
def room_answer(room_id: str, body: SubmitAnswerRequest) -> dict[str, Any]:
    conn = _get_conn()
    try:
        result = quizzes.submit_answer(
            conn, room_id, body.user_id, body.question_id, body.option_id, body.time_to_answer
        )
        answer = result["answer"]
        return {
            "success": True,
            "isCorrect": answer.is_correct,
            "pointsEarned": answer.points_earned,
            "correctOptionIds": result["correctOptionIds"],
            "submission": result["submission"].to_api(),
        }
    finally:
        conn.close()


@app.post("/api/room/{room_id}/finish")
def room_finish(room_id: str, body: RoomFinishRequest) -> dict[str, Any]:
    conn = _get_conn()
    try:
        result = quizzes.finish_room(conn, body.admin_id, room_id)
        return {"success": True, "room": result["room"].to_api(), **result["leaderboard"]}
    finally:
        conn.close()


# --- Quizzes ---


def _creator_payload(conn: Any, creator_id: str) -> dict[str, Any] | None:
    user = quiz_store.get_user(conn, creator_id)
    if user is None:
        return None
    return {"id": user.id, "name": user.name, "address": user.address}


@app.get("/api/quiz/{snarkel_id}")
def quiz_detail(snarkel_id: str) -> dict[str, Any]:
    """Quiz with creator and its rooms, latest session first."""
    conn = _get_conn()
    try:
        snarkel = quiz_store.get_snarkel(conn, snarkel_id)
        if snarkel is None:
            raise NotFoundError("Quiz not found", details={"snarkelId": snarkel_id})
        quiz = {**snarkel.to_api(), "creator": _creator_payload(conn, snarkel.creator_id)}
        return {
            "success": True,
            "quiz": quiz,
            "rooms": [r.to_api() for r in quiz_store.get_rooms_for_snarkel(conn, snarkel_id)],
        }
    finally:
        conn.close()


@app.get("/api/quiz/{snarkel_id}/questions")
def quiz_questions(snarkel_id: str) -> dict[str, Any]:
    conn = _get_conn()
    try:
        questions = quiz_store.get_questions(conn, snarkel_id)
        if not questions:
            raise NotFoundError("No questions found for this quiz", details={"snarkelId": snarkel_id})
        return {"success": True, "questions": [q.to_api() for q in questions]}
    finally:
        conn.close()


@app.get("/api/quiz/{snarkel_id}/leaderboard")
def quiz_leaderboard(snarkel_id: str) -> dict[str, Any]:
    """Leaderboard by quiz id or join code."""
    conn = _get_conn()
    try:
        return {"success": True, **quizzes.get_leaderboard(conn, snarkel_id)}
    finally:
        conn.close()


@app.get("/api/quiz/{snarkel_id}/rewards")
def quiz_rewards(snarkel_id: str) -> dict[str, Any]:
    """Reward split the current leaderboard would receive."""
    conn = _get_conn()
    try:
        preview = quizzes.preview_rewards(conn, snarkel_id)
        return {"success": True, **preview, "reward": preview["reward"].to_api()}
    finally:
        conn.close()


@app.post("/api/snarkel/info")
def snarkel_info(body: SnarkelInfoRequest) -> dict[str, Any]:
    """Public summary of a snarkel looked up by join code."""
    if not body.snarkel_code:
        raise ValidationError("Snarkel code is required")
    conn = _get_conn()
    try:
        snarkel = quiz_store.get_snarkel_by_code(conn, body.snarkel_code)
        if snarkel is None:
            raise NotFoundError("Snarkel not found", details={"snarkelCode": body.snarkel_code})
        if not snarkel.is_active:
            raise ValidationError("This snarkel is not active")
        return {
            "success": True,
            "snarkel": {
                "id": snarkel.id,
                "title": snarkel.title,
                "description": snarkel.description,
                "snarkelCode": snarkel.snarkel_code,
                "totalQuestions": quiz_store.count_questions(conn, snarkel.id),
                "basePointsPerQuestion": snarkel.base_points_per_question,
                "speedBonusEnabled": snarkel.speed_bonus_enabled,
                "maxSpeedBonus": snarkel.max_speed_bonus,
                "isPublic": snarkel.is_public,
                "startTime": snarkel.start_time,
                "autoStartEnabled": snarkel.auto_start_enabled,
                "creator": _creator_payload(conn, snarkel.creator_id),
            },
        }
    finally:
        conn.close()


@app.post("/api/snarkel/create")
def snarkel_create(body: CreateSnarkelRequest) -> dict[str, Any]:
    conn = _get_conn()
    try:
        snarkel = quizzes.create_snarkel(conn, body)
        return {
            "success": True,
            "snarkelCode": snarkel.snarkel_code,
            "snarkel": snarkel.to_api(),
            "questions": [q.to_api() for q in quiz_store.get_questions(conn, snarkel.id)],
        }
    finally:
        conn.close()


@app.post("/api/snarkel/join")
def snarkel_join(body: JoinSnarkelRequest) -> dict[str, Any]:
    conn = _get_conn()
    try:
        result = quizzes.join_snarkel(conn, body.snarkel_code, body.wallet_address)
        return {
            "success": True,
            "message": "Successfully joined snarkel",
            "snarkelId": result["snarkel"].id,
            "roomId": result["room"].id,
            "userId": result["user"].id,
            "participant": result["participant"].to_api(),
        }
    finally:
        conn.close()


def run_api(
    host: str = "127.0.0.1",
    port: int = 8000,
    profile: str | None = None,
    config_dir: Path | None = None,
) -> None:
    global _config_profile, _config_dir, _settings
    _config_profile = profile
    _config_dir = config_dir
    _settings = None
    import uvicorn

    uvicorn.run("snarkels.api.main:app", host=host, port=port, reload=False)
