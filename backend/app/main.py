from __future__ import annotations

import threading

from fastapi import APIRouter, Depends, FastAPI, HTTPException, Request, Response
from loguru import logger
from sse_starlette.sse import EventSourceResponse

from . import schemas
from .core.config import settings
from .db import get_db, init_db
from .services.broadcaster import MarketUpdateBroadcaster, broadcaster
from .services.market_service import MarketService

app = FastAPI(title="DTF Indexer API", version="0.1.0", debug=settings.debug)
router = APIRouter(prefix="/api/v1")

_NO_CACHE_HEADERS = {
    "Cache-Control": "no-store, no-cache, must-revalidate, proxy-revalidate",
    "Pragma": "no-cache",
    "Expires": "0",
    "Surrogate-Control": "no-store",
}


def _run_indexer() -> None:
    from indexer.service import build_indexer

    try:
        indexer, source = build_indexer(publisher=broadcaster)
        indexer.start()
        source.wait()
    except Exception:  # noqa: BLE001
        logger.exception("Event indexer stopped unexpectedly")


@app.on_event("startup")
def on_startup() -> None:
    """Initialize the database and, when configured, the background indexer."""

    init_db()
    if settings.indexer_autostart:
        threading.Thread(target=_run_indexer, name="dtf-indexer", daemon=True).start()


@app.get("/healthz", tags=["system"])
def healthcheck() -> dict[str, str]:
    """Basic readiness check consumed by infrastructure monitors."""

    return {"status": "ok"}


def _market_service(db=Depends(get_db)) -> MarketService:
    """Provide the market service wired with a SQLAlchemy session."""

    return MarketService(db)


def _broadcaster() -> MarketUpdateBroadcaster:
    return broadcaster


@router.get("/events", tags=["events"])
async def stream_market_updates(
    request: Request, updates: MarketUpdateBroadcaster = Depends(_broadcaster)
):
    """Server-sent events carrying settlement notifications."""

    return EventSourceResponse(updates.stream(request.is_disconnected))


@router.get("/dtfs", response_model=list[schemas.Market], tags=["dtfs"])
def list_dtfs(service: MarketService = Depends(_market_service)):
    return service.list_markets()


@router.get("/dtfs/{dtf_id}", response_model=schemas.Market, tags=["dtfs"])
def get_dtf(dtf_id: int, service: MarketService = Depends(_market_service)):
    market = service.get_market(dtf_id)
    if not market:
        raise HTTPException(status_code=404, detail="DTF not found")
    return market


@router.get("/dtfs/{dtf_id}/fees", response_model=schemas.MarketFees, tags=["dtfs"])
def get_dtf_fees(dtf_id: int, service: MarketService = Depends(_market_service)):
    """Total user spend on a DTF and the creator's share of it."""

    fees = service.market_fees(dtf_id)
    if fees is None:
        raise HTTPException(status_code=404, detail="DTF not found")
    return fees


@router.get(
    "/positions/{user_address}",
    response_model=list[schemas.PositionWithMarket],
    tags=["positions"],
)
def list_positions(user_address: str, service: MarketService = Depends(_market_service)):
    return service.list_positions(user_address)


@router.get(
    "/positions/{user_address}/details",
    response_model=list[schemas.PositionDetail],
    tags=["positions"],
)
def position_details(user_address: str, service: MarketService = Depends(_market_service)):
    return service.position_details(user_address)


@router.get("/trades/{user_address}", response_model=list[schemas.Trade], tags=["trades"])
def list_trades(
    user_address: str,
    response: Response,
    service: MarketService = Depends(_market_service),
):
    """Positions grouped per DTF and side, with cost basis and ROI."""

    response.headers.update(_NO_CACHE_HEADERS)
    return service.list_trades(user_address)


@router.post(
    "/trades/{user_address}/claim/{dtf_id}",
    response_model=schemas.ClaimResult,
    tags=["trades"],
)
def claim_trade(
    user_address: str, dtf_id: int, service: MarketService = Depends(_market_service)
):
    claimed = service.claim(user_address, dtf_id)
    return schemas.ClaimResult(success=True, claimed_positions=claimed)


app.include_router(router)
