"""Order list API: cached, paginated, sortable view of the caller's orders."""

import json
import logging
import os
from contextlib import asynccontextmanager
from datetime import timedelta
from typing import Any

from fastapi import Depends, FastAPI, Header, Query, Response
from fastapi.responses import JSONResponse

from order_sync import __version__, order_db
from order_sync.aggregator import line_total
from order_sync.config import load_config
from order_sync.controller import SyncController, SyncOutcome, SyncResult
from order_sync.errors import RemoteStoreError
from order_sync.schemas import (
    Order,
    OrderCreate,
    OrderListResponse,
    OrderStatus,
    OrderView,
    SortChange,
    SortKey,
    Statistics,
)
from order_sync.store import RecordStore

logger = logging.getLogger(__name__)
CONFIG = load_config()
LOGGING_CONFIG = CONFIG["logging"]

STATUS_LABELS = {
    OrderStatus.COMPLETED.value: "Completed",
    OrderStatus.PENDING.value: "Awaiting confirmation",
    OrderStatus.AWAITING_PAYMENT.value: "Awaiting payment",
}


def _ensure_file_logger() -> None:
    logger.setLevel(logging.INFO)
    sync_log_path = LOGGING_CONFIG.get("sync_log")
    if not sync_log_path:
        return
    existing = [
        handler
        for handler in logger.handlers
        if isinstance(handler, logging.FileHandler)
        and os.path.basename(getattr(handler, "baseFilename", "")) == os.path.basename(sync_log_path)
    ]
    if existing:
        return

    file_handler = logging.FileHandler(sync_log_path, encoding="utf-8")
    file_handler.setLevel(logging.INFO)
    file_handler.setFormatter(logging.Formatter(LOGGING_CONFIG["format"]))
    logger.addHandler(file_handler)


_ensure_file_logger()


def build_controller(config: dict[str, Any]) -> SyncController:
    sync = config["sync"]
    return SyncController(
        RecordStore(),
        order_db.fetch_page,
        page_size=int(sync["page_size"]),
        ttl=timedelta(seconds=float(sync["ttl_seconds"])),
        sort_key=SortKey(sync["default_sort"]),
    )


# One cache per process, shared by every request.
controller = build_controller(CONFIG)


@asynccontextmanager
async def lifespan(_: FastAPI):
    order_db.init_db()
    logger.info("order sync service startup")
    try:
        yield
    finally:
        logger.info("order sync service shutdown")


app = FastAPI(
    title="Order Sync API",
    version=__version__,
    description="Cached order list with pagination, sorting and invalidation",
    lifespan=lifespan,
)


def _json(payload: dict) -> str:
    return json.dumps(payload, ensure_ascii=False, indent=2, default=str)


def _log_request_packet(route: str, payload: dict) -> None:
    logger.info("%s request packet:\n%s", route, _json(payload))


def _log_response_packet(route: str, payload: dict) -> None:
    logger.info("%s response packet:\n%s", route, _json(payload))


def current_identity(x_user_id: str | None = Header(default=None)) -> str | None:
    """Caller identity from the session header; blank means signed out."""
    value = (x_user_id or "").strip()
    return value or None


def status_label(status: str) -> str:
    return STATUS_LABELS.get(status, status)


def _order_view(order: Order) -> OrderView:
    return OrderView(
        **order.model_dump(),
        line_total=line_total(order),
        status_label=status_label(order.status),
    )


def _identity_missing(route: str) -> JSONResponse:
    error_payload = {"status": "FAIL", "fail_reason": "User identity not found"}
    _log_response_packet(route, error_payload)
    return JSONResponse(status_code=401, content=error_payload)


def _list_response(route: str, result: SyncResult, identity: str | None) -> JSONResponse:
    if result.outcome is SyncOutcome.IDENTITY_UNRESOLVED:
        return _identity_missing(route)

    snapshot = controller.store.snapshot()
    owned = identity is not None and snapshot.owner == identity
    body = OrderListResponse(
        outcome=result.outcome.value,
        error=result.error,
        last_error=controller.last_error,
        sort=snapshot.sort_key,
        orders=[_order_view(order) for order in snapshot.records] if owned else [],
        statistics=snapshot.statistics if owned else Statistics(),
        has_more=owned and not snapshot.exhausted,
        stale=snapshot.stale,
        last_synced_at=snapshot.last_synced_at if owned else None,
    )
    logger.info(
        "%s response: outcome=%s orders=%d has_more=%s error=%s",
        route,
        body.outcome,
        len(body.orders),
        body.has_more,
        body.error,
    )
    return JSONResponse(content=body.model_dump(mode="json"))


def _sort_or_current(sort: SortKey | None) -> SortKey:
    return sort if sort is not None else controller.sort_key


@app.get("/orders", response_model=OrderListResponse)
def list_orders(
    sort: SortKey | None = Query(None, description="date or amount"),
    identity: str | None = Depends(current_identity),
) -> JSONResponse:
    """Serve the cached list when fresh, otherwise load the first page."""
    route = "GET /orders"
    _log_request_packet(route, {"identity": identity, "sort": sort})
    result = controller.load_initial(identity, _sort_or_current(sort))
    return _list_response(route, result, identity)


@app.post("/orders/refresh", response_model=OrderListResponse)
def refresh_orders(
    sort: SortKey | None = Query(None, description="date or amount"),
    identity: str | None = Depends(current_identity),
) -> JSONResponse:
    route = "POST /orders/refresh"
    _log_request_packet(route, {"identity": identity, "sort": sort})
    result = controller.refresh(identity, _sort_or_current(sort))
    return _list_response(route, result, identity)


@app.post("/orders/more", response_model=OrderListResponse)
def load_more_orders(
    sort: SortKey | None = Query(None, description="date or amount"),
    identity: str | None = Depends(current_identity),
) -> JSONResponse:
    """Append the next page (infinite scroll)."""
    route = "POST /orders/more"
    _log_request_packet(route, {"identity": identity, "sort": sort})
    result = controller.load_more(identity, _sort_or_current(sort))
    return _list_response(route, result, identity)


@app.put("/orders/sort", response_model=OrderListResponse)
def change_sort(body: SortChange, identity: str | None = Depends(current_identity)) -> JSONResponse:
    route = "PUT /orders/sort"
    _log_request_packet(route, {"identity": identity, **body.model_dump(mode="json")})
    if identity is None:
        return _identity_missing(route)
    result = controller.on_sort_key_changed(body.sort, identity)
    return _list_response(route, result, identity)


@app.post("/orders/resume", response_model=OrderListResponse)
def resume_orders(
    sort: SortKey | None = Query(None, description="date or amount"),
    identity: str | None = Depends(current_identity),
) -> JSONResponse:
    """The list screen is visible again: reload only if the cache was invalidated."""
    route = "POST /orders/resume"
    _log_request_packet(route, {"identity": identity, "sort": sort})
    result = controller.on_visit_resume(identity, _sort_or_current(sort))
    return _list_response(route, result, identity)


@app.post("/orders/invalidate", status_code=204)
def invalidate_orders() -> Response:
    controller.notify_external_mutation()
    return Response(status_code=204)


@app.post("/orders", response_model=OrderView, status_code=201)
def create_order(body: OrderCreate, identity: str | None = Depends(current_identity)) -> JSONResponse:
    route = "POST /orders"
    _log_request_packet(route, {"identity": identity, **body.model_dump(mode="json")})
    if identity is None:
        return _identity_missing(route)

    try:
        order = order_db.create_order(identity, body)
    except RemoteStoreError as exc:
        error_payload = {"status": "FAIL", "fail_reason": str(exc)}
        _log_response_packet(route, error_payload)
        return JSONResponse(status_code=503, content=error_payload)

    controller.notify_external_mutation()
    payload = _order_view(order).model_dump(mode="json")
    _log_response_packet(route, payload)
    return JSONResponse(status_code=201, content=payload)
