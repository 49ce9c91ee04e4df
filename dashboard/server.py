"""
Position Calculator API — FastAPI + WebSocket server.

Serves:
  - live prices from the buffer + feed connection status / retry
  - previews of a proposed add / reduce against a position (no storage)
  - CRUD over saved positions and their entry chains
  - /ws price ticks pushed every poll cycle

Validation failures answer 422 with {"errors": [{"field", "message"}]}.
"""
import asyncio
import json
from typing import Optional

from fastapi import FastAPI, HTTPException, Query, Request, WebSocket, WebSocketDisconnect
from fastapi.responses import JSONResponse
from loguru import logger

from config import POLL_INTERVAL
from data.buffer import buffer
from data.feed import feed
from engine.models import Position
from engine.projection import (
    build_adjustment, project, commit, evaluate, step_metrics,
    edit_entry, remove_entry, update_levels,
)
from engine.validation import (
    FieldError, ValidationFailed, parse_number,
    validate_position_input, validate_adjustment_input, validate_levels,
)
from storage.position_store import store, position_to_dict
from dashboard.schemas import (
    PositionIn, NewPositionForm, AdjustmentIn, ProjectRequest, AdjustRequest,
    EntryEdit, LevelsEdit, RenameRequest,
)

app = FastAPI(title="Perpulator")

connected_clients: list[WebSocket] = []


@app.exception_handler(ValidationFailed)
async def _validation_failed(request: Request, exc: ValidationFailed):
    return JSONResponse(status_code=422, content={"errors": [e.to_dict() for e in exc.errors]})


# ── Helpers ───────────────────────────────────────────────────────────
def _to_position(body: PositionIn) -> Position:
    try:
        return body.to_position()
    except ValueError as e:
        raise ValidationFailed([FieldError("entries", str(e))])


def _price_for(symbol: str, explicit: Optional[float] = None) -> Optional[float]:
    """Explicit price wins, otherwise the latest polled price (may be None)."""
    feed.track(symbol)
    return explicit or buffer.get_price(symbol)


def _adjustment_entry(position: Position, adj: AdjustmentIn):
    errors = validate_adjustment_input(adj.new_entry_price, adj.adjustment_size)
    if errors:
        raise ValidationFailed(errors)
    return build_adjustment(
        position,
        kind=adj.kind,
        entry_price=parse_number(adj.new_entry_price),
        size=parse_number(adj.adjustment_size),
        leverage=adj.adjustment_leverage,
        stop_loss=adj.stop_loss,
        take_profit=adj.take_profit,
    )


def _position_payload(position: Position, current_price: Optional[float] = None) -> dict:
    price = _price_for(position.symbol, current_price)
    return {
        **position_to_dict(position),
        "currentPrice": price,
        "metrics": evaluate(position, price).to_dict(),
    }


def _load(position_id: str) -> Position:
    position = store.get(position_id)
    if position is None:
        raise HTTPException(status_code=404, detail=f"Position {position_id} not found")
    return position


def _edit(position: Position, fn, *args, **kwargs) -> Position:
    """Run a chain edit, mapping structural errors to HTTP responses."""
    try:
        return fn(position, *args, **kwargs)
    except IndexError as e:
        raise HTTPException(status_code=404, detail=str(e))
    except ValueError as e:
        raise ValidationFailed([FieldError("entries", str(e))])


# ── Prices ────────────────────────────────────────────────────────────
@app.get("/api/prices")
async def get_prices(symbols: str = Query("", description="Comma separated symbols, e.g. BTC,ETH")):
    wanted = [s.strip().upper() for s in symbols.split(",") if s.strip()]
    if not wanted:
        raise HTTPException(status_code=400, detail="No symbols provided")
    for symbol in wanted:
        feed.track(symbol)
    return buffer.snapshot(wanted)


@app.get("/api/status")
async def get_status():
    return {
        "feed": feed.status(),
        "connected_clients": len(connected_clients),
        "prices": buffer.snapshot(),
    }


@app.post("/api/retry")
async def retry_feed():
    feed.retry()
    return feed.status()


# ── Stateless calculations ────────────────────────────────────────────
@app.post("/api/evaluate")
async def evaluate_position(body: PositionIn):
    position = _to_position(body)
    price = _price_for(position.symbol, body.current_price)
    return {
        "currentPrice": price,
        "metrics": evaluate(position, price).to_dict(),
        "steps": step_metrics(position, price),
    }


@app.post("/api/project")
async def project_adjustment(body: ProjectRequest):
    position = _to_position(body.position)
    proposed = _adjustment_entry(position, body.adjustment)
    price = _price_for(position.symbol, body.current_price or body.position.current_price)
    return {
        "currentPrice": price,
        "current": evaluate(position, price).to_dict(),
        "projected": project(position, proposed, price).to_dict(),
        "leverage": proposed.leverage,
    }


# ── Saved positions ───────────────────────────────────────────────────
@app.get("/api/positions")
async def list_positions():
    return {"positions": [_position_payload(p) for p in store.load_all()]}


@app.post("/api/positions", status_code=201)
async def create_position(form: NewPositionForm):
    errors = validate_position_input(
        form.entry_price, form.position_size, form.leverage, form.stop_loss, form.take_profit,
    )
    if errors:
        raise ValidationFailed(errors)

    entry_price = parse_number(form.entry_price)
    stop_loss = parse_number(form.stop_loss)
    take_profit = parse_number(form.take_profit)
    errors = validate_levels(form.direction, entry_price, stop_loss, take_profit)
    if errors:
        raise ValidationFailed(errors)

    position = Position.open(
        symbol=form.symbol,
        direction=form.direction,
        entry_price=entry_price,
        size=parse_number(form.position_size),
        leverage=parse_number(form.leverage),
        stop_loss=stop_loss,
        take_profit=take_profit,
        name=form.name,
    )
    store.save(position)
    logger.info(f"[API] Created {position.direction.upper()} {position.symbol} @ {entry_price}")
    return _position_payload(position)


@app.get("/api/positions/{position_id}")
async def get_position(position_id: str, current_price: Optional[float] = Query(None, alias="currentPrice")):
    position = _load(position_id)
    payload = _position_payload(position, current_price)
    payload["steps"] = step_metrics(position, payload["currentPrice"])
    return payload


@app.patch("/api/positions/{position_id}")
async def rename_position(position_id: str, body: RenameRequest):
    renamed = store.rename(position_id, body.name)
    if renamed is None:
        raise HTTPException(status_code=404, detail=f"Position {position_id} not found")
    return _position_payload(renamed)


@app.put("/api/positions/{position_id}/levels")
async def set_levels(position_id: str, body: LevelsEdit):
    position = _edit(_load(position_id), update_levels, body.stop_loss, body.take_profit)
    store.save(position)
    return _position_payload(position)


@app.delete("/api/positions/{position_id}")
async def delete_position(position_id: str):
    if not store.delete(position_id):
        raise HTTPException(status_code=404, detail=f"Position {position_id} not found")
    return {"deleted": position_id}


@app.post("/api/positions/{position_id}/project")
async def project_saved(position_id: str, body: AdjustRequest):
    position = _load(position_id)
    proposed = _adjustment_entry(position, body.adjustment)
    price = _price_for(position.symbol, body.current_price)
    return {
        "currentPrice": price,
        "current": evaluate(position, price).to_dict(),
        "projected": project(position, proposed, price).to_dict(),
        "leverage": proposed.leverage,
    }


@app.post("/api/positions/{position_id}/entries", status_code=201)
async def append_entry(position_id: str, body: AdjustRequest):
    position = _load(position_id)
    proposed = _adjustment_entry(position, body.adjustment)
    position = commit(position, proposed)
    store.save(position)
    logger.info(f"[API] {position.symbol} {proposed.kind} ${proposed.size:.2f} @ {proposed.entry_price}")
    return _position_payload(position, body.current_price)


@app.patch("/api/positions/{position_id}/entries/{index}")
async def patch_entry(position_id: str, index: int, body: EntryEdit):
    changes = body.model_dump(exclude_unset=True)
    position = _edit(_load(position_id), edit_entry, index, **changes)
    store.save(position)
    return _position_payload(position)


@app.delete("/api/positions/{position_id}/entries/{index}")
async def delete_entry(position_id: str, index: int):
    position = _edit(_load(position_id), remove_entry, index)
    store.save(position)
    return _position_payload(position)


# ── Active position ───────────────────────────────────────────────────
@app.get("/api/active")
async def get_active():
    position = store.load_active()
    return {"position": _position_payload(position) if position else None}


@app.put("/api/active/{position_id}")
async def set_active(position_id: str):
    position = _load(position_id)
    store.save_active(position)
    return {"position": _position_payload(position)}


@app.delete("/api/active")
async def clear_active():
    store.save_active(None)
    return {"position": None}


# ── WebSocket price ticks ─────────────────────────────────────────────
async def _broadcast(data: dict):
    """Push data to all connected clients."""
    if not connected_clients:
        return
    msg = json.dumps(data, default=str)
    dead = []
    for ws in connected_clients:
        try:
            await ws.send_text(msg)
        except Exception as e:
            logger.error(f"[API] WS broadcast error: {e}")
            dead.append(ws)
    for ws in dead:
        if ws in connected_clients:
            connected_clients.remove(ws)


async def _price_ticks():
    while True:
        await _broadcast({"type": "prices", "prices": buffer.snapshot(), "feed": feed.status()})
        await asyncio.sleep(POLL_INTERVAL)


@app.on_event("startup")
async def _start_price_ticks():
    asyncio.create_task(_price_ticks())


@app.websocket("/ws")
async def websocket_endpoint(ws: WebSocket):
    await ws.accept()
    connected_clients.append(ws)
    logger.info(f"[API] Client connected ({len(connected_clients)} total)")

    await ws.send_text(json.dumps({
        "type": "init",
        "prices": buffer.snapshot(),
        "feed": feed.status(),
    }, default=str))

    try:
        while True:
            data = await ws.receive_text()
            if data == "ping":
                await ws.send_text(json.dumps({"type": "pong", "feed": feed.status()}, default=str))
            elif data.startswith("track:"):
                feed.track(data.split(":", 1)[1])
    except WebSocketDisconnect:
        if ws in connected_clients:
            connected_clients.remove(ws)
        logger.info(f"[API] Client disconnected ({len(connected_clients)} total)")
