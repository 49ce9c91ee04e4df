"""
Position Store — durable JSON storage for the active and saved positions.

File layout:
  {
    "active": { ...position... } | null,
    "saved":  [ { ...position... }, ... ]
  }

Timestamps are ISO-8601 (UTC). Every write goes through tempfile +
os.replace so a crash mid-write never leaves a truncated file. An
unreadable file is logged and treated as empty.
"""
import json
import os
import tempfile
from datetime import datetime, timezone
from pathlib import Path
from typing import Optional

from loguru import logger

from config import STORAGE_PATH
from engine.models import Entry, Position


# ── Serialization ─────────────────────────────────────────────────────
def _iso(ts: float) -> str:
    return datetime.fromtimestamp(ts, tz=timezone.utc).isoformat()


def _epoch(value) -> float:
    if isinstance(value, (int, float)):
        return float(value)
    dt = datetime.fromisoformat(value)
    if dt.tzinfo is None:
        dt = dt.replace(tzinfo=timezone.utc)
    return dt.timestamp()


def entry_to_dict(entry: Entry) -> dict:
    return {
        'entryPrice': entry.entry_price,
        'size':       entry.size,
        'leverage':   entry.leverage,
        'type':       entry.kind,
        'timestamp':  _iso(entry.timestamp),
        'stopLoss':   entry.stop_loss,
        'takeProfit': entry.take_profit,
    }


def entry_from_dict(data: dict) -> Entry:
    return Entry(
        entry_price=float(data['entryPrice']),
        size=float(data['size']),
        leverage=float(data['leverage']),
        kind=data['type'],
        timestamp=_epoch(data['timestamp']),
        stop_loss=data.get('stopLoss'),
        take_profit=data.get('takeProfit'),
    )


def position_to_dict(position: Position) -> dict:
    return {
        'id':         position.id,
        'name':       position.name,
        'symbol':     position.symbol,
        'sideEntry':  position.direction,
        'stopLoss':   position.stop_loss,
        'takeProfit': position.take_profit,
        'entries':    [entry_to_dict(e) for e in position.entries],
        'timestamp':  _iso(position.initial.timestamp),
        'savedAt':    _iso(position.saved_at),
    }


def position_from_dict(data: dict) -> Position:
    return Position(
        id=data['id'],
        name=data.get('name', ''),
        symbol=data['symbol'],
        direction=data['sideEntry'],
        stop_loss=data.get('stopLoss'),
        take_profit=data.get('takeProfit'),
        entries=tuple(entry_from_dict(e) for e in data['entries']),
        saved_at=_epoch(data['savedAt']),
    )


# ── Store ─────────────────────────────────────────────────────────────
class PositionStore:
    """File-backed store. One instance per storage file."""

    def __init__(self, path: str = STORAGE_PATH):
        self.path = Path(path)

    def _read(self) -> dict:
        empty = {'active': None, 'saved': []}
        if not self.path.exists():
            return empty
        try:
            data = json.loads(self.path.read_text())
        except (OSError, ValueError) as e:
            logger.error(f'[STORE] Failed to read {self.path}: {e}')
            return empty
        if not isinstance(data, dict):
            return empty
        return {'active': data.get('active'), 'saved': data.get('saved') or []}

    def _write(self, data: dict):
        """Atomically persist to disk (tempfile + os.replace = crash-safe)."""
        self.path.parent.mkdir(parents=True, exist_ok=True)
        fd, tmp = tempfile.mkstemp(dir=self.path.parent, suffix='.tmp')
        try:
            with os.fdopen(fd, 'w') as f:
                json.dump(data, f, indent=2)
            os.replace(tmp, self.path)
        except OSError:
            if os.path.exists(tmp):
                os.remove(tmp)
            raise

    def _decode(self, raw: dict) -> Optional[Position]:
        try:
            return position_from_dict(raw)
        except (KeyError, TypeError, ValueError) as e:
            logger.error(f'[STORE] Skipping unreadable position record: {e}')
            return None

    # ── Active position ──────────────────────────────────────────────
    def save_active(self, position: Optional[Position]):
        data = self._read()
        data['active'] = position_to_dict(position) if position else None
        self._write(data)

    def load_active(self) -> Optional[Position]:
        raw = self._read()['active']
        return self._decode(raw) if raw else None

    # ── Saved positions ──────────────────────────────────────────────
    def load_all(self) -> list[Position]:
        positions = (self._decode(raw) for raw in self._read()['saved'])
        return [p for p in positions if p is not None]

    def get(self, position_id: str) -> Optional[Position]:
        for position in self.load_all():
            if position.id == position_id:
                return position
        return None

    def save(self, position: Position):
        """Insert, or replace the saved position with the same id."""
        data = self._read()
        record = position_to_dict(position)
        for i, raw in enumerate(data['saved']):
            if raw.get('id') == position.id:
                data['saved'][i] = record
                break
        else:
            data['saved'].append(record)
        self._write(data)
        logger.info(f'[STORE] Saved {position.symbol} position {position.id} ({len(position.entries)} entries)')

    def delete(self, position_id: str) -> bool:
        data = self._read()
        kept = [raw for raw in data['saved'] if raw.get('id') != position_id]
        if len(kept) == len(data['saved']):
            return False
        data['saved'] = kept
        self._write(data)
        logger.info(f'[STORE] Deleted position {position_id}')
        return True

    def rename(self, position_id: str, name: str) -> Optional[Position]:
        position = self.get(position_id)
        if position is None:
            return None
        renamed = position.renamed(name.strip())
        self.save(renamed)
        return renamed

    def clear_all(self):
        self._write({'active': None, 'saved': []})
        logger.info('[STORE] Cleared all positions')


# Global singleton
store = PositionStore()
