"""
Position Chain Models — entries, positions and the values derived from them.

A Position is an append-only log of Entries. Every mutation returns a new
Position; nothing here is ever edited in place, so a chain can be handed to
the projection evaluator, the store and the dashboard at the same time.
"""
import time
import uuid
from dataclasses import dataclass, field, replace, asdict
from typing import Optional

# ── Constants ────────────────────────────────────────────────────────
LONG  = 'long'
SHORT = 'short'
DIRECTIONS = (LONG, SHORT)

INITIAL  = 'initial'
ADD      = 'add'
SUBTRACT = 'subtract'
ENTRY_KINDS = (INITIAL, ADD, SUBTRACT)

# Fields of an Entry that may be edited after it was appended
EDITABLE_FIELDS = ('entry_price', 'size', 'leverage', 'stop_loss', 'take_profit')


# ── Entry ────────────────────────────────────────────────────────────
@dataclass(frozen=True)
class Entry:
    """
    One economic event in a position's life.
    `size` is USD margin, not leveraged notional.
    """
    entry_price: float
    size:        float
    leverage:    float
    kind:        str = ADD             # 'initial' | 'add' | 'subtract'
    timestamp:   float = field(default_factory=time.time)

    # Per-entry overrides of the position-level levels
    stop_loss:   Optional[float] = None
    take_profit: Optional[float] = None

    def __post_init__(self):
        if self.kind not in ENTRY_KINDS:
            raise ValueError(f'Unknown entry kind: {self.kind!r}')

    @property
    def is_opening(self) -> bool:
        return self.kind != SUBTRACT

    @property
    def is_closing(self) -> bool:
        return self.kind == SUBTRACT


# ── Position ─────────────────────────────────────────────────────────
@dataclass(frozen=True)
class Position:
    """
    Ordered entry chain plus the attributes shared by every entry.
    Insertion order is chronological order and drives FIFO closing.
    """
    symbol:      str
    direction:   str                    # 'long' | 'short'
    entries:     tuple = ()
    stop_loss:   Optional[float] = None
    take_profit: Optional[float] = None

    # Persistence metadata (ignored by the engine)
    id:       str = field(default_factory=lambda: uuid.uuid4().hex)
    name:     str = ''
    saved_at: float = field(default_factory=time.time)

    def __post_init__(self):
        if self.direction not in DIRECTIONS:
            raise ValueError(f'Unknown direction: {self.direction!r}')
        # Accept any sequence but always hold a tuple
        object.__setattr__(self, 'entries', tuple(self.entries))
        if not self.entries or self.entries[0].kind != INITIAL:
            raise ValueError('A position chain must start with an initial entry')
        if any(e.kind == INITIAL for e in self.entries[1:]):
            raise ValueError('A position chain holds exactly one initial entry')

    @classmethod
    def open(
        cls,
        symbol: str,
        direction: str,
        entry_price: float,
        size: float,
        leverage: float,
        stop_loss: Optional[float] = None,
        take_profit: Optional[float] = None,
        name: str = '',
    ) -> 'Position':
        """Create a position holding its single initial entry."""
        initial = Entry(entry_price=entry_price, size=size, leverage=leverage, kind=INITIAL)
        return cls(
            symbol=symbol.upper(),
            direction=direction,
            entries=(initial,),
            stop_loss=stop_loss,
            take_profit=take_profit,
            name=name or f'{symbol.upper()} {direction.upper()}',
        )

    @property
    def initial(self) -> Entry:
        return self.entries[0]

    # ── Chain edits (all return a new Position) ──────────────────────
    def append(self, entry: Entry) -> 'Position':
        if entry.kind == INITIAL:
            raise ValueError('Cannot append a second initial entry')
        return replace(self, entries=self.entries + (entry,))

    def replace_entry(self, index: int, **changes) -> 'Position':
        unknown = set(changes) - set(EDITABLE_FIELDS)
        if unknown:
            raise ValueError(f'Entry fields not editable: {sorted(unknown)}')
        self._check_index(index)
        edited = replace(self.entries[index], **changes)
        entries = self.entries[:index] + (edited,) + self.entries[index + 1:]
        return replace(self, entries=entries)

    def remove_entry(self, index: int) -> 'Position':
        self._check_index(index)
        if index == 0:
            raise ValueError('The initial entry cannot be removed')
        return replace(self, entries=self.entries[:index] + self.entries[index + 1:])

    def with_levels(self, stop_loss: Optional[float] = None, take_profit: Optional[float] = None) -> 'Position':
        return replace(self, stop_loss=stop_loss, take_profit=take_profit)

    def renamed(self, name: str) -> 'Position':
        return replace(self, name=name)

    def _check_index(self, index: int):
        if not 0 <= index < len(self.entries):
            raise IndexError(f'No entry at index {index} ({len(self.entries)} entries)')

    # ── Level overrides ──────────────────────────────────────────────
    def effective_stop_loss(self, entry: Optional[Entry] = None) -> Optional[float]:
        if entry is not None and entry.stop_loss is not None:
            return entry.stop_loss
        return self.stop_loss

    def effective_take_profit(self, entry: Optional[Entry] = None) -> Optional[float]:
        if entry is not None and entry.take_profit is not None:
            return entry.take_profit
        return self.take_profit


# ── Derived values ───────────────────────────────────────────────────
@dataclass(frozen=True)
class ChainState:
    """Result of reducing an entry chain. Recomputed on every read."""
    open_size:           float = 0.0
    closed_size:         float = 0.0
    remaining_size:      float = 0.0
    average_entry_price: float = 0.0
    average_leverage:    float = 1.0
    realized_pnl:        float = 0.0


@dataclass(frozen=True)
class CalculatedMetrics:
    average_entry_price: float
    total_size:          float
    average_leverage:    float
    risk_amount:         float
    reward_amount:       float
    risk_reward_ratio:   float
    liquidation_price:   Optional[float] = None
    pnl:                 Optional[float] = None
    pnl_percentage:      Optional[float] = None
    realized_pnl:        float = 0.0

    @property
    def notional(self) -> float:
        return self.total_size * self.average_leverage

    def to_dict(self) -> dict:
        return {**asdict(self), 'notional': self.notional}
