"""Request schemas for the dashboard API. Field aliases match the stored JSON."""

from typing import Literal, Optional, Union

from pydantic import BaseModel, ConfigDict, Field

from engine.models import Entry, Position


class _Schema(BaseModel):
    model_config = ConfigDict(populate_by_name=True)


class EntryIn(_Schema):
    entry_price: float = Field(alias="entryPrice", gt=0)
    size: float = Field(gt=0)
    leverage: float = Field(ge=1)
    kind: Literal["initial", "add", "subtract"] = Field(alias="type")
    timestamp: Optional[float] = None
    stop_loss: Optional[float] = Field(None, alias="stopLoss", gt=0)
    take_profit: Optional[float] = Field(None, alias="takeProfit", gt=0)

    def to_entry(self) -> Entry:
        fields = dict(
            entry_price=self.entry_price,
            size=self.size,
            leverage=self.leverage,
            kind=self.kind,
            stop_loss=self.stop_loss,
            take_profit=self.take_profit,
        )
        if self.timestamp is not None:
            fields["timestamp"] = self.timestamp
        return Entry(**fields)


class PositionIn(_Schema):
    """A full position sent by the client (preview endpoints, no storage)."""

    symbol: str
    direction: Literal["long", "short"] = Field(alias="sideEntry")
    entries: list[EntryIn] = Field(min_length=1)
    stop_loss: Optional[float] = Field(None, alias="stopLoss", gt=0)
    take_profit: Optional[float] = Field(None, alias="takeProfit", gt=0)
    current_price: Optional[float] = Field(None, alias="currentPrice")

    def to_position(self) -> Position:
        return Position(
            symbol=self.symbol.upper(),
            direction=self.direction,
            entries=tuple(e.to_entry() for e in self.entries),
            stop_loss=self.stop_loss,
            take_profit=self.take_profit,
        )


class NewPositionForm(_Schema):
    """Raw form input for a new position; numbers arrive as text."""

    symbol: str = Field(min_length=1)
    direction: Literal["long", "short"] = Field(alias="sideEntry")
    entry_price: Union[str, float] = Field(alias="entryPrice")
    position_size: Union[str, float] = Field(alias="positionSize")
    leverage: Union[str, float]
    stop_loss: Optional[Union[str, float]] = Field(None, alias="stopLoss")
    take_profit: Optional[Union[str, float]] = Field(None, alias="takeProfit")
    name: str = ""


class AdjustmentIn(_Schema):
    kind: Literal["add", "subtract"] = Field(alias="type")
    new_entry_price: Union[str, float] = Field(alias="newEntryPrice")
    adjustment_size: Union[str, float] = Field(alias="adjustmentSize")
    adjustment_leverage: Optional[float] = Field(None, alias="adjustmentLeverage")
    stop_loss: Optional[float] = Field(None, alias="stopLoss", gt=0)
    take_profit: Optional[float] = Field(None, alias="takeProfit", gt=0)


class ProjectRequest(_Schema):
    position: PositionIn
    adjustment: AdjustmentIn
    current_price: Optional[float] = Field(None, alias="currentPrice")


class AdjustRequest(_Schema):
    adjustment: AdjustmentIn
    current_price: Optional[float] = Field(None, alias="currentPrice")


class EntryEdit(_Schema):
    """Only the fields present in the request are applied."""

    entry_price: Optional[float] = Field(None, alias="entryPrice")
    size: Optional[float] = None
    leverage: Optional[float] = None
    stop_loss: Optional[float] = Field(None, alias="stopLoss", gt=0)
    take_profit: Optional[float] = Field(None, alias="takeProfit", gt=0)


class LevelsEdit(_Schema):
    stop_loss: Optional[float] = Field(None, alias="stopLoss", gt=0)
    take_profit: Optional[float] = Field(None, alias="takeProfit", gt=0)


class RenameRequest(_Schema):
    name: str = Field(min_length=1)
