"""Typed views over Alpaca REST payloads. Numeric strings are parsed to Decimal."""

from decimal import Decimal
from typing import Optional

from pydantic import BaseModel

from equitybridge.domain.enums import OrderSide

DEAD_ORDER_STATUSES = frozenset({"canceled", "expired", "rejected"})


class Account(BaseModel):
    id: str
    status: str = ""
    currency: str = "USD"
    buying_power: Decimal = Decimal("0")
    cash: Decimal = Decimal("0")
    trading_blocked: bool = False
    account_blocked: bool = False
    trade_suspended_by_user: bool = False

    def trading_allowed(self, side: OrderSide) -> bool:
        """Pre-flight eligibility: blocked accounts never trade, buys need buying power."""
        if self.trading_blocked or self.account_blocked or self.trade_suspended_by_user:
            return False
        if side == OrderSide.BUY and self.buying_power <= 0:
            return False
        return True


class Order(BaseModel):
    id: str
    client_order_id: Optional[str] = None
    symbol: str
    qty: Optional[Decimal] = None
    filled_qty: Decimal = Decimal("0")
    side: OrderSide
    type: str = "market"
    time_in_force: str = "day"
    status: str
    extended_hours: bool = False

    @property
    def is_dead(self) -> bool:
        """Closed without (fully) executing."""
        return self.status in DEAD_ORDER_STATUSES


class Position(BaseModel):
    asset_id: str
    symbol: str
    qty: Decimal
    side: str = "long"
    market_value: Optional[Decimal] = None
    avg_entry_price: Optional[Decimal] = None


class Asset(BaseModel):
    id: str
    symbol: str
    name: str = ""
    status: str = "active"
    tradable: bool = False
    fractionable: bool = False
    exchange: str = ""


class SupportedAsset(BaseModel):
    """Allow-listed asset as seen by the engine."""

    symbol: str
    tradable: bool
    brokerage_asset_id: str
    name: str = ""
    fractionable: bool = False

    @classmethod
    def from_asset(cls, asset: Asset) -> "SupportedAsset":
        return cls(
            symbol=asset.symbol,
            tradable=asset.tradable,
            brokerage_asset_id=asset.id,
            name=asset.name,
            fractionable=asset.fractionable,
        )
