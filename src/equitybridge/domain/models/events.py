"""Decoded on-chain events."""

from pydantic import BaseModel

from equitybridge.domain.enums import EventKind, OrderSide


class ChainEvent(BaseModel):
    """A mint/redeem request read from contract logs. Immutable."""

    model_config = {"frozen": True}

    kind: EventKind
    symbol: str
    token_amount: int  # base units, 18-decimal fixed point
    counter_amount: int = 0  # netUsdc for mints, usdcOut for redeems
    block_number: int
    log_index: int
    transaction_hash: str

    @property
    def event_id(self) -> str:
        return make_event_id(self.transaction_hash, self.log_index)

    @property
    def order_side(self) -> OrderSide:
        return OrderSide.BUY if self.kind == EventKind.MINT_REQUESTED else OrderSide.SELL

    @property
    def sort_key(self) -> tuple[int, int]:
        return self.block_number, self.log_index


def make_event_id(transaction_hash: str, log_index: int) -> str:
    return f"{transaction_hash.lower()}:{log_index}"
