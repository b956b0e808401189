"""Deployed token-issuance contract ABI: the two request events and the settlement call.

Signatures must match the deployed contract exactly; every field is
non-indexed, so the payload lives entirely in ``data``.
"""

from eth_abi import decode, encode
from eth_utils import keccak

from equitybridge.domain.enums import EventKind
from equitybridge.domain.models.events import ChainEvent

EVENT_SIGNATURES: dict[EventKind, str] = {
    EventKind.MINT_REQUESTED: "TokensMinted(string,uint256,uint256)",
    EventKind.REDEEM_REQUESTED: "TokensRedeemed(string,uint256,uint256)",
}
EVENT_DATA_TYPES = ["string", "uint256", "uint256"]

SETTLE_SIGNATURE = "settleTokens(string,uint256)"
SETTLE_ARG_TYPES = ["string", "uint256"]


def _hex(data: bytes) -> str:
    return "0x" + data.hex()


def event_topic(kind: EventKind) -> str:
    return _hex(keccak(text=EVENT_SIGNATURES[kind]))


def function_selector(signature: str) -> bytes:
    return keccak(text=signature)[:4]


def encode_settle_call(symbol: str, amount: int) -> str:
    """Calldata for ``settleTokens(symbol, amount)``."""
    return _hex(function_selector(SETTLE_SIGNATURE) + encode(SETTLE_ARG_TYPES, [symbol, amount]))


def _to_int(value: str | int) -> int:
    if isinstance(value, int):
        return value
    return int(value, 16) if value.startswith("0x") else int(value)


def decode_event_log(kind: EventKind, log: dict) -> ChainEvent:
    """Build a ChainEvent from an ``eth_getLogs`` entry."""
    data = log.get("data") or "0x"
    symbol, amount, counter_amount = decode(EVENT_DATA_TYPES, bytes.fromhex(data[2:]))
    return ChainEvent(
        kind=kind,
        symbol=symbol,
        token_amount=amount,
        counter_amount=counter_amount,
        block_number=_to_int(log["blockNumber"]),
        log_index=_to_int(log["logIndex"]),
        transaction_hash=log["transactionHash"].lower(),
    )

