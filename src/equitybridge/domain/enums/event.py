from enum import Enum


class EventKind(str, Enum):
    """On-chain request kinds the worker reacts to."""

    MINT_REQUESTED = "MintRequested"
    REDEEM_REQUESTED = "RedeemRequested"
