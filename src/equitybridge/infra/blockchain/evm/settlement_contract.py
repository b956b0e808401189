"""Settlement contract access: request-event scanning and serialized settlement submission."""

import asyncio
import logging
import weakref
from dataclasses import dataclass
from typing import Awaitable, Callable, Optional

from eth_abi.exceptions import DecodingError
from eth_account import Account
from eth_utils import to_checksum_address

from equitybridge.domain.enums import EventKind
from equitybridge.domain.models.events import ChainEvent
from equitybridge.exceptions import DependencyError, TerminalDependencyError
from equitybridge.infra.blockchain.abi import decode_event_log, encode_settle_call, event_topic
from equitybridge.infra.blockchain.evm.rpc_client import EVMRPCClient

logger = logging.getLogger(__name__)

# Headroom over eth_estimateGas
GAS_LIMIT_MULTIPLIER_PCT = 120

_ALREADY_KNOWN_MARKERS = ("already known", "known transaction")


@dataclass(frozen=True)
class SignedSettlement:
    tx_hash: str
    nonce: int
    raw_transaction: str


OnSigned = Callable[[SignedSettlement], Awaitable[None]]


class NonceManager:
    """Submission queue for one operator account.

    Hold ``lock`` from nonce allocation until the broadcast returns.
    """

    def __init__(self, address: str) -> None:
        self.address = address
        self.lock = asyncio.Lock()
        self._next_nonce: Optional[int] = None

    async def allocate(self, rpc: EVMRPCClient) -> int:
        if self._next_nonce is None:
            self._next_nonce = await rpc.get_transaction_count(self.address, "pending")
        return self._next_nonce

    def commit(self, nonce: int) -> None:
        if self._next_nonce is not None and nonce >= self._next_nonce:
            self._next_nonce = nonce + 1

    def reset(self) -> None:
        self._next_nonce = None


# One manager per (event loop, operator address). asyncio locks cannot be shared across loops.
_managers: "weakref.WeakKeyDictionary[asyncio.AbstractEventLoop, dict[str, NonceManager]]" = weakref.WeakKeyDictionary()


def nonce_manager_for(address: str) -> NonceManager:
    per_loop = _managers.setdefault(asyncio.get_running_loop(), {})
    key = address.lower()
    if key not in per_loop:
        per_loop[key] = NonceManager(address)
    return per_loop[key]


def _already_known(exc: DependencyError) -> bool:
    return any(m in exc.message.lower() for m in _ALREADY_KNOWN_MARKERS)


class SettlementContract:
    def __init__(self, rpc: EVMRPCClient, contract_address: str, private_key: str, chain_id: int) -> None:
        self._rpc = rpc
        self._address = to_checksum_address(contract_address)
        self._private_key = private_key
        self._chain_id = chain_id
        self._operator = Account.from_key(private_key).address if private_key else None

    @property
    def operator_address(self) -> str:
        if self._operator is None:
            raise TerminalDependencyError("Operator private key is not configured", code="NO_OPERATOR_KEY")
        return self._operator

    async def get_block_number(self) -> int:
        return await self._rpc.block_number()

    async def get_events(self, kind: EventKind, from_block: int, to_block: int | None = None) -> list[ChainEvent]:
        """Decoded events of one kind, ordered by (block_number, log_index)."""
        logs = await self._rpc.get_logs(self._address, [event_topic(kind)], from_block, to_block)
        events: list[ChainEvent] = []
        for log in logs:
            if log.get("removed"):
                logger.warning("Skipping removed (reorged) log %s:%s", log.get("transactionHash"), log.get("logIndex"))
                continue
            try:
                events.append(decode_event_log(kind, log))
            except (DecodingError, KeyError, ValueError):
                logger.error("Undecodable %s log in tx %s", kind.value, log.get("transactionHash"), exc_info=True)
        events.sort(key=lambda e: e.sort_key)
        return events

    async def get_all_events(self, from_block: int, to_block: int) -> list[ChainEvent]:
        """Mint and redeem requests in one ordered stream."""
        events: list[ChainEvent] = []
        for kind in EventKind:
            events.extend(await self.get_events(kind, from_block, to_block))
        events.sort(key=lambda e: e.sort_key)
        return events

    async def transaction_exists(self, tx_hash: str) -> bool:
        return await self._rpc.get_transaction(tx_hash) is not None

    async def nonce_consumed(self, nonce: int) -> bool:
        """True once a mined transaction from the operator used ``nonce``."""
        return await self._rpc.get_transaction_count(self.operator_address, "latest") > nonce

    async def submit_settlement(
        self,
        symbol: str,
        amount: int,
        *,
        nonce: int | None = None,
        on_signed: OnSigned | None = None,
    ) -> str:
        """Sign and broadcast ``settleTokens(symbol, amount)``; returns the tx hash.

        The call is simulated first, so a revert surfaces as ContractRevertError
        before anything is signed. ``on_signed`` runs before the broadcast.
        Pass ``nonce`` to re-broadcast in place of an earlier attempt.
        """
        operator = self.operator_address
        data = encode_settle_call(symbol, amount)
        call_tx = {"from": operator, "to": self._address, "data": data}
        await self._rpc.call(call_tx)
        gas = await self._rpc.estimate_gas(call_tx)

        manager = nonce_manager_for(operator)
        async with manager.lock:
            tx_nonce = nonce if nonce is not None else await manager.allocate(self._rpc)
            gas_price = await self._rpc.gas_price()
            signed = self._sign(data, tx_nonce, gas, gas_price)
            if on_signed is not None:
                await on_signed(signed)

            try:
                await self._rpc.send_raw_transaction(signed.raw_transaction)
            except DependencyError as exc:
                if not _already_known(exc):
                    manager.reset()
                    exc.broadcast_rejected = exc.response_received
                    raise
                logger.info("Settlement tx %s already known to the node", signed.tx_hash)
            manager.commit(tx_nonce)

        logger.info("Submitted settlement %s for %s amount=%d (nonce %d)", signed.tx_hash, symbol, amount, tx_nonce)
        return signed.tx_hash

    def _sign(self, data: str, nonce: int, gas: int, gas_price: int) -> SignedSettlement:
        tx = {
            "nonce": nonce,
            "gasPrice": gas_price,
            "gas": gas * GAS_LIMIT_MULTIPLIER_PCT // 100,
            "to": self._address,
            "value": 0,
            "data": data,
            "chainId": self._chain_id,
        }
        signed = Account.sign_transaction(tx, self._private_key)
        raw_tx = getattr(signed, "raw_transaction", None)
        if raw_tx is None:
            raw_tx = signed.rawTransaction
        return SignedSettlement(
            tx_hash="0x" + bytes(signed.hash).hex(),
            nonce=nonce,
            raw_transaction="0x" + bytes(raw_tx).hex(),
        )
