from typing import Optional

from sqlalchemy import BigInteger, Index, Integer, String, Text
from sqlalchemy.orm import Mapped, mapped_column

from equitybridge.db.session import Base, TimestampMixin
from equitybridge.domain.enums import EventKind, ProcessingStatus


class ProcessingRecord(TimestampMixin, Base):
    """Pipeline state of one on-chain event. The only idempotency guard.

    Keyed by ``<tx_hash>:<log_index>``. The event payload is copied in so an
    interrupted pipeline can be resumed without re-reading the chain.
    """

    __tablename__ = "processing_records"
    __table_args__ = (
        Index("ix_processing_records_status", "status"),
        Index("ix_processing_records_block_log", "block_number", "log_index"),
    )

    event_id: Mapped[str] = mapped_column(String(100), primary_key=True)
    kind: Mapped[str] = mapped_column(String(20))
    symbol: Mapped[str] = mapped_column(String(20))
    token_amount: Mapped[str] = mapped_column(String(80))  # uint256 as decimal digits
    block_number: Mapped[int] = mapped_column(BigInteger)
    log_index: Mapped[int] = mapped_column(Integer)
    tx_hash: Mapped[str] = mapped_column(String(66))

    status: Mapped[str] = mapped_column(String(20), default=ProcessingStatus.PENDING.value)
    quantity: Mapped[Optional[str]] = mapped_column(String(40), default=None)
    client_order_id: Mapped[Optional[str]] = mapped_column(String(128), default=None)
    brokerage_order_id: Mapped[Optional[str]] = mapped_column(String(64), default=None)
    settlement_tx_hash: Mapped[Optional[str]] = mapped_column(String(66), default=None)
    settlement_nonce: Mapped[Optional[int]] = mapped_column(BigInteger, default=None)
    # Earlier signed hashes for the same nonce (space separated); any of them may be the one mined.
    prior_settlement_tx_hashes: Mapped[Optional[str]] = mapped_column(Text, default=None)
    attempts: Mapped[int] = mapped_column(Integer, default=0)  # order placement attempts
    settlement_attempts: Mapped[int] = mapped_column(Integer, default=0)
    last_error: Mapped[Optional[str]] = mapped_column(Text, default=None)
    error_type: Mapped[Optional[str]] = mapped_column(String(50), default=None)
    resolved: Mapped[bool] = mapped_column(default=False)  # operator acknowledged a failure

    @property
    def processing_status(self) -> ProcessingStatus:
        return ProcessingStatus(self.status)

    @property
    def event_kind(self) -> EventKind:
        return EventKind(self.kind)

    @property
    def amount(self) -> int:
        return int(self.token_amount)

    @property
    def known_settlement_hashes(self) -> list[str]:
        hashes = (self.prior_settlement_tx_hashes or "").split()
        if self.settlement_tx_hash:
            hashes.append(self.settlement_tx_hash)
        return hashes
