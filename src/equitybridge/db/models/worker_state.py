from sqlalchemy import Integer, String, Text
from sqlalchemy.orm import Mapped, mapped_column

from equitybridge.db.session import Base, TimestampMixin


class WorkerState(TimestampMixin, Base):
    """Small versioned key/value table: the block watermark and the run lease.

    Writes go through compare-and-set on ``version``.
    """

    __tablename__ = "worker_state"

    key: Mapped[str] = mapped_column(String(100), primary_key=True)
    value: Mapped[str] = mapped_column(Text, default="")
    version: Mapped[int] = mapped_column(Integer, default=1)
