from __future__ import annotations

import sqlalchemy as sa
from sqlalchemy.orm import Mapped, mapped_column

from transfer_metrics.db.base import Base


class Sample(Base):
    """One bandwidth sample per client instance per ingestion tick.

    Totals are stored restart-corrected, so for a given instance they never
    decrease unless the client reset its own counters.
    """

    __tablename__ = "instance_metrics"
    __table_args__ = (sa.Index("ix_instance_metrics_type", "timestamp", "client_type"),)

    # Milliseconds since the epoch
    timestamp: Mapped[int] = mapped_column(sa.BigInteger(), primary_key=True)
    instance_id: Mapped[str] = mapped_column(sa.String(255), primary_key=True)
    client_type: Mapped[str] = mapped_column(sa.String(64), nullable=False)

    upload_speed: Mapped[int] = mapped_column(sa.BigInteger(), default=0, nullable=False)
    download_speed: Mapped[int] = mapped_column(sa.BigInteger(), default=0, nullable=False)
    total_uploaded: Mapped[int] = mapped_column(sa.BigInteger(), default=0, nullable=False)
    total_downloaded: Mapped[int] = mapped_column(sa.BigInteger(), default=0, nullable=False)
