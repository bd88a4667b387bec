from __future__ import annotations

import sqlalchemy as sa
from sqlalchemy.orm import Mapped, Session, mapped_column

from transfer_metrics.db.base import Base


class MetadataEntry(Base):
    __tablename__ = "metadata"

    key: Mapped[str] = mapped_column(sa.String(255), primary_key=True)
    value: Mapped[str] = mapped_column(sa.Text(), nullable=False)


# The helpers below never commit: restart-tracking state has to land in the
# same transaction as the samples it was computed for.


def get_metadata(db: Session, key: str) -> str | None:
    row = db.get(MetadataEntry, key)
    return row.value if row else None


def set_metadata(db: Session, key: str, value: str) -> None:
    row = db.get(MetadataEntry, key)
    if row:
        row.value = value
    else:
        db.add(MetadataEntry(key=key, value=value))
        db.flush()


def delete_metadata(db: Session, key: str) -> bool:
    row = db.get(MetadataEntry, key)
    if row is None:
        return False
    db.delete(row)
    return True


def get_metadata_int(db: Session, key: str) -> int:
    value = get_metadata(db, key)
    try:
        return int(value) if value else 0
    except ValueError:
        return 0
