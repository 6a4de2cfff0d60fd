"""BatchTrace — immutable audit record of one lifecycle event.

One row per state change: status writes, quality updates, rejection,
split (on both parent and child) and merge (on every source and the
target).  Split lineage exists only here: a child batch carries no
foreign key back to its parent.

Rows are appended and never updated or deleted.  Read them ordered by
``(timestamp, id)`` so events written in the same instant keep their
insertion order.
"""

from datetime import datetime

from sqlalchemy import DateTime, Integer, String
from sqlalchemy.orm import Mapped, mapped_column

from farmchain.database import Base, utcnow
from farmchain.utils.numbering import BATCH_ID_MAX_LENGTH


class BatchTrace(Base):
    __tablename__ = "batch_traces"

    id: Mapped[int] = mapped_column(Integer, primary_key=True, autoincrement=True)
    batch_id: Mapped[str] = mapped_column(
        String(BATCH_ID_MAX_LENGTH), nullable=False, index=True
    )
    farmer_id: Mapped[str | None] = mapped_column(String(64))

    # Free text: a status name, "SPLIT", "MERGED_INTO -> FCX-…", "REJECTED - Reason: …"
    label: Mapped[str] = mapped_column(String(500), nullable=False)
    changed_by: Mapped[str | None] = mapped_column(String(64))
    timestamp: Mapped[datetime] = mapped_column(
        DateTime, default=utcnow, nullable=False, index=True
    )
