"""
Declarative base for the archive's tables.

videos, channels, chunks and jobs all derive from BaseModel, which adds an
integer primary key and UTC created_at / updated_at columns. Constraint
names follow a fixed convention so Alembic migrations stay stable.
"""

from datetime import datetime, timezone

from sqlalchemy import DateTime, MetaData, String
from sqlalchemy.orm import DeclarativeBase, Mapped, mapped_column


# ================================
# Naming Convention for Constraints
# ================================
# ix_jobs_type, uq_videos_youtube_id, fk_chunks_video_id_videos, pk_jobs
NAMING_CONVENTION = {
    "ix": "ix_%(column_0_label)s",
    "uq": "uq_%(table_name)s_%(column_0_name)s",
    "ck": "ck_%(table_name)s_%(constraint_name)s",
    "fk": "fk_%(table_name)s_%(column_0_name)s_%(referred_table_name)s",
    "pk": "pk_%(table_name)s",
}


def utcnow() -> datetime:
    """Timezone-aware current time in UTC."""
    return datetime.now(timezone.utc)


class Base(DeclarativeBase):
    """Declarative base carrying the shared metadata."""

    metadata = MetaData(naming_convention=NAMING_CONVENTION)


class TimestampedColumns:
    """
    id, created_at and updated_at for every table.

    created_at doubles as the FIFO key of the job claim query.
    """

    id: Mapped[int] = mapped_column(
        primary_key=True,
        autoincrement=True,
    )

    created_at: Mapped[datetime] = mapped_column(
        DateTime(timezone=True),
        default=utcnow,
        nullable=False,
        comment="Row creation time (UTC)"
    )

    # onupdate does not fire for bulk UPDATE statements; the job queue sets it itself
    updated_at: Mapped[datetime] = mapped_column(
        DateTime(timezone=True),
        default=utcnow,
        onupdate=utcnow,
        nullable=False,
        comment="Last modification time (UTC)"
    )

    def __repr__(self) -> str:
        return f"{self.__class__.__name__}(id={self.id})"


class BaseModel(Base, TimestampedColumns):
    """Abstract base for all archive models."""

    __abstract__ = True


# ================================
# String Length Constraints
# ================================
String50 = String(50)  # youtube_id
String100 = String(100)  # channel_id
String255 = String(255)  # URLs, channel names
String500 = String(500)  # video titles
