from datetime import datetime
from enum import Enum

from sqlalchemy import (
    DateTime,
    Enum as SAEnum,
    ForeignKey,
    Integer,
    String,
    Text,
    UniqueConstraint,
)
from sqlalchemy.orm import Mapped, mapped_column, relationship

from database import Base


class RecurrenceKind(str, Enum):
    monthly = "monthly"
    biweekly = "biweekly"


class MonthDayPolicy(str, Enum):
    snap_to_end = "snap_to_end"
    skip = "skip"


class CollectionKind(str, Enum):
    transactions = "transactions"
    recurrings = "recurrings"
    categories = "categories"
    budgets = "budgets"


GOALS_KEY = "goals"
ACTIVE_PROFILE_KEY = "active_profile"


class TimestampMixin:
    created_at: Mapped[datetime] = mapped_column(
        DateTime, default=datetime.utcnow, nullable=False
    )
    updated_at: Mapped[datetime] = mapped_column(
        DateTime, default=datetime.utcnow, onupdate=datetime.utcnow, nullable=False
    )


class Profile(Base, TimestampMixin):
    __tablename__ = "profiles"

    id: Mapped[str] = mapped_column(String(36), primary_key=True)
    name: Mapped[str] = mapped_column(String(100), nullable=False)

    collections: Mapped[list["ProfileCollection"]] = relationship(
        "ProfileCollection",
        back_populates="profile",
        cascade="all, delete-orphan",
    )


class ProfileCollection(Base, TimestampMixin):
    """One persisted JSON document per (profile, collection kind).

    Writes always replace ``payload`` wholesale.
    """

    __tablename__ = "profile_collections"

    id: Mapped[int] = mapped_column(Integer, primary_key=True)
    profile_id: Mapped[str] = mapped_column(
        ForeignKey("profiles.id", ondelete="CASCADE"), nullable=False
    )
    kind: Mapped[CollectionKind] = mapped_column(
        SAEnum(CollectionKind), nullable=False
    )
    payload: Mapped[str] = mapped_column(Text, nullable=False, default="[]")

    profile: Mapped["Profile"] = relationship("Profile", back_populates="collections")

    __table_args__ = (
        UniqueConstraint("profile_id", "kind", name="uq_profile_collection_kind"),
    )


class AppDocument(Base, TimestampMixin):
    """Documents that are not owned by a profile (goals, active profile pointer)."""

    __tablename__ = "app_documents"

    key: Mapped[str] = mapped_column(String(64), primary_key=True)
    payload: Mapped[str] = mapped_column(Text, nullable=False)
