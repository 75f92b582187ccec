"""SQLAlchemy database models."""

import enum
import typing as t
from datetime import datetime

from sqlalchemy import (
    DateTime,
    Enum,
    Float,
    ForeignKey,
    Index,
    Integer,
    String,
    Text,
    func,
    text,
)
from sqlalchemy.orm import Mapped, mapped_column, relationship

from app.core.database import Base


class UserRole(str, enum.Enum):
    """Role of a marketplace user."""

    PROVIDER = "provider"
    RECEIVER = "receiver"
    ADMIN = "admin"


class Freshness(str, enum.Enum):
    """Freshness declared by the provider when posting food."""

    FRESHLY_COOKED = "freshly_cooked"
    FRESH = "fresh"
    GOOD = "good"
    NEAR_EXPIRY = "near_expiry"
    USE_IMMEDIATELY = "use_immediately"
    OTHER = "other"


class Priority(str, enum.Enum):
    """Pickup priority derived at listing creation."""

    MEDIUM = "medium"
    HIGH = "high"
    URGENT = "urgent"


class ListingStatus(str, enum.Enum):
    """Lifecycle status of a listing."""

    AVAILABLE = "available"
    PARTIALLY_CLAIMED = "partially_claimed"
    FULLY_CLAIMED = "fully_claimed"
    COMPLETED = "completed"
    EXPIRED = "expired"
    CANCELLED = "cancelled"


class ClaimStatus(str, enum.Enum):
    """Lifecycle status of a claim."""

    PENDING = "pending"
    APPROVED = "approved"
    CONFIRMED = "confirmed"
    COMPLETED = "completed"
    REJECTED = "rejected"
    CANCELLED = "cancelled"


# Claims a receiver is still pursuing; one per (listing, receiver).
ACTIVE_CLAIM_STATUSES: t.FrozenSet[ClaimStatus] = frozenset(
    {ClaimStatus.PENDING, ClaimStatus.APPROVED, ClaimStatus.CONFIRMED}
)

# Claims that block deleting their listing.
PROTECTED_CLAIM_STATUSES: t.FrozenSet[ClaimStatus] = frozenset(
    {ClaimStatus.APPROVED, ClaimStatus.CONFIRMED, ClaimStatus.COMPLETED}
)

TERMINAL_LISTING_STATUSES: t.FrozenSet[ListingStatus] = frozenset(
    {
        ListingStatus.COMPLETED,
        ListingStatus.EXPIRED,
        ListingStatus.CANCELLED,
    }
)

CLAIMABLE_LISTING_STATUSES: t.FrozenSet[ListingStatus] = frozenset(
    {ListingStatus.AVAILABLE, ListingStatus.PARTIALLY_CLAIMED}
)


class User(Base):  # pylint: disable=too-few-public-methods
    """Marketplace user (provider, receiver or admin)."""

    __tablename__ = "users"

    id: Mapped[int] = mapped_column(
        Integer, primary_key=True, autoincrement=True
    )
    name: Mapped[str] = mapped_column(String(100), nullable=False)
    email: Mapped[str] = mapped_column(String(255), unique=True, nullable=False)
    hashed_password: Mapped[str] = mapped_column(String(255), nullable=False)
    role: Mapped[UserRole] = mapped_column(
        Enum(UserRole), nullable=False, default=UserRole.RECEIVER
    )
    is_active: Mapped[bool] = mapped_column(default=True)
    created_at: Mapped[datetime] = mapped_column(
        DateTime(timezone=True),
        server_default=func.now(),  # pylint: disable=not-callable
    )
    updated_at: Mapped[datetime] = mapped_column(
        DateTime(timezone=True),
        server_default=func.now(),  # pylint: disable=not-callable
        onupdate=func.now(),  # pylint: disable=not-callable
    )

    # Relationships
    listings: Mapped[t.List["Listing"]] = relationship(
        "Listing", back_populates="provider", cascade="all, delete-orphan"
    )
    claims: Mapped[t.List["Claim"]] = relationship(
        "Claim", back_populates="receiver"
    )
    analytics: Mapped["UserAnalytics | None"] = relationship(
        "UserAnalytics",
        back_populates="user",
        uselist=False,
        cascade="all, delete-orphan",
    )


class Listing(Base):  # pylint: disable=too-few-public-methods
    """Surplus food offered by a provider."""

    __tablename__ = "listings"

    id: Mapped[int] = mapped_column(
        Integer, primary_key=True, autoincrement=True
    )
    provider_id: Mapped[int] = mapped_column(
        Integer, ForeignKey("users.id", ondelete="CASCADE"), nullable=False
    )
    title: Mapped[str] = mapped_column(String(255), nullable=False, index=True)
    description: Mapped[str | None] = mapped_column(Text, nullable=True)
    food_items: Mapped[str | None] = mapped_column(Text, nullable=True)
    allergens: Mapped[str | None] = mapped_column(String(255), nullable=True)
    pickup_instructions: Mapped[str | None] = mapped_column(
        Text, nullable=True
    )

    total_quantity: Mapped[float] = mapped_column(Float, nullable=False)
    unit: Mapped[str] = mapped_column(String(20), nullable=False, default="kg")
    freshness: Mapped[Freshness] = mapped_column(
        Enum(Freshness), nullable=False, default=Freshness.FRESH
    )
    priority: Mapped[Priority] = mapped_column(
        Enum(Priority), nullable=False, default=Priority.MEDIUM
    )
    status: Mapped[ListingStatus] = mapped_column(
        Enum(ListingStatus),
        nullable=False,
        default=ListingStatus.AVAILABLE,
        index=True,
    )

    safe_until: Mapped[datetime] = mapped_column(
        DateTime(timezone=True), nullable=False, index=True
    )
    available_from: Mapped[datetime] = mapped_column(
        DateTime(timezone=True), nullable=False
    )
    available_until: Mapped[datetime] = mapped_column(
        DateTime(timezone=True), nullable=False
    )

    # Bumped by every mutating unit of work to take the listing write lock
    lock_version: Mapped[int] = mapped_column(
        Integer, nullable=False, default=0
    )

    created_at: Mapped[datetime] = mapped_column(
        DateTime(timezone=True),
        server_default=func.now(),  # pylint: disable=not-callable
    )
    updated_at: Mapped[datetime] = mapped_column(
        DateTime(timezone=True),
        server_default=func.now(),  # pylint: disable=not-callable
        onupdate=func.now(),  # pylint: disable=not-callable
    )

    __mapper_args__ = {"eager_defaults": True}

    __table_args__ = (
        Index("ix_listings_provider_id", "provider_id"),
        Index("ix_listings_status_safe_until", "status", "safe_until"),
    )

    # Relationships
    provider: Mapped["User"] = relationship("User", back_populates="listings")
    claims: Mapped[t.List["Claim"]] = relationship(
        "Claim",
        back_populates="listing",
        cascade="all, delete-orphan",
        order_by="Claim.id",
    )
    analytics: Mapped["ListingAnalytics | None"] = relationship(
        "ListingAnalytics",
        back_populates="listing",
        uselist=False,
        cascade="all, delete-orphan",
    )


class Claim(Base):  # pylint: disable=too-few-public-methods
    """A receiver's request against a listing's quantity."""

    __tablename__ = "claims"

    id: Mapped[int] = mapped_column(
        Integer, primary_key=True, autoincrement=True
    )
    listing_id: Mapped[int] = mapped_column(
        Integer, ForeignKey("listings.id", ondelete="CASCADE"), nullable=False
    )
    receiver_id: Mapped[int] = mapped_column(
        Integer, ForeignKey("users.id", ondelete="CASCADE"), nullable=False
    )
    requested_quantity: Mapped[float] = mapped_column(Float, nullable=False)
    approved_quantity: Mapped[float | None] = mapped_column(
        Float, nullable=True
    )
    status: Mapped[ClaimStatus] = mapped_column(
        Enum(ClaimStatus),
        nullable=False,
        default=ClaimStatus.PENDING,
        index=True,
    )
    notes: Mapped[str | None] = mapped_column(Text, nullable=True)
    pickup_code: Mapped[str | None] = mapped_column(String(6), nullable=True)
    pickup_time: Mapped[datetime | None] = mapped_column(
        DateTime(timezone=True), nullable=True
    )
    actual_pickup_time: Mapped[datetime | None] = mapped_column(
        DateTime(timezone=True), nullable=True
    )
    cancel_reason: Mapped[str | None] = mapped_column(
        String(500), nullable=True
    )
    rejection_reason: Mapped[str | None] = mapped_column(
        String(500), nullable=True
    )
    created_at: Mapped[datetime] = mapped_column(
        DateTime(timezone=True),
        server_default=func.now(),  # pylint: disable=not-callable
    )
    updated_at: Mapped[datetime] = mapped_column(
        DateTime(timezone=True),
        server_default=func.now(),  # pylint: disable=not-callable
        onupdate=func.now(),  # pylint: disable=not-callable
    )

    __mapper_args__ = {"eager_defaults": True}

    __table_args__ = (
        Index("ix_claims_listing_id", "listing_id"),
        Index("ix_claims_receiver_id", "receiver_id"),
        Index(
            "uq_claims_active_receiver",
            "listing_id",
            "receiver_id",
            unique=True,
            sqlite_where=text(
                "status IN ('PENDING', 'APPROVED', 'CONFIRMED')"
            ),
            postgresql_where=text(
                "status IN ('PENDING', 'APPROVED', 'CONFIRMED')"
            ),
        ),
    )

    # Relationships
    listing: Mapped["Listing"] = relationship(
        "Listing", back_populates="claims"
    )
    receiver: Mapped["User"] = relationship("User", back_populates="claims")

    @property
    def counted_quantity(self) -> float:
        """Quantity this claim holds once approved.

        Returns:
            float: The approved quantity, or the requested one before approval.
        """
        if self.approved_quantity is not None:
            return self.approved_quantity
        return self.requested_quantity


class ListingAnalytics(Base):  # pylint: disable=too-few-public-methods
    """Increment-only counters for a listing."""

    __tablename__ = "listing_analytics"

    id: Mapped[int] = mapped_column(
        Integer, primary_key=True, autoincrement=True
    )
    listing_id: Mapped[int] = mapped_column(
        Integer,
        ForeignKey("listings.id", ondelete="CASCADE"),
        unique=True,
        nullable=False,
    )
    view_count: Mapped[int] = mapped_column(Integer, default=0)
    claim_count: Mapped[int] = mapped_column(Integer, default=0)
    people_served: Mapped[int] = mapped_column(Integer, default=0)
    carbon_saved: Mapped[float] = mapped_column(Float, default=0.0)
    water_saved: Mapped[float] = mapped_column(Float, default=0.0)

    listing: Mapped["Listing"] = relationship(
        "Listing", back_populates="analytics"
    )


class UserAnalytics(Base):  # pylint: disable=too-few-public-methods
    """Increment-only counters, points and level for a user."""

    __tablename__ = "user_analytics"

    id: Mapped[int] = mapped_column(
        Integer, primary_key=True, autoincrement=True
    )
    user_id: Mapped[int] = mapped_column(
        Integer,
        ForeignKey("users.id", ondelete="CASCADE"),
        unique=True,
        nullable=False,
    )
    listings_created: Mapped[int] = mapped_column(Integer, default=0)
    claims_made: Mapped[int] = mapped_column(Integer, default=0)
    food_shared_kg: Mapped[float] = mapped_column(Float, default=0.0)
    food_received_kg: Mapped[float] = mapped_column(Float, default=0.0)
    carbon_saved: Mapped[float] = mapped_column(Float, default=0.0)
    water_saved: Mapped[float] = mapped_column(Float, default=0.0)
    points: Mapped[int] = mapped_column(Integer, default=0)
    level: Mapped[int] = mapped_column(Integer, default=1)

    user: Mapped["User"] = relationship("User", back_populates="analytics")
