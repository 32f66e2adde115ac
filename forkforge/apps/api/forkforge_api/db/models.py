"""SQLAlchemy ORM Models for ForkForge."""

from datetime import datetime, timezone
from typing import Optional

from sqlalchemy import (
    TEXT,
    TIMESTAMP,
    CheckConstraint,
    ForeignKey,
    Index,
    String,
    text,
)
from sqlalchemy.orm import DeclarativeBase, Mapped, mapped_column

SUBSCRIPTION_STATUSES = ("inactive", "active", "cancelled", "past_due")


class Base(DeclarativeBase):
    """Base class for all ORM models."""

    pass


class User(Base):
    """Account owning credentials.

    Created by the billing webhook (unseen billing ref) or by the OAuth login
    collaborator (unseen external identity). Never deleted here.
    """

    __tablename__ = "users"

    id: Mapped[str] = mapped_column(String(36), primary_key=True)
    # OAuth subject id (e.g. GitHub user id)
    external_identity_id: Mapped[Optional[str]] = mapped_column(
        TEXT, nullable=True, unique=True
    )
    # Payment-processor customer id
    billing_ref: Mapped[Optional[str]] = mapped_column(
        TEXT, nullable=True, unique=True
    )
    subscription_status: Mapped[str] = mapped_column(
        TEXT, nullable=False, default="inactive", server_default="inactive"
    )
    subscription_tier: Mapped[str] = mapped_column(
        TEXT, nullable=False, default="free", server_default="free"
    )
    created_at: Mapped[datetime] = mapped_column(
        TIMESTAMP(timezone=True),
        nullable=False,
        default=lambda: datetime.now(timezone.utc),
    )

    __table_args__ = (
        CheckConstraint(
            "subscription_status IN ('inactive', 'active', 'cancelled', 'past_due')",
            name="ck_users_subscription_status",
        ),
    )


class Credential(Base):
    """Bearer credential (API key).

    Only the peppered digest is stored. A NULL expires_at marks the
    credential long-lived; the partial unique index allows at most one such
    credential per user.
    """

    __tablename__ = "credentials"

    id: Mapped[str] = mapped_column(String(36), primary_key=True)
    user_id: Mapped[str] = mapped_column(
        String(36), ForeignKey("users.id"), nullable=False
    )
    secret_digest: Mapped[str] = mapped_column(
        String(43), nullable=False, unique=True
    )
    label: Mapped[Optional[str]] = mapped_column(TEXT, nullable=True)
    expires_at: Mapped[Optional[datetime]] = mapped_column(
        TIMESTAMP(timezone=True), nullable=True
    )
    last_used_at: Mapped[Optional[datetime]] = mapped_column(
        TIMESTAMP(timezone=True), nullable=True
    )
    created_at: Mapped[datetime] = mapped_column(
        TIMESTAMP(timezone=True),
        nullable=False,
        default=lambda: datetime.now(timezone.utc),
    )

    __table_args__ = (
        Index("idx_credentials_user", "user_id"),
        Index(
            "uq_credentials_user_long_lived",
            "user_id",
            unique=True,
            postgresql_where=text("expires_at IS NULL"),
            sqlite_where=text("expires_at IS NULL"),
        ),
    )


class ProcessedEvent(Base):
    """Upstream webhook event that has been fully processed.

    Append-only. The primary key is the processor's event id, so a
    concurrent duplicate loses at INSERT ON CONFLICT DO NOTHING.
    """

    __tablename__ = "processed_events"

    id: Mapped[str] = mapped_column(TEXT, primary_key=True)
    created_at: Mapped[datetime] = mapped_column(
        TIMESTAMP(timezone=True),
        nullable=False,
        default=lambda: datetime.now(timezone.utc),
    )
