"""Columns and lifecycle shared by every soft-deletable record."""

from datetime import datetime, timezone

from sqlalchemy import Boolean, Column, DateTime


def utcnow() -> datetime:
    return datetime.now(timezone.utc)


class TimestampMixin:
    created_at = Column(DateTime(timezone=True), default=utcnow, nullable=False)
    updated_at = Column(DateTime(timezone=True), default=utcnow, onupdate=utcnow, nullable=False)


class SoftDeleteMixin:
    """Active/inactive lifecycle. Rows are never hard deleted."""

    is_active = Column(Boolean, nullable=False, default=True, index=True)
    deleted_at = Column(DateTime(timezone=True), nullable=True)

    def deactivate(self) -> None:
        self.is_active = False
        self.deleted_at = utcnow()

    def reactivate(self) -> None:
        self.is_active = True
        self.deleted_at = None
