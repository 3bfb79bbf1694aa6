import uuid

from sqlalchemy import Column, DateTime, ForeignKey, String, Text, UniqueConstraint, Uuid
from sqlalchemy.orm import relationship

from academy.core.models.mixins import SoftDeleteMixin, TimestampMixin
from academy.db.session import Base


class User(SoftDeleteMixin, TimestampMixin, Base):
    """System user. Every role except superAdmin belongs to exactly one branch."""

    __tablename__ = "users"
    __table_args__ = (
        UniqueConstraint("username", name="uq_users_username"),
        UniqueConstraint("email", name="uq_users_email"),
        UniqueConstraint("nic_or_passport", name="uq_users_nic_or_passport"),
    )

    id = Column(Uuid, primary_key=True, default=uuid.uuid4)
    full_name = Column(String(100), nullable=False)
    nic_or_passport = Column(String(20), nullable=False)
    contact_number = Column(String(30), nullable=False)
    # Stored lower-cased
    email = Column(String(255), nullable=False)
    username = Column(String(30), nullable=False)
    password_hash = Column(Text, nullable=False)
    # superAdmin, admin, moderator, staff
    role = Column(String(20), nullable=False)
    # NULL only for superAdmin
    branch_id = Column(Uuid, ForeignKey("branches.id", ondelete="RESTRICT"), nullable=True, index=True)
    last_login = Column(DateTime(timezone=True), nullable=True)
    created_by = Column(Uuid, nullable=True)

    branch = relationship("Branch", foreign_keys=[branch_id], lazy="joined")
