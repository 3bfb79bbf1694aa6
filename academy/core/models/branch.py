import uuid

from sqlalchemy import Column, Index, String, Uuid, func

from academy.core.models.mixins import SoftDeleteMixin, TimestampMixin
from academy.db.session import Base


class Branch(SoftDeleteMixin, TimestampMixin, Base):
    """Physical academy location. Owns users, students and financial records."""

    __tablename__ = "branches"

    id = Column(Uuid, primary_key=True, default=uuid.uuid4)
    name = Column(String(100), nullable=False)
    created_by = Column(Uuid, nullable=True)


# Branch names are unique regardless of case
Index("uq_branches_name_lower", func.lower(Branch.name), unique=True)
