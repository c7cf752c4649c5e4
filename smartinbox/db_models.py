"""SQLAlchemy ORM models backing the recommendation store."""

from __future__ import annotations

from sqlalchemy import Integer, Text
from sqlalchemy.orm import Mapped, mapped_column

from .database import Base


RECOMMENDED = 1


class RecommendationRecord(Base):
    """A recommendation produced by the training service for one movie."""

    __tablename__ = "Recommendations"

    id: Mapped[str] = mapped_column("Id", Text, primary_key=True)
    name: Mapped[str] = mapped_column("Name", Text, nullable=False)
    recommendation: Mapped[int] = mapped_column(
        "Recommendation", Integer, nullable=False
    )
