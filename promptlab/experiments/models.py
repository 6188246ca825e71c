"""
SQLAlchemy ORM models for persisted experiments.
"""

from datetime import datetime
from typing import Any, Dict, Optional

import sqlalchemy as sa
from sqlalchemy import JSON
from sqlalchemy.orm import DeclarativeBase, Mapped, mapped_column


class Base(DeclarativeBase):
    """Base class for all ORM models."""

    pass


class ExperimentRow(Base):
    """
    One persisted experiment.

    The full definition (variants, result, metadata) lives in ``data``; the
    scalar columns mirror it for querying.
    """

    __tablename__ = "experiments"

    experiment_id: Mapped[str] = mapped_column(sa.String(64), primary_key=True)
    name: Mapped[str] = mapped_column(sa.String(255), nullable=False)
    status: Mapped[str] = mapped_column(sa.String(20), index=True, nullable=False)
    target_metric: Mapped[str] = mapped_column(sa.String(50), nullable=False)
    created_by: Mapped[Optional[str]] = mapped_column(sa.String(100))

    data: Mapped[Dict[str, Any]] = mapped_column(JSON, nullable=False)

    created_at: Mapped[datetime] = mapped_column(
        sa.DateTime, default=datetime.utcnow, nullable=False
    )
    updated_at: Mapped[datetime] = mapped_column(
        sa.DateTime, default=datetime.utcnow, onupdate=datetime.utcnow, nullable=False
    )

    def __repr__(self) -> str:
        return f"<ExperimentRow(id={self.experiment_id}, status={self.status})>"
