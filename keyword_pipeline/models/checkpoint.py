"""Batch checkpoint persistence model."""

from __future__ import annotations

from typing import Any

from sqlalchemy import JSON, Boolean, Float, Index, Integer, String, Text
from sqlalchemy.orm import Mapped, mapped_column

from keyword_pipeline.models.base import Base, CreatedAtMixin, IdMixin


class BatchCheckpoint(Base, IdMixin, CreatedAtMixin):
    """Immutable snapshot of batch orchestrator state."""

    __tablename__ = "batch_checkpoints"
    __table_args__ = (
        Index("ix_batch_checkpoints_run_sequence", "batch_run_id", "sequence"),
    )

    batch_run_id: Mapped[str] = mapped_column(String(64), nullable=False, index=True)
    # Monotonic per run; newest-first ordering does not depend on clock resolution.
    sequence: Mapped[int] = mapped_column(Integer, nullable=False)

    checkpoint_type: Mapped[str] = mapped_column(String(20), default="stage", nullable=False)
    stage_name: Mapped[str] = mapped_column(String(30), nullable=False)
    batch_number: Mapped[int] = mapped_column(Integer, default=0, nullable=False)
    keywords_processed: Mapped[int] = mapped_column(Integer, default=0, nullable=False)

    serialized_state: Mapped[str] = mapped_column(Text, nullable=False)
    state_encoding: Mapped[str] = mapped_column(String(20), default="json", nullable=False)
    performance_data: Mapped[dict[str, Any] | None] = mapped_column(JSON, nullable=True)
    memory_usage: Mapped[float] = mapped_column(Float, default=0.0, nullable=False)

    validation_hash: Mapped[str] = mapped_column(String(32), nullable=False)
    is_recoverable: Mapped[bool] = mapped_column(Boolean, default=True, nullable=False)
    recovery_instructions: Mapped[list[str] | None] = mapped_column(JSON, nullable=True)

    def __repr__(self) -> str:
        return f"<BatchCheckpoint {self.id} ({self.batch_run_id}:{self.stage_name}#{self.sequence})>"
