"""Run history ORM models.

This module defines the ReleaseRun and StageRecord models recording each
pipeline invocation and the outcome of its stages, so partially completed
runs (image published, revision unlabeled) can be found afterwards.
"""

from datetime import date, datetime

from sqlalchemy import (
    Date,
    DateTime,
    ForeignKey,
    Index,
    Integer,
    String,
    Text,
    func,
)
from sqlalchemy.orm import Mapped, mapped_column, relationship

from image_release.db import Base
from image_release.types import RunStatus, StageStatus


class ReleaseRun(Base):
    """ORM model for one pipeline invocation.

    Attributes:
        id: Primary key.
        version: Release version computed for the run.
        run_ordinal: Run number supplied by the environment.
        run_date: Calendar date of the run.
        head_commit: Commit that triggered the run.
        repository: Image repository the tags were published to.
        status: Run status (pending, running, succeeded, failed, partial, cancelled).
        image_digest: Digest of the built image.
        failed_stage: First stage that failed.
        error_code: Stable error code of the failure.
        error_message: Error message of the failure.
        requested_at: Timestamp when the run was recorded.
        started_at: Timestamp when the first stage started.
        finished_at: Timestamp when the run ended.
    """

    __tablename__ = "release_runs"

    id: Mapped[int] = mapped_column(Integer, primary_key=True, autoincrement=True)

    version: Mapped[str] = mapped_column(String(64), nullable=False, index=True)
    run_ordinal: Mapped[int] = mapped_column(Integer, nullable=False)
    run_date: Mapped[date] = mapped_column(Date, nullable=False)
    head_commit: Mapped[str] = mapped_column(String(64), nullable=False)
    repository: Mapped[str] = mapped_column(String(255), nullable=False)

    status: Mapped[str] = mapped_column(
        String(20), nullable=False, default=RunStatus.PENDING.value, index=True
    )
    image_digest: Mapped[str | None] = mapped_column(String(128), nullable=True)

    failed_stage: Mapped[str | None] = mapped_column(String(32), nullable=True)
    error_code: Mapped[str | None] = mapped_column(String(64), nullable=True)
    error_message: Mapped[str | None] = mapped_column(Text, nullable=True)

    requested_at: Mapped[datetime] = mapped_column(
        DateTime, nullable=False, server_default=func.now()
    )
    started_at: Mapped[datetime | None] = mapped_column(DateTime, nullable=True)
    finished_at: Mapped[datetime | None] = mapped_column(DateTime, nullable=True)

    stages: Mapped[list["StageRecord"]] = relationship(
        "StageRecord",
        back_populates="run",
        cascade="all, delete-orphan",
        order_by="StageRecord.id",
    )

    __table_args__ = (Index("ix_release_runs_version_status", "version", "status"),)

    def __repr__(self) -> str:
        """Return string representation of ReleaseRun."""
        return (
            f"<ReleaseRun(id={self.id}, version='{self.version}', "
            f"status='{self.status}')>"
        )

    def mark_running(self) -> None:
        """Mark this run as running."""
        self.status = RunStatus.RUNNING.value
        self.started_at = datetime.now()

    def mark_finished(
        self,
        status: RunStatus,
        failed_stage: str | None = None,
        error_code: str | None = None,
        message: str | None = None,
    ) -> None:
        """Record the final status of this run."""
        self.status = status.value
        self.finished_at = datetime.now()
        if failed_stage:
            self.failed_stage = failed_stage
        if error_code:
            self.error_code = error_code
        if message:
            self.error_message = message


class StageRecord(Base):
    """ORM model for one stage of a run.

    Attributes:
        id: Primary key.
        run_id: Foreign key to ReleaseRun.
        stage: Stage name.
        status: Stage status.
        message: Outcome or error message.
        started_at: Stage start time.
        finished_at: Stage finish time.
    """

    __tablename__ = "stage_records"

    id: Mapped[int] = mapped_column(Integer, primary_key=True, autoincrement=True)
    run_id: Mapped[int] = mapped_column(
        Integer, ForeignKey("release_runs.id"), nullable=False, index=True
    )
    stage: Mapped[str] = mapped_column(String(32), nullable=False)
    status: Mapped[str] = mapped_column(
        String(20), nullable=False, default=StageStatus.PENDING.value
    )
    message: Mapped[str | None] = mapped_column(Text, nullable=True)
    started_at: Mapped[datetime | None] = mapped_column(DateTime, nullable=True)
    finished_at: Mapped[datetime | None] = mapped_column(DateTime, nullable=True)

    run: Mapped["ReleaseRun"] = relationship("ReleaseRun", back_populates="stages")

    def __repr__(self) -> str:
        """Return string representation of StageRecord."""
        return (
            f"<StageRecord(run_id={self.run_id}, stage='{self.stage}', "
            f"status='{self.status}')>"
        )


__all__ = ["ReleaseRun", "StageRecord"]
