"""Run history service.

This module provides:
- Recording the start and outcome of pipeline runs
- Listing and looking up past runs
"""

from __future__ import annotations

import logging
from typing import TYPE_CHECKING

from sqlalchemy import select
from sqlalchemy.orm import Session

from image_release.runs.models import ReleaseRun, StageRecord
from image_release.types import RunStatus

if TYPE_CHECKING:
    from image_release.context import PipelineContext
    from image_release.pipeline import PipelineResult

logger = logging.getLogger(__name__)


class RunNotFoundError(Exception):
    """Raised when a run is not found."""

    def __init__(self, version: str, code: str = "run_not_found") -> None:
        super().__init__(f"Run not found: {version}")
        self.version = version
        self.code = code


def start_run(session: Session, context: PipelineContext) -> ReleaseRun:
    """Create a run record in running state.

    Args:
        session: Database session.
        context: Context of the run being started.

    Returns:
        Created ReleaseRun.
    """
    run = ReleaseRun(
        version=context.version,
        run_ordinal=context.run_ordinal,
        run_date=context.run_date,
        head_commit=context.head_commit,
        repository=context.repository,
    )
    run.mark_running()
    session.add(run)
    session.flush()
    logger.debug("Recorded run %s as #%d", context.version, run.id)
    return run


def finish_run(session: Session, run_id: int, result: PipelineResult) -> ReleaseRun:
    """Store the outcome of a run and its stages.

    Args:
        session: Database session.
        run_id: Primary key of the run record.
        result: Final pipeline result.

    Returns:
        Updated ReleaseRun.

    Raises:
        RunNotFoundError: If the run record does not exist.
    """
    run = session.get(ReleaseRun, run_id)
    if run is None:
        raise RunNotFoundError(result.version)

    run.image_digest = result.digest
    run.mark_finished(
        result.status,
        failed_stage=result.failed_stage.value if result.failed_stage else None,
        error_code=result.error.code if result.error else None,
        message=result.error.message if result.error else None,
    )
    run.stages.clear()
    for outcome in result.stages.values():
        run.stages.append(
            StageRecord(
                stage=outcome.stage.value,
                status=outcome.status.value,
                message=outcome.message,
                started_at=outcome.started_at,
                finished_at=outcome.finished_at,
            )
        )
    session.flush()
    return run


def list_runs(
    session: Session,
    status: RunStatus | None = None,
    limit: int = 100,
) -> list[ReleaseRun]:
    """List runs, newest first.

    Args:
        session: Database session.
        status: Optional status filter.
        limit: Maximum number of runs.

    Returns:
        List of ReleaseRun records.
    """
    stmt = select(ReleaseRun)
    if status is not None:
        stmt = stmt.where(ReleaseRun.status == status.value)
    stmt = stmt.order_by(ReleaseRun.id.desc()).limit(limit)
    return list(session.execute(stmt).scalars().all())


def get_run(session: Session, version: str) -> ReleaseRun:
    """Get the most recent run of a version.

    Raises:
        RunNotFoundError: If no run has that version.
    """
    stmt = (
        select(ReleaseRun)
        .where(ReleaseRun.version == version)
        .order_by(ReleaseRun.id.desc())
        .limit(1)
    )
    run = session.execute(stmt).scalar_one_or_none()
    if run is None:
        raise RunNotFoundError(version)
    return run


def run_to_dict(run: ReleaseRun) -> dict[str, object]:
    """Convert a run record to a JSON-serializable dict."""
    return {
        "id": run.id,
        "version": run.version,
        "run_ordinal": run.run_ordinal,
        "run_date": run.run_date.isoformat() if run.run_date else None,
        "head_commit": run.head_commit,
        "repository": run.repository,
        "status": run.status,
        "image_digest": run.image_digest,
        "failed_stage": run.failed_stage,
        "error_code": run.error_code,
        "error_message": run.error_message,
        "started_at": run.started_at.isoformat() if run.started_at else None,
        "finished_at": run.finished_at.isoformat() if run.finished_at else None,
        "stages": [
            {"stage": s.stage, "status": s.status, "message": s.message}
            for s in run.stages
        ],
    }


__all__ = [
    "RunNotFoundError",
    "finish_run",
    "get_run",
    "list_runs",
    "run_to_dict",
    "start_run",
]
