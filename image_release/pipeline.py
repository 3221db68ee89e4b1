"""Release pipeline orchestration.

Runs the stages of one release strictly in order:

    authenticate -> cache_restore -> build -> publish -> cache_save -> tag_revision

The first fatal error stops the run and every later stage is skipped.
Cache save failures are reported as warnings only. Nothing is rolled
back: a failure after publishing leaves the image live and the revision
unlabeled, which is reported as a partial run.
"""

from __future__ import annotations

import logging
import time
from collections.abc import Callable, Iterable
from dataclasses import dataclass, field
from datetime import datetime, timezone
from typing import TYPE_CHECKING, Any, TypeVar

from image_release.builds.runner import BuiltImage, ImageBuilder
from image_release.cache.manager import CacheManager, CacheRestoreResult
from image_release.cache.store import CacheStore
from image_release.errors import (
    STAGE_ERRORS,
    UNEXPECTED_ERROR,
    AuthError,
    PipelineError,
    PushError,
    SaveError,
)
from image_release.registry.credentials import Credential, CredentialProvider
from image_release.registry.publisher import Publisher, PushResult
from image_release.types import STAGE_ORDER, CacheDomain, RunStatus, Stage, StageStatus

if TYPE_CHECKING:
    from sqlalchemy.orm import Session, sessionmaker

    from image_release.builds.description import BuildDescription
    from image_release.config import Settings
    from image_release.context import PipelineContext
    from image_release.revision.tagger import RevisionTag, RevisionTagger

logger = logging.getLogger(__name__)

T = TypeVar("T")


@dataclass
class StageOutcome:
    """Outcome of one stage of a run."""

    stage: Stage
    status: StageStatus = StageStatus.PENDING
    message: str | None = None
    started_at: datetime | None = None
    finished_at: datetime | None = None


@dataclass
class PipelineResult:
    """Outcome of a pipeline run.

    Attributes:
        version: Release version of the run.
        status: Final run status.
        stages: Per-stage outcomes in execution order.
        failed_stage: First stage that failed, if any.
        error: The error that stopped the run, if any.
        digest: Digest of the built image.
        revision_tag: Published revision tag.
        warnings: Non-fatal problems (e.g. cache save failures).
        run_id: Run history record ID, when recorded.
    """

    version: str
    status: RunStatus = RunStatus.PENDING
    stages: dict[Stage, StageOutcome] = field(
        default_factory=lambda: {s: StageOutcome(s) for s in STAGE_ORDER}
    )
    failed_stage: Stage | None = None
    error: PipelineError | None = None
    digest: str | None = None
    revision_tag: RevisionTag | None = None
    warnings: list[str] = field(default_factory=list)
    run_id: int | None = None

    @property
    def success(self) -> bool:
        """Whether every fatal stage succeeded."""
        return self.status == RunStatus.SUCCEEDED

    def stages_with_status(self, status: StageStatus) -> list[Stage]:
        """List stages in a given status, in execution order."""
        return [s for s, o in self.stages.items() if o.status == status]

    def to_dict(self) -> dict[str, Any]:
        """Convert to a JSON-serializable dict."""
        return {
            "version": self.version,
            "status": self.status.value,
            "success": self.success,
            "failed_stage": self.failed_stage.value if self.failed_stage else None,
            "error": (
                {"code": self.error.code, "message": self.error.message}
                if self.error
                else None
            ),
            "digest": self.digest,
            "revision_tag": self.revision_tag.name if self.revision_tag else None,
            "warnings": list(self.warnings),
            "run_id": self.run_id,
            "stages": [
                {
                    "stage": o.stage.value,
                    "status": o.status.value,
                    "message": o.message,
                }
                for o in self.stages.values()
            ],
        }


def with_retry(
    func: Callable[[], T],
    attempts: int,
    backoff: float,
    retry_on: tuple[type[PipelineError], ...],
    sleep: Callable[[float], None] = time.sleep,
) -> T:
    """Call ``func``, retrying matching errors with exponential backoff.

    Args:
        func: Callable to invoke.
        attempts: Total attempts (1 = no retry).
        backoff: Delay before the second attempt; doubled afterwards.
        retry_on: Error types that trigger another attempt.
        sleep: Sleep function.

    Returns:
        The result of the first successful call.

    Raises:
        PipelineError: The last error once attempts are exhausted.
    """
    if attempts < 1:
        raise ValueError(f"attempts must be at least 1, got {attempts}")

    delay = backoff
    attempt = 1
    while True:
        try:
            return func()
        except retry_on as e:
            if attempt >= attempts:
                raise
            logger.warning(
                "Attempt %d/%d failed (%s); retrying in %.1fs",
                attempt,
                attempts,
                e,
                delay,
            )
            sleep(delay)
            delay *= 2
            attempt += 1


def _now() -> datetime:
    return datetime.now(timezone.utc)


class ReleasePipeline:
    """Runs one release through all stages.

    Parameters
    ----------
    description:
        Build description for the image.
    credentials:
        Credential provider for the registry.
    caches:
        Cache manager for the three domains.
    builder:
        Image builder.
    publisher:
        Registry publisher.
    tagger:
        Revision tagger.
    save_domains:
        Cache domains saved after the image is published.
    retry_attempts, retry_backoff:
        Bounded retry for the authenticate and publish stages.
    session_factory:
        When given, runs are recorded in the run history.
    """

    def __init__(
        self,
        description: BuildDescription,
        credentials: CredentialProvider,
        caches: CacheManager,
        builder: ImageBuilder,
        publisher: Publisher,
        tagger: RevisionTagger,
        *,
        save_domains: Iterable[CacheDomain] = (CacheDomain.LAYER,),
        retry_attempts: int = 1,
        retry_backoff: float = 2.0,
        session_factory: sessionmaker[Session] | None = None,
        sleep: Callable[[float], None] = time.sleep,
    ) -> None:
        self.description = description
        self.credentials = credentials
        self.caches = caches
        self.builder = builder
        self.publisher = publisher
        self.tagger = tagger
        self.save_domains = tuple(save_domains)
        self.retry_attempts = retry_attempts
        self.retry_backoff = retry_backoff
        self.session_factory = session_factory
        self._sleep = sleep

    @classmethod
    def from_settings(
        cls,
        settings: Settings,
        description: BuildDescription,
        tagger: RevisionTagger,
        session_factory: sessionmaker[Session] | None = None,
    ) -> ReleasePipeline:
        """Wire the default stage adapters from settings."""
        return cls(
            description=description,
            credentials=CredentialProvider(
                settings.access_key_id, settings.secret_access_key
            ),
            caches=CacheManager(CacheStore(settings.cache_root), settings=settings),
            builder=ImageBuilder(
                workspace=settings.workspace,
                logs_dir=settings.logs_dir,
                builder_name=settings.builder_name,
                expose_cache_contexts=settings.expose_cache_contexts,
            ),
            publisher=Publisher(),
            tagger=tagger,
            save_domains=settings.save_domains,
            retry_attempts=settings.retry_attempts,
            retry_backoff=settings.retry_backoff,
            session_factory=session_factory,
        )

    # ------------------------------------------------------------------
    # Run
    # ------------------------------------------------------------------

    def run(self, context: PipelineContext) -> PipelineResult:
        """Execute all stages for ``context``.

        Returns:
            PipelineResult describing the run. Fatal stage errors are
            reported on the result rather than raised.

        Raises:
            KeyboardInterrupt: Re-raised after recording a cancelled run.
        """
        result = PipelineResult(version=context.version, status=RunStatus.RUNNING)
        result.run_id = self._record_start(context)
        logger.info("Starting release %s from %s", context.version, context.head_commit)

        credential: Credential | None = None
        published = False
        try:
            credential = self._execute(
                result, Stage.AUTHENTICATE, self._authenticate, context
            )
            restored = self._execute(result, Stage.CACHE_RESTORE, self._restore_caches)
            image = self._execute(result, Stage.BUILD, self._build, context, restored)
            result.digest = image.digest
            self._execute(result, Stage.PUBLISH, self._publish, context, credential)
            published = True
            self._save_caches(result)
            result.revision_tag = self._execute(
                result, Stage.TAG_REVISION, self._tag_revision, context
            )
            result.status = RunStatus.SUCCEEDED
        except PipelineError as e:
            result.error = e
            result.status = RunStatus.PARTIAL if published else RunStatus.FAILED
            logger.error(
                "Release %s failed at %s: %s",
                context.version,
                result.failed_stage.value if result.failed_stage else "unknown",
                e,
            )
            if published:
                logger.error(
                    "Image %s is published but revision %s is not tagged",
                    result.digest,
                    context.version,
                )
        except KeyboardInterrupt:
            result.status = RunStatus.CANCELLED
            logger.warning("Release %s cancelled", context.version)
            raise
        finally:
            self._skip_remaining(result)
            if credential is not None:
                self.credentials.release(credential)
            self._record_finish(result)

        if result.success:
            logger.info("Release %s completed", context.version)
        return result

    def _execute(
        self,
        result: PipelineResult,
        stage: Stage,
        func: Callable[..., T],
        *args: Any,
    ) -> T:
        outcome = result.stages[stage]
        outcome.status = StageStatus.RUNNING
        outcome.started_at = _now()
        logger.info("Stage %s started", stage.value)
        try:
            value, message = func(*args)
        except KeyboardInterrupt:
            self._fail_stage(result, stage, "cancelled")
            raise
        except PipelineError as e:
            self._fail_stage(result, stage, f"{e.code}: {e.message}")
            raise
        except Exception as e:
            logger.exception("Stage %s raised an unexpected error", stage.value)
            error = STAGE_ERRORS[stage](
                f"{type(e).__name__}: {e}", code=UNEXPECTED_ERROR
            )
            self._fail_stage(result, stage, f"{error.code}: {error.message}")
            raise error from e
        outcome.status = StageStatus.SUCCEEDED
        outcome.message = message
        outcome.finished_at = _now()
        logger.info("Stage %s succeeded: %s", stage.value, message)
        return value

    @staticmethod
    def _fail_stage(result: PipelineResult, stage: Stage, message: str) -> None:
        outcome = result.stages[stage]
        outcome.status = StageStatus.FAILED
        outcome.message = message
        outcome.finished_at = _now()
        result.failed_stage = stage

    @staticmethod
    def _skip_remaining(result: PipelineResult) -> None:
        for outcome in result.stages.values():
            if outcome.status in (StageStatus.PENDING, StageStatus.RUNNING):
                outcome.status = StageStatus.SKIPPED

    # ------------------------------------------------------------------
    # Stages
    # ------------------------------------------------------------------

    def _authenticate(self, context: PipelineContext) -> tuple[Credential, str]:
        credential = with_retry(
            lambda: self.credentials.authenticate(context.region, context.registry),
            self.retry_attempts,
            self.retry_backoff,
            retry_on=(AuthError,),
            sleep=self._sleep,
        )
        return credential, f"authenticated to {credential.registry}"

    def _restore_caches(self) -> tuple[dict[CacheDomain, CacheRestoreResult], str]:
        restored = self.caches.restore_all()
        hits = [d.value for d, r in restored.items() if r.hit]
        misses = [d.value for d, r in restored.items() if not r.hit]
        message = "hits: %s; misses: %s" % (
            ", ".join(hits) or "none",
            ", ".join(misses) or "none",
        )
        return restored, message

    def _build(
        self,
        context: PipelineContext,
        restored: dict[CacheDomain, CacheRestoreResult],
    ) -> tuple[BuiltImage, str]:
        image = self.builder.build(
            self.description, context.platform, context.image_tags, restored
        )
        return image, f"built {image.digest}"

    def _publish(
        self, context: PipelineContext, credential: Credential
    ) -> tuple[PushResult, str]:
        pushed = with_retry(
            lambda: self.publisher.push(context.image_tags, credential),
            self.retry_attempts,
            self.retry_backoff,
            retry_on=(PushError,),
            sleep=self._sleep,
        )
        return pushed, f"pushed {', '.join(pushed.references)}"

    def _save_caches(self, result: PipelineResult) -> None:
        outcome = result.stages[Stage.CACHE_SAVE]
        outcome.status = StageStatus.RUNNING
        outcome.started_at = _now()
        try:
            saved, errors = self.caches.save_many(self.save_domains)
        except Exception as e:
            logger.exception("Saving caches raised an unexpected error")
            saved = []
            errors = [SaveError(f"{type(e).__name__}: {e}", code=UNEXPECTED_ERROR)]
        outcome.finished_at = _now()
        if errors:
            outcome.status = StageStatus.WARNING
            outcome.message = "; ".join(e.message for e in errors)
            result.warnings.extend(f"cache save: {e.message}" for e in errors)
        else:
            outcome.status = StageStatus.SUCCEEDED
            names = [e.domain.value for e in saved]
            outcome.message = f"saved {', '.join(names) or 'nothing'}"

    def _tag_revision(self, context: PipelineContext) -> tuple[RevisionTag, str]:
        tag = self.tagger.tag_revision(context.version, context.head_commit)
        return tag, f"tagged {tag.commit[:12]} as {tag.name}"

    # ------------------------------------------------------------------
    # Run history
    # ------------------------------------------------------------------

    def _record_start(self, context: PipelineContext) -> int | None:
        if self.session_factory is None:
            return None
        from image_release.db import history_session
        from image_release.runs.service import start_run

        with history_session(self.session_factory) as session:
            return start_run(session, context).id

    def _record_finish(self, result: PipelineResult) -> None:
        if self.session_factory is None or result.run_id is None:
            return
        from image_release.db import history_session
        from image_release.runs.service import finish_run

        with history_session(self.session_factory) as session:
            finish_run(session, result.run_id, result)


__all__ = ["PipelineResult", "ReleasePipeline", "StageOutcome", "with_retry"]
