"""Fan-in release publishing over per-platform job results.

Publishing is independent per platform: every platform whose job succeeded
is uploaded, platforms whose job failed are reported and skipped, and an
upload failure for one platform does not stop the others. Nothing already
uploaded is rolled back.
"""

from __future__ import annotations

from collections.abc import Mapping
from dataclasses import dataclass, field

from m8release.errors import PolicyError, PublishFailure
from m8release.models import JobResult, TargetPlatform, UploadRecord
from m8release.observability import StructuredLogger
from m8release.policy import PublishMode
from m8release.publish.stores import ReleaseStore


@dataclass(slots=True)
class PublishOutcome:
    uploads: list[UploadRecord] = field(default_factory=list)
    skipped: list[str] = field(default_factory=list)
    failures: dict[str, dict[str, object]] = field(default_factory=dict)

    @property
    def ok(self) -> bool:
        return not self.skipped and not self.failures


def publish_release(
    *,
    version: str,
    matrix: tuple[TargetPlatform, ...],
    jobs: Mapping[str, JobResult],
    store: ReleaseStore,
    logger: StructuredLogger | None = None,
    mode: PublishMode = "independent",
) -> PublishOutcome:
    """Upload archive and checksum for every succeeded platform in *matrix*.

    Must be called only after every job in *jobs* reached a terminal state.
    """
    if mode != "independent":
        raise PolicyError(
            "Unsupported publish mode.",
            hint="Platforms are published independently; set policy.publish_mode = 'independent'.",
            context={"operation": "publish", "mode": str(mode)},
        )
    log = logger if logger is not None else StructuredLogger()
    log.log(
        operation="publish_start",
        platform=None,
        stage="publish",
        message="Publishing succeeded platforms.",
        extra={"mode": mode, "store": store.name, "version": version},
    )
    outcome = PublishOutcome()
    for platform in matrix:
        job = jobs.get(platform.slug)
        if job is None or not job.ok or job.artifact is None:
            outcome.skipped.append(platform.slug)
            log.log(
                operation="publish_skip",
                platform=platform.slug,
                stage="publish",
                level="warning",
                message="Platform job did not succeed; nothing uploaded for it.",
            )
            continue

        files = (job.artifact.archive, job.artifact.checksum)
        try:
            location = store.upload(version=version, files=files)
        except PublishFailure as exc:
            outcome.failures[platform.slug] = exc.to_dict()
            log.log(
                operation="publish_failed",
                platform=platform.slug,
                stage="publish",
                level="error",
                message="Upload failed.",
                extra={"code": exc.code},
            )
            continue

        outcome.uploads.append(
            UploadRecord(
                platform=platform,
                names=tuple(path.name for path in files),
                location=location,
            )
        )
        log.log(
            operation="publish_upload",
            platform=platform.slug,
            stage="publish",
            message="Uploaded release artifact.",
            extra={"store": store.name, "location": location, "version": version},
        )
    return outcome
