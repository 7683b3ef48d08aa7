"""Hermetic build and release pipeline for remote-m8."""

from .config import PipelineConfig, load_config, parse_config
from .errors import (
    CompileFailure,
    LockfileError,
    MissingFrontendArtifact,
    PackagingFailure,
    PatchFailure,
    PolicyError,
    PublishFailure,
    ReleaseError,
    ReproducibilityError,
    UnsupportedPlatform,
    ValidationError,
)
from .models import (
    BuildDescriptor,
    CompiledBinary,
    DependencySet,
    JobResult,
    ReleaseArtifact,
    ReleaseResult,
    TargetPlatform,
)
from .pipeline import build_local, run_platform_job, run_release

__all__ = [
    "BuildDescriptor",
    "CompileFailure",
    "CompiledBinary",
    "DependencySet",
    "JobResult",
    "LockfileError",
    "MissingFrontendArtifact",
    "PackagingFailure",
    "PatchFailure",
    "PipelineConfig",
    "PolicyError",
    "PublishFailure",
    "ReleaseArtifact",
    "ReleaseError",
    "ReleaseResult",
    "ReproducibilityError",
    "TargetPlatform",
    "UnsupportedPlatform",
    "ValidationError",
    "build_local",
    "load_config",
    "parse_config",
    "run_platform_job",
    "run_release",
]
