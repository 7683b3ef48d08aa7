"""Typed release-pipeline error model with stable, machine-readable error codes."""

from __future__ import annotations

from collections.abc import Mapping
from enum import StrEnum


class ErrorCode(StrEnum):
    """Stable error identifiers used across pipeline stages."""

    VALIDATION = "E_VALIDATION"
    LOCKFILE = "E_LOCKFILE"
    REPRODUCIBILITY = "E_REPRODUCIBILITY"
    POLICY = "E_POLICY"
    UNSUPPORTED_PLATFORM = "E_UNSUPPORTED_PLATFORM"
    MISSING_FRONTEND = "E_MISSING_FRONTEND_ARTIFACT"
    COMPILE = "E_COMPILE"
    PATCH = "E_PATCH"
    PACKAGING = "E_PACKAGING"
    PUBLISH = "E_PUBLISH"


class ReleaseError(Exception):
    """Base error class that carries code, optional hint, and context."""

    code: str
    hint: str | None
    context: Mapping[str, str]

    def __init__(
        self,
        message: str,
        *,
        code: ErrorCode,
        hint: str | None = None,
        context: Mapping[str, str] | None = None,
    ) -> None:
        super().__init__(message)
        self.code = code.value
        self.hint = hint
        self.context = dict(context or {})

    def __str__(self) -> str:
        parts = [super().__str__()]
        if self.hint:
            parts.append(f"Hint: {self.hint}")
        if self.context:
            for k, v in self.context.items():
                if v:
                    parts.append(f"  {k}: {v}")
        return "\n".join(parts)

    def to_dict(self) -> dict[str, object]:
        payload: dict[str, object] = {
            "code": self.code,
            "message": str(self),
            "context": dict(self.context),
        }
        if self.hint is not None:
            payload["hint"] = self.hint
        return payload


class _CodedError(ReleaseError):
    _code: ErrorCode

    def __init__(
        self,
        message: str,
        *,
        hint: str | None = None,
        context: Mapping[str, str] | None = None,
    ) -> None:
        super().__init__(message, code=self._code, hint=hint, context=context)


class ValidationError(_CodedError):
    _code = ErrorCode.VALIDATION


class LockfileError(_CodedError):
    _code = ErrorCode.LOCKFILE


class ReproducibilityError(_CodedError):
    _code = ErrorCode.REPRODUCIBILITY


class PolicyError(_CodedError):
    _code = ErrorCode.POLICY


class UnsupportedPlatform(_CodedError):
    """Raised before any build work when a platform has no dependency mapping."""

    _code = ErrorCode.UNSUPPORTED_PLATFORM


class MissingFrontendArtifact(_CodedError):
    """Raised when the pinned frontend bundle cannot be fetched or verified."""

    _code = ErrorCode.MISSING_FRONTEND


class CompileFailure(_CodedError):
    _code = ErrorCode.COMPILE


class PatchFailure(_CodedError):
    """Raised when dynamic-linking metadata cannot be edited or verified."""

    _code = ErrorCode.PATCH


class PackagingFailure(_CodedError):
    _code = ErrorCode.PACKAGING


class PublishFailure(_CodedError):
    _code = ErrorCode.PUBLISH


__all__ = [
    "CompileFailure",
    "ErrorCode",
    "LockfileError",
    "MissingFrontendArtifact",
    "PackagingFailure",
    "PatchFailure",
    "PolicyError",
    "PublishFailure",
    "ReleaseError",
    "ReproducibilityError",
    "UnsupportedPlatform",
    "ValidationError",
]
