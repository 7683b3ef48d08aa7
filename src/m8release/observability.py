"""Release event records.

Every stage transition and publish decision is kept as a flat JSON-ready
record so job reports and the release event log share one shape.
"""

from __future__ import annotations

import json
from dataclasses import dataclass, field
from pathlib import Path
from typing import Any, Literal

LogLevel = Literal["info", "warning", "error"]


@dataclass(slots=True)
class StructuredLogger:
    records: list[dict[str, Any]] = field(default_factory=list)

    def log(
        self,
        *,
        operation: str,
        platform: str | None,
        stage: str | None,
        message: str,
        level: LogLevel = "info",
        extra: dict[str, Any] | None = None,
    ) -> None:
        record: dict[str, Any] = dict(
            level=level, operation=operation, platform=platform, stage=stage, message=message
        )
        if extra is not None:
            record["extra"] = extra
        self.records.append(record)

    def extend(self, other: StructuredLogger) -> None:
        self.records.extend(other.records)

    def records_for_platform(self, platform: str) -> list[dict[str, Any]]:
        return self._matching(platform=platform)

    def records_for_stage(self, stage: str) -> list[dict[str, Any]]:
        return self._matching(stage=stage)

    def failures(self) -> list[dict[str, Any]]:
        return self._matching(level="error")

    def _matching(self, **criteria: str) -> list[dict[str, Any]]:
        return [
            record
            for record in self.records
            if all(record.get(key) == value for key, value in criteria.items())
        ]

    def to_json_lines(self, path: str | Path) -> Path:
        """Write one sorted-key JSON object per line."""
        events_path = Path(path)
        events_path.parent.mkdir(parents=True, exist_ok=True)
        with events_path.open("w", encoding="utf-8") as handle:
            for record in self.records:
                handle.write(json.dumps(record, sort_keys=True))
                handle.write("\n")
        return events_path
