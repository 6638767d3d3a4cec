"""Error taxonomy shared by the reader, the engine and the CLI."""

from __future__ import annotations

from pathlib import Path
from typing import Any


class SnapshotDoctorError(Exception):
    """Base error carrying a stable category, the file involved and free-form context."""

    category = "General"

    def __init__(
        self,
        message: str,
        *,
        category: str | None = None,
        file_path: Path | str | None = None,
        context: dict[str, Any] | None = None,
    ) -> None:
        super().__init__(message)
        if category is not None:
            self.category = category
        self.file_path = str(file_path) if file_path is not None else None
        self.context: dict[str, Any] = dict(context or {})

    def add_context(self, key: str, value: Any) -> "SnapshotDoctorError":
        self.context[key] = value
        return self

    def to_dict(self) -> dict[str, Any]:
        return {
            "category": self.category,
            "message": str(self),
            "file": self.file_path,
            "context": dict(self.context),
        }


class ConfigError(SnapshotDoctorError):
    category = "Configuration"


class SnapshotReadError(SnapshotDoctorError):
    category = "IOError"


class SnapshotWriteError(SnapshotDoctorError):
    category = "IOError"


class DataIntegrityError(SnapshotDoctorError):
    category = "DataIntegrity"


class UserCancelledError(SnapshotDoctorError):
    category = "UserCancelled"
