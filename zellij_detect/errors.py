from __future__ import annotations

from typing import Optional


class DetectionError(Exception):
    """Base class for every failure the detection subsystem reports.

    ``code`` is stable and meant for callers that branch on the failure kind
    (CLI exit handling, MCP responses) without matching on message text.
    """

    code = "error"

    def __init__(self, message: str, field: Optional[str] = None):
        super().__init__(message)
        self.field = field

    def to_dict(self) -> dict:
        out = {"code": self.code, "error": str(self)}
        if self.field:
            out["field"] = self.field
        return out


class InvalidInput(DetectionError):
    code = "invalid_input"


class NotFound(DetectionError):
    code = "not_found"


class SourceReadError(DetectionError):
    code = "io_error"


class Cancelled(DetectionError):
    code = "cancelled"


class ProcessSpawnError(DetectionError):
    code = "spawn_error"
