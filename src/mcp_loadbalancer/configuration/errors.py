"""Error taxonomy for configuration operations.

None of these are retried by the configuration layer; retry policy for
engine connections lives in the engine runners.
"""
from typing import Optional


class ConfError(Exception):
    """Base class for every configuration error."""

    code = "error"

    def __init__(self, message: str):
        super().__init__(message)
        self.message = message

    def to_dict(self) -> dict:
        return {"error": self.code, "message": self.message}


class ValidationError(ConfError):
    """Bad payload, unknown parent/rule type, or bad concurrency token."""

    code = "validation_error"


class NotFoundError(ConfError):
    """Requested entity or transaction does not exist."""

    code = "not_found"


class ConflictError(ConfError):
    """Supplied version or transaction baseline is outdated."""

    code = "version_mismatch"


class EngineError(ConfError):
    """The engine invocation itself failed."""

    code = "engine_error"

    def __init__(
        self,
        message: str,
        command: str = "",
        exit_code: Optional[int] = None,
        output: str = "",
    ):
        super().__init__(message)
        self.command = command
        self.exit_code = exit_code
        self.output = output

    def to_dict(self) -> dict:
        data = super().to_dict()
        data.update({
            "command": self.command,
            "exit_code": self.exit_code,
            "output": self.output,
        })
        return data
