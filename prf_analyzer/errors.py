"""Errors raised while loading and decoding profiling inputs."""


class ProfilerError(Exception):
    """Base class for fatal analyzer errors."""


class IoError(ProfilerError):
    """A trace or symbol file could not be opened or read."""


class DecodeError(ProfilerError):
    """A trace record could not be framed or parsed."""

    def __init__(self, message: str, offset: int | None = None):
        if offset is not None:
            message = f"{message} (at byte offset {offset})"
        super().__init__(message)
        self.offset = offset


class SymbolFileError(ProfilerError):
    """The debug XML symbol file is malformed."""
