"""filehashes error taxonomy."""
from __future__ import annotations


class FileHashError(Exception):
    """Base class for every error reported by the hashing engine."""

    message = "file hash error"

    def __init__(self, detail: str = ""):
        self.detail = detail
        super().__init__(f"{self.message}: {detail}" if detail else self.message)


class NoFileToHash(FileHashError):
    message = "no file to hash"


class NoHashAlgorithms(FileHashError):
    message = "no hash algorithms"


class AlgorithmUnavailable(FileHashError):
    message = "hash algorithm is not available"


class InvalidResumeState(FileHashError):
    message = "hash state and request are not matched"


class FileIsDirectory(FileHashError):
    message = "file is dir"


class FileOpenFailure(FileHashError):
    message = "failed to open file"


class ReadFailure(FileHashError):
    message = "failed to read file"


class AccumulatorFault(FileHashError):
    """A digest accumulator failed while consuming data. Not recoverable."""

    message = "hash accumulator fault"


class RequestDecodeError(FileHashError, ValueError):
    message = "malformed request"


class ConfigError(FileHashError, ValueError):
    message = "invalid config"
