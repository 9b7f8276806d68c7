# errors.py
from __future__ import annotations

from dataclasses import dataclass


class MatrixCIError(Exception):
    """Base class for all matrixci errors."""


class ConfigError(MatrixCIError):
    """The matrix description could not be read or understood."""


# ----------------------------------------------------------------------
# Expansion errors (fatal before any job runs)
# ----------------------------------------------------------------------

@dataclass
class MalformedMatrixEntry(MatrixCIError):
    index: int
    field: str

    def __str__(self) -> str:
        return f"matrix entry #{self.index} is missing required field '{self.field}'"


@dataclass
class DuplicateEnvKey(MatrixCIError):
    key: str
    message: str

    def __str__(self) -> str:
        return f"conflicting environment key {self.key!r}: {self.message}"


# ----------------------------------------------------------------------
# Runtime errors
# ----------------------------------------------------------------------

@dataclass
class StageFailed(MatrixCIError):
    stage: str
    exit_code: int

    def __str__(self) -> str:
        return f"stage '{self.stage}' failed (exit={self.exit_code})"


@dataclass
class UnboundVariable(MatrixCIError):
    name: str

    def __str__(self) -> str:
        return f"variable ${self.name} is not set"


class ConditionSyntaxError(MatrixCIError):
    """A condition expression could not be parsed."""


class MissingTagContext(MatrixCIError):
    """DeployGate was asked to decide outside a tag-triggered run."""


class ReleaseError(MatrixCIError):
    """Raised when a release upload fails."""
