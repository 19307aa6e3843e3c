"""
Errors and warnings raised or reported by the claims mapping engine and its API clients.
"""
from dataclasses import dataclass

# Warning kinds reported by validate_schema / parse
SCHEMA_STRUCTURE = "schema_structure"
INVALID_MAPPING_SHAPE = "invalid_mapping_shape"
UNKNOWN_POINTER = "unknown_pointer"


class ConsentServerError(Exception):
    pass


class InvalidPointer(ConsentServerError, ValueError):
    """Pointer string is not a valid JSON pointer."""


class UnresolvedPointer(ConsentServerError, LookupError):
    """Pointer does not resolve against a document (missing optional trait, wrong shape)."""

    def __init__(self, pointer, segment: str):
        super().__init__(f"{pointer} does not resolve (missing segment {segment!r})")
        self.pointer = pointer
        self.segment = segment


class UpstreamError(ConsentServerError):
    """Hydra or Kratos call failed (transport error or non-2xx)."""

    service = "upstream"

    def __init__(self, message: str, status_code: int | None = None):
        super().__init__(message)
        self.status_code = status_code


class HydraError(UpstreamError):
    service = "hydra"


class KratosError(UpstreamError):
    service = "kratos"


@dataclass(frozen=True)
class SchemaWarning:
    """One dropped or suspicious schema entry. Non-fatal; surfaced by `validate`."""

    kind: str
    location: str
    message: str
    scope: str | None = None

    def __str__(self) -> str:
        prefix = f"[{self.kind}] {self.location}"
        if self.scope is not None:
            prefix += f" (scope {self.scope!r})"
        return f"{prefix}: {self.message}"
