"""
Trait pointers: RFC 6901 JSON pointers into an identity's trait document (e.g. /email, /name/first).
"""
import re
from dataclasses import dataclass
from typing import Any

from consent_server.errors import InvalidPointer, UnresolvedPointer

_INDEX = re.compile(r"0|[1-9][0-9]*")


def _escape(segment: str) -> str:
    return segment.replace("~", "~0").replace("/", "~1")


def is_array_index(segment: str) -> bool:
    """ASCII decimal without leading zeros; "-" (past-the-end) never resolves when reading."""
    return _INDEX.fullmatch(segment) is not None


def _unescape(segment: str, raw: str) -> str:
    i = 0
    out = []
    while i < len(segment):
        ch = segment[i]
        if ch == "~":
            nxt = segment[i + 1] if i + 1 < len(segment) else ""
            if nxt == "0":
                out.append("~")
            elif nxt == "1":
                out.append("/")
            else:
                raise InvalidPointer(f"invalid escape in pointer {raw!r}")
            i += 2
            continue
        out.append(ch)
        i += 1
    return "".join(out)


@dataclass(frozen=True)
class TraitPointer:
    """Absolute pointer into a JSON document, stored as unescaped segments."""

    segments: tuple[str, ...] = ()

    @classmethod
    def parse(cls, raw: str) -> "TraitPointer":
        if not isinstance(raw, str):
            raise InvalidPointer(f"pointer must be a string, got {type(raw).__name__}")
        if raw == "":
            return cls(())
        if not raw.startswith("/"):
            raise InvalidPointer(f"pointer {raw!r} must start with '/'")
        return cls(tuple(_unescape(s, raw) for s in raw[1:].split("/")))

    def child(self, segment: str) -> "TraitPointer":
        return TraitPointer(self.segments + (segment,))

    def resolve(self, document: Any) -> Any:
        """Return the value this pointer targets. Raises UnresolvedPointer if any segment is missing."""
        current = document
        for segment in self.segments:
            if isinstance(current, dict):
                if segment not in current:
                    raise UnresolvedPointer(self, segment)
                current = current[segment]
            elif isinstance(current, list):
                if not is_array_index(segment):
                    raise UnresolvedPointer(self, segment)
                index = int(segment)
                if index >= len(current):
                    raise UnresolvedPointer(self, segment)
                current = current[index]
            else:
                raise UnresolvedPointer(self, segment)
        return current

    def __str__(self) -> str:
        return "".join("/" + _escape(s) for s in self.segments)
