"""
Claims assembler: merge per-scope fragments into the ID token and access token session claims.

Destinations are dotted paths ("address.street"); missing intermediate objects are created.
Fragments are applied in order and a later fragment overwrites an earlier one at the same
path (last write wins), so two scopes targeting one destination resolve to the later scope.
"""
import copy
from dataclasses import dataclass, field
from typing import Any, Iterable

from consent_server.resolver import ResolvedClaimFragment


@dataclass
class Claims:
    id_token: dict[str, Any] = field(default_factory=dict)
    access_token: dict[str, Any] = field(default_factory=dict)


def split_path(path: str) -> list[str]:
    return [segment for segment in path.split(".") if segment]


def set_path(target: dict, path: str, value: Any) -> None:
    segments = split_path(path)
    if not segments:
        return
    node = target
    for segment in segments[:-1]:
        nxt = node.get(segment)
        if not isinstance(nxt, dict):
            # Non-object intermediates are replaced
            nxt = {}
            node[segment] = nxt
        node = nxt
    # Claim sets never share structure with the identity document or each other
    node[segments[-1]] = copy.deepcopy(value)


def assemble(fragments: Iterable[ResolvedClaimFragment | None]) -> Claims:
    claims = Claims()
    for fragment in fragments:
        if fragment is None:
            continue
        if fragment.session_data.id_token:
            set_path(claims.id_token, fragment.session_data.id_token, fragment.value)
        if fragment.session_data.access_token:
            set_path(claims.access_token, fragment.session_data.access_token, fragment.value)
    return claims
