"""
Mapping resolver: turn one identity's traits + one scope configuration into a claim fragment.
"""
import logging
from dataclasses import dataclass
from typing import Any

from consent_server.consent_config import (
    Collect,
    CompositeScope,
    MappingNode,
    ObjectNode,
    PointerNode,
    ScopeConfiguration,
    SessionData,
    TupleNode,
    ValueScope,
)
from consent_server.errors import InvalidPointer, UnresolvedPointer
from consent_server.pointer import TraitPointer

logger = logging.getLogger(__name__)

_MISSING = object()


@dataclass(frozen=True)
class ResolvedClaimFragment:
    """Claim value of one scope for one identity, placed at each destination set in session_data."""

    scope: str
    value: Any
    session_data: SessionData


def _dereference(pointer: TraitPointer | str, traits: Any) -> Any:
    """Value at pointer, or _MISSING when it does not resolve or is not a valid pointer."""
    try:
        if isinstance(pointer, str):
            pointer = TraitPointer.parse(pointer)
        return pointer.resolve(traits)
    except (InvalidPointer, UnresolvedPointer) as e:
        # Trait values are not logged; only the pointer
        logger.debug("Pointer not resolved: %s", e)
        return _MISSING


def _collect(values: list[Any], collect: Collect) -> Any:
    if collect == Collect.ALL:
        return values
    if not values:
        return _MISSING
    if collect in (Collect.FIRST, Collect.ANY):
        return values[0]
    if collect == Collect.LAST:
        return values[-1]
    raise TypeError(f"unhandled collect policy {collect!r}")


def evaluate_mapping(node: MappingNode, traits: Any) -> Any:
    """Evaluate a composite mapping tree. Unresolved pointer leaves become None (JSON null)."""
    if isinstance(node, PointerNode):
        value = _dereference(node.ref, traits)
        return None if value is _MISSING else value
    if isinstance(node, ObjectNode):
        return {name: evaluate_mapping(child, traits) for name, child in node.properties}
    if isinstance(node, TupleNode):
        return [evaluate_mapping(child, traits) for child in node.items]
    raise TypeError(f"unhandled mapping node {type(node).__name__}")


def resolve(
    traits: Any,
    scope: str,
    pointers: tuple[TraitPointer, ...] | None,
    config: ScopeConfiguration | None,
) -> ResolvedClaimFragment | None:
    """
    Resolve `scope` against an identity's trait document. Returns None when the scope is
    unconfigured or, for value scopes collecting first/last/any, when none of its pointers resolve.
    """
    if config is None:
        return None
    if isinstance(config, ValueScope):
        values = []
        for pointer in pointers or ():
            value = _dereference(pointer, traits)
            if value is not _MISSING:
                values.append(value)
        value = _collect(values, config.collect)
        if value is _MISSING:
            return None
    elif isinstance(config, CompositeScope):
        value = evaluate_mapping(config.mapping, traits)
    else:
        raise TypeError(f"unhandled scope configuration {type(config).__name__}")
    return ResolvedClaimFragment(scope=scope, value=value, session_data=config.session_data)
