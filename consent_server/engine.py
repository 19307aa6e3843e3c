"""
Schema-derived tables for consent, compiled once per identity schema and shared across requests.

A CompiledSchema is immutable. SchemaCache holds a mapping schema_id -> CompiledSchema that is
replaced as a whole on every write, so concurrent consent requests read a consistent snapshot
without taking a lock; only writers serialize.
"""
import hashlib
import json
import logging
import threading
import time
from dataclasses import dataclass, field, replace
from types import MappingProxyType
from typing import Any, Callable, Iterable, Mapping

from consent_server.claims import Claims, assemble
from consent_server.consent_config import (
    CompositeScope,
    MappingNode,
    ObjectNode,
    PointerNode,
    ScopeConfiguration,
    TupleNode,
    ValueScope,
    parse,
)
from consent_server.errors import SCHEMA_STRUCTURE, UNKNOWN_POINTER, InvalidPointer, SchemaWarning
from consent_server.pointer import TraitPointer, is_array_index
from consent_server.resolver import resolve
from consent_server.schema_walker import traits_schema, walk

logger = logging.getLogger(__name__)


def content_hash(schema: Any) -> str:
    canonical = json.dumps(schema, sort_keys=True, separators=(",", ":"), ensure_ascii=False)
    return hashlib.sha256(canonical.encode("utf-8")).hexdigest()


@dataclass(frozen=True)
class CompiledSchema:
    scopes: Mapping[str, tuple[TraitPointer, ...]]
    config: Mapping[str, ScopeConfiguration]
    warnings: tuple[SchemaWarning, ...] = ()
    digest: str = ""
    # time.monotonic() of the last load from the schema source
    loaded_at: float = 0.0

    def resolve(self, traits: Any, requested: Iterable[str]) -> Claims:
        """Claims for the requested scopes, in request order (later scopes win on conflicts)."""
        fragments = [
            resolve(traits, scope, self.scopes.get(scope), self.config.get(scope))
            for scope in requested
        ]
        return assemble(fragments)


def compile_schema(schema: Any, *, keyword: str, direct_mapping: bool = False) -> CompiledSchema:
    warnings: list[SchemaWarning] = []
    scopes = walk(schema, keyword=keyword, direct_mapping=direct_mapping, warnings=warnings)
    config, config_warnings = parse(schema, keyword=keyword, direct_mapping=direct_mapping, scopes=scopes)
    warnings.extend(config_warnings)
    return CompiledSchema(
        scopes=MappingProxyType(dict(scopes)),
        config=MappingProxyType(config),
        warnings=tuple(warnings),
        digest=content_hash(schema),
        loaded_at=time.monotonic(),
    )


def _pointer_leaves(node: MappingNode) -> Iterable[str]:
    if isinstance(node, PointerNode):
        yield node.ref
    elif isinstance(node, ObjectNode):
        for _, child in node.properties:
            yield from _pointer_leaves(child)
    elif isinstance(node, TupleNode):
        for child in node.items:
            yield from _pointer_leaves(child)
    else:
        raise TypeError(f"unhandled mapping node {type(node).__name__}")


def _declared(schema: Any, pointer: TraitPointer) -> bool | None:
    """
    True if the trait pointer targets a property declared inline under the schema's traits, False
    if the schema rules it out, None if it cannot be decided statically (reference or untyped node
    on the way).
    """
    node = traits_schema(schema)
    if node is None:
        return None
    for segment in pointer.segments:
        if not isinstance(node, dict) or "$ref" in node:
            return None
        props = node.get("properties")
        if isinstance(props, dict):
            if segment not in props:
                return False
            node = props[segment]
            continue
        items = node.get("prefixItems")
        if isinstance(items, list) and is_array_index(segment):
            index = int(segment)
            node = items[index] if index < len(items) else node.get("items")
            continue
        if isinstance(node.get("items"), dict) and is_array_index(segment):
            node = node["items"]
            continue
        if node.get("type") in ("string", "number", "integer", "boolean", "null"):
            return False
        return None
    return True


def validate_schema(schema: Any, *, keyword: str, direct_mapping: bool = False) -> list[SchemaWarning]:
    """All problems found in a schema's annotations and consent configuration. Performs no consent action."""
    compiled = compile_schema(schema, keyword=keyword, direct_mapping=direct_mapping)
    warnings = list(compiled.warnings)
    location = f"/{keyword}/scopes"
    for scope, config in compiled.config.items():
        if isinstance(config, ValueScope):
            if not compiled.scopes.get(scope):
                warnings.append(
                    SchemaWarning(
                        kind=SCHEMA_STRUCTURE,
                        location=f"{location}/{scope}",
                        message="value scope has no annotated traits and will never emit claims",
                        scope=scope,
                    )
                )
        elif isinstance(config, CompositeScope):
            for ref in _pointer_leaves(config.mapping):
                try:
                    declared = _declared(schema, TraitPointer.parse(ref))
                except InvalidPointer as e:
                    warnings.append(
                        SchemaWarning(kind=UNKNOWN_POINTER, location=f"{location}/{scope}", message=str(e), scope=scope)
                    )
                    continue
                if declared is False:
                    warnings.append(
                        SchemaWarning(
                            kind=UNKNOWN_POINTER,
                            location=f"{location}/{scope}",
                            message=f"{ref} does not match a declared trait; it will resolve to null",
                            scope=scope,
                        )
                    )
        else:
            raise TypeError(f"unhandled scope configuration {type(config).__name__}")
    return warnings


@dataclass
class SchemaCache:
    """
    Compiled schemas by schema id. With `max_age` set, get_or_compile reloads a snapshot older
    than `max_age` seconds from the schema source; the recompile only happens if the content changed.
    """

    keyword: str
    direct_mapping: bool = False
    max_age: float | None = None
    _snapshots: Mapping[str, CompiledSchema] = field(default_factory=lambda: MappingProxyType({}), init=False, repr=False)
    _write_lock: threading.Lock = field(default_factory=threading.Lock, init=False, repr=False)

    def get(self, schema_id: str) -> CompiledSchema | None:
        return self._snapshots.get(schema_id)

    def _store(self, schema_id: str, compiled: CompiledSchema) -> None:
        with self._write_lock:
            self._snapshots = MappingProxyType({**self._snapshots, schema_id: compiled})

    def put(self, schema_id: str, schema: Any) -> CompiledSchema:
        """Compile and store `schema`; unchanged content keeps its compiled tables."""
        digest = content_hash(schema)
        current = self._snapshots.get(schema_id)
        if current is not None and current.digest == digest:
            refreshed = replace(current, loaded_at=time.monotonic())
            self._store(schema_id, refreshed)
            return refreshed
        compiled = compile_schema(schema, keyword=self.keyword, direct_mapping=self.direct_mapping)
        logger.info("Compiled identity schema %s (%d scopes, %d warnings)", schema_id, len(compiled.config), len(compiled.warnings))
        self._store(schema_id, compiled)
        return compiled

    def get_or_compile(self, schema_id: str, loader: Callable[[str], Any]) -> CompiledSchema:
        compiled = self.get(schema_id)
        if compiled is not None and (self.max_age is None or time.monotonic() - compiled.loaded_at < self.max_age):
            return compiled
        return self.put(schema_id, loader(schema_id))

    def clear(self) -> None:
        with self._write_lock:
            self._snapshots = MappingProxyType({})
