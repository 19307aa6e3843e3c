"""
Schema walker: find trait properties annotated for OAuth scopes.

Starting at `properties.traits` of an identity schema, every directly embedded object
schema is visited depth first. A property annotated with the schema keyword, e.g.

    "email": {"type": "string", "consent": {"scopes": ["email", "profile"]}}

contributes the pointer /email to the scopes `email` and `profile`. Pointers are relative to the
identity's trait document, which is what the claims are later resolved against.

Only unconditional, inline structure is understood: `$ref` and the composition keywords
(`if`/`then`/`else`, `allOf`/`anyOf`/`oneOf`/`not`, `dependentSchemas`) are never followed.
"""
import logging
from typing import Any

from consent_server.errors import SCHEMA_STRUCTURE, SchemaWarning
from consent_server.pointer import TraitPointer

logger = logging.getLogger(__name__)

# Capability flags; following references or conditional branches is not supported.
FOLLOWS_REFERENCES = False
FOLLOWS_CONDITIONALS = False

TRAITS = "traits"


def _is_object_schema(node: Any) -> bool:
    return isinstance(node, dict) and "$ref" not in node and isinstance(node.get("properties"), dict)


def traits_schema(schema: Any) -> dict | None:
    """The inline object schema of `properties.traits`, None if absent or behind a reference."""
    if not isinstance(schema, dict) or not isinstance(schema.get("properties"), dict):
        return None
    traits = schema["properties"].get(TRAITS)
    return traits if _is_object_schema(traits) else None


def _annotation_scopes(annotation: Any) -> list[str] | None:
    """Return scope names of a well-formed annotation, None if malformed."""
    if not isinstance(annotation, dict):
        return None
    scopes = annotation.get("scopes")
    if not isinstance(scopes, list) or not scopes:
        return None
    if not all(isinstance(s, str) and s for s in scopes):
        return None
    return scopes


def _record(table: dict[str, list[TraitPointer]], scope: str, pointer: TraitPointer) -> None:
    pointers = table.setdefault(scope, [])
    if pointer not in pointers:
        pointers.append(pointer)


def _walk_object(
    node: dict,
    pointer: TraitPointer,
    depth: int,
    table: dict[str, list[TraitPointer]],
    keyword: str,
    direct_mapping: bool,
    warnings: list[SchemaWarning],
) -> None:
    for name, prop in node["properties"].items():
        if not isinstance(prop, dict):
            continue
        child = pointer.child(name)
        if keyword in prop:
            scopes = _annotation_scopes(prop[keyword])
            if scopes is None:
                warning = SchemaWarning(
                    kind=SCHEMA_STRUCTURE,
                    location=str(child),
                    message=f"'{keyword}' annotation must be an object with a non-empty 'scopes' array of strings",
                )
                logger.warning("Ignoring malformed scope annotation: %s", warning)
                warnings.append(warning)
            else:
                for scope in scopes:
                    _record(table, scope, child)
        elif direct_mapping and depth == 1:
            _record(table, name, child)

        if _is_object_schema(prop):
            _walk_object(prop, child, depth + 1, table, keyword, direct_mapping, warnings)


def walk(
    schema: Any,
    *,
    keyword: str,
    direct_mapping: bool = False,
    warnings: list[SchemaWarning] | None = None,
) -> dict[str, tuple[TraitPointer, ...]]:
    """
    Map scope name -> pointers (declaration order) of the trait properties feeding that scope.
    Malformed annotations are skipped; a warning is appended to `warnings` when given.
    """
    if warnings is None:
        warnings = []
    table: dict[str, list[TraitPointer]] = {}
    traits = traits_schema(schema)
    if traits is None:
        logger.debug("Schema has no inline traits object; nothing to walk")
        return {}
    _walk_object(traits, TraitPointer(()), 1, table, keyword, direct_mapping, warnings)
    return {scope: tuple(pointers) for scope, pointers in table.items()}
