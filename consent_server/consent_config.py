"""
Consent configuration: per-scope collection / composition rules declared at the schema root.

    "consent": {
      "scopes": {
        "email":   {"type": "value", "collect": "first", "sessionData": {"idToken": "email"}},
        "profile": {"type": "composite",
                    "mapping": {"type": "object", "properties": {"e": {"$ref": "/email"}}},
                    "sessionData": {"idToken": "profile"}}
      }
    }

Entries are checked one by one against CONSENT_CONFIGURATION_SCHEMA; an invalid entry is
dropped with a warning and the remaining entries still apply.
"""
import logging
from dataclasses import dataclass
from enum import Enum
from typing import Any

from jsonschema import Draft202012Validator
from jsonschema.exceptions import best_match

from consent_server.errors import INVALID_MAPPING_SHAPE, SCHEMA_STRUCTURE, SchemaWarning
from consent_server.pointer import TraitPointer
from consent_server.schema_walker import walk

logger = logging.getLogger(__name__)


class Collect(str, Enum):
    FIRST = "first"
    LAST = "last"
    ANY = "any"  # alias of FIRST
    ALL = "all"


@dataclass(frozen=True)
class SessionData:
    """Destination paths (dotted) in the ID token / access token claim sets."""

    id_token: str | None = None
    access_token: str | None = None


@dataclass(frozen=True)
class PointerNode:
    # Kept as written; syntax is checked when the pointer is dereferenced
    ref: str


@dataclass(frozen=True)
class ObjectNode:
    properties: tuple[tuple[str, "MappingNode"], ...]


@dataclass(frozen=True)
class TupleNode:
    items: tuple["MappingNode", ...]


MappingNode = PointerNode | ObjectNode | TupleNode


@dataclass(frozen=True)
class ValueScope:
    collect: Collect
    session_data: SessionData


@dataclass(frozen=True)
class CompositeScope:
    mapping: MappingNode
    session_data: SessionData


ScopeConfiguration = ValueScope | CompositeScope


def default_configuration(scope: str) -> ValueScope:
    """Configuration of an annotated scope without an explicit entry."""
    return ValueScope(collect=Collect.FIRST, session_data=SessionData(id_token=scope, access_token=scope))


def _type_is(name: str, required: bool = True) -> dict:
    condition: dict = {"properties": {"type": {"const": name}}}
    if required:
        condition["required"] = ["type"]
    return condition


CONSENT_CONFIGURATION_SCHEMA = {
    "$schema": "https://json-schema.org/draft/2020-12/schema",
    "$defs": {
        "sessionData": {
            "type": "object",
            "properties": {
                "idToken": {"type": "string", "minLength": 1},
                "accessToken": {"type": "string", "minLength": 1},
            },
            "additionalProperties": False,
            "anyOf": [{"required": ["idToken"]}, {"required": ["accessToken"]}],
        },
        "mapping": {
            "type": "object",
            "properties": {"type": {"enum": ["pointer", "object", "tuple"]}},
            "allOf": [
                {
                    # "type" may be omitted on pointer leaves
                    "if": _type_is("pointer", required=False),
                    "then": {
                        "properties": {"type": True, "$ref": {"type": "string"}},
                        "required": ["$ref"],
                        "additionalProperties": False,
                    },
                },
                {
                    "if": _type_is("object"),
                    "then": {
                        "properties": {
                            "type": True,
                            "properties": {
                                "type": "object",
                                "additionalProperties": {"$ref": "#/$defs/mapping"},
                            },
                        },
                        "required": ["properties"],
                        "additionalProperties": False,
                    },
                },
                {
                    "if": _type_is("tuple"),
                    "then": {
                        "properties": {
                            "type": True,
                            "prefixItems": {"type": "array", "items": {"$ref": "#/$defs/mapping"}},
                        },
                        "required": ["prefixItems"],
                        "additionalProperties": False,
                    },
                },
            ],
        },
    },
    "type": "object",
    "properties": {
        "type": {"enum": ["value", "composite"]},
        "sessionData": {"$ref": "#/$defs/sessionData"},
    },
    "required": ["type", "sessionData"],
    "allOf": [
        {
            "if": _type_is("value"),
            "then": {
                "properties": {
                    "type": True,
                    "sessionData": True,
                    "collect": {"enum": [c.value for c in Collect]},
                },
                "additionalProperties": False,
            },
        },
        {
            "if": _type_is("composite"),
            "then": {
                "properties": {"type": True, "sessionData": True, "mapping": {"$ref": "#/$defs/mapping"}},
                "required": ["mapping"],
                "additionalProperties": False,
            },
        },
    ],
}

_validator = Draft202012Validator(CONSENT_CONFIGURATION_SCHEMA)


def _build_mapping(node: dict) -> MappingNode:
    kind = node.get("type", "pointer")
    if kind == "pointer":
        return PointerNode(ref=node["$ref"])
    if kind == "object":
        return ObjectNode(properties=tuple((k, _build_mapping(v)) for k, v in node["properties"].items()))
    if kind == "tuple":
        return TupleNode(items=tuple(_build_mapping(v) for v in node["prefixItems"]))
    raise ValueError(f"unknown mapping type {kind!r}")


def _build_session_data(raw: dict) -> SessionData:
    return SessionData(id_token=raw.get("idToken"), access_token=raw.get("accessToken"))


def _build_configuration(entry: dict) -> ScopeConfiguration:
    session_data = _build_session_data(entry["sessionData"])
    if entry["type"] == "value":
        return ValueScope(collect=Collect(entry.get("collect", Collect.FIRST.value)), session_data=session_data)
    return CompositeScope(mapping=_build_mapping(entry["mapping"]), session_data=session_data)


def _entry_warning(scope: str, location: str, entry: Any) -> SchemaWarning | None:
    error = best_match(_validator.iter_errors(entry))
    if error is None:
        return None
    path = [str(p) for p in error.absolute_path]
    kind = INVALID_MAPPING_SHAPE if path and path[0] == "mapping" else SCHEMA_STRUCTURE
    where = "/".join(path)
    message = f"{where}: {error.message}" if where else error.message
    return SchemaWarning(kind=kind, location=f"{location}/{scope}", message=message, scope=scope)


def parse(
    schema: Any,
    *,
    keyword: str,
    direct_mapping: bool = False,
    scopes: dict[str, tuple[TraitPointer, ...]] | None = None,
) -> tuple[dict[str, ScopeConfiguration], list[SchemaWarning]]:
    """
    Build scope name -> configuration from the schema root block.
    `scopes` is the walker table; it is computed from `schema` when not given.
    Annotated scopes with no explicit entry get default_configuration(); dropped entries stay unconfigured.
    """
    warnings: list[SchemaWarning] = []
    if scopes is None:
        scopes = walk(schema, keyword=keyword, direct_mapping=direct_mapping, warnings=warnings)

    location = f"/{keyword}/scopes"
    explicit: dict = {}
    block = schema.get(keyword) if isinstance(schema, dict) else None
    if block is not None:
        raw = block.get("scopes", {}) if isinstance(block, dict) else None
        if isinstance(raw, dict):
            explicit = raw
        else:
            warning = SchemaWarning(
                kind=SCHEMA_STRUCTURE,
                location=f"/{keyword}",
                message="must be an object with a 'scopes' object",
            )
            logger.warning("Ignoring consent configuration block: %s", warning)
            warnings.append(warning)

    table: dict[str, ScopeConfiguration] = {}
    dropped: set[str] = set()
    for scope, entry in explicit.items():
        warning = _entry_warning(scope, location, entry)
        if warning is not None:
            logger.warning("Dropping scope configuration: %s", warning)
            warnings.append(warning)
            dropped.add(scope)
            continue
        table[scope] = _build_configuration(entry)

    for scope in scopes:
        if scope not in table and scope not in dropped:
            table[scope] = default_configuration(scope)

    return table, warnings
