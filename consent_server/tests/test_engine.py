"""Tests for compiled schemas, validate_schema and the schema cache."""
import threading
from concurrent.futures import ThreadPoolExecutor
from unittest.mock import Mock

import pytest

from consent_server.engine import CompiledSchema, SchemaCache, compile_schema, content_hash, validate_schema
from consent_server.errors import INVALID_MAPPING_SHAPE, SCHEMA_STRUCTURE, UNKNOWN_POINTER

KEYWORD = "consent"


def _schema(scopes=None, traits_props=None) -> dict:
    schema = {
        "$id": "https://example.com/identity.schema.json",
        "$schema": "https://json-schema.org/draft/2020-12/schema",
        "type": "object",
        "properties": {
            "traits": {
                "type": "object",
                "properties": traits_props or {
                    "email": {"type": "string", "format": "email", "consent": {"scopes": ["email"]}},
                },
                "required": ["email"],
            }
        },
    }
    if scopes is not None:
        schema[KEYWORD] = {"scopes": scopes}
    return schema


TRAITS = {"email": "a@b.com"}


def test_end_to_end_default_value_scope():
    compiled = compile_schema(_schema(), keyword=KEYWORD)
    claims = compiled.resolve(TRAITS, ["email"])
    assert claims.id_token == {"email": "a@b.com"}
    assert claims.access_token == {"email": "a@b.com"}


def test_end_to_end_composite_scope():
    scopes = {
        "profile": {
            "type": "composite",
            "mapping": {"type": "object", "properties": {"e": {"$ref": "/email"}}},
            "sessionData": {"idToken": "profile"},
        }
    }
    claims = compile_schema(_schema(scopes), keyword=KEYWORD).resolve(TRAITS, ["profile"])
    assert claims.id_token == {"profile": {"e": "a@b.com"}}
    assert claims.access_token == {}


def test_unrequested_and_unknown_scopes_emit_nothing():
    compiled = compile_schema(_schema(), keyword=KEYWORD)
    claims = compiled.resolve(TRAITS, ["openid", "offline_access"])
    assert claims.id_token == {} and claims.access_token == {}


def test_malformed_entry_does_not_block_valid_scopes():
    scopes = {
        "broken": {"type": "composite", "mapping": {"type": "tuple"}, "sessionData": {"idToken": "b"}},
        "profile": {
            "type": "composite",
            "mapping": {"type": "tuple", "prefixItems": [{"$ref": "/email"}]},
            "sessionData": {"accessToken": "profile.emails"},
        },
    }
    compiled = compile_schema(_schema(scopes), keyword=KEYWORD)
    claims = compiled.resolve(TRAITS, ["broken", "email", "profile"])
    assert claims.id_token == {"email": "a@b.com"}
    assert claims.access_token == {"email": "a@b.com", "profile": {"emails": ["a@b.com"]}}
    assert [w.kind for w in compiled.warnings] == [INVALID_MAPPING_SHAPE]


def test_request_order_decides_conflicts():
    scopes = {
        "a": {"type": "composite", "mapping": {"$ref": "/email"}, "sessionData": {"idToken": "who"}},
        "b": {"type": "composite", "mapping": {"$ref": "/missing"}, "sessionData": {"idToken": "who"}},
    }
    compiled = compile_schema(_schema(scopes), keyword=KEYWORD)
    assert compiled.resolve(TRAITS, ["a", "b"]).id_token == {"who": None}
    assert compiled.resolve(TRAITS, ["b", "a"]).id_token == {"who": "a@b.com"}


def test_direct_mapping_end_to_end():
    props = {"email": {"type": "string"}, "name": {"type": "string"}}
    compiled = compile_schema(_schema(traits_props=props), keyword=KEYWORD, direct_mapping=True)
    assert set(compiled.config) == {"email", "name"}
    claims = compiled.resolve({"email": "a@b.com", "name": "Ada"}, ["name"])
    assert claims.id_token == {"name": "Ada"}


def test_walked_pointers_resolve_against_valid_traits():
    props = {
        "email": {"type": "string", "consent": {"scopes": ["email"]}},
        "name": {
            "type": "object",
            "properties": {"first": {"type": "string", "consent": {"scopes": ["profile"]}}},
            "required": ["first"],
        },
    }
    compiled = compile_schema(_schema(traits_props=props), keyword=KEYWORD)
    traits = {"email": "a@b.com", "name": {"first": "Ada"}}
    for pointers in compiled.scopes.values():
        for pointer in pointers:
            pointer.resolve(traits)


def test_non_ascii_array_index_resolves_to_null():
    props = {
        "email": {"type": "string", "consent": {"scopes": ["email"]}},
        "phones": {"type": "array", "items": {"type": "string"}},
    }
    scopes = {
        "p": {"type": "composite", "mapping": {"type": "object", "properties": {"ph": {"$ref": "/phones/²"}}}, "sessionData": {"idToken": "p"}},
    }
    schema = _schema(scopes, traits_props=props)
    claims = compile_schema(schema, keyword=KEYWORD).resolve({"phones": ["+1", "+2", "+3"]}, ["p"])
    assert claims.id_token == {"p": {"ph": None}}
    # Not decidable against the items schema, so no unknown-pointer warning and no crash
    assert [w for w in validate_schema(schema, keyword=KEYWORD) if w.kind == UNKNOWN_POINTER] == []


def test_compiled_tables_are_read_only():
    compiled = compile_schema(_schema(), keyword=KEYWORD)
    with pytest.raises(TypeError):
        compiled.config["new"] = None
    with pytest.raises(TypeError):
        compiled.scopes["new"] = ()


def test_validate_schema_clean():
    assert validate_schema(_schema(), keyword=KEYWORD) == []


def test_validate_schema_reports_everything():
    props = {
        "email": {"type": "string", "consent": {"scopes": ["email"]}},
        "bad": {"type": "string", "consent": {"scopes": []}},
        "name": {"type": "object", "properties": {"first": {"type": "string"}}},
        "address": {"$ref": "#/$defs/address"},
    }
    scopes = {
        "broken": {"type": "value", "collect": "sometimes", "sessionData": {"idToken": "b"}},
        "orphan": {"type": "value", "sessionData": {"idToken": "orphan"}},
        "profile": {
            "type": "composite",
            "mapping": {
                "type": "object",
                "properties": {
                    "first": {"$ref": "/name/first"},
                    "middle": {"$ref": "/name/middle"},
                    "street": {"$ref": "/address/street"},
                    "syntax": {"$ref": "email"},
                    "deep": {"$ref": "/email/local"},
                },
            },
            "sessionData": {"idToken": "profile"},
        },
    }
    warnings = validate_schema(_schema(scopes, traits_props=props), keyword=KEYWORD)
    summary = [(w.kind, w.scope) for w in warnings]
    assert (SCHEMA_STRUCTURE, None) in summary  # bad annotation
    assert (SCHEMA_STRUCTURE, "broken") in summary
    assert (SCHEMA_STRUCTURE, "orphan") in summary
    unknown = [w.message for w in warnings if w.kind == UNKNOWN_POINTER]
    assert len(unknown) == 3
    assert any("/name/middle" in m for m in unknown)
    assert any("/email/local" in m for m in unknown)
    # Behind a $ref: cannot be decided, not reported
    assert not any("street" in m for m in unknown)


def test_content_hash_ignores_key_order():
    assert content_hash({"a": 1, "b": [1, 2]}) == content_hash({"b": [1, 2], "a": 1})
    assert content_hash({"a": 1}) != content_hash({"a": 2})


def test_cache_compiles_once():
    cache = SchemaCache(keyword=KEYWORD)
    loader = Mock(return_value=_schema())
    first = cache.get_or_compile("default", loader)
    second = cache.get_or_compile("default", loader)
    assert first is second
    assert isinstance(first, CompiledSchema)
    loader.assert_called_once_with("default")


def test_cache_put_swaps_only_on_change():
    cache = SchemaCache(keyword=KEYWORD)
    original = cache.put("default", _schema())
    same = cache.put("default", _schema())
    assert same.config is original.config and same.scopes is original.scopes
    assert same.digest == original.digest
    scopes = {"email": {"type": "value", "sessionData": {"idToken": "mail"}}}
    updated = cache.put("default", _schema(scopes))
    assert updated is not original
    assert cache.get("default") is updated
    assert original.resolve(TRAITS, ["email"]).id_token == {"email": "a@b.com"}
    assert updated.resolve(TRAITS, ["email"]).id_token == {"mail": "a@b.com"}


def test_cache_without_max_age_never_reloads():
    cache = SchemaCache(keyword=KEYWORD, max_age=None)
    loader = Mock(return_value=_schema())
    for _ in range(3):
        cache.get_or_compile("default", loader)
    loader.assert_called_once_with("default")


def test_cache_reloads_stale_schema_and_picks_up_changes():
    cache = SchemaCache(keyword=KEYWORD, max_age=0)
    changed = _schema({"email": {"type": "value", "sessionData": {"idToken": "mail"}}})
    loader = Mock(side_effect=[_schema(), _schema(), changed])

    first = cache.get_or_compile("default", loader)
    unchanged = cache.get_or_compile("default", loader)
    assert unchanged.config is first.config
    updated = cache.get_or_compile("default", loader)

    assert loader.call_count == 3
    assert updated.config is not first.config
    assert updated.resolve(TRAITS, ["email"]).id_token == {"mail": "a@b.com"}


def test_cache_fresh_snapshot_is_not_reloaded():
    cache = SchemaCache(keyword=KEYWORD, max_age=3600)
    loader = Mock(return_value=_schema())
    first = cache.get_or_compile("default", loader)
    assert cache.get_or_compile("default", loader) is first
    loader.assert_called_once_with("default")


def test_cache_clear():
    cache = SchemaCache(keyword=KEYWORD)
    cache.put("default", _schema())
    cache.clear()
    assert cache.get("default") is None


def test_concurrent_resolution_sees_whole_snapshots():
    cache = SchemaCache(keyword=KEYWORD)
    old = _schema()
    new = _schema({"email": {"type": "value", "sessionData": {"idToken": "mail"}}})
    cache.put("default", old)
    stop = threading.Event()

    def writer():
        flip = False
        while not stop.is_set():
            cache.put("default", new if flip else old)
            flip = not flip

    def reader(_):
        return cache.get("default").resolve(TRAITS, ["email"]).id_token

    t = threading.Thread(target=writer)
    t.start()
    try:
        with ThreadPoolExecutor(max_workers=4) as pool:
            results = list(pool.map(reader, range(200)))
    finally:
        stop.set()
        t.join()
    assert all(r in ({"email": "a@b.com"}, {"mail": "a@b.com"}) for r in results)
