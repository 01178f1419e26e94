"""Tests for cache key derivation (agentpipe/cache/keys.py)."""

import pytest

from agentpipe.cache.keys import (
    DIGEST_LENGTH,
    canonical_json,
    compute_cache_key,
    hash_artifact,
    is_cache_key,
    normalize_artifact,
    state_key_filename,
)


class TestCanonicalForm:
    @pytest.mark.unit
    def test_keys_sorted_recursively(self):
        assert canonical_json({"b": 1, "a": {"d": 2, "c": 3}}) == '{"a":{"c":3,"d":2},"b":1}'

    @pytest.mark.unit
    def test_list_order_preserved(self):
        assert canonical_json([3, 1, 2]) == "[3,1,2]"


class TestArtifacts:
    @pytest.mark.unit
    @pytest.mark.parametrize(
        "raw,expected",
        [
            ("doc", {"kind": "text", "text": "doc"}),
            (42, {"kind": "text", "text": "42"}),
            (True, {"kind": "text", "text": "true"}),
            ({"kind": "file", "uri": "s3://x"}, {"kind": "file", "uri": "s3://x"}),
            ([1, 2], {"kind": "json", "data": [1, 2]}),
            (None, {"kind": "json", "data": None}),
        ],
    )
    def test_normalize(self, raw, expected):
        assert normalize_artifact(raw) == expected

    @pytest.mark.unit
    def test_hash_ignores_key_order(self):
        assert hash_artifact({"a": 1, "b": 2}) == hash_artifact({"b": 2, "a": 1})


class TestCallKey:
    @pytest.mark.unit
    def test_fixed_length_hex(self):
        key = compute_cache_key("p", "m", "v1", [])

        assert len(key) == DIGEST_LENGTH
        assert is_cache_key(key)

    @pytest.mark.unit
    def test_schema_key_order_does_not_matter(self):
        a = compute_cache_key(
            "p", "m", "v1", [], {"type": "object", "properties": {"x": {"type": "string"}, "y": {}}}
        )
        b = compute_cache_key(
            "p", "m", "v1", [], {"properties": {"y": {}, "x": {"type": "string"}}, "type": "object"}
        )

        assert a == b

    @pytest.mark.unit
    def test_metadata_key_order_does_not_matter(self):
        first = [hash_artifact(normalize_artifact({"meta": {"a": 1, "b": 2}}))]
        second = [hash_artifact(normalize_artifact({"meta": {"b": 2, "a": 1}}))]

        assert compute_cache_key("p", "m", "v1", first) == compute_cache_key("p", "m", "v1", second)

    @pytest.mark.unit
    @pytest.mark.parametrize(
        "changed",
        [
            ("other prompt", "m", "v1", ["h" * 64], None),
            ("p", "other-model", "v1", ["h" * 64], None),
            ("p", "m", "v2", ["h" * 64], None),
            ("p", "m", "v1", ["g" * 64], None),
            ("p", "m", "v1", ["h" * 64], {"type": "object"}),
        ],
    )
    def test_relevant_field_changes_key(self, changed):
        base = compute_cache_key("p", "m", "v1", ["h" * 64], None)

        assert compute_cache_key(*changed) != base

    @pytest.mark.unit
    def test_missing_model_uses_router_default(self):
        assert compute_cache_key("p", "", "v1", []) == compute_cache_key("p", "router-default", "v1", [])


class TestStateKeys:
    @pytest.mark.unit
    @pytest.mark.parametrize(
        "key,expected",
        [
            ("Email Triage/2024-01-08", "email_triage_2024-01-08.json"),
            ("__weird__key__", "weird_key.json"),
            ("demo-key", "demo-key.json"),
            ("a...b", "a...b.json"),
        ],
    )
    def test_sanitized(self, key, expected):
        assert state_key_filename(key) == expected

    @pytest.mark.unit
    @pytest.mark.parametrize("key", ["", "///", "___"])
    def test_empty_after_sanitizing_rejected(self, key):
        with pytest.raises(ValueError):
            state_key_filename(key)
