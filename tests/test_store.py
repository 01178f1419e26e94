"""Tests for the run-state store and result cache (agentpipe/cache/store.py)."""

import json

import pytest

from agentpipe.cache import ResultCache, StateStore, compute_cache_key


@pytest.fixture
def store(state_dir):
    return StateStore(state_dir)


@pytest.fixture
def cache(cache_dir):
    return ResultCache(cache_dir)


@pytest.fixture
def cache_key():
    return compute_cache_key("p", "m", "v1", [])


class TestStateStore:
    @pytest.mark.asyncio
    @pytest.mark.unit
    async def test_missing_key_reads_none(self, store):
        assert await store.read("nothing-here") is None

    @pytest.mark.asyncio
    @pytest.mark.unit
    async def test_write_then_read(self, store, state_dir):
        path = await store.write("My Key", {"a": [1, 2]})

        assert path == state_dir / "my_key.json"
        assert path.read_text(encoding="utf-8").endswith("\n")
        assert await store.read("my key") == {"a": [1, 2]}

    @pytest.mark.asyncio
    @pytest.mark.unit
    async def test_write_leaves_no_temp_files(self, store, state_dir):
        await store.write("k", 1)
        await store.write("k", 2)

        assert [p.name for p in state_dir.iterdir()] == ["k.json"]
        assert await store.read("k") == 2

    @pytest.mark.asyncio
    @pytest.mark.unit
    async def test_corrupt_file_raises(self, store, state_dir):
        state_dir.mkdir(parents=True)
        (state_dir / "bad.json").write_text("{not json", encoding="utf-8")

        with pytest.raises(ValueError):
            await store.read("bad")


class TestRunState:
    @pytest.mark.asyncio
    @pytest.mark.unit
    async def test_reused_when_cache_key_matches(self, store, cache_key):
        await store.write_run_state("run-1", cache_key, [{"kind": "llm_task.invoke"}])

        record = await store.read_run_state("run-1", cache_key)

        assert record is not None
        assert record.items == [{"kind": "llm_task.invoke"}]

    @pytest.mark.asyncio
    @pytest.mark.unit
    async def test_not_reused_for_different_request(self, store, cache_key):
        await store.write_run_state("run-1", cache_key, [{"kind": "llm_task.invoke"}])

        other = compute_cache_key("different prompt", "m", "v1", [])
        assert await store.read_run_state("run-1", other) is None

    @pytest.mark.asyncio
    @pytest.mark.unit
    async def test_plain_state_value_not_reused(self, store, cache_key):
        await store.write("run-1", {"cacheKey": cache_key, "items": []})

        assert await store.read_run_state("run-1", cache_key) is None

    @pytest.mark.asyncio
    @pytest.mark.unit
    async def test_record_uses_camel_case_on_disk(self, store, state_dir, cache_key):
        await store.write_run_state("run-1", cache_key, [])

        on_disk = json.loads((state_dir / "run-1.json").read_text(encoding="utf-8"))
        assert on_disk["type"] == "llm_task.invoke"
        assert on_disk["version"] == 1
        assert on_disk["cacheKey"] == cache_key
        assert "storedAt" in on_disk


class TestResultCache:
    @pytest.mark.asyncio
    @pytest.mark.unit
    async def test_miss_then_hit(self, cache, cache_key, cache_dir):
        assert await cache.get(cache_key) is None

        await cache.put(cache_key, [{"output": {"text": "hi"}}])

        entry = await cache.get(cache_key)
        assert entry.items == [{"output": {"text": "hi"}}]
        assert (cache_dir / "llm_task.invoke" / f"{cache_key}.json").exists()

    @pytest.mark.asyncio
    @pytest.mark.unit
    async def test_corrupt_entry_is_a_miss(self, cache, cache_key, cache_dir):
        path = cache_dir / "llm_task.invoke" / f"{cache_key}.json"
        path.parent.mkdir(parents=True)
        path.write_text("garbage", encoding="utf-8")

        assert await cache.get(cache_key) is None

    @pytest.mark.unit
    def test_rejects_non_hash_keys(self, cache):
        with pytest.raises(ValueError):
            cache.path_for("../../etc/passwd")
