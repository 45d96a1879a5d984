"""Tests for the step cache, object stores and SQL-backed sinks."""

import json
from unittest.mock import AsyncMock

import pytest
from redis.exceptions import ConnectionError as RedisConnectionError

from sitegen.exceptions import UploadError
from sitegen.storage.database import DatabaseManager, SqlAuditLog, SqlStatusSink
from sitegen.storage.object_store import InMemoryObjectStore, LocalObjectStore
from sitegen.storage.status import InMemoryStatusSink
from sitegen.storage.step_cache import InMemoryStepCache, RedisStepCache, step_key


@pytest.fixture
def db():
    manager = DatabaseManager("sqlite:///:memory:")
    manager.create_tables()
    yield manager
    manager.close()


class TestInMemoryStepCache:

    @pytest.mark.asyncio
    async def test_miss_then_hit(self):
        cache = InMemoryStepCache()
        assert await cache.get("i1", "research-profile") is None
        await cache.put("i1", "research-profile", {"business_type": "bakery"})
        assert await cache.get("i1", "research-profile") == {"business_type": "bakery"}

    @pytest.mark.asyncio
    async def test_values_are_copies(self):
        cache = InMemoryStepCache()
        value = {"pages": ["index.html"]}
        await cache.put("i1", "upload-artifacts", value)
        value["pages"].append("mutated")
        assert await cache.get("i1", "upload-artifacts") == {"pages": ["index.html"]}

    @pytest.mark.asyncio
    async def test_steps_for_and_clear(self):
        cache = InMemoryStepCache()
        await cache.put("i1", "b", 1)
        await cache.put("i1", "a", 2)
        await cache.put("i2", "a", 3)
        assert cache.steps_for("i1") == ["a", "b"]
        cache.clear("i1")
        assert cache.steps_for("i1") == []
        assert cache.steps_for("i2") == ["a"]

    def test_key_format(self):
        assert step_key("site-1", "score-website") == "sitegen:step:site-1:score-website"


class TestRedisStepCache:

    @pytest.mark.asyncio
    async def test_put_uses_ttl(self):
        client = AsyncMock()
        cache = RedisStepCache("redis://unused", ttl_seconds=600, client=client)
        await cache.put("i1", "generate-website", "<!DOCTYPE html>")
        client.setex.assert_awaited_once_with(
            "sitegen:step:i1:generate-website", 600, json.dumps("<!DOCTYPE html>"))

    @pytest.mark.asyncio
    async def test_get_decodes(self):
        client = AsyncMock()
        client.get.return_value = json.dumps({"overall": 0.8})
        cache = RedisStepCache("redis://unused", client=client)
        assert await cache.get("i1", "score-website") == {"overall": 0.8}

    @pytest.mark.asyncio
    async def test_get_error_is_a_miss(self):
        client = AsyncMock()
        client.get.side_effect = RedisConnectionError("connection refused")
        cache = RedisStepCache("redis://unused", client=client)
        assert await cache.get("i1", "score-website") is None

    @pytest.mark.asyncio
    async def test_put_error_propagates(self):
        client = AsyncMock()
        client.setex.side_effect = RedisConnectionError("connection refused")
        cache = RedisStepCache("redis://unused", client=client)
        with pytest.raises(RedisConnectionError):
            await cache.put("i1", "score-website", {"overall": 0.8})


class TestObjectStores:

    @pytest.mark.asyncio
    async def test_in_memory_put_and_get(self):
        store = InMemoryObjectStore()
        await store.put("sites/rise/index.html", "<p>hi</p>", "text/html")
        assert store.get_text("sites/rise/index.html") == "<p>hi</p>"
        assert store.objects["sites/rise/index.html"][1] == "text/html"
        assert store.keys("sites/") == ["sites/rise/index.html"]

    @pytest.mark.asyncio
    @pytest.mark.parametrize("key", ["", "/abs/path", "sites/../etc/passwd", "sites//x", "sites/./x"])
    async def test_bad_keys_rejected(self, key):
        with pytest.raises(UploadError):
            await InMemoryObjectStore().put(key, "x", "text/plain")

    @pytest.mark.asyncio
    async def test_local_store_writes_files(self, tmp_path):
        store = LocalObjectStore(tmp_path)
        await store.put("sites/rise/v1/index.html", "<p>hi</p>", "text/html")
        await store.put("sites/rise/v1/index.html", "<p>again</p>", "text/html")
        assert store.read_text("sites/rise/v1/index.html") == "<p>again</p>"
        assert (tmp_path / "sites" / "rise" / "v1" / "index.html").exists()
        assert not list(tmp_path.rglob("*.tmp"))

    @pytest.mark.asyncio
    async def test_local_store_write_failure(self, tmp_path):
        blocker = tmp_path / "sites"
        blocker.write_text("not a directory")
        with pytest.raises(UploadError):
            await LocalObjectStore(tmp_path).put("sites/rise/index.html", "x", "text/html")


class TestStatusSinks:

    @pytest.mark.asyncio
    async def test_in_memory_history(self):
        sink = InMemoryStatusSink()
        await sink.update_status("s1", "collecting")
        await sink.update_status("s1", "published", current_build_version="v1", quality_score=0.8)
        assert sink.statuses("s1") == ["collecting", "published"]
        assert sink.current("s1") == "published"
        assert sink.rows["s1"]["current_build_version"] == "v1"

    @pytest.mark.asyncio
    async def test_sql_status_upsert(self, db):
        sink = SqlStatusSink(db)
        assert sink.get("s1") is None
        await sink.update_status("s1", "collecting")
        await sink.update_status("s1", "published", current_build_version="2026-01-01T00-00-00-000Z",
                                 quality_score=0.8, ignored="x")
        row = sink.get("s1")
        assert row["status"] == "published"
        assert row["current_build_version"] == "2026-01-01T00-00-00-000Z"
        assert row["quality_score"] == 0.8

    @pytest.mark.asyncio
    async def test_sql_audit_log(self, db):
        audit = SqlAuditLog(db)
        await audit.record("org-1", "s1", "workflow.step_completed", {"site_id": "s1", "step": "research-profile"})
        await audit.record("org-1", "s2", "workflow.completed", {"site_id": "s2"})
        entries = audit.entries("s1")
        assert len(entries) == 1
        assert entries[0]["action"] == "workflow.step_completed"
        assert entries[0]["metadata"]["step"] == "research-profile"
