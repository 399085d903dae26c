from __future__ import annotations

import pytest
import pytest_asyncio

from cryptoflash.repositories import upsert_document
from cryptoflash.services.store import (
    DocumentStoreError,
    FieldFilter,
    MemoryDocumentStore,
    SqlDocumentStore,
)
from tests.conftest import eventually


class Collector:
    def __init__(self) -> None:
        self.snapshots: list = []
        self.errors: list[Exception] = []

    async def on_next(self, snapshot) -> None:
        self.snapshots.append(snapshot)

    async def on_error(self, exc: Exception) -> None:
        self.errors.append(exc)


@pytest_asyncio.fixture(params=["memory", "sql"])
async def any_store(request, session_maker):
    if request.param == "memory":
        yield MemoryDocumentStore()
        return
    store = SqlDocumentStore(session_maker, poll_interval=60)
    yield store
    await store.close()


class TestDocumentStoreContract:
    @pytest.mark.asyncio
    async def test_set_get_merge_delete(self, any_store):
        await any_store.set("users", "u1", {"a": 1, "b": 2})
        await any_store.set("users", "u1", {"b": 3}, merge=True)
        assert await any_store.get("users", "u1") == {"a": 1, "b": 3}

        await any_store.set("users", "u1", {"c": 4})
        assert await any_store.get("users", "u1") == {"c": 4}

        await any_store.delete("users", "u1")
        assert await any_store.get("users", "u1") is None

    @pytest.mark.asyncio
    async def test_query_filters_by_equality(self, any_store):
        await any_store.add("orders", {"email": "a@x", "status": "approved"})
        await any_store.add("orders", {"email": "a@x", "status": "pending"})
        await any_store.add("orders", {"email": "b@x", "status": "approved"})

        snapshot = await any_store.query(
            "orders", [FieldFilter("email", "a@x"), FieldFilter("status", "approved")]
        )

        assert len(snapshot) == 1
        assert [doc.data["status"] for doc in snapshot] == ["approved"]

    @pytest.mark.asyncio
    async def test_document_watch_delivers_initial_and_updates_in_order(self, any_store):
        collector = Collector()
        sub = any_store.watch_document("portfolios", "p1", collector.on_next)
        await any_store.wait_idle()

        await any_store.set("portfolios", "p1", {"n": 1})
        await any_store.set("portfolios", "p1", {"n": 2})
        await any_store.set("portfolios", "other", {"n": 99})
        await any_store.wait_idle()

        assert [s.exists for s in collector.snapshots] == [False, True, True]
        assert [s.data["n"] for s in collector.snapshots[1:]] == [1, 2]
        sub.cancel()

    @pytest.mark.asyncio
    async def test_query_watch_sees_new_matches(self, any_store):
        collector = Collector()
        any_store.watch_query("orders", [FieldFilter("status", "approved")], collector.on_next)
        await any_store.wait_idle()

        await any_store.add("orders", {"status": "approved"})
        await any_store.wait_idle()

        assert [len(s) for s in collector.snapshots] == [0, 1]

    @pytest.mark.asyncio
    async def test_cancel_stops_delivery(self, any_store):
        collector = Collector()
        sub = any_store.watch_document("users", "u1", collector.on_next)
        await any_store.wait_idle()

        sub.cancel()
        sub.cancel()
        await any_store.set("users", "u1", {"x": 1})
        await any_store.wait_idle()

        assert len(collector.snapshots) == 1
        assert not sub.active
        assert any_store.watched_collections() == set()


class TestMemoryStore:
    @pytest.mark.asyncio
    async def test_failing_callback_does_not_kill_subscription(self):
        store = MemoryDocumentStore()
        seen = []

        async def flaky(snapshot):
            seen.append(snapshot)
            if len(seen) == 1:
                raise RuntimeError("boom")

        store.watch_document("users", "u1", flaky)
        await store.wait_idle()
        await store.set("users", "u1", {"x": 1})
        await store.wait_idle()

        assert len(seen) == 2

    @pytest.mark.asyncio
    async def test_writes_are_recorded(self):
        store = MemoryDocumentStore()

        await store.set("portfolios", "p1", {"n": 1})
        await store.set("portfolios", "p1", {"m": 2}, merge=True)

        assert store.writes_to("portfolios", "p1") == [{"n": 1}, {"n": 1, "m": 2}]


class TestSqlStorePolling:
    @pytest.mark.asyncio
    async def test_poll_picks_up_external_writes(self, session_maker):
        store = SqlDocumentStore(session_maker, poll_interval=60)
        collector = Collector()
        store.watch_document("users", "u1", collector.on_next, collector.on_error)
        await store.wait_idle()
        await store.poll_once()

        async with session_maker() as session:
            await upsert_document(session, collection="users", doc_id="u1", data={"isPro": True})
        await store.poll_once()
        await store.wait_idle()

        assert [s.data for s in collector.snapshots] == [None, {"isPro": True}]

    @pytest.mark.asyncio
    async def test_unchanged_collection_is_not_renotified(self, session_maker):
        store = SqlDocumentStore(session_maker, poll_interval=60)
        collector = Collector()
        store.watch_document("users", "u1", collector.on_next)
        await store.wait_idle()

        await store.poll_once()
        await store.poll_once()
        await store.wait_idle()

        assert len(collector.snapshots) == 1

    @pytest.mark.asyncio
    async def test_poll_failure_goes_to_error_callback(self, session_maker, monkeypatch):
        store = SqlDocumentStore(session_maker, poll_interval=60)
        collector = Collector()
        store.watch_document("users", "u1", collector.on_next, collector.on_error)
        await store.wait_idle()

        async def broken(collection):
            raise RuntimeError("database is locked")

        monkeypatch.setattr(store, "_fingerprint", broken)
        await store.poll_once()
        await store.wait_idle()

        assert len(collector.errors) == 1
        assert isinstance(collector.errors[0], DocumentStoreError)

    @pytest.mark.asyncio
    async def test_failed_delivery_is_retried_on_next_poll(self, session_maker, monkeypatch):
        store = SqlDocumentStore(session_maker, poll_interval=60)
        collector = Collector()
        store.watch_document("users", "u1", collector.on_next, collector.on_error)
        await store.wait_idle()

        original_get = store.get
        failures = []

        async def get_once_broken(collection, doc_id):
            if not failures:
                failures.append(doc_id)
                raise RuntimeError("database is locked")
            return await original_get(collection, doc_id)

        monkeypatch.setattr(store, "get", get_once_broken)
        async with session_maker() as session:
            await upsert_document(session, collection="users", doc_id="u1", data={"v": 1})
        await store.poll_once()
        await store.poll_once()
        await store.wait_idle()

        assert failures == ["u1"]
        assert len(collector.errors) == 1
        assert [s.data for s in collector.snapshots] == [None, {"v": 1}]

    @pytest.mark.asyncio
    async def test_poll_loop_survives_read_error(self, file_session_maker, monkeypatch):
        store = SqlDocumentStore(file_session_maker, poll_interval=0.01)
        collector = Collector()
        store.watch_document("users", "u1", collector.on_next, collector.on_error)
        await store.wait_idle()
        await store.start()

        original_get = store.get
        broken = [True]

        async def get_once_broken(collection, doc_id):
            if broken:
                broken.clear()
                raise RuntimeError("database is locked")
            return await original_get(collection, doc_id)

        monkeypatch.setattr(store, "get", get_once_broken)
        async with file_session_maker() as session:
            await upsert_document(session, collection="users", doc_id="u1", data={"v": 1})
        await eventually(lambda: collector.errors)
        async with file_session_maker() as session:
            await upsert_document(session, collection="users", doc_id="u1", data={"v": 2})
        await eventually(lambda: collector.snapshots[-1].data == {"v": 2})

        await store.close()
        assert collector.snapshots[0].data is None

    @pytest.mark.asyncio
    async def test_write_between_first_read_and_first_poll_is_delivered(self, session_maker):
        store = SqlDocumentStore(session_maker, poll_interval=60)
        collector = Collector()
        store.watch_document("users", "u1", collector.on_next)
        await store.wait_idle()

        async with session_maker() as session:
            await upsert_document(session, collection="users", doc_id="u1", data={"isPro": True})
        await store.poll_once()
        await store.wait_idle()

        assert [s.data for s in collector.snapshots] == [None, {"isPro": True}]

    @pytest.mark.asyncio
    async def test_read_errors_are_store_errors(self, session_maker, monkeypatch):
        store = SqlDocumentStore(session_maker, poll_interval=60)

        async def broken(session, collection, doc_id):
            raise RuntimeError("disk I/O error")

        monkeypatch.setattr("cryptoflash.services.store.sql.get_document", broken)

        with pytest.raises(DocumentStoreError):
            await store.get("users", "u1")
