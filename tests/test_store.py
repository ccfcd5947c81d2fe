from __future__ import annotations

import pytest

from domain.errors import ConcurrencyConflict
from repositories.store import MemoryStore, WriteOp


@pytest.mark.asyncio
async def test_transaction_reads_its_own_writes(store):
    await store.commit_batch([WriteOp("set", "teams", "a", {"name": "Alpha", "region": "eu"})])

    async def body(tx):
        tx.set("teams", "b", {"name": "Bravo", "region": "eu"})
        await tx.update("teams", "a", {"region": "na"})
        assert (await tx.get("teams", "b"))["name"] == "Bravo"
        assert (await tx.get("teams", "a"))["region"] == "na"
        eu = await tx.query("teams", {"region": "eu"})
        assert [d["name"] for d in eu] == ["Bravo"]

        tx.delete("teams", "b")
        assert await tx.get("teams", "b") is None
        return len(tx.pending_writes)

    assert await store.run_transaction(body) == 2
    assert await store.get("teams", "a") == {"name": "Alpha", "region": "na"}
    assert await store.get("teams", "b") is None


@pytest.mark.asyncio
async def test_returned_documents_are_copies(store):
    await store.commit_batch([WriteOp("set", "teams", "a", {"tags": ["x"]})])
    doc = await store.get("teams", "a")
    doc["tags"].append("y")
    assert await store.get("teams", "a") == {"tags": ["x"]}


@pytest.mark.asyncio
async def test_stale_read_conflicts(store):
    await store.commit_batch([WriteOp("set", "stages", "s", {"round": 1})])

    async def body(tx):
        doc = await tx.get("stages", "s")
        # another writer commits in between
        await store.commit_batch([WriteOp("set", "stages", "s", {"round": 2})])
        tx.set("stages", "s", {"round": doc["round"] + 1})

    with pytest.raises(ConcurrencyConflict):
        await store.run_transaction(body)
    assert await store.get("stages", "s") == {"round": 2}


@pytest.mark.asyncio
async def test_phantom_insert_conflicts(store):
    async def body(tx):
        assert await tx.query("stages", {"tournament_id": "t1", "is_active": True}) == []
        await store.commit_batch([WriteOp("set", "stages", "other", {"tournament_id": "t1", "is_active": True})])
        tx.set("stages", "mine", {"tournament_id": "t1", "is_active": True})

    with pytest.raises(ConcurrencyConflict):
        await store.run_transaction(body)
    assert await store.get("stages", "mine") is None


@pytest.mark.asyncio
async def test_failed_callback_writes_nothing(store):
    async def body(tx):
        tx.set("teams", "a", {"name": "Alpha"})
        raise RuntimeError("boom")

    with pytest.raises(RuntimeError):
        await store.run_transaction(body)
    assert await store.query("teams") == []
    assert store.commits == 0


@pytest.mark.asyncio
async def test_commit_batch_is_all_or_nothing():
    store = MemoryStore()
    ops = [
        WriteOp("set", "teams", "a", {"name": "Alpha"}),
        WriteOp("update", "teams", "missing", {"name": "?"}),
    ]
    with pytest.raises(KeyError):
        await store.commit_batch(ops)
    assert await store.get("teams", "a") is None

    await store.commit_batch([ops[0], WriteOp("update", "teams", "a", {"region": "eu"})])
    assert await store.get("teams", "a") == {"name": "Alpha", "region": "eu"}
    assert store.version_of("teams", "a") == 2
