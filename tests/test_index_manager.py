"""Tests for the chunk index lifecycle and semantic search over it."""

import pytest

from tests.conftest import NOW, FakeEmbedder, InMemoryVault
from vaultseek.core.index import ChunkIndexManager, IndexPersistenceManager
from vaultseek.core.models import Engine
from vaultseek.core.patterns import PathFilter


@pytest.fixture
def vault():
    return InMemoryVault({
        "music/piano.md": "Piano scales and arpeggios every morning.",
        "music/guitar.md": "Guitar chords and strumming patterns.",
        "kitchen/bread.md": "Sourdough bread with a starter.",
        "private/diary.md": "Secret piano thoughts.",
    })


def build(vault, tmp_path, embedder=None, **kwargs):
    persistence = IndexPersistenceManager(tmp_path / "index")
    return ChunkIndexManager(vault, persistence, embedder or FakeEmbedder(), **kwargs)


@pytest.mark.asyncio
async def test_index_vault_persists_and_reloads(vault, tmp_path):
    manager = build(vault, tmp_path, path_filter=PathFilter(exclusions="private"))

    assert await manager.index_vault() == 3
    assert manager.indexed_paths() == {"music/piano.md", "music/guitar.md", "kitchen/bread.md"}

    reloaded = build(vault, tmp_path)
    assert await reloaded.is_available()
    assert reloaded.indexed_paths() == manager.indexed_paths()


@pytest.mark.asyncio
async def test_search_ranks_best_chunk_with_normalized_scores(vault, tmp_path):
    manager = build(vault, tmp_path)
    await manager.index_vault()

    results = await manager.search(["sourdough bread starter"], max_k=10)

    assert results[0].id == "kitchen/bread.md"
    assert results[0].score == 1.0
    assert results[-1].score == 0.0
    assert all(0.0 <= r.score <= 1.0 for r in results)
    assert all(r.engine is Engine.SEMANTIC for r in results)
    assert len({r.id for r in results}) == len(results)


@pytest.mark.asyncio
async def test_search_respects_candidates_and_max_k(vault, tmp_path):
    manager = build(vault, tmp_path)
    await manager.index_vault()

    restricted = await manager.search(["piano"], max_k=10, candidates=["music/guitar.md"])
    single = await manager.search(["piano"], max_k=1)

    assert [r.id for r in restricted] == ["music/guitar.md"]
    assert restricted[0].score == 1.0
    assert len(single) == 1


@pytest.mark.asyncio
async def test_search_without_index_is_empty(vault, tmp_path):
    manager = build(vault, tmp_path)
    assert not await manager.is_available()
    assert await manager.search(["piano"], max_k=5) == []


@pytest.mark.asyncio
async def test_failed_embedding_batch_is_skipped(vault, tmp_path):
    manager = build(vault, tmp_path, embedder=FakeEmbedder(fail_on={"Sourdough"}), batch_size=1)

    await manager.index_vault()

    assert "kitchen/bread.md" not in manager.indexed_paths()
    assert "music/piano.md" in manager.indexed_paths()


@pytest.mark.asyncio
async def test_incremental_index_updates_adds_and_removes(vault, tmp_path):
    embedder = FakeEmbedder()
    manager = build(vault, tmp_path, embedder=embedder)
    await manager.index_vault()

    assert await manager.index_vault_incremental() == 0

    vault.add("music/piano.md", "Piano pedals now.", mtime=NOW + 10)
    vault.add("notes/new.md", "A fresh idea.")
    vault.remove("music/guitar.md")
    calls_before = embedder.document_calls

    assert await manager.index_vault_incremental() == 3

    assert manager.indexed_paths() == {"music/piano.md", "kitchen/bread.md", "notes/new.md", "private/diary.md"}
    assert embedder.document_calls > calls_before
    mtimes = manager.persistence.indexed_mtimes()
    assert mtimes["music/piano.md"] == NOW + 10


@pytest.mark.asyncio
async def test_reindex_file(vault, tmp_path):
    manager = build(vault, tmp_path)
    await manager.index_vault()

    assert not await manager.reindex_file("music/piano.md")

    vault.add("music/piano.md", "Piano, revised.", mtime=NOW + 5)
    assert await manager.reindex_file("music/piano.md")

    vault.remove("music/guitar.md")
    assert await manager.reindex_file("music/guitar.md")
    assert "music/guitar.md" not in manager.indexed_paths()
    assert "music/guitar.md" not in {r.path for r in await manager.persistence.read_records()}


@pytest.mark.asyncio
async def test_remove_unknown_file_is_noop(vault, tmp_path):
    manager = build(vault, tmp_path)
    await manager.index_vault()
    assert not await manager.remove_file("nope.md")


@pytest.mark.asyncio
async def test_clear_index(vault, tmp_path):
    manager = build(vault, tmp_path)
    await manager.index_vault()

    await manager.clear_index()

    assert not await manager.is_available()
    assert not await manager.persistence.has_index()


@pytest.mark.asyncio
async def test_single_file_updates_do_not_load_cold_index(tmp_path, monkeypatch):
    vault = InMemoryVault({f"n{i}.md": f"Note number {i} about widgets." for i in range(50)})
    await build(vault, tmp_path).index_vault()

    cold = build(vault, tmp_path)
    loads = []
    original = cold.persistence.read_records

    async def counting_read_records():
        records = await original()
        loads.append(len(records))
        return records

    monkeypatch.setattr(cold.persistence, "read_records", counting_read_records)

    assert not await cold.reindex_file("n2.md")
    vault.add("n3.md", "Note three, edited.", mtime=NOW + 500)
    assert await cold.reindex_file("n3.md")
    assert await cold.remove_file("n4.md")
    assert not await cold.remove_file("n4.md")

    assert loads == []
    assert cold._records is None
    mtimes = cold.persistence.indexed_mtimes()
    assert mtimes["n3.md"] == NOW + 500
    assert "n4.md" not in mtimes
    assert len(mtimes) == 49


@pytest.mark.asyncio
async def test_reindex_file_honours_caller_mtime(vault, tmp_path):
    await build(vault, tmp_path).index_vault()
    cold = build(vault, tmp_path)

    assert not await cold.reindex_file("music/piano.md", previous_mtime=NOW + 1000)
    assert await cold.reindex_file("music/piano.md", previous_mtime=0.0)
