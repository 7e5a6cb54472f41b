import pytest

from meridian_rag.common.schemas import IndexStatus
from meridian_rag.indexing.repository_indexer import RepositoryIndexer
from meridian_rag.retrieval.vector_store import SearchFilter

EXPECTED_FILES = {"src/auth/jwt.ts", "src/ui/style.js", "lib/math_utils.py", "db/query.go"}


async def test_index_repository_completes(repository_indexer, index_store, chunk_store, vector_store):
    index_id = await repository_indexer.index_repository("acme", "shop", "proj-1", commit_sha="abc123")

    index = await index_store.get(index_id)
    assert index.status == IndexStatus.COMPLETED
    assert index.commit_sha == "abc123"
    assert index.branch == "main"
    assert index.embedding_model == "topic-test-embedding"
    assert index.embedding_dimensions == 5
    assert set(index.indexed_files) == EXPECTED_FILES
    assert index.total_files == len(EXPECTED_FILES)
    assert index.total_chunks == await chunk_store.count(index_id)
    assert index.total_chunks == await vector_store.count(SearchFilter.for_index(index_id))
    assert index.total_tokens > 0
    assert index.cost > 0
    assert index.completed_at is not None
    assert index.error is None


async def test_excluded_and_non_code_files_are_skipped(indexed_project, chunk_store):
    assert await chunk_store.count(indexed_project, ["README.md"]) == 0
    assert await chunk_store.count(indexed_project, ["node_modules/pkg/index.js"]) == 0


async def test_structural_chunks_for_typescript(indexed_project, chunk_store):
    assert await chunk_store.count(indexed_project, ["src/auth/jwt.ts"]) == 2


async def test_commit_defaults_to_head(repository_indexer, index_store):
    index_id = await repository_indexer.index_repository("acme", "shop", "proj-1")
    assert (await index_store.get(index_id)).commit_sha == "HEAD"


async def test_reindex_reuses_cached_embeddings(repository_indexer, index_store, embedder):
    first = await repository_indexer.index_repository("acme", "shop", "proj-1")
    calls = len(embedder.calls)
    second = await repository_indexer.index_repository("acme", "shop", "proj-1")

    assert len(embedder.calls) == calls
    a, b = await index_store.get(first), await index_store.get(second)
    assert b.total_tokens == a.total_tokens
    assert b.cost == 0.0


async def test_indexing_event_recorded(indexed_project, metrics):
    block = metrics.get_metrics()["indexing"]
    assert block["total_projects_indexed"] == 1
    assert block["indexing_success_rate"] == 1.0
    assert block["failed_indexings"] == 0


async def test_unreadable_file_is_skipped(repository_indexer, provider, index_store):
    original = provider.get_file_content

    async def flaky(owner, repo, path, ref=None):
        if path == "db/query.go":
            raise OSError("permission denied")
        return await original(owner, repo, path, ref)

    provider.get_file_content = flaky
    index_id = await repository_indexer.index_repository("acme", "shop", "proj-1")

    index = await index_store.get(index_id)
    assert index.status == IndexStatus.COMPLETED
    assert "db/query.go" not in index.indexed_files
    assert index.total_files == len(EXPECTED_FILES) - 1


async def test_fatal_error_marks_index_failed(repository_indexer, provider, index_store, metrics):
    async def broken_tree(owner, repo, ref=None):
        raise ConnectionError("host unreachable")

    provider.get_repository_tree = broken_tree
    with pytest.raises(ConnectionError):
        await repository_indexer.index_repository("acme", "shop", "proj-9")

    (index,) = await index_store.list_for_project("proj-9")
    assert index.status == IndexStatus.FAILED
    assert "host unreachable" in index.error
    assert index.completed_at is not None
    assert metrics.get_metrics()["indexing"]["failed_indexings"] == 1


def test_select_files(repository_indexer):
    from meridian_rag.indexing.source import TreeEntry

    tree = [
        TreeEntry("src", "tree"),
        TreeEntry("src/a.ts"),
        TreeEntry("docs/guide.md"),
        TreeEntry("vendor/lib.go"),
        TreeEntry("weird.ts", "tree"),
    ]
    assert repository_indexer.select_files(tree) == ["src/a.ts"]


def test_batch_size_must_be_positive(provider, file_indexer, index_store, vector_store):
    with pytest.raises(ValueError):
        RepositoryIndexer(
            provider=provider,
            file_indexer=file_indexer,
            index_store=index_store,
            vector_store=vector_store,
            batch_size=0,
        )
