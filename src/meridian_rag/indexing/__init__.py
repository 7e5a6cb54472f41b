"""meridian_rag.indexing

Turning repository snapshots into searchable index snapshots.

Modules
-------
source
    Snapshot content providers and path filters.
file_indexer
    Per-file chunk, embed and store step shared by both indexers.
repository_indexer
    Full indexing of one repository snapshot.
incremental_indexer
    Applying added, modified and removed files to a completed index.
"""
from .file_indexer import FileIndexer, FileIndexResult
from .incremental_indexer import IncrementalIndexer
from .repository_indexer import RepositoryIndexer
from .source import ContentProvider, LocalDirectoryProvider, TreeEntry, is_code_file, is_excluded

__all__ = [
    "ContentProvider",
    "FileIndexResult",
    "FileIndexer",
    "IncrementalIndexer",
    "LocalDirectoryProvider",
    "RepositoryIndexer",
    "TreeEntry",
    "is_code_file",
    "is_excluded",
]
