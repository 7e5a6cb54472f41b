"""meridian_rag.common.errors

Exception types raised by the retrieval and indexing layers.

Classes
-------
MeridianError
    Base class for all package-specific errors.
NoCompletedIndexError
    Raised when a project has no COMPLETED index to query.
IndexNotFoundError
    Raised when an index id does not exist.
InvalidStatusTransition
    Raised when an index status change violates the lifecycle.
"""


class MeridianError(Exception):
    """Base class for package-specific errors."""


class NoCompletedIndexError(MeridianError, LookupError):
    """Raised when a project has no COMPLETED index to query."""

    def __init__(self, project_id: str):
        super().__init__(f"No completed index found for project {project_id}")
        self.project_id = project_id


class IndexNotFoundError(MeridianError, LookupError):
    def __init__(self, index_id: str):
        super().__init__(f"Index {index_id} not found")
        self.index_id = index_id


class InvalidStatusTransition(MeridianError, ValueError):
    def __init__(self, index_id: str, current: str, target: str):
        super().__init__(f"Index {index_id} cannot move from {current} to {target}")
        self.index_id = index_id
        self.current = current
        self.target = target


__all__ = [
    "IndexNotFoundError",
    "InvalidStatusTransition",
    "MeridianError",
    "NoCompletedIndexError",
]
