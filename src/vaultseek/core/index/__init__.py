"""Persistent, partitioned chunk-embedding index."""

from vaultseek.core.index.manager import ChunkIndexManager
from vaultseek.core.index.persistence import IndexPersistenceError, IndexPersistenceManager

__all__ = ["ChunkIndexManager", "IndexPersistenceError", "IndexPersistenceManager"]
