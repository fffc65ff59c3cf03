"""
JSON-Lines persistence for chunk embeddings.

The index is stored as numbered partitions::

    <index_dir>/<base>-000.jsonl
    <index_dir>/<base>-001.jsonl
    ...

Each line is one ChunkRecord. A partition is closed once the next line would
push it past the byte cap, so after a rewrite only the last partition may be
smaller than the cap. An older single-file ``<base>.jsonl`` is still read but
never written; the first write removes it.

Writes are streamed: partitions are written to ``.tmp`` files and moved into
place once complete, so a patch touching one note never holds the whole index
in memory.
"""

import asyncio
import json
import logging
import os
from pathlib import Path
from typing import Dict, Iterable, Iterator, List, Optional, Sequence

from pydantic import ValidationError

from vaultseek.core.models import ChunkRecord

logger = logging.getLogger(__name__)

DEFAULT_MAX_PARTITION_BYTES = 150 * 1024 * 1024
MAX_PARTITIONS = 1000


class IndexPersistenceError(Exception):
    """Raised when partitions cannot be written or removed."""
    pass


def record_line(record: ChunkRecord) -> str:
    return record.model_dump_json() + "\n"


class _PartitionWriter:
    """Streams lines into size-capped temporary partition files."""

    def __init__(self, manager: "IndexPersistenceManager"):
        self.manager = manager
        self.temp_paths: List[Path] = []
        self._handle = None
        self._bytes = 0
        self._lines = 0

    def _open_next(self) -> None:
        self._close_current()
        index = len(self.temp_paths)
        if index >= MAX_PARTITIONS:
            raise IndexPersistenceError(f"Index exceeds {MAX_PARTITIONS} partitions")
        temp = self.manager.partition_path(index).with_suffix(".jsonl.tmp")
        self.temp_paths.append(temp)
        self._handle = open(temp, "w", encoding="utf-8", newline="\n")
        self._bytes = 0
        self._lines = 0

    def _close_current(self) -> None:
        if self._handle is not None:
            self._handle.close()
            self._handle = None

    def write_line(self, line: str) -> None:
        if not line.endswith("\n"):
            line += "\n"
        size = len(line.encode("utf-8"))
        if self._handle is None or (
            self._lines > 0 and self._bytes + size > self.manager.max_partition_bytes
        ):
            self._open_next()
        self._handle.write(line)
        self._bytes += size
        self._lines += 1

    def commit(self) -> int:
        """Move finished partitions into place and return their count."""
        self._close_current()
        for index, temp in enumerate(self.temp_paths):
            os.replace(temp, self.manager.partition_path(index))
        return len(self.temp_paths)

    def abort(self) -> None:
        self._close_current()
        for temp in self.temp_paths:
            temp.unlink(missing_ok=True)


class IndexPersistenceManager:
    """Reads and writes the partitioned chunk index.

    Args:
        index_dir: Directory holding the partitions
        base_name: File name prefix of the partitions
        max_partition_bytes: Byte cap per partition
    """

    def __init__(
        self,
        index_dir: Path,
        base_name: str = "vaultseek-index",
        max_partition_bytes: int = DEFAULT_MAX_PARTITION_BYTES,
    ):
        if max_partition_bytes <= 0:
            raise ValueError("max_partition_bytes must be positive")
        self.index_dir = Path(index_dir)
        self.base_name = base_name
        self.max_partition_bytes = max_partition_bytes
        self._write_lock = asyncio.Lock()

    def partition_path(self, index: int) -> Path:
        return self.index_dir / f"{self.base_name}-{index:03d}.jsonl"

    @property
    def legacy_path(self) -> Path:
        return self.index_dir / f"{self.base_name}.jsonl"

    def existing_partition_paths(self) -> List[Path]:
        """Partitions in order, probing until the first missing index.

        Falls back to the legacy single file when no partition exists.
        """
        paths: List[Path] = []
        for index in range(MAX_PARTITIONS):
            path = self.partition_path(index)
            if not path.exists():
                break
            paths.append(path)
        if not paths and self.legacy_path.exists():
            return [self.legacy_path]
        return paths

    async def has_index(self) -> bool:
        paths = await asyncio.to_thread(self.existing_partition_paths)
        return bool(paths)

    # ------------------------------------------------------------------
    # Reading
    # ------------------------------------------------------------------

    def iter_lines(self) -> Iterator[str]:
        for path in self.existing_partition_paths():
            try:
                with open(path, "r", encoding="utf-8") as handle:
                    for line in handle:
                        if line.strip():
                            yield line
            except FileNotFoundError:
                logger.warning(f"Partition disappeared while reading: {path}")

    def iter_records(self) -> Iterator[ChunkRecord]:
        """Yield every parseable record; malformed lines are skipped."""
        for line in self.iter_lines():
            try:
                yield ChunkRecord.model_validate_json(line)
            except ValidationError as e:
                logger.warning(f"Skipping malformed index line: {e.errors()[0]['msg']}")

    async def read_records(self) -> List[ChunkRecord]:
        """All records in partition order; empty when there is no index."""
        records = await asyncio.to_thread(lambda: list(self.iter_records()))
        logger.info(f"Loaded {len(records)} chunk records from {self.index_dir}")
        return records

    def indexed_mtimes(self) -> Dict[str, float]:
        """Note path -> mtime recorded in the index, read by streaming."""
        mtimes: Dict[str, float] = {}
        for record in self.iter_records():
            mtimes[record.path] = max(mtimes.get(record.path, 0.0), record.mtime)
        return mtimes

    def indexed_mtime(self, path: str) -> Optional[float]:
        """Recorded mtime of one note, or None when it is not indexed."""
        found: Optional[float] = None
        for record in self.iter_records():
            if record.path == path:
                found = record.mtime if found is None else max(found, record.mtime)
        return found

    # ------------------------------------------------------------------
    # Writing
    # ------------------------------------------------------------------

    def _delete_partitions_from(self, start: int) -> int:
        removed = 0
        index = start
        while index < MAX_PARTITIONS:
            path = self.partition_path(index)
            if not path.exists():
                break
            path.unlink()
            removed += 1
            index += 1
        return removed

    def _stream(self, lines: Iterable[str], remove_legacy: bool) -> int:
        self.index_dir.mkdir(parents=True, exist_ok=True)
        writer = _PartitionWriter(self)
        try:
            for line in lines:
                writer.write_line(line)
            count = writer.commit()
        except BaseException:
            writer.abort()
            raise
        stale = self._delete_partitions_from(count)
        if remove_legacy and self.legacy_path.exists():
            self.legacy_path.unlink()
        if stale:
            logger.info(f"Removed {stale} stale partitions")
        return count

    def _write_records_sync(self, records: Iterable[ChunkRecord]) -> int:
        if self.legacy_path.exists():
            self.legacy_path.unlink()
        return self._stream((record_line(r) for r in records), remove_legacy=True)

    async def write_records(self, records: Iterable[ChunkRecord]) -> int:
        """Full rewrite of the index.

        Returns:
            Number of partitions written

        Raises:
            IndexPersistenceError: If the partitions cannot be written
        """
        async with self._write_lock:
            try:
                count = await asyncio.to_thread(self._write_records_sync, records)
            except OSError as e:
                raise IndexPersistenceError(f"Failed to write index: {e}") from e
        logger.info(f"Wrote chunk index to {count} partitions in {self.index_dir}")
        return count

    def _replace_paths_sync(self, replacements: Dict[str, Sequence[ChunkRecord]]) -> int:
        targets = set(replacements)
        kept = 0
        dropped = 0

        def lines() -> Iterator[str]:
            nonlocal kept, dropped
            for line in self.iter_lines():
                try:
                    path = json.loads(line).get("path")
                except (ValueError, AttributeError):
                    path = None
                if path in targets:
                    dropped += 1
                    continue
                kept += 1
                yield line
            for records in replacements.values():
                for record in records:
                    yield record_line(record)

        count = self._stream(lines(), remove_legacy=True)
        added = sum(len(records) for records in replacements.values())
        logger.info(
            f"Patched index for {len(targets)} notes: kept {kept}, "
            f"dropped {dropped}, added {added} records in {count} partitions"
        )
        return count

    async def replace_paths(self, replacements: Dict[str, Sequence[ChunkRecord]]) -> int:
        """Replace the records of several notes in one streaming pass.

        Lines of other notes are copied byte-for-byte and keep their order.
        A note mapped to an empty list is removed.
        """
        for path, records in replacements.items():
            for record in records:
                if record.path != path:
                    raise ValueError(f"Record {record.id} does not belong to {path}")
        if not replacements:
            return len(await asyncio.to_thread(self.existing_partition_paths))
        async with self._write_lock:
            try:
                return await asyncio.to_thread(self._replace_paths_sync, replacements)
            except OSError as e:
                raise IndexPersistenceError(f"Failed to patch index: {e}") from e

    async def update_file_records(self, path: str, records: Sequence[ChunkRecord]) -> int:
        """Replace the records of one note without loading the whole index."""
        return await self.replace_paths({path: list(records)})

    async def remove_file_records(self, path: str) -> int:
        return await self.replace_paths({path: []})

    def _clear_sync(self) -> int:
        removed = self._delete_partitions_from(0)
        if self.legacy_path.exists():
            self.legacy_path.unlink()
            removed += 1
        return removed

    async def clear_index(self) -> int:
        """Remove every partition (and the legacy file)."""
        async with self._write_lock:
            try:
                removed = await asyncio.to_thread(self._clear_sync)
            except OSError as e:
                raise IndexPersistenceError(f"Failed to clear index: {e}") from e
        logger.info(f"Cleared chunk index ({removed} files)")
        return removed
