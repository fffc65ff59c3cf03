"""Markdown folder adapter implementing DocumentStore, LinkGraph and MetadataReader."""

from __future__ import annotations

import asyncio
import logging
import re
from collections import defaultdict
from dataclasses import dataclass, field
from pathlib import Path
from typing import Any, Dict, List, Set

import frontmatter

from vaultseek.core.interfaces import NoteFile

logger = logging.getLogger(__name__)

WIKILINK_PATTERN = re.compile(r"\[\[([^\]]+)\]\]")
INLINE_TAG_PATTERN = re.compile(r"(?<![\w#&/])#([\w][\w/-]*)", re.UNICODE)
FENCE_PATTERN = re.compile(r"```.*?```", re.DOTALL)


def normalize_slug(text: str | None) -> str:
    """Normalize text into a slug suitable for wikilink matching."""
    if not text:
        return ""
    slug = text.lower()
    slug = re.sub(r"[\s_]+", "-", slug)
    slug = re.sub(r"[^\w-]", "", slug, flags=re.UNICODE)
    slug = re.sub(r"-+", "-", slug)
    return slug.strip("-")


def normalize_tag(tag: Any) -> str:
    if not isinstance(tag, str):
        return ""
    cleaned = tag.strip().lstrip("#").lower()
    return f"#{cleaned}" if cleaned else ""


def extract_wikilinks(body: str) -> List[str]:
    """Link targets with aliases (``|``) and headings (``#``) removed."""
    targets: List[str] = []
    for match in WIKILINK_PATTERN.finditer(body or ""):
        target = match.group(1).split("|", 1)[0].split("#", 1)[0].strip()
        if target:
            targets.append(target)
    return targets


def extract_tags(metadata: Dict[str, Any], body: str) -> List[str]:
    """Frontmatter ``tags`` plus inline ``#tags`` outside code fences."""
    raw = metadata.get("tags") or metadata.get("tag") or []
    if isinstance(raw, str):
        raw = re.split(r"[,\s]+", raw)
    tags: List[str] = []
    for value in list(raw) + INLINE_TAG_PATTERN.findall(FENCE_PATTERN.sub(" ", body or "")):
        tag = normalize_tag(value)
        if tag and tag not in tags:
            tags.append(tag)
    return tags


@dataclass
class _NoteEntry:
    file: NoteFile
    links: List[str] = field(default_factory=list)
    tags: List[str] = field(default_factory=list)
    frontmatter: Dict[str, Any] = field(default_factory=dict)


class FileSystemVault:
    """A folder of Markdown notes.

    Call ``refresh()`` to (re)scan the folder; link graph and tags reflect the
    last scan. Folders starting with ``.`` are ignored.
    """

    def __init__(self, root: Path | str):
        self.root = Path(root).expanduser().resolve()
        self._entries: Dict[str, _NoteEntry] = {}
        self._outgoing: Dict[str, Dict[str, int]] = {}
        self._backlinks: Dict[str, Set[str]] = {}
        self._by_basename: Dict[str, List[str]] = defaultdict(list)
        self._by_slug: Dict[str, List[str]] = defaultdict(list)
        self._cache: Dict[str, tuple[float, str]] = {}
        self._active_path: str | None = None

    # ------------------------------------------------------------------
    # Scanning
    # ------------------------------------------------------------------

    def _relative(self, path: Path) -> str:
        return path.relative_to(self.root).as_posix()

    def _note_file(self, absolute: Path) -> NoteFile:
        stat = absolute.stat()
        return NoteFile(
            path=self._relative(absolute),
            basename=absolute.stem,
            extension=absolute.suffix.lstrip("."),
            mtime=stat.st_mtime,
            ctime=getattr(stat, "st_birthtime", stat.st_ctime),
            size=stat.st_size,
        )

    def refresh(self) -> int:
        """Rescan the folder. Returns the number of notes found."""
        entries: Dict[str, _NoteEntry] = {}
        for absolute in sorted(self.root.rglob("*.md")):
            relative = absolute.relative_to(self.root)
            if any(part.startswith(".") for part in relative.parts[:-1]):
                continue
            try:
                file = self._note_file(absolute)
                text = absolute.read_text(encoding="utf-8", errors="replace")
            except OSError as exc:
                logger.warning("Skipping unreadable note %s: %s", absolute, exc)
                continue
            try:
                post = frontmatter.loads(text)
                metadata, body = dict(post.metadata), post.content
            except Exception:
                logger.warning("Invalid frontmatter in %s, treating as plain text", file.path)
                metadata, body = {}, text
            entries[file.path] = _NoteEntry(
                file=file,
                links=extract_wikilinks(body),
                tags=extract_tags(metadata, body),
                frontmatter=metadata,
            )
            self._cache[file.path] = (file.mtime, text)

        self._entries = entries
        self._by_basename = defaultdict(list)
        self._by_slug = defaultdict(list)
        for path, entry in entries.items():
            self._by_basename[entry.file.basename.lower()].append(path)
            self._by_slug[normalize_slug(entry.file.basename)].append(path)
        self._build_graph()
        logger.info("Scanned %d notes in %s", len(entries), self.root)
        return len(entries)

    def _build_graph(self) -> None:
        outgoing: Dict[str, Dict[str, int]] = {}
        backlinks: Dict[str, Set[str]] = defaultdict(set)
        for path, entry in self._entries.items():
            targets: Dict[str, int] = {}
            for link in entry.links:
                resolved = self.resolve_link(link, path)
                if resolved is None or resolved.path == path:
                    continue
                targets[resolved.path] = targets.get(resolved.path, 0) + 1
                backlinks[resolved.path].add(path)
            outgoing[path] = targets
        self._outgoing = outgoing
        self._backlinks = dict(backlinks)

    # ------------------------------------------------------------------
    # DocumentStore
    # ------------------------------------------------------------------

    def list_markdown_files(self) -> List[NoteFile]:
        return [entry.file for entry in self._entries.values()]

    def get_file(self, path: str) -> NoteFile | None:
        entry = self._entries.get(path)
        return entry.file if entry else None

    def _absolute(self, path: str) -> Path:
        absolute = (self.root / path).resolve()
        if not absolute.is_relative_to(self.root):
            raise PermissionError(f"Path escapes vault root: {path}")
        return absolute

    def _read_sync(self, path: str, fresh: bool) -> str:
        absolute = self._absolute(path)
        mtime = absolute.stat().st_mtime
        cached = self._cache.get(path)
        if not fresh and cached is not None and cached[0] == mtime:
            return cached[1]
        text = absolute.read_text(encoding="utf-8", errors="replace")
        self._cache[path] = (mtime, text)
        return text

    async def read(self, path: str, fresh: bool = False) -> str:
        return await asyncio.to_thread(self._read_sync, path, fresh)

    async def read_binary(self, path: str) -> bytes:
        return await asyncio.to_thread(self._absolute(path).read_bytes)

    def get_active_file(self) -> NoteFile | None:
        return self.get_file(self._active_path) if self._active_path else None

    def set_active_file(self, path: str | None) -> None:
        if path is not None and path not in self._entries:
            raise FileNotFoundError(f"Note not found: {path}")
        self._active_path = path

    def resolve_link(self, link_text: str, source_path: str = "") -> NoteFile | None:
        """Resolve ``Title``, ``folder/Title`` or ``Title.md`` to a note.

        Basename matches in the source note's folder win; otherwise the
        shortest path wins.
        """
        target = link_text.strip()
        if target.lower().endswith(".md"):
            target = target[:-3]
        if not target:
            return None

        if "/" in target:
            wanted = f"{target}.md".lower()
            for path, entry in self._entries.items():
                if path.lower() == wanted:
                    return entry.file
            target = target.rsplit("/", 1)[1]

        candidates = self._by_basename.get(target.lower()) or self._by_slug.get(normalize_slug(target)) or []
        if not candidates:
            return None
        folder = source_path.rsplit("/", 1)[0] if "/" in source_path else ""
        same_folder = [p for p in candidates if (p.rsplit("/", 1)[0] if "/" in p else "") == folder]
        best = same_folder[0] if same_folder else min(candidates, key=lambda p: (len(p), p))
        return self._entries[best].file

    # ------------------------------------------------------------------
    # LinkGraph
    # ------------------------------------------------------------------

    def outgoing_links(self, path: str) -> Dict[str, int]:
        return dict(self._outgoing.get(path, {}))

    def backlinks(self, path: str) -> Set[str]:
        return set(self._backlinks.get(path, set()))

    # ------------------------------------------------------------------
    # MetadataReader
    # ------------------------------------------------------------------

    def get_tags(self, path: str) -> List[str]:
        entry = self._entries.get(path)
        return list(entry.tags) if entry else []

    def get_frontmatter(self, path: str) -> Dict[str, Any]:
        entry = self._entries.get(path)
        return dict(entry.frontmatter) if entry else {}


__all__ = ["FileSystemVault", "extract_tags", "extract_wikilinks", "normalize_slug", "normalize_tag"]
