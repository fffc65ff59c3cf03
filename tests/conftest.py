"""Shared fixtures: an in-memory vault and fake model providers."""

import asyncio
import hashlib
import re
from typing import Dict, List, Optional, Set

import pytest

from vaultseek.config import Settings
from vaultseek.core.interfaces import ChatResponse, NoteFile

DAY = 86400.0
NOW = 1_760_000_000.0  # fixed "now" for recency tests

_LINK = re.compile(r"\[\[([^\]|#]+)")
_TAG = re.compile(r"(?<![\w#])#([\w][\w/-]*)")


class InMemoryVault:
    """DocumentStore, LinkGraph and MetadataReader over a dict of notes."""

    def __init__(self, notes: Optional[Dict[str, str]] = None, mtimes: Optional[Dict[str, float]] = None):
        self.contents: Dict[str, str] = {}
        self.mtimes: Dict[str, float] = {}
        self.tags: Dict[str, List[str]] = {}
        self.unreadable: Set[str] = set()
        self.active: Optional[str] = None
        self.read_count = 0
        for path, text in (notes or {}).items():
            self.add(path, text, (mtimes or {}).get(path, NOW))

    def add(self, path: str, text: str, mtime: float = NOW, tags: Optional[List[str]] = None) -> None:
        self.contents[path] = text
        self.mtimes[path] = mtime
        found = tags if tags is not None else _TAG.findall(text)
        self.tags[path] = [f"#{t.lower().lstrip('#')}" for t in found]

    def remove(self, path: str) -> None:
        self.contents.pop(path, None)
        self.mtimes.pop(path, None)
        self.tags.pop(path, None)

    def _file(self, path: str) -> NoteFile:
        name = path.rsplit("/", 1)[-1]
        return NoteFile(
            path=path,
            basename=name[:-3] if name.endswith(".md") else name,
            extension="md",
            mtime=self.mtimes[path],
            ctime=self.mtimes[path],
            size=len(self.contents[path].encode("utf-8")),
        )

    # DocumentStore
    def list_markdown_files(self) -> List[NoteFile]:
        return [self._file(p) for p in self.contents]

    def get_file(self, path: str) -> Optional[NoteFile]:
        return self._file(path) if path in self.contents else None

    async def read(self, path: str, fresh: bool = False) -> str:
        self.read_count += 1
        if path in self.unreadable or path not in self.contents:
            raise OSError(f"cannot read {path}")
        return self.contents[path]

    async def read_binary(self, path: str) -> bytes:
        return (await self.read(path)).encode("utf-8")

    def get_active_file(self) -> Optional[NoteFile]:
        return self.get_file(self.active) if self.active else None

    def resolve_link(self, link_text: str, source_path: str = "") -> Optional[NoteFile]:
        target = link_text.strip().lower()
        for path in self.contents:
            file = self._file(path)
            if file.basename.lower() == target or path.lower() == f"{target}.md":
                return file
        return None

    # LinkGraph
    def outgoing_links(self, path: str) -> Dict[str, int]:
        links: Dict[str, int] = {}
        for target in _LINK.findall(self.contents.get(path, "")):
            resolved = self.resolve_link(target, path)
            if resolved is not None and resolved.path != path:
                links[resolved.path] = links.get(resolved.path, 0) + 1
        return links

    def backlinks(self, path: str) -> Set[str]:
        return {source for source in self.contents if path in self.outgoing_links(source)}

    # MetadataReader
    def get_tags(self, path: str) -> List[str]:
        return list(self.tags.get(path, []))

    def get_frontmatter(self, path: str) -> Dict:
        return {}


class FakeChatModel:
    """Returns a canned reply; can be made slow or failing."""

    def __init__(self, content: str = "", delay: float = 0.0, error: Optional[Exception] = None):
        self.content = content
        self.delay = delay
        self.error = error
        self.calls: List[str] = []
        self.signals: List = []

    async def invoke(self, prompt: str, *, signal=None) -> ChatResponse:
        self.calls.append(prompt)
        self.signals.append(signal)
        if self.delay:
            await asyncio.sleep(self.delay)
        if self.error is not None:
            raise self.error
        return ChatResponse(content=self.content)


class FakeEmbedder:
    """Deterministic bag-of-words embeddings over a small hashed vocabulary."""

    def __init__(self, dims: int = 32, fail_on: Optional[Set[str]] = None):
        self.dims = dims
        self.fail_on = fail_on or set()
        self.query_calls = 0
        self.document_calls = 0

    def vector(self, text: str) -> List[float]:
        for marker in self.fail_on:
            if marker in text:
                raise RuntimeError(f"embedding failed for {marker}")
        vec = [0.0] * self.dims
        for word in re.findall(r"\w+", text.lower()):
            if len(word) < 3 or word in {"note", "title"}:
                continue
            bucket = int(hashlib.md5(word.encode("utf-8")).hexdigest(), 16) % self.dims
            vec[bucket] += 1.0
        return vec

    async def embed_query(self, text: str) -> List[float]:
        self.query_calls += 1
        return self.vector(text)

    async def embed_documents(self, texts: List[str]) -> List[List[float]]:
        self.document_calls += 1
        return [self.vector(t) for t in texts]


@pytest.fixture
def settings(tmp_path):
    return Settings(
        vault_path=tmp_path / "vault",
        index_dir=tmp_path / "index",
        openrouter_api_key=None,
        _env_file=None,
    )


@pytest.fixture
def linked_vault():
    """A small vault with links, tags and a chain a -> b -> c -> d."""
    return InMemoryVault({
        "projects/alpha.md": "# Alpha\nThe alpha project plan. See [[beta]]. #project/alpha",
        "projects/beta.md": "# Beta\nBeta links to [[gamma]]. #project",
        "projects/gamma.md": "# Gamma\nGamma refers to [[delta]].",
        "projects/delta.md": "# Delta\nThe end of the chain.",
        "notes/piano.md": "# Piano\nPiano practice: scales and arpeggios. #music",
        "notes/guitar.md": "Guitar chords and practice routine. #music",
        "notes/projectx.md": "Unrelated note. #projectx",
        "journal/2025-10-08.md": "Daily log: practiced piano.",
        "journal/2025-10-09.md": "Daily log: planning the alpha project.",
    })
