"""Narrow capability interfaces consumed by the retrieval core.

The core never touches a host vault API directly: a host adapter (see
``vaultseek.adapters.filesystem``) implements these protocols.
"""

from dataclasses import dataclass
from typing import Any, Dict, List, Optional, Protocol, Set

from vaultseek.core.cancellation import CancellationToken


@dataclass(frozen=True)
class NoteFile:
    """File handle reported by a DocumentStore."""

    path: str
    basename: str
    extension: str
    mtime: float
    ctime: float
    size: int


@dataclass(frozen=True)
class ChatResponse:
    content: str


class DocumentStore(Protocol):
    """Enumerate and read notes."""

    def list_markdown_files(self) -> List[NoteFile]: ...

    def get_file(self, path: str) -> Optional[NoteFile]: ...

    async def read(self, path: str, fresh: bool = False) -> str:
        """Read note text. ``fresh`` bypasses any read cache.

        Raises:
            OSError: If the file cannot be read
        """
        ...

    async def read_binary(self, path: str) -> bytes: ...

    def get_active_file(self) -> Optional[NoteFile]: ...

    def resolve_link(self, link_text: str, source_path: str = "") -> Optional[NoteFile]:
        """Resolve a wiki link target (``Title`` or ``folder/Title``) to a file."""
        ...


class LinkGraph(Protocol):
    """Outgoing links and backlinks between notes."""

    def outgoing_links(self, path: str) -> Dict[str, int]:
        """Map of resolved target path to link count."""
        ...

    def backlinks(self, path: str) -> Set[str]: ...


class MetadataReader(Protocol):
    """Per-note tags and frontmatter."""

    def get_tags(self, path: str) -> List[str]:
        """Lowercased tags with their leading ``#``."""
        ...

    def get_frontmatter(self, path: str) -> Dict[str, Any]: ...


class ChatModel(Protocol):
    async def invoke(
        self, prompt: str, *, signal: Optional[CancellationToken] = None
    ) -> ChatResponse: ...


class EmbeddingProvider(Protocol):
    async def embed_query(self, text: str) -> List[float]: ...

    async def embed_documents(self, texts: List[str]) -> List[List[float]]: ...
