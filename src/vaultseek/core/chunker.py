"""
Markdown chunking for the embedding index.

Notes are split at headings first; sections longer than the size cap are split
again at paragraph, then line boundaries, and finally hard-cut.
"""

import hashlib
import re
from dataclasses import dataclass
from typing import List, Optional, Tuple

import frontmatter

_HEADING = re.compile(r"^(#{1,6})\s+(.+?)\s*#*\s*$")


@dataclass
class Chunk:
    """A bounded slice of one note."""

    id: str  # "<note path>#<chunk index>"
    note_path: str
    chunk_index: int
    content: str
    content_hash: str
    title: str
    heading: Optional[str] = None


def chunk_id(note_path: str, index: int) -> str:
    return f"{note_path}#{index}"


def strip_frontmatter(text: str) -> str:
    try:
        return frontmatter.loads(text).content
    except Exception:
        # malformed YAML: index the raw text
        return text


def _split_sections(body: str) -> List[Tuple[Optional[str], str]]:
    sections: List[Tuple[Optional[str], str]] = []
    heading: Optional[str] = None
    lines: List[str] = []
    in_fence = False
    for line in body.splitlines():
        if line.lstrip().startswith("```"):
            in_fence = not in_fence
        match = None if in_fence else _HEADING.match(line)
        if match:
            if any(l.strip() for l in lines):
                sections.append((heading, "\n".join(lines).strip()))
            heading = match.group(2).strip()
            lines = [line]
        else:
            lines.append(line)
    if any(l.strip() for l in lines):
        sections.append((heading, "\n".join(lines).strip()))
    return sections


def _split_to_size(text: str, max_chars: int) -> List[str]:
    if len(text) <= max_chars:
        return [text]
    for separator in ("\n\n", "\n"):
        parts = text.split(separator)
        if len(parts) == 1:
            continue
        pieces: List[str] = []
        current = ""
        for part in parts:
            candidate = f"{current}{separator}{part}" if current else part
            if len(candidate) <= max_chars:
                current = candidate
                continue
            if current:
                pieces.append(current)
            if len(part) > max_chars:
                pieces.extend(_split_to_size(part, max_chars))
                current = ""
            else:
                current = part
        if current:
            pieces.append(current)
        return pieces
    return [text[i:i + max_chars] for i in range(0, len(text), max_chars)]


def chunk_note(note_path: str, title: str, text: str, max_chars: int = 6000) -> List[Chunk]:
    """Split one note into chunks.

    Args:
        note_path: Vault-relative path of the note
        title: Note title, prefixed to every chunk's content
        text: Raw note text (frontmatter is removed)
        max_chars: Size cap per chunk body

    Returns:
        Chunks in document order, indexed from 0
    """
    body = strip_frontmatter(text)
    chunks: List[Chunk] = []
    for heading, section in _split_sections(body):
        for piece in _split_to_size(section, max_chars):
            piece = piece.strip()
            if not piece:
                continue
            index = len(chunks)
            content = f"NOTE TITLE: [[{title}]]\n\n{piece}"
            chunks.append(
                Chunk(
                    id=chunk_id(note_path, index),
                    note_path=note_path,
                    chunk_index=index,
                    content=content,
                    content_hash=hashlib.sha256(content.encode("utf-8")).hexdigest(),
                    title=title,
                    heading=heading,
                )
            )
    return chunks
