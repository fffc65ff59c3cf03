"""Inclusion/exclusion path patterns.

Patterns are configured as one comma separated, URL-encoded string. Each
pattern falls in one category:

- ``#tag``         note carries the tag
- ``*.ext``        path ends with the extension
- ``[[Title]]``    note basename equals the title
- anything else    folder prefix, matched on a ``/`` boundary
"""

import re
from dataclasses import dataclass, field
from typing import Iterable, List, Optional
from urllib.parse import unquote

from vaultseek.core.interfaces import MetadataReader, NoteFile

_TAG_PATTERN = re.compile(r"^#[^\s#]+$")
_EXTENSION_PATTERN = re.compile(r"^\*\.([a-zA-Z0-9.]+)$")
_NOTE_PATTERN = re.compile(r"^\[\[(.*?)\]\]$")


@dataclass
class PatternCategory:
    tags: List[str] = field(default_factory=list)
    extensions: List[str] = field(default_factory=list)
    folders: List[str] = field(default_factory=list)
    notes: List[str] = field(default_factory=list)

    def is_empty(self) -> bool:
        return not (self.tags or self.extensions or self.folders or self.notes)


def decode_patterns(value: str) -> List[str]:
    """Split a settings value into decoded, non-empty patterns."""
    if not value:
        return []
    return [p for p in (unquote(item.strip()) for item in value.split(",")) if p]


def categorize_patterns(patterns: Iterable[str]) -> PatternCategory:
    category = PatternCategory()
    for pattern in patterns:
        if _TAG_PATTERN.match(pattern):
            category.tags.append(pattern.lower())
        elif _EXTENSION_PATTERN.match(pattern):
            category.extensions.append(pattern[1:].lower())
        elif _NOTE_PATTERN.match(pattern):
            category.notes.append(pattern[2:-2])
        else:
            category.folders.append(pattern.replace("\\", "/").rstrip("/"))
    return category


def match_folder(path: str, folder: str) -> bool:
    """True when ``path`` lies inside ``folder`` (or is it)."""
    normalized = path.replace("\\", "/")
    if not folder:
        return False
    return normalized.startswith(folder) and (
        len(normalized) == len(folder) or normalized[len(folder)] == "/"
    )


class PathFilter:
    """Decides whether a note takes part in retrieval and indexing."""

    def __init__(
        self,
        inclusions: str = "",
        exclusions: str = "",
        internal_folders: Optional[Iterable[str]] = None,
        metadata: Optional[MetadataReader] = None,
    ):
        self.inclusions = categorize_patterns(decode_patterns(inclusions))
        self.exclusions = categorize_patterns(decode_patterns(exclusions))
        self.internal_folders = [f.strip("/") for f in (internal_folders or []) if f.strip("/")]
        self.metadata = metadata

    @classmethod
    def from_settings(cls, settings, metadata: Optional[MetadataReader] = None) -> "PathFilter":
        return cls(
            inclusions=settings.inclusions,
            exclusions=settings.exclusions,
            internal_folders=settings.internal_folders,
            metadata=metadata,
        )

    def is_internal_excluded(self, path: str) -> bool:
        return any(match_folder(path, folder) for folder in self.internal_folders)

    def should_index(self, file: NoteFile) -> bool:
        if self.is_internal_excluded(file.path):
            return False
        if not self.exclusions.is_empty() and self._matches(file, self.exclusions):
            return False
        if not self.inclusions.is_empty() and not self._matches(file, self.inclusions):
            return False
        return True

    def _matches(self, file: NoteFile, category: PatternCategory) -> bool:
        lowered = file.path.lower()
        if any(lowered.endswith(ext) for ext in category.extensions):
            return True
        if any(match_folder(file.path, folder) for folder in category.folders):
            return True
        if file.basename in category.notes:
            return True
        if category.tags and self.metadata is not None:
            tags = set(self.metadata.get_tags(file.path))
            if any(tag in tags for tag in category.tags):
                return True
        return False
