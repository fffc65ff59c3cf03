"""Tests for inclusion/exclusion path patterns."""

from tests.conftest import InMemoryVault
from vaultseek.core.patterns import PathFilter, categorize_patterns, decode_patterns, match_folder


def file(vault, path):
    return vault.get_file(path)


def test_decode_and_categorize():
    patterns = decode_patterns("%23work, *.md ,[[Home]],projects%2Fold/, ")
    assert patterns == ["#work", "*.md", "[[Home]]", "projects/old/"]

    category = categorize_patterns(patterns)
    assert category.tags == ["#work"]
    assert category.extensions == [".md"]
    assert category.notes == ["Home"]
    assert category.folders == ["projects/old"]


def test_match_folder_respects_boundaries():
    assert match_folder("projects/a.md", "projects")
    assert not match_folder("projectsx/a.md", "projects")
    assert not match_folder("a.md", "")


def test_exclusions_and_inclusions():
    vault = InMemoryVault({"work/a.md": "#work", "home/b.md": "", "Home.md": ""})
    vault.add("index/c.md", "")

    excluding = PathFilter(exclusions="work", internal_folders=["index"], metadata=vault)
    assert not excluding.should_index(file(vault, "work/a.md"))
    assert excluding.should_index(file(vault, "home/b.md"))
    assert not excluding.should_index(file(vault, "index/c.md"))

    by_tag = PathFilter(inclusions="#work", metadata=vault)
    assert by_tag.should_index(file(vault, "work/a.md"))
    assert not by_tag.should_index(file(vault, "home/b.md"))

    by_note = PathFilter(inclusions="[[Home]]")
    assert by_note.should_index(file(vault, "Home.md"))
    assert not by_note.should_index(file(vault, "home/b.md"))


def test_from_settings(settings):
    path_filter = PathFilter.from_settings(settings)
    assert path_filter.is_internal_excluded(".trash/old.md")
    assert not path_filter.is_internal_excluded("notes/trash.md")
