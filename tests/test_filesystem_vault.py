"""Tests for the Markdown folder adapter."""

import os

import pytest

from vaultseek.adapters.filesystem import (
    FileSystemVault,
    extract_tags,
    extract_wikilinks,
    normalize_slug,
)


def write(root, relative, text):
    path = root / relative
    path.parent.mkdir(parents=True, exist_ok=True)
    path.write_text(text, encoding="utf-8")
    return path


@pytest.fixture
def vault(tmp_path):
    write(tmp_path, "projects/Alpha Plan.md", "---\ntags: [project/alpha, Planning]\n---\nSee [[Beta]] and [[Beta|again]].")
    write(tmp_path, "projects/Beta.md", "Back to [[Alpha Plan#Goals]]. #project\n```\n#notatag\n```")
    write(tmp_path, "archive/Beta.md", "An older beta.")
    write(tmp_path, ".trash/Deleted.md", "gone")
    vault = FileSystemVault(tmp_path)
    vault.refresh()
    return vault


def test_helpers():
    assert normalize_slug("Alpha  Plan_v2!") == "alpha-plan-v2"
    assert extract_wikilinks("[[A|alias]] [[B#h]] [[ ]]") == ["A", "B"]
    assert extract_tags({"tags": "one, two"}, "text #Three\n```\n#four\n```") == ["#one", "#two", "#three"]


def test_refresh_skips_dot_folders(vault):
    paths = {f.path for f in vault.list_markdown_files()}
    assert paths == {"projects/Alpha Plan.md", "projects/Beta.md", "archive/Beta.md"}


def test_tags_from_frontmatter_and_body(vault):
    assert vault.get_tags("projects/Alpha Plan.md") == ["#project/alpha", "#planning"]
    assert vault.get_tags("projects/Beta.md") == ["#project"]
    assert vault.get_frontmatter("projects/Alpha Plan.md")["tags"] == ["project/alpha", "Planning"]


def test_link_resolution_prefers_same_folder(vault):
    assert vault.resolve_link("Beta", "projects/Alpha Plan.md").path == "projects/Beta.md"
    assert vault.resolve_link("Beta", "archive/Other.md").path == "archive/Beta.md"
    assert vault.resolve_link("archive/Beta").path == "archive/Beta.md"
    assert vault.resolve_link("alpha-plan").path == "projects/Alpha Plan.md"
    assert vault.resolve_link("Missing") is None


def test_link_graph(vault):
    assert vault.outgoing_links("projects/Alpha Plan.md") == {"projects/Beta.md": 2}
    assert vault.backlinks("projects/Alpha Plan.md") == {"projects/Beta.md"}
    assert vault.backlinks("archive/Beta.md") == set()


@pytest.mark.asyncio
async def test_read_uses_cache_until_file_changes(vault, tmp_path):
    path = tmp_path / "archive/Beta.md"
    assert await vault.read("archive/Beta.md") == "An older beta."

    path.write_text("Rewritten.", encoding="utf-8")
    stat = path.stat()
    os.utime(path, (stat.st_atime, stat.st_mtime + 10))

    assert await vault.read("archive/Beta.md") == "Rewritten."
    assert await vault.read_binary("archive/Beta.md") == b"Rewritten."


@pytest.mark.asyncio
async def test_read_rejects_paths_outside_root(vault):
    with pytest.raises(PermissionError):
        await vault.read("../outside.md")


def test_active_file(vault):
    assert vault.get_active_file() is None
    vault.set_active_file("projects/Beta.md")
    assert vault.get_active_file().basename == "Beta"
    with pytest.raises(FileNotFoundError):
        vault.set_active_file("nope.md")
