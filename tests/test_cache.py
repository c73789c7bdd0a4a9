"""
Tests for document extraction and the IndexCacheManager.
"""

import json
import os
from pathlib import Path

import pytest


def touch_later(path: Path, seconds: int = 5) -> None:
    """Advance a file's modification time."""
    stat = path.stat()
    os.utime(path, ns=(stat.st_atime_ns, stat.st_mtime_ns + seconds * 1_000_000_000))


@pytest.fixture
def count_builds(monkeypatch):
    """Record every path passed to build_document."""
    from tagtime import cache

    calls = []
    original = cache.build_document

    async def counting(note_file, vault_path, max_content_length=None):
        calls.append(note_file.relative_to(vault_path).as_posix())
        return await original(note_file, vault_path, max_content_length)

    monkeypatch.setattr(cache, "build_document", counting)
    return calls


# ============== Tests for build_document() ==============

class TestBuildDocument:
    """Tests for turning one file into an IndexedDocument."""

    async def test_frontmatter_title_and_tags(self, temp_vault):
        """Test that front matter supplies title and tags."""
        from tagtime.cache import build_document

        doc = await build_document(temp_vault / "Concepts" / "Python.md", temp_vault)

        assert doc.id == "Concepts/Python.md"
        assert doc.title == "Python"
        assert doc.tags == ["programming", "language"]
        assert doc.folder == "Concepts"
        assert "title:" not in doc.content
        assert "dynamic typing" in doc.content

    async def test_heading_title(self, temp_vault):
        """Test that the first heading is the title when front matter has none."""
        from tagtime.cache import build_document

        doc = await build_document(temp_vault / "Daily" / "2024-01-20.md", temp_vault)

        assert doc.title == "Daily log"
        assert doc.tags == []

    async def test_file_stem_title(self, make_vault):
        """Test that the file name is the title of last resort."""
        from tagtime.cache import build_document

        vault = make_vault({"plain note.md": "no heading here"})
        doc = await build_document(vault / "plain note.md", vault)

        assert doc.title == "plain note"
        assert doc.folder == ""

    async def test_mtime_in_milliseconds(self, make_vault):
        """Test that modified is a millisecond timestamp."""
        from tagtime.cache import build_document

        vault = make_vault({"a.md": "text"})
        os.utime(vault / "a.md", (1_700_000_000, 1_700_000_000))
        doc = await build_document(vault / "a.md", vault)

        assert doc.modified == 1_700_000_000_000

    async def test_content_truncated(self, make_vault):
        """Test that the body is cut to the maximum length."""
        from tagtime.cache import build_document

        vault = make_vault({"long.md": "x" * 50})
        doc = await build_document(vault / "long.md", vault, max_content_length=10)

        assert doc.content == "x" * 10

    async def test_undecodable_file_skipped(self, make_vault):
        """Test that a file that is not UTF-8 yields None."""
        from tagtime.cache import build_document

        vault = make_vault({})
        (vault / "bad.md").write_bytes(b"\xff\xfe\xfa broken")

        assert await build_document(vault / "bad.md", vault) is None

    async def test_missing_file_skipped(self, make_vault):
        """Test that a missing file yields None."""
        from tagtime.cache import build_document

        vault = make_vault({})

        assert await build_document(vault / "gone.md", vault) is None


# ============== Tests for list_vault_files() ==============

class TestListVaultFiles:
    """Tests for listing the markdown files of a vault."""

    def test_skips_hidden_and_ignored(self, temp_vault):
        """Test that hidden and tool directories are not listed."""
        from tagtime.cache import list_vault_files
        from tagtime.models import VaultConfig

        files = list_vault_files(temp_vault, VaultConfig(path=str(temp_vault)))
        rel = [f.relative_to(temp_vault).as_posix() for f in files]

        assert rel == sorted(rel)
        assert set(rel) == {
            "Concepts/JavaScript.md",
            "Concepts/Python.md",
            "Daily/2024-01-20.md",
            "笔记/机器学习.md",
        }

    def test_logseq_pages_and_journals_only(self, make_vault):
        """Test that Logseq vaults only index pages and journals."""
        from tagtime.cache import list_vault_files
        from tagtime.models import VaultConfig

        vault = make_vault({
            "pages/topic.md": "page",
            "journals/2024_01_01.md": "journal",
            "drafts/other.md": "draft",
            "logseq/config.md": "internal",
        })
        config = VaultConfig(type="logseq", path=str(vault), pages_folder="pages", journals_folder="journals")

        rel = [f.relative_to(vault).as_posix() for f in list_vault_files(vault, config)]

        assert rel == ["journals/2024_01_01.md", "pages/topic.md"]

    def test_non_markdown_ignored(self, make_vault):
        """Test that only .md files are listed."""
        from tagtime.cache import list_vault_files
        from tagtime.models import VaultConfig

        vault = make_vault({"a.md": "a", "b.txt": "b"})

        assert [f.name for f in list_vault_files(vault, VaultConfig(path=str(vault)))] == ["a.md"]


# ============== Tests for IndexCacheManager ==============

class TestIndexCacheManager:
    """Tests for building, memoizing and persisting indexes."""

    async def test_full_build(self, manager, vault_config):
        """Test that a first request builds and saves the index."""
        index = await manager.get_search_index("main", vault_config)

        assert index.document_count == 4
        assert manager.cache_path("main").exists()
        assert not manager.cache_path("main").with_name("main.json.tmp").exists()

    async def test_snapshot_format(self, manager, vault_config, temp_vault):
        """Test the fields written to the snapshot file."""
        await manager.get_search_index("main", vault_config)

        data = json.loads(manager.cache_path("main").read_text(encoding="utf-8"))

        assert data["version"] == 1
        assert data["vaultPath"] == str(temp_vault)
        assert data["fileCount"] == 4
        assert set(data["fileMtimes"]) == {
            "Concepts/JavaScript.md",
            "Concepts/Python.md",
            "Daily/2024-01-20.md",
            "笔记/机器学习.md",
        }
        assert "lastBuilt" in data
        assert "indexData" in data

    async def test_memoized(self, manager, vault_config, count_builds):
        """Test that a second request reuses the in-memory index."""
        first = await manager.get_search_index("main", vault_config)
        built = len(count_builds)
        second = await manager.get_search_index("main", vault_config)

        assert second is first
        assert len(count_builds) == built

    async def test_progress_callback(self, manager, vault_config):
        """Test that progress is reported for every listed file."""
        calls = []

        await manager.get_search_index("main", vault_config, on_progress=lambda c, t: calls.append((c, t)))

        assert calls == [(1, 4), (2, 4), (3, 4), (4, 4)]

    async def test_missing_vault(self, manager, tmp_path):
        """Test that a missing vault root raises VaultPathError."""
        from tagtime.models import VaultConfig
        from tagtime.utils import VaultPathError

        with pytest.raises(VaultPathError):
            await manager.get_search_index("gone", VaultConfig(path=str(tmp_path / "missing")))

    async def test_corrupt_file_skipped(self, manager, make_vault):
        """Test that one unreadable file does not stop indexing."""
        from tagtime.models import VaultConfig

        vault = make_vault({"good.md": "fine content", "also.md": "more content"})
        (vault / "bad.md").write_bytes(b"\xff\xfe\xfa")

        index = await manager.get_search_index("v", VaultConfig(path=str(vault)))

        assert index.document_count == 2
        assert not index.has("bad.md")

    async def test_stats(self, manager, vault_config):
        """Test index stats before and after a build."""
        assert manager.get_index_stats("main") is None

        await manager.get_search_index("main", vault_config)
        stats = manager.get_index_stats("main")

        assert stats.file_count == 4
        assert stats.cached is True
        assert stats.last_built

    async def test_clear(self, manager, vault_config):
        """Test dropping in-memory state for one vault and for all."""
        await manager.get_search_index("main", vault_config)
        await manager.get_search_index("other", vault_config)

        manager.clear("main")
        assert manager.get_index_stats("main") is None
        assert manager.get_index_stats("other") is not None

        manager.clear()
        assert manager.get_index_stats("other") is None

    async def test_force_rebuild(self, manager, vault_config, count_builds):
        """Test that force_rebuild reads every file again."""
        first = await manager.get_search_index("main", vault_config)
        count_builds.clear()

        second = await manager.get_search_index("main", vault_config, force_rebuild=True)

        assert second is not first
        assert len(count_builds) == 4


class TestIncrementalUpdate:
    """Tests for refreshing an index from filesystem changes."""

    async def test_added_file(self, manager, vault_config, temp_vault):
        """Test that a new file becomes searchable."""
        await manager.get_search_index("main", vault_config)
        (temp_vault / "Rust.md").write_text("# Rust\n\nOwnership and borrowing.\n", encoding="utf-8")

        index = await manager.get_search_index("main", vault_config)

        assert [h.id for h in index.search("borrowing")] == ["Rust.md"]
        assert manager.get_index_stats("main").file_count == 5

    async def test_modified_file(self, manager, vault_config, temp_vault):
        """Test that new content replaces old content."""
        await manager.get_search_index("main", vault_config)
        note = temp_vault / "Daily" / "2024-01-20.md"
        note.write_text("# Daily log\n\nReviewed Kubernetes manifests.\n", encoding="utf-8")
        touch_later(note)

        index = await manager.get_search_index("main", vault_config)

        assert [h.id for h in index.search("kubernetes")] == ["Daily/2024-01-20.md"]
        assert index.search("docker") == []

    async def test_deleted_file(self, manager, vault_config, temp_vault):
        """Test that a deleted file is never returned."""
        await manager.get_search_index("main", vault_config)
        (temp_vault / "Concepts" / "JavaScript.md").unlink()

        index = await manager.get_search_index("main", vault_config)

        assert index.search("javascript") == []
        assert not index.has("Concepts/JavaScript.md")
        snapshot = json.loads(manager.cache_path("main").read_text(encoding="utf-8"))
        assert "Concepts/JavaScript.md" not in snapshot["fileMtimes"]

    async def test_unchanged_files_not_reread(self, manager, vault_config, temp_vault, count_builds):
        """Test that only the touched file is extracted again."""
        await manager.get_search_index("main", vault_config)
        count_builds.clear()
        touch_later(temp_vault / "Concepts" / "Python.md")

        await manager.get_search_index("main", vault_config)

        assert count_builds == ["Concepts/Python.md"]

    async def test_touch_keeps_scores(self, manager, vault_config, temp_vault):
        """Test that re-indexing identical content keeps every score bit for bit."""
        index = await manager.get_search_index("main", vault_config)
        before = {h.id: h.score for h in index.search("python programming", fuzzy=0.2, prefix=True)}
        touch_later(temp_vault / "Concepts" / "Python.md")

        index = await manager.get_search_index("main", vault_config)
        after = {h.id: h.score for h in index.search("python programming", fuzzy=0.2, prefix=True)}

        assert after == before

    async def test_no_change_skips_save(self, manager, vault_config):
        """Test that an unchanged vault does not rewrite the snapshot."""
        await manager.get_search_index("main", vault_config)
        cache_path = manager.cache_path("main")
        cache_path.write_text("sentinel", encoding="utf-8")

        await manager.get_search_index("main", vault_config)

        assert cache_path.read_text(encoding="utf-8") == "sentinel"

    async def test_older_mtime_ignored(self, manager, vault_config, temp_vault, count_builds):
        """Test that a file whose mtime did not increase is not re-read."""
        await manager.get_search_index("main", vault_config)
        note = temp_vault / "Concepts" / "Python.md"
        stat = note.stat()
        os.utime(note, ns=(stat.st_atime_ns, stat.st_mtime_ns - 5_000_000_000))
        count_builds.clear()

        await manager.get_search_index("main", vault_config)

        assert count_builds == []


class TestSnapshotLoading:
    """Tests for reloading snapshots in a new process."""

    async def test_loads_from_disk(self, manager, vault_config, tmp_path, count_builds):
        """Test that a fresh manager reuses the snapshot without re-reading files."""
        from tagtime.cache import IndexCacheManager

        original = await manager.get_search_index("main", vault_config)
        count_builds.clear()

        fresh = IndexCacheManager(cache_dir=tmp_path / "cache")
        index = await fresh.get_search_index("main", vault_config)

        assert count_builds == []
        assert index.document_count == original.document_count
        assert [h.id for h in index.search("python")] == [h.id for h in original.search("python")]

    async def test_loaded_snapshot_is_updated(self, manager, vault_config, temp_vault, tmp_path):
        """Test that changes made while no process was running are picked up."""
        from tagtime.cache import IndexCacheManager

        await manager.get_search_index("main", vault_config)
        (temp_vault / "Daily" / "2024-01-20.md").unlink()
        (temp_vault / "Go.md").write_text("Goroutines and channels.\n", encoding="utf-8")

        fresh = IndexCacheManager(cache_dir=tmp_path / "cache")
        index = await fresh.get_search_index("main", vault_config)

        assert not index.has("Daily/2024-01-20.md")
        assert [h.id for h in index.search("goroutines")] == ["Go.md"]

    async def test_version_mismatch_rebuilds(self, manager, vault_config, tmp_path, count_builds):
        """Test that a snapshot of another version is replaced by a full rebuild."""
        from tagtime.cache import IndexCacheManager

        original = await manager.get_search_index("main", vault_config)
        cache_path = manager.cache_path("main")
        data = json.loads(cache_path.read_text(encoding="utf-8"))
        data["version"] = 0
        cache_path.write_text(json.dumps(data), encoding="utf-8")
        count_builds.clear()

        fresh = IndexCacheManager(cache_dir=tmp_path / "cache")
        index = await fresh.get_search_index("main", vault_config)

        assert len(count_builds) == 4
        assert index.document_count == original.document_count
        assert index.term_count == original.term_count
        assert json.loads(cache_path.read_text(encoding="utf-8"))["version"] == 1

    async def test_vault_path_mismatch_rebuilds(self, manager, vault_config, make_vault, tmp_path):
        """Test that a snapshot of another vault path is not reused."""
        from tagtime.cache import IndexCacheManager
        from tagtime.models import VaultConfig

        await manager.get_search_index("main", vault_config)
        moved = make_vault({"only.md": "# Only\n\nSingle note.\n"})

        fresh = IndexCacheManager(cache_dir=tmp_path / "cache")
        index = await fresh.get_search_index("main", VaultConfig(path=str(moved)))

        assert index.document_count == 1
        assert index.has("only.md")

    async def test_vault_moved_in_same_process(self, manager, vault_config, make_vault):
        """Test that re-pointing a vault name reindexes and saves the new path."""
        from tagtime.models import VaultConfig

        await manager.get_search_index("main", vault_config)
        moved = make_vault({"only.md": "# Only\n\nSingle note.\n"})

        index = await manager.get_search_index("main", VaultConfig(path=str(moved)))

        assert index.document_count == 1
        assert index.has("only.md")
        data = json.loads(manager.cache_path("main").read_text(encoding="utf-8"))
        assert data["vaultPath"] == str(moved)
        assert list(data["fileMtimes"]) == ["only.md"]

    async def test_corrupt_snapshot_rebuilds(self, vault_config, tmp_path):
        """Test that an unreadable snapshot falls back to a full rebuild."""
        from tagtime.cache import IndexCacheManager

        cache_dir = tmp_path / "cache"
        cache_dir.mkdir()
        (cache_dir / "main.json").write_text("{not json", encoding="utf-8")

        index = await IndexCacheManager(cache_dir=cache_dir).get_search_index("main", vault_config)

        assert index.document_count == 4
        assert json.loads((cache_dir / "main.json").read_text(encoding="utf-8"))["fileCount"] == 4

    async def test_truncated_index_data_rebuilds(self, manager, vault_config, tmp_path):
        """Test that a snapshot with a broken index blob falls back to a full rebuild."""
        from tagtime.cache import IndexCacheManager

        await manager.get_search_index("main", vault_config)
        cache_path = manager.cache_path("main")
        data = json.loads(cache_path.read_text(encoding="utf-8"))
        del data["indexData"]["documentIds"]
        cache_path.write_text(json.dumps(data), encoding="utf-8")

        index = await IndexCacheManager(cache_dir=tmp_path / "cache").get_search_index("main", vault_config)

        assert index.document_count == 4
