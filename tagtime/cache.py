"""
Search index cache module for tagtime.

Contains document extraction, vault file listing, and the IndexCacheManager
class that builds, incrementally updates, persists and reloads one
SearchIndex per vault.
"""

import json
import posixpath
import time
from dataclasses import dataclass
from datetime import datetime, timezone
from pathlib import Path
from typing import Callable

import aiofiles
import aiofiles.os
import structlog

from .config import settings
from .index import SearchIndex
from .models import IndexCacheMeta, IndexedDocument, IndexStats, VaultConfig
from .utils import extract_title, parse_frontmatter, validate_vault_path

logger = structlog.get_logger(__name__)

# Bumping this discards every snapshot on disk
INDEX_VERSION = 1

IGNORED_DIRS = frozenset({"node_modules", ".obsidian", "logseq", ".git", ".trash"})

ProgressCallback = Callable[[int, int], None]


async def build_document(
    note_file: Path,
    vault_path: Path,
    max_content_length: int | None = None,
) -> IndexedDocument | None:
    """Read one markdown file and return an IndexedDocument, or None on error."""
    if max_content_length is None:
        max_content_length = settings.max_content_length

    try:
        async with aiofiles.open(note_file, encoding="utf-8") as f:
            content = await f.read()
        stat = note_file.stat()
        rel_path = note_file.relative_to(vault_path).as_posix()

        frontmatter, body = parse_frontmatter(content)
        title = frontmatter.get("title") or extract_title(body) or note_file.stem

        return IndexedDocument(
            id=rel_path,
            title=title,
            content=body[:max_content_length],
            tags=frontmatter.get("tags", []),
            folder=posixpath.dirname(rel_path),
            modified=stat.st_mtime_ns / 1_000_000,
        )
    except (OSError, UnicodeDecodeError, ValueError) as e:
        logger.warning("note_read_failed", path=str(note_file), error=str(e))
        return None


def list_vault_files(vault_path: Path, vault: VaultConfig) -> list[Path]:
    """List the markdown files of a vault in a stable order.

    Logseq vaults are limited to their pages and journals folders. Hidden
    and tool-internal directories are skipped.
    """
    if vault.type == "logseq" and vault.pages_folder:
        roots = [vault_path / vault.pages_folder, vault_path / (vault.journals_folder or "journals")]
    else:
        roots = [vault_path]

    files: set[Path] = set()
    for root in roots:
        if not root.is_dir():
            continue
        for note_file in root.rglob("*.md"):
            rel_parts = note_file.relative_to(vault_path).parts
            if any(part.startswith(".") or part in IGNORED_DIRS for part in rel_parts):
                continue
            if note_file.is_file():
                files.add(note_file)

    return sorted(files)


@dataclass
class IndexState:
    """A live index for one vault together with its snapshot metadata."""

    index: SearchIndex
    cache: IndexCacheMeta


def _now_iso() -> str:
    return datetime.now(timezone.utc).isoformat()


class IndexCacheManager:
    """Owns the search index of every vault used in this process.

    Indexes are memoized by vault name. The first request for a vault loads
    its snapshot from disk (or builds one), and every request brings the
    index up to date with the filesystem by comparing modification times.
    """

    def __init__(self, cache_dir: Path | None = None, max_content_length: int | None = None):
        self.cache_dir = cache_dir or settings.search_cache_dir
        self.max_content_length = max_content_length or settings.max_content_length
        self._states: dict[str, IndexState] = {}

    def cache_path(self, vault_name: str) -> Path:
        return self.cache_dir / f"{vault_name}.json"

    async def get_search_index(
        self,
        vault_name: str,
        vault: VaultConfig,
        force_rebuild: bool = False,
        on_progress: ProgressCallback | None = None,
    ) -> SearchIndex:
        """Return an up-to-date index for a vault.

        Raises:
            VaultPathError: If the vault root is missing or not a directory
        """
        vault_path = validate_vault_path(vault.path)

        if not force_rebuild:
            state = self._states.get(vault_name)
            if state is not None and state.cache.vault_path != str(vault_path):
                logger.info("index_state_dropped", vault=vault_name, reason="vault_path")
                del self._states[vault_name]
                state = None
            if state is not None:
                if any(await self._update(state, vault_path, vault)):
                    await self._save(vault_name, state)
                return state.index

            state = await self._load(vault_name, vault_path)
            if state is not None:
                self._states[vault_name] = state
                await self._update(state, vault_path, vault)
                await self._save(vault_name, state)
                return state.index

        state = await self._build(vault_name, vault_path, vault, on_progress)
        await self._save(vault_name, state)
        return state.index

    def get_index_stats(self, vault_name: str) -> IndexStats | None:
        """Return stats for a vault indexed in this process, if any."""
        state = self._states.get(vault_name)
        if state is None:
            return None
        return IndexStats(
            file_count=state.cache.file_count,
            last_built=state.cache.last_built,
            cached=True,
        )

    def clear(self, vault_name: str | None = None) -> None:
        """Drop in-memory state for one vault, or for all vaults."""
        if vault_name is None:
            self._states.clear()
        else:
            self._states.pop(vault_name, None)

    async def _build(
        self,
        vault_name: str,
        vault_path: Path,
        vault: VaultConfig,
        on_progress: ProgressCallback | None,
    ) -> IndexState:
        """Index every file of the vault into a fresh SearchIndex."""
        start_time = time.time()
        note_files = list_vault_files(vault_path, vault)

        index = SearchIndex()
        file_mtimes: dict[str, float] = {}

        for i, note_file in enumerate(note_files, start=1):
            doc = await build_document(note_file, vault_path, self.max_content_length)
            if doc is not None:
                index.add(doc)
                file_mtimes[doc.id] = doc.modified
            if on_progress:
                on_progress(i, len(note_files))

        state = IndexState(
            index=index,
            cache=IndexCacheMeta(
                version=INDEX_VERSION,
                vault_path=str(vault_path),
                last_built=_now_iso(),
                file_count=index.document_count,
                file_mtimes=file_mtimes,
            ),
        )
        self._states[vault_name] = state

        logger.info(
            "index_built",
            vault=vault_name,
            files=len(note_files),
            indexed=index.document_count,
            skipped=len(note_files) - index.document_count,
            duration_ms=round((time.time() - start_time) * 1000, 2),
        )
        return state

    async def _update(self, state: IndexState, vault_path: Path, vault: VaultConfig) -> tuple[int, int, int]:
        """Apply filesystem changes since the last build. Returns (added, updated, removed)."""
        added = 0
        updated = 0
        removed = 0

        mtimes = state.cache.file_mtimes
        current = {
            note_file.relative_to(vault_path).as_posix(): note_file
            for note_file in list_vault_files(vault_path, vault)
        }

        for doc_id in list(mtimes):
            if doc_id not in current:
                if state.index.has(doc_id):
                    state.index.discard(doc_id)
                del mtimes[doc_id]
                removed += 1

        for doc_id, note_file in current.items():
            try:
                mtime = note_file.stat().st_mtime_ns / 1_000_000
            except OSError:
                # Deleted between listing and stat
                continue

            old_mtime = mtimes.get(doc_id)
            if old_mtime is not None and mtime <= old_mtime:
                continue

            doc = await build_document(note_file, vault_path, self.max_content_length)
            if doc is None:
                continue
            if state.index.has(doc_id):
                state.index.discard(doc_id)
            state.index.add(doc)
            mtimes[doc_id] = doc.modified
            if old_mtime is None:
                added += 1
            else:
                updated += 1

        if added or updated or removed:
            state.cache.last_built = _now_iso()
            state.cache.file_count = state.index.document_count
            logger.info("index_updated", added=added, updated=updated, removed=removed)

        return added, updated, removed

    async def _save(self, vault_name: str, state: IndexState) -> None:
        """Write the snapshot through a temporary file and an atomic rename."""
        cache_path = self.cache_path(vault_name)
        tmp_path = cache_path.with_name(cache_path.name + ".tmp")
        data = {
            **state.cache.model_dump(by_alias=True),
            "indexData": state.index.to_dict(),
        }

        try:
            await aiofiles.os.makedirs(self.cache_dir, exist_ok=True)
            async with aiofiles.open(tmp_path, "w", encoding="utf-8") as f:
                await f.write(json.dumps(data, ensure_ascii=False))
            await aiofiles.os.replace(tmp_path, cache_path)
        except OSError as e:
            logger.warning("index_snapshot_write_failed", path=str(cache_path), error=str(e))

    async def _load(self, vault_name: str, vault_path: Path) -> IndexState | None:
        """Read a snapshot from disk. Returns None if it is missing or unusable."""
        cache_path = self.cache_path(vault_name)
        if not cache_path.exists():
            return None

        try:
            async with aiofiles.open(cache_path, encoding="utf-8") as f:
                data = json.loads(await f.read())

            if data.get("version") != INDEX_VERSION:
                logger.info("index_snapshot_rejected", vault=vault_name, reason="version")
                return None
            if data.get("vaultPath") != str(vault_path):
                logger.info("index_snapshot_rejected", vault=vault_name, reason="vault_path")
                return None

            meta = IndexCacheMeta.model_validate(data)
            index = SearchIndex.from_dict(data["indexData"])
        except (OSError, ValueError, KeyError, TypeError, AttributeError) as e:
            logger.info("index_snapshot_rejected", vault=vault_name, reason="unreadable", error=str(e))
            return None

        return IndexState(index=index, cache=meta)
