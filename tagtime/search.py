"""
Search functions for tagtime local mode.

Contains the query entry point over a vault's index and snippet extraction.
"""

import time
from datetime import datetime
from pathlib import Path
from typing import Any

import aiofiles
import structlog

from .cache import IndexCacheManager
from .config import settings
from .index import SearchHit
from .models import SearchOptions, SearchResult, VaultConfig
from .utils import expand_path, strip_frontmatter

logger = structlog.get_logger(__name__)


def extract_snippet(
    content: str,
    query: str,
    max_length: int | None = None,
    before: int | None = None,
    after: int | None = None,
) -> str:
    """Cut a short excerpt around the earliest occurrence of a query word.

    Falls back to the start of the body when no word occurs in the content.
    """
    max_length = max_length or settings.snippet_length
    before = settings.snippet_before if before is None else before
    after = settings.snippet_after if after is None else after

    content_lower = content.lower()
    best_index = -1
    for term in query.lower().split():
        idx = content_lower.find(term)
        if idx != -1 and (best_index == -1 or idx < best_index):
            best_index = idx

    if best_index == -1:
        body = strip_frontmatter(content)
        snippet = body[:max_length].replace("\n", " ").strip()
        return snippet + "..." if len(body) > max_length else snippet

    start = max(0, best_index - before)
    end = min(len(content), best_index + after)
    snippet = content[start:end].replace("\n", " ").strip()

    if start > 0:
        snippet = "..." + snippet
    if end < len(content):
        snippet = snippet + "..."
    return snippet


def _normalize_folder(folder: str) -> str:
    return folder.replace("\\", "/").strip("/")


def build_search_params(options: SearchOptions) -> dict[str, Any]:
    """Translate caller options into SearchIndex.search keyword arguments."""
    if options.exact:
        fuzzy: float | bool = False
        prefix = False
    else:
        if options.fuzzy is None or options.fuzzy is True:
            fuzzy = settings.default_fuzzy
        else:
            fuzzy = options.fuzzy
        prefix = options.prefix is not False

    filters = []
    if options.folder:
        folder_path = _normalize_folder(options.folder)
        filters.append(lambda hit: hit.folder.startswith(folder_path))

    if options.tag:
        tag = options.tag.lower()
        filters.append(lambda hit: tag in (t.lower() for t in hit.tags))

    def filter_fn(hit: SearchHit) -> bool:
        return all(f(hit) for f in filters)

    return {
        "fuzzy": fuzzy,
        "prefix": prefix,
        "filter_fn": filter_fn if filters else None,
    }


async def search_local(
    manager: IndexCacheManager,
    query: str,
    vault: VaultConfig,
    options: SearchOptions | None = None,
    vault_name: str = "default",
) -> list[SearchResult]:
    """Search a local vault and return ranked results with snippets.

    Hits whose file can no longer be read are left out.

    Raises:
        VaultPathError: If the vault root is missing or not a directory
    """
    options = options or SearchOptions()
    limit = options.limit or settings.default_limit
    start_time = time.time()

    index = await manager.get_search_index(vault_name, vault, force_rebuild=options.force_rebuild)
    hits = index.search(query, **build_search_params(options))

    vault_path = expand_path(vault.path)
    results: list[SearchResult] = []

    for hit in hits[:limit]:
        absolute_path = vault_path / hit.id
        try:
            async with aiofiles.open(absolute_path, encoding="utf-8") as f:
                content = await f.read()
            stat = absolute_path.stat()
        except (OSError, UnicodeDecodeError) as e:
            logger.warning("snippet_read_failed", path=hit.id, error=str(e))
            continue

        results.append(SearchResult(
            path=hit.id,
            absolute_path=str(absolute_path),
            title=hit.title or Path(hit.id).stem,
            snippet=extract_snippet(content, query),
            modified=datetime.fromtimestamp(stat.st_mtime),
            score=hit.score,
            matched_terms=hit.terms,
            matched_fields=hit.matched_fields,
            tags=hit.tags,
        ))

    logger.debug(
        "search_completed",
        vault=vault_name,
        query=query,
        hits=len(hits),
        results=len(results),
        duration_ms=round((time.time() - start_time) * 1000, 2),
    )
    return results
