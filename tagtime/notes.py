"""
Note writing and reading module for tagtime.

Contains saving notes into a local vault (with front matter, or appended to
the daily note), reading a note back, and summarising a vault.
"""

import time
from datetime import datetime

import aiofiles
import aiofiles.os
import structlog
import yaml

from .cache import list_vault_files
from .models import LocalNote, SaveResult, VaultConfig, VaultInfo
from .utils import (
    FRONTMATTER_PATTERN,
    NoteWriteError,
    expand_path,
    extract_title,
    parse_frontmatter,
    sanitize_filename,
    validate_path_within_vault,
    validate_vault_path,
)

logger = structlog.get_logger(__name__)

MAX_GENERATED_TITLE = 50


def title_from_content(content: str) -> str:
    """Use the first line of the content, without heading marks, as a title."""
    first_line = content.split("\n")[0].strip()
    title = first_line.lstrip("#").strip()[:MAX_GENERATED_TITLE]
    return title or f"Note-{int(time.time() * 1000)}"


def generate_frontmatter(fields: dict) -> str:
    """Render a YAML front matter block."""
    yaml_content = yaml.dump(
        fields, allow_unicode=True, default_flow_style=False, sort_keys=False, width=float("inf"),
    )
    return f"---\n{yaml_content}---\n\n"


async def save_note(
    content: str,
    vault: VaultConfig,
    title: str | None = None,
    folder: str | None = None,
    tags: list[str] | None = None,
    daily: bool = False,
) -> SaveResult:
    """Write a note into a vault.

    A regular note goes to `<folder>/<title>.md` with title, created and tags
    front matter; an existing file is never overwritten. In daily mode the
    content is appended under a `## HH:MM` heading to today's note in the
    daily notes folder, which is created with a date heading if missing.

    Raises:
        VaultPathError: If the vault root is missing
        NotePathError: If the target path escapes the vault
        NoteWriteError: If the file exists or cannot be written
    """
    vault_path = validate_vault_path(vault.path)
    now = datetime.now()
    today = now.strftime("%Y-%m-%d")

    if daily:
        folder = vault.daily_notes_folder or "Daily"
        filename = f"{today}.md"
    else:
        folder = folder if folder is not None else (vault.notes_folder or "")
        title = title or title_from_content(content)
        stem = sanitize_filename(title) or f"Note-{int(time.time() * 1000)}"
        filename = f"{stem}.md"

    folder = folder.replace("\\", "/").strip("/")
    rel_path = f"{folder}/{filename}" if folder else filename
    note_file = validate_path_within_vault(rel_path, vault_path)

    appended = False
    if daily:
        if note_file.exists():
            async with aiofiles.open(note_file, encoding="utf-8") as f:
                existing = (await f.read()).rstrip("\n")
            full_content = f"{existing}\n\n## {now.strftime('%H:%M')}\n\n{content}\n"
            appended = True
        else:
            full_content = generate_frontmatter({"date": today, "tags": tags or []})
            full_content += f"# {today}\n\n{content}\n"
    else:
        if note_file.exists():
            raise NoteWriteError(f"File already exists: {rel_path}")
        fields = {"title": title, "created": now.astimezone().isoformat()}
        if tags:
            fields["tags"] = tags
        body = content if content.strip().startswith("#") else f"# {title}\n\n{content}"
        full_content = generate_frontmatter(fields) + body.rstrip("\n") + "\n"

    try:
        await aiofiles.os.makedirs(note_file.parent, exist_ok=True)
        async with aiofiles.open(note_file, mode="w", encoding="utf-8") as f:
            await f.write(full_content)
    except OSError as e:
        logger.error("note_write_failed", path=str(note_file), error=str(e))
        raise NoteWriteError(f"Failed to write {rel_path}: {e}") from e

    logger.info("note_saved", path=rel_path, daily=daily, appended=appended)
    return SaveResult(path=rel_path, absolute_path=str(note_file), appended=appended)


async def read_note(note_path: str, vault: VaultConfig) -> LocalNote:
    """Read a note by its vault-relative path.

    Raises:
        NotePathError: If the path escapes the vault
        OSError: If the file cannot be read
    """
    note_file = validate_path_within_vault(note_path, expand_path(vault.path))

    async with aiofiles.open(note_file, encoding="utf-8") as f:
        content = await f.read()
    stat = note_file.stat()

    parsed, body = parse_frontmatter(content)
    frontmatter = parsed or None
    match = FRONTMATTER_PATTERN.match(content)
    if match and match.group(1):
        try:
            loaded = yaml.safe_load(match.group(1))
        except Exception as e:
            logger.debug("note_frontmatter_unparsed", path=note_path, error=str(e))
            loaded = None
        if isinstance(loaded, dict) and loaded:
            frontmatter = loaded

    title = parsed.get("title") or extract_title(body) or note_file.stem

    return LocalNote(
        path=note_path,
        absolute_path=str(note_file),
        title=title,
        content=content,
        body=body,
        frontmatter=frontmatter,
        modified=datetime.fromtimestamp(stat.st_mtime),
    )


def get_vault_info(name: str, vault: VaultConfig) -> VaultInfo:
    """Count the notes of a vault and read its last modification time."""
    vault_path = expand_path(vault.path)
    info = VaultInfo(name=name, type=vault.type, path=str(vault_path))

    try:
        stat = vault_path.stat()
    except OSError as e:
        logger.warning("vault_info_failed", vault=name, path=str(vault_path), error=str(e))
        return info

    info.note_count = len(list_vault_files(vault_path, vault))
    info.last_modified = datetime.fromtimestamp(stat.st_mtime)
    return info
