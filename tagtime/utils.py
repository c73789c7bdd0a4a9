"""
Utility functions and compiled regex patterns for tagtime.

Contains front matter parsing, path helpers, and the exception types.
"""

import os
import re
from pathlib import Path

import yaml

# Pre-compiled regex patterns
FRONTMATTER_PATTERN = re.compile(r'^---[ \t]*\n(?:(.*?)\n)?---[ \t]*(?:\n|$)', re.DOTALL)
FM_TITLE_PATTERN = re.compile(r'^title:[ \t]*["\']?(.+?)["\']?[ \t]*$', re.MULTILINE)
FM_TAGS_PATTERN = re.compile(r'^tags:[ \t]*(.*)$', re.MULTILINE)
BLOCK_ITEM_PATTERN = re.compile(r'^\s*-\s*(.+)$')
HEADING_PATTERN = re.compile(r'^#[ \t]+(.+)$', re.MULTILINE)
QUOTES_PATTERN = re.compile(r'[\'"]')
UNSAFE_CHARS_PATTERN = re.compile(r'[<>:"/\\|?*]')
WHITESPACE_PATTERN = re.compile(r'\s+')
DASHES_PATTERN = re.compile(r'-+')


# ============== Exceptions ==============

class TagtimeError(Exception):
    """Base class for tagtime errors."""
    pass


class VaultPathError(TagtimeError):
    """Raised when a vault root is missing or is not a directory."""
    pass


class VaultNotFoundError(TagtimeError):
    """Raised when no vault is registered under the requested name."""
    pass


class NotePathError(TagtimeError):
    """Raised when a note path is empty or points outside its vault."""
    pass


class NoteWriteError(TagtimeError):
    """Raised when a note cannot be written."""
    pass


# ============== Front Matter ==============

def _parse_bracket_tags(value: str) -> list[str] | None:
    """Parse an inline list such as `[a, "b"]`."""
    if not value.startswith("["):
        return None

    # Scalars such as invalid dates or deep nesting fail in the constructor
    try:
        parsed = yaml.safe_load(value)
    except Exception:
        parsed = None

    if isinstance(parsed, list):
        return [str(t).strip() for t in parsed if t is not None and str(t).strip()]

    # Malformed list: split what is between the brackets
    inner = value[1:-1] if value.endswith("]") else value[1:]
    return [QUOTES_PATTERN.sub("", t).strip() for t in inner.split(",") if t.strip()]


def _parse_block_tags(value: str, following: str) -> list[str] | None:
    """Parse a YAML block list of `- item` lines following `tags:`."""
    if value:
        return None

    tags = []
    for line in following.split("\n"):
        if not line.strip():
            continue
        match = BLOCK_ITEM_PATTERN.match(line)
        if not match:
            break
        tags.append(QUOTES_PATTERN.sub("", match.group(1)).strip())

    return tags or None


def _parse_comma_tags(value: str) -> list[str] | None:
    """Parse a bare comma separated string."""
    if not value:
        return None
    return [QUOTES_PATTERN.sub("", t).strip() for t in value.split(",") if t.strip()]


def parse_tags(frontmatter: str) -> list[str]:
    """Extract tags from a raw front matter block.

    Tries the inline list, block list, and comma separated forms in that order.
    """
    match = FM_TAGS_PATTERN.search(frontmatter)
    if not match:
        return []

    value = match.group(1).strip()
    following = frontmatter[match.end():].lstrip("\n")

    for parsed in (
        _parse_bracket_tags(value),
        _parse_block_tags(value, following),
        _parse_comma_tags(value),
    ):
        if parsed is not None:
            return [t for t in parsed if t]
    return []


def parse_frontmatter(content: str) -> tuple[dict, str]:
    """Extract title and tags from front matter, and return the body.

    Returns an empty dict and the unchanged content when there is no
    front matter block.
    """
    match = FRONTMATTER_PATTERN.match(content)
    if not match:
        return {}, content

    raw = match.group(1) or ""
    body = content[match.end():]

    frontmatter: dict = {}
    title_match = FM_TITLE_PATTERN.search(raw)
    if title_match:
        frontmatter["title"] = title_match.group(1).strip()

    tags = parse_tags(raw)
    if tags:
        frontmatter["tags"] = tags

    return frontmatter, body


def strip_frontmatter(content: str) -> str:
    """Remove a leading front matter block."""
    match = FRONTMATTER_PATTERN.match(content)
    return content[match.end():] if match else content


def extract_title(body: str) -> str | None:
    """Return the text of the first `# ` heading."""
    match = HEADING_PATTERN.search(body)
    return match.group(1).strip() if match else None


# ============== Paths ==============

def expand_path(path: str | Path) -> Path:
    """Expand `~` and make the path absolute."""
    return Path(os.path.abspath(os.path.expanduser(str(path))))


def validate_vault_path(path: str | Path) -> Path:
    """Check that a vault root exists and is a directory.

    Returns:
        The expanded vault path

    Raises:
        VaultPathError: If the path does not exist or is not a directory
    """
    expanded = expand_path(path)

    if not expanded.exists():
        raise VaultPathError(f"Path does not exist: {expanded}")

    if not expanded.is_dir():
        raise VaultPathError(f"Path is not a directory: {expanded}")

    return expanded


def validate_path_within_vault(path_str: str, vault_path: Path) -> Path:
    """Resolve a vault-relative path and check that it stays inside the vault.

    Args:
        path_str: Path relative to the vault root
        vault_path: The vault root path

    Returns:
        The resolved absolute Path

    Raises:
        NotePathError: If the path is empty or escapes the vault
    """
    if not path_str or not path_str.strip():
        raise NotePathError("Path cannot be empty")

    vault_resolved = vault_path.resolve()
    full_path = (vault_resolved / path_str).resolve()

    try:
        full_path.relative_to(vault_resolved)
    except ValueError:
        raise NotePathError(f"Path escapes vault directory: {path_str}")

    return full_path


def sanitize_filename(name: str) -> str:
    """Turn a title into a file name stem (at most 100 characters)."""
    safe = UNSAFE_CHARS_PATTERN.sub("-", name)
    safe = WHITESPACE_PATTERN.sub("-", safe)
    safe = DASHES_PATTERN.sub("-", safe)
    return safe.strip("-")[:100]


def detect_vault_type(path: str | Path) -> str:
    """Guess the vault type from the folders it contains."""
    expanded = expand_path(path)

    if (expanded / ".obsidian").exists():
        return "obsidian"
    if (expanded / "logseq").exists() or (
        (expanded / "pages").exists() and (expanded / "journals").exists()
    ):
        return "logseq"
    return "plain"
