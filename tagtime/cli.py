"""
Command-line interface for tagtime local mode.

Usage:
    tagtime search "query" [--folder F] [--tag T] [--exact]
    tagtime index [--vault NAME] [--rebuild]
    tagtime vault add <name> <path> [--type plain|obsidian|logseq]
    tagtime vault list | remove <name> | use <name> | info [name]
    tagtime save ["text"|file] [--title T] [--tags a,b] [--folder F] [--daily]
    tagtime show <@N|path> [--json] [--raw] [--no-frontmatter]
"""

import argparse
import asyncio
import json
import sys
import time
from pathlib import Path

from . import __version__
from .cache import IndexCacheManager
from .config import (
    add_vault,
    default_vault_config,
    get_default_vault_name,
    get_path_by_index,
    get_vault,
    get_vaults,
    remove_vault,
    save_last_search_results,
    set_default_vault,
    settings,
)
from .logging import configure_logging
from .models import SearchOptions, SearchResult, VaultConfig
from .notes import get_vault_info, read_note, save_note
from .search import search_local
from .utils import TagtimeError, VaultNotFoundError, detect_vault_type, validate_vault_path


def _resolve_vault(name: str | None) -> tuple[str, VaultConfig]:
    name = name or get_default_vault_name()
    if not name:
        raise VaultNotFoundError("No vault configured. Add one with: tagtime vault add <name> <path>")
    return name, get_vault(name)


def _stars(score: float) -> str:
    if score >= 2:
        return "★★★"
    if score >= 1:
        return "★★☆"
    return "★☆☆"


def format_results(results: list[SearchResult], vault_name: str, elapsed_ms: int) -> str:
    """Render search results for the terminal."""
    if not results:
        return "No results found."

    lines = [f"Found {len(results)} result(s) in {vault_name} ({elapsed_ms}ms):", ""]
    for i, item in enumerate(results, start=1):
        lines.append(f"@{i} {item.title} {_stars(item.score)} {item.score:.2f}")
        lines.append(f"   Path: {item.path}")
        if item.tags:
            lines.append(f"   Tags: {', '.join(item.tags)}")
        if item.modified:
            lines.append(f"   Modified: {item.modified.date().isoformat()}")
        lines.append(f"   {item.snippet}")
        lines.append("")
    return "\n".join(lines)


async def cmd_search(args: argparse.Namespace, manager: IndexCacheManager) -> int:
    """Search the local vault."""
    vault_name, vault = _resolve_vault(args.vault)
    options = SearchOptions(
        limit=args.limit,
        folder=args.folder,
        tag=args.tag,
        fuzzy=args.fuzzy,
        exact=args.exact,
        force_rebuild=args.rebuild_index,
    )

    start_time = time.time()
    results = await search_local(manager, args.query, vault, options, vault_name)
    elapsed_ms = int((time.time() - start_time) * 1000)

    save_last_search_results([
        {"id": str(i), "title": r.title, "path": r.path}
        for i, r in enumerate(results, start=1)
    ])

    if args.json:
        print(json.dumps({
            "success": True,
            "data": {
                "total": len(results),
                "elapsed": f"{elapsed_ms}ms",
                "items": [r.model_dump(mode="json") for r in results],
            },
        }, indent=2, ensure_ascii=False))
    else:
        print(format_results(results, vault_name, elapsed_ms))
    return 0


async def cmd_index(args: argparse.Namespace, manager: IndexCacheManager) -> int:
    """Build or refresh the search index and print its stats."""
    vault_name, vault = _resolve_vault(args.vault)

    def on_progress(current: int, total: int) -> None:
        print(f"\rIndexing {current}/{total}", end="", file=sys.stderr, flush=True)

    index = await manager.get_search_index(
        vault_name, vault, force_rebuild=args.rebuild, on_progress=on_progress,
    )
    stats = manager.get_index_stats(vault_name)
    if args.rebuild:
        print(file=sys.stderr)

    print(f"Vault: {vault_name}")
    print(f"Notes indexed: {index.document_count}")
    print(f"Terms: {index.term_count}")
    if stats:
        print(f"Last built: {stats.last_built}")
    return 0


def cmd_vault(args: argparse.Namespace) -> int:
    """Manage the vault registry."""
    if args.vault_command == "add":
        path = str(validate_vault_path(args.path))
        vault_type = args.type or detect_vault_type(path)
        add_vault(args.name, default_vault_config(path, vault_type))
        print(f"Added {vault_type} vault '{args.name}' at {path}")

    elif args.vault_command == "remove":
        remove_vault(args.name)
        print(f"Removed vault '{args.name}'")

    elif args.vault_command == "use":
        set_default_vault(args.name)
        print(f"Default vault: {args.name}")

    elif args.vault_command == "info":
        name, vault = _resolve_vault(args.name)
        info = get_vault_info(name, vault)
        is_default = name == get_default_vault_name()

        print(f"Vault: {name}{' (default)' if is_default else ''}")
        print(f"Type: {info.type}")
        print(f"Path: {info.path}")
        if info.note_count is not None:
            print(f"Notes: {info.note_count} files")
        if info.last_modified:
            print(f"Last modified: {info.last_modified.strftime('%Y-%m-%d %H:%M')}")

        if vault.type == "obsidian":
            folders = [
                ("Daily notes", vault.daily_notes_folder),
                ("Templates", vault.templates_folder),
                ("Attachments", vault.attachments_folder),
            ]
        elif vault.type == "logseq":
            folders = [("Pages", vault.pages_folder), ("Journals", vault.journals_folder)]
        else:
            folders = []
        folders = [(label, folder) for label, folder in folders if folder]
        if folders:
            print()
            print(f"{vault.type.capitalize()} settings:")
            for label, folder in folders:
                print(f"  {label}: {folder}/")

    else:
        vaults = get_vaults()
        if not vaults:
            print("No vaults configured.")
            return 0
        default = get_default_vault_name()
        for name, vault in vaults.items():
            marker = "*" if name == default else " "
            print(f"{marker} {name} ({vault.type}) {vault.path}")
    return 0


async def cmd_save(args: argparse.Namespace) -> int:
    """Save text, a file, or stdin as a note (or append it to the daily note)."""
    _, vault = _resolve_vault(args.vault)
    title = args.title
    content = args.content

    if content is None:
        content = "" if sys.stdin.isatty() else sys.stdin.read().strip()
        if not content:
            raise TagtimeError("No content provided. Provide content as argument or pipe via stdin.")
    else:
        source = Path(content).expanduser()
        try:
            is_file = source.is_file()
        except (OSError, ValueError):
            # Long or NUL-containing text is never a path
            is_file = False
        if is_file:
            try:
                content = source.read_text(encoding="utf-8")
            except (OSError, UnicodeDecodeError) as e:
                raise TagtimeError(f"Cannot read {source}: {e}") from e
            title = title or source.stem

    tags = [t.strip() for t in args.tags.split(",") if t.strip()] if args.tags else None
    result = await save_note(content, vault, title=title, folder=args.folder, tags=tags, daily=args.daily)

    if args.json:
        print(json.dumps({"success": True, "data": result.model_dump()}, indent=2, ensure_ascii=False))
    elif args.quiet:
        print(result.path)
    else:
        print(f"{'Appended to' if result.appended else 'Saved to'} {result.path}")
    return 0


async def cmd_show(args: argparse.Namespace) -> int:
    """Print a note by path or by `@N` reference to the last search."""
    vault_name, vault = _resolve_vault(args.vault)
    ref = args.note
    if ref.startswith("@") and ref[1:].isdigit():
        note_path = get_path_by_index(int(ref[1:]))
        if note_path is None:
            raise TagtimeError(f"No search result {ref}. Run a search first.")
    else:
        note_path = ref if ref.endswith((".md", ".markdown")) else f"{ref}.md"

    try:
        note = await read_note(note_path, vault)
    except FileNotFoundError as e:
        raise TagtimeError(f"Note not found: {note_path}") from e
    except (OSError, UnicodeDecodeError) as e:
        raise TagtimeError(f"Cannot read {note_path} in {vault_name}: {e}") from e

    if args.json:
        print(json.dumps({"success": True, "data": note.model_dump(mode="json")}, indent=2, ensure_ascii=False))
        return 0

    text = note.body if args.no_frontmatter else note.content
    if not args.raw:
        print(note.title)
        print(f"Path: {note.path}")
        if note.modified:
            print(f"Modified: {note.modified.strftime('%Y-%m-%d %H:%M')}")
        print("-" * 50)
        print()
    print(text)
    return 0


def build_parser() -> argparse.ArgumentParser:
    parser = argparse.ArgumentParser(prog="tagtime", description="Save and search notes in local markdown vaults")
    parser.add_argument("--version", action="version", version=f"tagtime {__version__}")
    parser.add_argument("-v", "--verbose", action="store_true", help="Show info logs on stderr")
    subparsers = parser.add_subparsers(dest="command", required=True)

    search = subparsers.add_parser("search", help="Search a local vault")
    search.add_argument("query", help="Search query")
    search.add_argument("-l", "--limit", type=int, default=settings.default_limit, help="Maximum number of results")
    search.add_argument("--json", action="store_true", help="Output results as JSON")
    search.add_argument("--vault", help="Vault name (default: the default vault)")
    search.add_argument("--folder", help="Limit search to a folder")
    search.add_argument("-t", "--tag", help="Filter by tag")
    fuzzy = search.add_mutually_exclusive_group()
    fuzzy.add_argument(
        "--fuzzy", nargs="?", type=float, const=settings.default_fuzzy, default=None,
        metavar="DISTANCE", help=f"Fuzzy matching factor (default: {settings.default_fuzzy})",
    )
    fuzzy.add_argument("--no-fuzzy", dest="fuzzy", action="store_const", const=False, help="Disable fuzzy matching")
    search.add_argument("--exact", action="store_true", help="Exact match (disable fuzzy and prefix)")
    search.add_argument("--rebuild-index", action="store_true", help="Force a full index rebuild")

    index = subparsers.add_parser("index", help="Build the search index and show its stats")
    index.add_argument("--vault", help="Vault name (default: the default vault)")
    index.add_argument("--rebuild", action="store_true", help="Rebuild from scratch")

    vault = subparsers.add_parser("vault", help="Manage local vaults")
    vault_sub = vault.add_subparsers(dest="vault_command", required=True)
    add = vault_sub.add_parser("add", help="Register a vault")
    add.add_argument("name")
    add.add_argument("path")
    add.add_argument("--type", choices=["plain", "obsidian", "logseq"], help="Vault type (default: detected)")
    vault_sub.add_parser("list", help="List registered vaults")
    remove = vault_sub.add_parser("remove", help="Unregister a vault")
    remove.add_argument("name")
    use = vault_sub.add_parser("use", help="Set the default vault")
    use.add_argument("name")
    info = vault_sub.add_parser("info", help="Show vault details")
    info.add_argument("name", nargs="?", help="Vault name (default: the default vault)")

    save = subparsers.add_parser("save", help="Save a note to a local vault")
    save.add_argument("content", nargs="?", help="Text or a file path (default: read stdin)")
    save.add_argument("-t", "--title", help="Note title (default: first line of the content)")
    save.add_argument("--tags", help="Comma-separated list of tags")
    save.add_argument("--folder", help="Target folder (default: the vault's notes folder)")
    save.add_argument("--daily", action="store_true", help="Append to today's daily note")
    save.add_argument("--vault", help="Vault name (default: the default vault)")
    save.add_argument("-q", "--quiet", action="store_true", help="Only print the saved path")
    save.add_argument("--json", action="store_true", help="Output result as JSON")

    show = subparsers.add_parser("show", help="Print a note")
    show.add_argument("note", help="Vault-relative path, or @N from the last search")
    show.add_argument("--vault", help="Vault name (default: the default vault)")
    show.add_argument("--json", action="store_true", help="Output the note as JSON")
    show.add_argument("--raw", action="store_true", help="Print the note text only")
    show.add_argument("--no-frontmatter", action="store_true", help="Leave out the front matter")

    return parser


def main(argv: list[str] | None = None) -> int:
    """CLI entry point."""
    args = build_parser().parse_args(argv)
    configure_logging("INFO" if args.verbose else settings.log_level)

    manager = IndexCacheManager()
    try:
        if args.command == "search":
            return asyncio.run(cmd_search(args, manager))
        if args.command == "index":
            return asyncio.run(cmd_index(args, manager))
        if args.command == "save":
            return asyncio.run(cmd_save(args))
        if args.command == "show":
            return asyncio.run(cmd_show(args))
        return cmd_vault(args)
    except TagtimeError as e:
        print(f"Error: {e}", file=sys.stderr)
        return 1


if __name__ == "__main__":
    sys.exit(main())
