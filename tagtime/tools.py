"""
MCP Tools module for tagtime.

Exposes local vault search and note saving to MCP clients (list_tools and call_tool).
"""

import json
from typing import Any

from mcp.server import Server
from mcp.types import TextContent, Tool

from .cache import IndexCacheManager
from .config import get_default_vault_name, get_vault
from .models import SearchOptions, VaultConfig
from .notes import save_note
from .search import search_local
from .utils import TagtimeError, VaultNotFoundError

# Initialize server
server = Server("tagtime")

# Index cache shared by every tool call of this server process
index_manager = IndexCacheManager()


@server.list_tools()
async def list_tools() -> list[Tool]:
    """List available tools."""
    return [
        Tool(
            name="local_search",
            description="Full-text search over a local markdown vault. Supports typos (fuzzy), "
                       "prefixes, and filtering by folder or tag. Returns ranked notes with snippets.",
            inputSchema={
                "type": "object",
                "properties": {
                    "query": {
                        "type": "string",
                        "description": "Search query (keywords or phrase, English or Chinese)"
                    },
                    "vault": {
                        "type": "string",
                        "description": "Vault name (default: the default vault)"
                    },
                    "limit": {
                        "type": "integer",
                        "description": "Maximum number of results (default: 10)",
                        "default": 10
                    },
                    "folder": {
                        "type": "string",
                        "description": "Only return notes under this folder"
                    },
                    "tag": {
                        "type": "string",
                        "description": "Only return notes with this tag"
                    },
                    "exact": {
                        "type": "boolean",
                        "description": "Disable fuzzy and prefix matching",
                        "default": False
                    }
                },
                "required": ["query"]
            }
        ),
        Tool(
            name="save_note",
            description="Save a markdown note into a local vault with title, created and tags front matter, "
                       "or append it to today's daily note.",
            inputSchema={
                "type": "object",
                "properties": {
                    "content": {
                        "type": "string",
                        "description": "Note body (markdown)"
                    },
                    "title": {
                        "type": "string",
                        "description": "Note title (default: first line of the content)"
                    },
                    "tags": {
                        "type": "array",
                        "items": {"type": "string"},
                        "description": "Tags for the note"
                    },
                    "folder": {
                        "type": "string",
                        "description": "Target folder (default: the vault's notes folder)"
                    },
                    "daily": {
                        "type": "boolean",
                        "description": "Append to today's daily note",
                        "default": False
                    },
                    "vault": {
                        "type": "string",
                        "description": "Vault name (default: the default vault)"
                    }
                },
                "required": ["content"]
            }
        ),
        Tool(
            name="index_stats",
            description="Show the number of indexed notes and the last build time of a vault's search index.",
            inputSchema={
                "type": "object",
                "properties": {
                    "vault": {
                        "type": "string",
                        "description": "Vault name (default: the default vault)"
                    }
                }
            }
        ),
        Tool(
            name="rebuild_index",
            description="Rebuild a vault's search index from scratch.",
            inputSchema={
                "type": "object",
                "properties": {
                    "vault": {
                        "type": "string",
                        "description": "Vault name (default: the default vault)"
                    }
                }
            }
        ),
    ]


def _resolve_vault(arguments: dict[str, Any]) -> tuple[str, VaultConfig]:
    name = arguments.get("vault") or get_default_vault_name()
    if not name:
        raise VaultNotFoundError("No vault configured")
    return name, get_vault(name)


@server.call_tool()
async def call_tool(name: str, arguments: dict[str, Any]) -> list[TextContent]:
    """Handle tool calls."""
    try:
        if name == "local_search":
            query = arguments.get("query", "")
            vault_name, vault = _resolve_vault(arguments)
            options = SearchOptions(
                limit=arguments.get("limit", 10),
                folder=arguments.get("folder"),
                tag=arguments.get("tag"),
                exact=arguments.get("exact", False),
            )
            results = await search_local(index_manager, query, vault, options, vault_name)

            if not results:
                return [TextContent(type="text", text=f"No notes found for query: '{query}'")]

            output = f"Found {len(results)} notes for '{query}' in {vault_name}:\n\n"
            for i, r in enumerate(results, start=1):
                output += f"@{i} **{r.title}** ({r.path}) score {r.score:.2f}\n"
                if r.tags:
                    output += f"  Tags: {', '.join(r.tags)}\n"
                output += f"  {r.snippet}\n\n"

            return [TextContent(type="text", text=output)]

        elif name == "save_note":
            _, vault = _resolve_vault(arguments)
            result = await save_note(
                arguments.get("content", ""),
                vault,
                title=arguments.get("title"),
                folder=arguments.get("folder"),
                tags=arguments.get("tags"),
                daily=arguments.get("daily", False),
            )
            verb = "Appended to" if result.appended else "Saved note to"
            return [TextContent(type="text", text=f"{verb} {result.path}")]

        elif name == "index_stats":
            vault_name, vault = _resolve_vault(arguments)
            await index_manager.get_search_index(vault_name, vault)
            stats = index_manager.get_index_stats(vault_name)
            return [TextContent(type="text", text=json.dumps({
                "vault": vault_name,
                **(stats.model_dump() if stats else {}),
            }, indent=2))]

        elif name == "rebuild_index":
            vault_name, vault = _resolve_vault(arguments)
            index = await index_manager.get_search_index(vault_name, vault, force_rebuild=True)
            return [TextContent(
                type="text",
                text=f"Rebuilt index for {vault_name}: {index.document_count} notes",
            )]

    except TagtimeError as e:
        return [TextContent(type="text", text=f"Error: {e}")]

    return [TextContent(type="text", text=f"Unknown tool: {name}")]
