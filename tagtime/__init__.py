# tagtime local search
#
# Modular package structure:
# - config.py: Runtime settings and the config.json vault registry
# - utils.py: Front matter parsing, path helpers, and exceptions
# - tokenizer.py: Latin/CJK tokenizer and term normalization
# - index.py: SearchIndex class (BM25, prefix and fuzzy matching)
# - cache.py: IndexCacheManager for building, updating and persisting indexes
# - search.py: Query entry point and snippet extraction
# - notes.py: Saving notes, daily notes, reading notes back, vault info
# - tools.py: MCP tool handlers and server instance
# - main.py: MCP entry point
# - cli.py: Command-line interface

__version__ = "0.1.0"
