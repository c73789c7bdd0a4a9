"""
Pytest configuration and fixtures for tagtime tests.
"""

import pytest
import structlog
from pathlib import Path


def write_notes(root: Path, notes: dict[str, str]) -> Path:
    """Write {relative path: content} under root and return root."""
    root.mkdir(parents=True, exist_ok=True)
    for rel_path, content in notes.items():
        note_file = root / rel_path
        note_file.parent.mkdir(parents=True, exist_ok=True)
        note_file.write_text(content, encoding="utf-8")
    return root


@pytest.fixture(autouse=True)
def reset_structlog():
    """Restore the default structlog configuration after each test."""
    yield
    structlog.reset_defaults()


@pytest.fixture
def make_vault(tmp_path: Path):
    """Factory for small vaults: make_vault({"a.md": "..."})."""
    counter = {"n": 0}

    def _make(notes: dict[str, str]) -> Path:
        counter["n"] += 1
        return write_notes(tmp_path / f"vault{counter['n']}", notes)

    return _make


@pytest.fixture
def temp_vault(tmp_path: Path):
    """Create a temporary vault with test notes."""
    vault_path = tmp_path / "vault"

    write_notes(vault_path, {
        # Inline tag list
        "Concepts/Python.md": """---
title: Python
tags: [programming, language]
---

# Python

Python is a programming language with dynamic typing.
""",
        # Block tag list
        "Concepts/JavaScript.md": """---
title: JavaScript
tags:
  - programming
  - web
---

JavaScript is a web programming language.
""",
        # No front matter, title from heading
        "Daily/2024-01-20.md": """# Daily log

Configured Docker and Python today.
""",
        # Comma separated tags, CJK content
        "笔记/机器学习.md": """---
title: 机器学习
tags: ai, 笔记
---

机器学习是人工智能的一个分支。
""",
        # Never indexed
        ".obsidian/workspace.md": "python hidden settings\n",
        "node_modules/pkg/readme.md": "python package readme\n",
    })

    (vault_path / "Attachments").mkdir()
    (vault_path / "Attachments" / "image.png").write_bytes(b"\x89PNG")

    yield vault_path


@pytest.fixture
def vault_config(temp_vault):
    """VaultConfig pointing at the temp vault."""
    from tagtime.models import VaultConfig
    return VaultConfig(type="obsidian", path=str(temp_vault))


@pytest.fixture
def manager(tmp_path: Path):
    """IndexCacheManager writing snapshots to a temporary directory."""
    from tagtime.cache import IndexCacheManager
    return IndexCacheManager(cache_dir=tmp_path / "cache")


@pytest.fixture
def config_path(tmp_path: Path) -> Path:
    """Path of a config.json that does not exist yet."""
    return tmp_path / "config" / "config.json"


@pytest.fixture
def isolated_settings(tmp_path: Path, monkeypatch):
    """Point the global settings at a temporary config directory."""
    from tagtime.config import settings

    monkeypatch.setattr(settings, "config_dir", tmp_path / "config")
    monkeypatch.setattr(settings, "cache_dir", tmp_path / "cache")
    return settings
