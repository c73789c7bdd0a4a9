"""
Tokenizer for the local search index.

Splits mixed Latin/CJK text into index terms. The same `process_term`
function is used when documents are added and when queries are run.
"""

import re

# CJK Unified Ideographs and Extension A
CJK_CHAR = "\u4e00-\u9fa5\u3400-\u4dbf"
CJK_PATTERN = re.compile(f"[{CJK_CHAR}]")
CJK_ONLY_PATTERN = re.compile(f"^[{CJK_CHAR}]+$")
CJK_PHRASE_PATTERN = re.compile(f"[{CJK_CHAR}]{{2,4}}")

WORD_BOUNDARY_PATTERN = re.compile(r"[\s\-_./\\,;:!?'\"()\[\]{}|<>@#$%^&*+=~`]+")
SINGLE_LATIN_PATTERN = re.compile(r"^[a-z]$")

STOP_WORDS = frozenset({
    "the", "a", "an", "and", "or", "but", "in", "on", "at", "to", "for",
    "of", "with", "by", "is", "are", "was", "were", "be", "been", "being",
    "have", "has", "had", "do", "does", "did", "will", "would", "could",
    "should", "may", "might", "must", "can", "this", "that", "these", "those",
    "it", "its", "as", "if", "then", "else", "when", "where", "why", "how",
    "的", "是", "在", "和", "了", "有", "我", "他", "她", "它", "们", "这", "那",
})


def tokenize(text: str) -> list[str]:
    """Split text into index terms.

    Latin words are lowercased and split on whitespace and punctuation.
    Every CJK character is emitted on its own, and runs of 2-4 CJK
    characters are emitted as phrase tokens.
    """
    if not text:
        return []

    tokens = [
        t for t in WORD_BOUNDARY_PATTERN.split(text.lower())
        if t and not CJK_ONLY_PATTERN.match(t)
    ]
    tokens.extend(CJK_PATTERN.findall(text))
    tokens.extend(CJK_PHRASE_PATTERN.findall(text))
    return tokens


def tokenize_query(text: str) -> list[str]:
    """Tokenize a search query, keeping the literal words as well."""
    if not text:
        return []

    words = [w for w in WORD_BOUNDARY_PATTERN.split(text) if w]
    return list(dict.fromkeys(tokenize(text) + words))


def process_term(term: str) -> str | None:
    """Normalize a term, or return None to drop it from the index."""
    if not term:
        return None

    term = term.lower()

    # Single Latin letters are noise; single CJK characters are not
    if SINGLE_LATIN_PATTERN.match(term):
        return None

    if term in STOP_WORDS:
        return None

    return term
