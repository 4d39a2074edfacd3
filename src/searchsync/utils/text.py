"""French search-token generation.

Search tokens are every proper prefix (three characters or longer) of the
meaningful words of a text, so a plain full-text index can answer prefix
queries such as ``"syst"`` for ``"système"``.
"""

from __future__ import annotations

import re
from typing import Any, List

MIN_PREFIX_LENGTH = 3

STOP_WORDS = frozenset(
    {
        "alors", "ainsi", "après", "au", "aucun", "aussi", "autre", "aux",
        "avant", "avec", "avoir", "beaucoup", "ce", "cela", "celle", "celui",
        "ces", "cette", "chaque", "chez", "comme", "contre", "dans", "de",
        "depuis", "des", "dessous", "dessus", "donc", "du", "elle", "elles",
        "en", "encore", "entre", "est", "et", "était", "étant", "être",
        "faire", "il", "ils", "jusqu", "la", "le", "les", "leur", "leurs",
        "lors", "mais", "moins", "moment", "même", "nous", "ou", "où",
        "par", "parce", "pendant", "peut", "pour", "puisque", "quand",
        "que", "quelque", "qui", "sans", "serait", "seront", "son", "sont",
        "sous", "souvent", "sur", "tous", "tout", "toute", "très", "un",
        "une", "vers", "voici", "voilà", "vous",
    }
)

# Straight and curly quotes, guillemets and sentence punctuation.
PUNCTUATION = ".,!?;:()\"'«»“”‘’"
ELISION_LETTERS = "dlmctjqs"
ELISION_PREFIXES = ("qu",)
APOSTROPHES = "'’"

# Every character str.isspace() accepts, so words split the same way in the store.
WHITESPACE = (
    "\t\n\x0b\x0c\r\x1c\x1d\x1e\x1f \x85\xa0\u1680"
    "\u2000\u2001\u2002\u2003\u2004\u2005\u2006\u2007\u2008\u2009\u200a"
    "\u2028\u2029\u202f\u205f\u3000"
)
WORD_PATTERN = "[^{}]+".format(WHITESPACE)

# Upper-case letters of Latin-1 and Latin Extended-A with a one-letter lower
# case. The store only lower-cases ASCII, so both sides fold with this table.
LOWERCASE_PAIRS = tuple(
    (char, char.lower())
    for char in map(chr, range(0xC0, 0x180))
    if char.lower() != char and len(char.lower()) == 1
)

_FOLD_TABLE = str.maketrans(
    {**{chr(code): chr(code + 32) for code in range(ord("A"), ord("Z") + 1)}, **dict(LOWERCASE_PAIRS)}
)
_WORD_RE = re.compile(WORD_PATTERN)
_EDGE_PUNCTUATION_RE = re.compile(
    "^[{0}]+|[{0}]+$".format(re.escape(PUNCTUATION))
)
ELISION_PATTERN = r"^(?:{}|[{}])[{}]\s*".format(
    "|".join(ELISION_PREFIXES), ELISION_LETTERS, APOSTROPHES
)
_ELISION_RE = re.compile(ELISION_PATTERN, re.IGNORECASE)


def fold_case(text: str) -> str:
    """Lower-case ASCII and accented Latin letters, leave everything else."""
    return text.translate(_FOLD_TABLE)


def split_words(text: str) -> List[str]:
    return _WORD_RE.findall(text)


def clean_word(word: str) -> str:
    """Strip edge punctuation and a leading elision such as ``l'`` or ``qu’``."""
    word = _EDGE_PUNCTUATION_RE.sub("", word)
    return _ELISION_RE.sub("", word)


def word_prefixes(word: str, *, min_length: int = MIN_PREFIX_LENGTH) -> List[str]:
    """Return the proper prefixes of ``word`` that are at least ``min_length`` long."""
    return [word[:end] for end in range(min_length, len(word))]


def tokenize(value: Any) -> List[str]:
    """Turn text into its ordered, de-duplicated list of search tokens.

    Stop words are dropped twice: as input words, and again when a prefix of
    a longer word spells one (``mais`` from ``maison``). Non-string values
    (``None``, numbers, missing fields) yield no tokens.
    """
    if not isinstance(value, str):
        return []

    tokens: List[str] = []
    seen = set()
    for word in split_words(fold_case(value)):
        if word in STOP_WORDS:
            continue
        for prefix in word_prefixes(clean_word(word)):
            if prefix not in seen and prefix not in STOP_WORDS:
                seen.add(prefix)
                tokens.append(prefix)
    return tokens


def search_text(value: Any) -> str:
    """Return the space separated token bag stored in a derived search field."""
    return " ".join(tokenize(value))
