"""Query text normalization and intent extraction.

Both functions are pure; the engine calls them once per query.
"""

import re

from semcache.domain.models import QueryIntent

_SPECIAL_CHARS = re.compile(r"[^\w\s-]")
_WHITESPACE = re.compile(r"\s+")

# Alphanumeric product codes such as FGB-K20 or SM_G991
_PRODUCT_CODE = re.compile(r"\b[a-z]{2,4}[-_]?[a-z0-9]{2,8}\b", re.IGNORECASE)

FACET_KEYWORDS = frozenset({
    "error", "code", "specs", "specification", "price", "review",
    "manual", "guide", "install", "setup", "compare", "vs",
    "how", "what", "where", "when", "why", "which",
})

# Checked in order; the first match becomes the timebox
_TIME_PATTERNS = (
    re.compile(r"\b(today|yesterday|this week|last week|this month|last month)\b", re.IGNORECASE),
    re.compile(r"\b(20\d{2})\b"),
    re.compile(r"\b(q[1-4])\b", re.IGNORECASE),
)


def normalize_text(text: str) -> str:
    """Lowercase, strip punctuation except hyphens and collapse whitespace."""
    text = text.lower().strip()
    text = _SPECIAL_CHARS.sub(" ", text)
    return _WHITESPACE.sub(" ", text).strip()


def extract_intent(text: str) -> QueryIntent:
    words = normalize_text(text).split(" ")

    entities = frozenset(code.upper() for code in _PRODUCT_CODE.findall(text))
    facets = frozenset(word for word in words if word in FACET_KEYWORDS)

    timebox = None
    for pattern in _TIME_PATTERNS:
        match = pattern.search(text)
        if match:
            timebox = match.group(1)
            break

    return QueryIntent(entities=entities, facets=facets, timebox=timebox)
