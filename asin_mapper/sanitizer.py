"""Brand name normalization into search-safe queries."""

import re
from typing import Optional


DOMAIN_SUFFIX_PATTERN = re.compile(r"\.(com|net|org|biz|io|co|us|uk|info)$", re.IGNORECASE)
UNWANTED_CHARS_PATTERN = re.compile(r"[^\w\s\-&']")

# Mojibake left behind by the registered-trademark sign in latin-1 exports.
TRADEMARK_ARTIFACT = "Â®"

LEGAL_SUFFIXES = frozenset(
    {
        "inc",
        "inc.",
        "llc",
        "l.l.c.",
        "corp",
        "corp.",
        "corporation",
        "co",
        "co.",
        "ltd",
        "ltd.",
        "plc",
        "gmbh",
        "ltda",
        "group",
        "company",
    }
)


def sanitize_brand_name(raw: Optional[str]) -> str:
    """Normalize a raw company name into a brand search query.

    Strips a trailing domain suffix, standalone legal-entity tokens and
    symbols, and restores the apostrophe in a leading ``Its``.

    >>> sanitize_brand_name("Acme Corp. Group")
    'Acme'
    """
    if not raw:
        return ""

    text = DOMAIN_SUFFIX_PATTERN.sub("", raw.strip())

    words = [word for word in text.split() if word.lower() not in LEGAL_SUFFIXES]

    cleaned_words = []
    for word in words:
        cleaned = UNWANTED_CHARS_PATTERN.sub("", word.replace(TRADEMARK_ARTIFACT, ""))
        # "Inc," only becomes a suffix once the comma is gone
        if not cleaned or cleaned.lower() in LEGAL_SUFFIXES:
            continue
        if not cleaned_words and cleaned == "Its":
            cleaned = "It's"
        cleaned_words.append(cleaned)

    return " ".join(cleaned_words).strip()
