# Ledger Insight - Financial KPI analytics engine for double-entry ledgers
# Copyright (c) 2025 Maxence Bernard (maxencebernardhub)
# Licensed under the MIT License. See LICENSE file for details.

"""
Counterparty names derived from free-text ledger annotations.

Ledger rows do not reference a customer or supplier table: the counterparty
only appears in the annotation text of the receivable / payable row, often
followed by document references ("ACME Srl - Fattura 12 del 03/02/2024").

Two projections are derived from one parse of that text:

- ``display``: a readable name with trailing document references removed
  (``clean_display_name``);
- ``key``: a compact lower-case identifier used for set membership in
  cohort and retention analysis (``cohort_key``).

``normalize_counterparty`` computes the key from the cleaned display name,
so two annotations that display the same name always share a key.

All functions are pure string operations.
"""

import re
from dataclasses import dataclass

UNKNOWN_CUSTOMER = "Unknown Customer"
UNKNOWN_SUPPLIER = "Unknown Supplier"

# Trailing reference fragments, applied in this order.
_REFERENCE_PATTERNS: tuple[re.Pattern, ...] = tuple(
    re.compile(p, re.IGNORECASE)
    for p in (
        r"\s*-\s*fattura.*$",
        r"\s*-\s*fatt\.?.*$",
        r"\s*-\s*doc\.?.*$",
        r"\s*-\s*nr\.?.*$",
        r"\s*-\s*invoice.*$",
        r"\s*\bfattura\b.*$",
        r"\s*\bfatt\b\.?.*$",
        r"\s*\binvoice\b.*$",
        r"\s*\bdoc\b\.?.*$",
        r"\s*\bnr\b\.?.*$",
        r"\s*del\s+\d{1,2}/\d{1,2}/\d{4}.*$",
        r"\s*\d{1,2}/\d{1,2}/\d{4}.*$",
        r"\s*n\.\s*\d+.*$",
        r"\s*#\d+.*$",
    )
)

_LEADING_ALPHA = re.compile(r"^([a-zA-Z\s]{2,})")
_WHITESPACE = re.compile(r"\s+")
_NON_ALNUM = re.compile(r"[^a-z0-9\s]")

STOP_WORDS: frozenset[str] = frozenset(
    {"di", "del", "dei", "da", "per", "con", "srl", "spa", "snc", "nr"}
)


@dataclass(frozen=True)
class CounterpartyName:
    """Display and key projections of one counterparty annotation."""

    display: str
    key: str


def clean_display_name(text: str, unknown: str = UNKNOWN_CUSTOMER) -> str:
    """
    Strip document references from an annotation and return a display name.

    Steps:
        1. remove trailing invoice / document / number / date fragments,
        2. collapse whitespace and strip trailing commas,
        3. if fewer than 2 characters remain, fall back to the leading
           alphabetic run of the original text, then to ``unknown``.

    Examples:
        "ACME Srl - Fattura 12 del 03/02/2024" → "ACME Srl"
        "Rossi Mario, fatt. 45"               → "Rossi Mario"
        "12/03/2024"                          → "Unknown Customer"
    """
    original = str(text or "")
    name = original
    for pattern in _REFERENCE_PATTERNS:
        name = pattern.sub("", name)

    name = _WHITESPACE.sub(" ", name.strip()).rstrip(",").strip()
    if len(name) >= 2:
        return name

    match = _LEADING_ALPHA.match(original.strip())
    if match:
        fallback = _WHITESPACE.sub(" ", match.group(1)).strip()
        if len(fallback) >= 2:
            return fallback
    return unknown


def cohort_key(text: str) -> str:
    """
    Build a compact identifier for cohort comparisons.

    The text is cut at the first comma (or after 50 characters), lower-cased
    and stripped of non-alphanumeric characters. Tokens shorter than 2
    characters and stop-words (legal forms, prepositions) are dropped; the
    first three remaining tokens are concatenated and cut to 20 characters.
    Without any significant token, the text without spaces is cut to 15
    characters.
    """
    raw = str(text or "")
    comma = raw.find(",")
    relevant = raw[:comma] if comma >= 0 else raw[:50]

    code = _NON_ALNUM.sub("", relevant.strip().lower())
    code = _WHITESPACE.sub(" ", code)

    significant: list[str] = []
    for word in code.split(" "):
        if len(word) >= 2 and word not in STOP_WORDS:
            significant.append(word)
            if len(significant) >= 3:
                break

    if not significant:
        return re.sub(r"\s", "", code)[:15]
    return "".join(significant)[:20]


def normalize_counterparty(
    text: str, unknown: str = UNKNOWN_CUSTOMER
) -> CounterpartyName:
    """Return both projections of an annotation, derived from one parse."""
    display = clean_display_name(text, unknown)
    source = text if display == unknown else display
    key = cohort_key(source) or cohort_key(unknown)
    return CounterpartyName(display=display, key=key)
