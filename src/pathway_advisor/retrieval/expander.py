"""Domain term expansion for abbreviations and simple plural forms."""

from __future__ import annotations

import re
from collections.abc import Iterable

ABBREVIATIONS: dict[str, tuple[str, ...]] = {
    "comp sci": ("computer science", "computing", "information technology"),
    "cs": ("computer science", "computing"),
    "bio": ("biology", "biological sciences"),
    "chem": ("chemistry", "chemical"),
    "psych": ("psychology", "psychological"),
    "econ": ("economics", "economic"),
    "poli sci": ("political science", "politics"),
    "phys ed": ("physical education", "kinesiology"),
    "bus": ("business", "business administration"),
    "eng": ("engineering",),
    "it": ("information technology", "information systems"),
    "math": ("mathematics", "mathematical"),
    "stats": ("statistics", "statistical"),
    "comm": ("communication", "communications"),
    "ed": ("education", "educational"),
    "nursing": ("nurse", "nursing science", "bsn"),
    "med": ("medicine", "medical", "pre-med"),
    "law": ("legal studies", "pre-law", "paralegal"),
    "ag": ("agriculture", "agricultural"),
    "cna": ("certified nursing assistant", "nursing"),
    "hvac": ("heating ventilation air conditioning", "refrigeration"),
    "ece": ("early childhood education",),
}

_WORD = re.compile(r"[a-z0-9][a-z0-9\-]*")
_INVARIANT_PLURALS = {"series", "species", "news", "physics", "economics", "mathematics"}


def expand(term: str) -> set[str]:
    """Return domain variants of `term`, never raising.

    The original term itself is not part of the result; callers that want it
    should use `expand_all`.
    """

    normalized = " ".join(_WORD.findall((term or "").lower()))
    if not normalized:
        return set()

    variations: set[str] = set()
    whole = ABBREVIATIONS.get(normalized)
    if whole:
        variations.update(whole)
    else:
        variant = _number_variant(normalized)
        if variant:
            variations.add(variant)

    for abbr, full_terms in ABBREVIATIONS.items():
        if abbr == normalized:
            continue
        pattern = re.compile(rf"\b{re.escape(abbr)}\b")
        if pattern.search(normalized):
            for full in full_terms:
                variations.add(pattern.sub(full, normalized))

    variations.discard(normalized)
    return variations


def expand_all(terms: Iterable[str]) -> list[str]:
    """Ordered union of each term followed by its expansions."""

    ordered: list[str] = []
    for term in terms:
        base = " ".join(_WORD.findall((term or "").lower()))
        if not base:
            continue
        for candidate in [base, *sorted(expand(base))]:
            if candidate not in ordered:
                ordered.append(candidate)
    return ordered


def _number_variant(phrase: str) -> str | None:
    head, _, last = phrase.rpartition(" ")
    if len(last) < 4 or not last.isalpha() or last in _INVARIANT_PLURALS:
        return None

    if last.endswith("ies"):
        swapped = last[:-3] + "y"
    elif last.endswith(("sses", "xes", "ches", "shes")):
        swapped = last[:-2]
    elif last.endswith("ss"):
        swapped = last + "es"
    elif last.endswith("is"):
        swapped = last[:-2] + "es"
    elif last.endswith("us"):
        swapped = last + "es"
    elif last.endswith("s"):
        swapped = last[:-1]
    elif last.endswith("y") and last[-2] not in "aeiou":
        swapped = last[:-1] + "ies"
    elif last.endswith(("x", "ch", "sh")):
        swapped = last + "es"
    else:
        swapped = last + "s"
    return f"{head} {swapped}" if head else swapped
