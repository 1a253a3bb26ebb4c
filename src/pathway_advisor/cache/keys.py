"""Deterministic cache-key generation."""

from __future__ import annotations

import json
from collections.abc import Mapping
from enum import Enum
from hashlib import sha256
from typing import Any

from pathway_advisor.retrieval.scoring import resolve_region
from pathway_advisor.types import UserProfileContext


def generate_key(
    namespace: str,
    params: Mapping[str, Any],
    profile_fingerprint: str | None = None,
) -> str:
    """Build a key from a namespace, request params, and an optional fingerprint.

    Key order in `params` never matters. Passing no fingerprint lets identical
    requests from different users share one entry.
    """

    payload = json.dumps(
        _normalize(params),
        sort_keys=True,
        separators=(",", ":"),
        ensure_ascii=False,
        default=str,
    )
    digest = sha256(payload.encode("utf-8")).hexdigest()[:32]
    if profile_fingerprint:
        return f"{namespace}:{digest}:{profile_fingerprint}"
    return f"{namespace}:{digest}"


def profile_fingerprint(profile: UserProfileContext | None) -> str | None:
    """Coarse profile hash: education tier, grade, interests, and region."""

    if profile is None:
        return None
    coarse = {
        "education_level": (profile.education_level or "").lower(),
        "grade_level": profile.grade_level,
        "interests": sorted(profile.interests),
        "region": resolve_region(profile.location),
    }
    payload = json.dumps(coarse, sort_keys=True, separators=(",", ":"))
    return sha256(payload.encode("utf-8")).hexdigest()[:12]


def _normalize(value: Any) -> Any:
    if isinstance(value, Mapping):
        return {
            str(k): _normalize(v)
            for k, v in value.items()
            if v is not None
        }
    if isinstance(value, (list, tuple)):
        return [_normalize(v) for v in value]
    if isinstance(value, (set, frozenset)):
        return sorted(_normalize(v) for v in value)
    if isinstance(value, Enum):
        return value.value
    if isinstance(value, str):
        return value.strip()
    return value
