"""Relevance scoring for heterogeneous records.

Two mutually exclusive modes exist for every record kind:

- search mode ranks a record purely against search terms (the caller asked to
  ignore the stored profile);
- profile mode ranks a record against the learner profile.

Every function here is pure and total: missing fields contribute zero points
rather than raising. Scores are additive integers stored as floats.
"""

from __future__ import annotations

from collections.abc import Iterable, Sequence

from pathway_advisor.types import (
    CareerStat,
    EducationProgram,
    PathwayCourseSequence,
    ScoredRecord,
    UserProfileContext,
)

# Search-mode weights for post-secondary programs.
NAME_EXACT = 100
NAME_CONTAINS = 50
KEYWORD_MATCH = 40
CATEGORY_MATCH = 30
OUTCOME_MATCH = 25
DESCRIPTION_MATCH = 20
PARTIAL_OVERLAP = 10

# Search-mode weights for secondary pathway programs.
PATHWAY_NAME_EXACT = 80
PATHWAY_NAME_CONTAINS = 40
PATHWAY_KEYWORD_MATCH = 30
PATHWAY_CLUSTER_MATCH = 25

# Profile-mode weights.
INTEREST_EXACT = 10
INTEREST_PARTIAL = 5
INTEREST_CAP = 40
CAREER_GOAL_MATCH = 15
CREDENTIAL_BONUS = 20
REGION_BONUS = 15

PATHWAY_INTEREST_EXACT = 15
PATHWAY_INTEREST_CLUSTER = 10
LINKED_PROGRAM_BONUS = 5
LINKED_PROGRAM_CAP = 30

# Labor-market weights.
CAREER_EXACT = 100
CAREER_CONTAINS = 50
CAREER_PARTIAL = 25
DEMAND_THRESHOLDS: tuple[tuple[int, int], ...] = ((20, 15), (30, 10))

ACCEPTABLE_CREDENTIALS: dict[str, tuple[str, ...]] = {
    "middle_school": ("CERT", "CO", "CA", "Certificate"),
    "high_school": (
        "AS",
        "AA",
        "AAS",
        "CERT",
        "CO",
        "CA",
        "Certificate",
        "Associate in Science",
        "Associate in Arts",
        "Associate in Applied Science",
    ),
    "some_college": (
        "AS",
        "AA",
        "AAS",
        "BA",
        "BS",
        "BBA",
        "Bachelor of Arts",
        "Bachelor of Science",
    ),
    "associates": (
        "BA",
        "BS",
        "BBA",
        "BEd",
        "BFA",
        "BSN",
        "Bachelor of Arts",
        "Bachelor of Science",
    ),
    "bachelors": ("MA", "MS", "MBA", "MEd", "PhD", "MD", "Master of Arts", "Master of Science"),
}

CAMPUS_REGIONS: dict[str, str] = {
    "uh manoa": "Oahu",
    "uh west oahu": "Oahu",
    "honolulu cc": "Oahu",
    "kapiolani cc": "Oahu",
    "leeward cc": "Oahu",
    "windward cc": "Oahu",
    "uh hilo": "Hawaii Island",
    "hawaii cc": "Hawaii Island",
    "uh maui college": "Maui",
    "kauai cc": "Kauai",
}

_REGION_ALIASES: dict[str, str] = {
    "oahu": "Oahu",
    "honolulu": "Oahu",
    "kapolei": "Oahu",
    "kaneohe": "Oahu",
    "pearl city": "Oahu",
    "hawaii island": "Hawaii Island",
    "big island": "Hawaii Island",
    "hilo": "Hawaii Island",
    "kona": "Hawaii Island",
    "maui": "Maui",
    "kahului": "Maui",
    "kauai": "Kauai",
    "lihue": "Kauai",
    "molokai": "Maui",
    "lanai": "Maui",
}


def resolve_region(location: str | None) -> str | None:
    """Map a campus name, town, or region name to its region."""

    if not location:
        return None
    key = location.strip().lower()
    return CAMPUS_REGIONS.get(key) or _REGION_ALIASES.get(key)


def credential_reachable(degree: str | None, education_level: str | None) -> bool:
    if not degree or not education_level:
        return False
    acceptable = ACCEPTABLE_CREDENTIALS.get(education_level.strip().lower(), ())
    degree_lower = degree.strip().lower()
    degree_words = set(degree_lower.replace(",", " ").split())
    for credential in acceptable:
        credential_lower = credential.lower()
        if degree_lower == credential_lower or credential_lower in degree_words:
            return True
        if " " in credential_lower and degree_lower.startswith(credential_lower):
            return True
    return False


def score_program_search(program: EducationProgram, search_terms: Sequence[str]) -> float:
    """Search-mode score for a post-secondary program."""

    if not search_terms:
        return 0.0

    name = _lower(program.program_name)
    category = _lower(program.cip_category)
    description = _lower(program.description)
    keywords = [_lower(k) for k in program.search_keywords]
    outcomes = [_lower(o) for o in program.career_outcomes]
    keyword_set = _keyword_set(name, category, description, *keywords, *outcomes)

    score = 0
    for term in _terms(search_terms):
        if name and name == term:
            score += NAME_EXACT
        elif name and term in name:
            score += NAME_CONTAINS

        if term in keywords:
            score += KEYWORD_MATCH
        if category and term in category:
            score += CATEGORY_MATCH
        if description and term in description:
            score += DESCRIPTION_MATCH
        if any(term in outcome for outcome in outcomes):
            score += OUTCOME_MATCH
        if _partial_overlap(term, keyword_set):
            score += PARTIAL_OVERLAP
    return float(score)


def score_program_profile(program: EducationProgram, profile: UserProfileContext) -> float:
    """Profile-mode score for a post-secondary program."""

    score = 0
    if profile.interests:
        keyword_set = _keyword_set(
            _lower(program.program_name),
            _lower(program.cip_category),
            *(_lower(k) for k in program.search_keywords),
        )
        interest_score = 0
        for interest in profile.interests:
            if interest in keyword_set:
                interest_score += INTEREST_EXACT
            if _partial_overlap(interest, keyword_set):
                interest_score += INTEREST_PARTIAL
        score += min(interest_score, INTEREST_CAP)

    if profile.career_goals and program.career_outcomes:
        outcomes = [_lower(o) for o in program.career_outcomes]
        matched = [g for g in profile.career_goals if any(g in o for o in outcomes)]
        score += len(matched) * CAREER_GOAL_MATCH

    if credential_reachable(program.degree, profile.education_level):
        score += CREDENTIAL_BONUS

    home_region = resolve_region(profile.location)
    if home_region and resolve_region(program.campus) == home_region:
        score += REGION_BONUS
    return float(score)


def score_pathway_search(pathway: PathwayCourseSequence, search_terms: Sequence[str]) -> float:
    """Search-mode score for a secondary pathway program."""

    if not search_terms:
        return 0.0

    name = _lower(pathway.program_of_study)
    cluster = _lower(pathway.career_cluster)
    keywords = [_lower(k) for k in pathway.search_keywords]
    keyword_set = _keyword_set(name, cluster, *keywords)

    score = 0
    for term in _terms(search_terms):
        if name and name == term:
            score += PATHWAY_NAME_EXACT
        elif name and term in name:
            score += PATHWAY_NAME_CONTAINS

        if term in keywords:
            score += PATHWAY_KEYWORD_MATCH
        if cluster and term in cluster:
            score += PATHWAY_CLUSTER_MATCH
        if _partial_overlap(term, keyword_set):
            score += PARTIAL_OVERLAP
    return float(score)


def score_pathway_profile(pathway: PathwayCourseSequence, profile: UserProfileContext) -> float:
    """Profile-mode score for a pathway, including timing and downstream reach."""

    score = 0
    if profile.interests:
        cluster = _lower(pathway.career_cluster)
        keyword_set = _keyword_set(
            _lower(pathway.program_of_study),
            cluster,
            *(_lower(k) for k in pathway.search_keywords),
        )
        interest_score = 0
        for interest in profile.interests:
            if interest in keyword_set:
                interest_score += PATHWAY_INTEREST_EXACT
            if cluster and interest in cluster:
                interest_score += PATHWAY_INTEREST_CLUSTER
        score += min(interest_score, INTEREST_CAP)

    score += grade_timing_bonus(profile.grade_level)
    score += min(len(pathway.linked_programs) * LINKED_PROGRAM_BONUS, LINKED_PROGRAM_CAP)
    return float(score)


def grade_timing_bonus(grade_level: int | None) -> int:
    """More remaining school years earn more; the final year still earns some."""

    if grade_level is None or grade_level < 1:
        return 0
    if grade_level <= 10:
        return 20
    if grade_level == 11:
        return 15
    if grade_level == 12:
        return 10
    return 0


def score_career(career: CareerStat, search_terms: Sequence[str]) -> float:
    """Keyword score for labor-market data, boosted by posting volume.

    Demand bonuses only apply once the keyword score is positive, so a popular
    but unrelated subject area never ranks.
    """

    subject = _lower(career.subject_area)
    if not subject:
        return 0.0

    score = 0
    for term in _terms(search_terms):
        if subject == term:
            score += CAREER_EXACT
        elif term in subject:
            score += CAREER_CONTAINS
        elif subject in term or _shares_word(subject, term):
            score += CAREER_PARTIAL

    if score > 0:
        for threshold, bonus in DEMAND_THRESHOLDS:
            if career.unique_postings > threshold:
                score += bonus
    return float(score)


def rank(scored: Iterable[ScoredRecord]) -> list[ScoredRecord]:
    """Sort descending by score.

    The sort is stable and uses no secondary key: equal scores keep the order
    in which the record store returned them.
    """

    return sorted(scored, key=lambda item: item.score, reverse=True)


def _lower(value: str | None) -> str:
    return value.strip().lower() if value else ""


def _terms(search_terms: Sequence[str]) -> list[str]:
    return [t for t in (_lower(term) for term in search_terms) if t]


def _keyword_set(*values: str) -> set[str]:
    return {value for value in values if value}


def _partial_overlap(term: str, keyword_set: set[str]) -> bool:
    return any(term in keyword or keyword in term for keyword in keyword_set)


def _shares_word(a: str, b: str) -> bool:
    words_a = {w for w in a.split() if len(w) > 3}
    return bool(words_a & set(b.split()))
