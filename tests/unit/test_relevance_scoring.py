from pathway_advisor.retrieval.expander import expand_all
from pathway_advisor.retrieval.scoring import (
    grade_timing_bonus,
    rank,
    score_career,
    score_pathway_profile,
    score_program_profile,
    score_program_search,
)
from pathway_advisor.types import (
    CareerStat,
    EducationProgram,
    LinkedProgram,
    PathwayCourseSequence,
    ScoredRecord,
    UserProfileContext,
)


def _program(pid: str, name: str, **fields: object) -> EducationProgram:
    return EducationProgram(id=pid, program_name=name, **fields)


def test_comp_sci_ranks_computer_science_above_culinary_arts() -> None:
    terms = expand_all(["comp sci"])
    cs = _program("p-1", "Computer Science, AS", degree="AS")
    culinary = _program("p-2", "Culinary Arts, AAS", degree="AAS")

    ranked = rank(
        [
            ScoredRecord(record=culinary, score=score_program_search(culinary, terms), source_tool="search_programs"),
            ScoredRecord(record=cs, score=score_program_search(cs, terms), source_tool="search_programs"),
        ]
    )

    assert ranked[0].record.id == "p-1"
    assert ranked[0].score > ranked[1].score
    assert ranked[1].score == 0.0


def test_scores_are_deterministic_across_runs() -> None:
    program = _program(
        "p-1",
        "Nursing, AS",
        degree="AS",
        campus="Kapiolani CC",
        search_keywords=["nursing", "health"],
        career_outcomes=["registered nurse"],
    )
    profile = UserProfileContext(
        education_level="high_school",
        interests=["nursing"],
        career_goals=["nurse"],
        location="Honolulu",
    )

    first = [score_program_profile(program, profile), score_program_search(program, ["nursing"])]
    for _ in range(5):
        assert [score_program_profile(program, profile), score_program_search(program, ["nursing"])] == first


def test_equal_scores_keep_input_order() -> None:
    items = [
        ScoredRecord(record=_program(pid, f"Program {pid}"), score=10.0, source_tool="t")
        for pid in ("p-3", "p-1", "p-2")
    ]
    items.insert(1, ScoredRecord(record=_program("p-9", "Top"), score=20.0, source_tool="t"))

    ranked = rank(items)

    assert [item.record.id for item in ranked] == ["p-9", "p-3", "p-1", "p-2"]


def test_profile_score_adds_credential_and_region_bonuses() -> None:
    program = _program("p-1", "Welding, AAS", degree="AS", campus="Kapiolani CC")
    profile = UserProfileContext(education_level="high_school", location="Honolulu")

    assert score_program_profile(program, profile) == 35.0
    assert score_program_profile(program, UserProfileContext()) == 0.0


def test_interest_family_is_capped() -> None:
    keywords = ["nursing", "health", "medicine", "care", "clinical", "hospital"]
    program = _program("p-1", "Health Sciences", search_keywords=keywords)
    profile = UserProfileContext(interests=keywords)

    assert score_program_profile(program, profile) == 40.0


def test_pathway_profile_rewards_links_and_remaining_years() -> None:
    pathway = PathwayCourseSequence(
        id="hs-1",
        program_of_study="Health Services",
        career_cluster="Health Science",
        linked_programs=[LinkedProgram(program_name=f"Program {i}") for i in range(8)],
    )

    early = score_pathway_profile(pathway, UserProfileContext(grade_level=9))
    final_year = score_pathway_profile(pathway, UserProfileContext(grade_level=12))

    assert early == 20 + 30
    assert final_year == 10 + 30
    assert grade_timing_bonus(11) == 15
    assert grade_timing_bonus(None) == 0


def test_demand_bonus_requires_a_keyword_match() -> None:
    popular = CareerStat(id="c-1", subject_area="Nursing", unique_postings=35)

    assert score_career(popular, ["nursing"]) == 100 + 15 + 10
    assert score_career(popular, ["welding"]) == 0.0
    assert score_career(CareerStat(id="c-2", subject_area="Nursing", unique_postings=25), ["nursing"]) == 115.0
