from pathway_advisor.cache.keys import generate_key, profile_fingerprint
from pathway_advisor.types import UserProfileContext


def test_generate_key_is_order_independent() -> None:
    first = generate_key("tool:search_programs", {"a": 1, "b": 2, "nested": {"x": [1, 2], "y": "z"}})
    second = generate_key("tool:search_programs", {"nested": {"y": "z", "x": [1, 2]}, "b": 2, "a": 1})

    assert first == second
    assert first.startswith("tool:search_programs:")


def test_generate_key_normalizes_values() -> None:
    assert generate_key("ns", {"q": " nursing ", "limit": None}) == generate_key("ns", {"q": "nursing"})
    assert generate_key("ns", {"q": "nursing"}) != generate_key("ns", {"q": "welding"})
    assert generate_key("ns", {"q": "nursing"}) != generate_key("other", {"q": "nursing"})


def test_profile_fingerprint_isolates_or_shares_rows() -> None:
    params = {"message": "nursing"}
    profile = UserProfileContext(education_level="high_school", grade_level=10, interests=["nursing", "art"])
    same_coarse = UserProfileContext(
        education_level="high_school",
        grade_level=10,
        interests=["art", "nursing"],
        timeline="next fall",
    )
    other = UserProfileContext(education_level="bachelors", interests=["nursing"])

    shared = generate_key("answer", params)
    isolated = generate_key("answer", params, profile_fingerprint(profile))

    assert profile_fingerprint(None) is None
    assert profile_fingerprint(profile) == profile_fingerprint(same_coarse)
    assert profile_fingerprint(profile) != profile_fingerprint(other)
    assert isolated.startswith(shared + ":")
