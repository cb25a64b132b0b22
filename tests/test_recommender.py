import pytest

from factories import make_candidate, make_profile
from studymatch.recommender import (
    DEFAULT_WEIGHTS,
    FALLBACK_REASON,
    ScoreWeights,
    compatibility,
    match_reason,
    overlap,
    score_breakdown,
    score_pair,
    top_k,
)


class TestOverlap:
    def test_partial_overlap(self):
        assert overlap(["A", "B"], ["B", "C"]) == pytest.approx(1 / 3)

    def test_identical_sets(self):
        assert overlap(["A"], ["A"]) == 1.0

    def test_empty_side_is_zero(self):
        assert overlap([], ["A"]) == 0.0
        assert overlap(None, None) == 0.0

    def test_case_insensitive(self):
        assert overlap(["Math"], ["math"]) == 1.0

    def test_duplicates_collapse(self):
        assert overlap(["Math", "math", "Physics"], ["MATH"]) == pytest.approx(0.5)


class TestScorePair:
    def test_worked_example_scores_41(self):
        a = make_profile("a", subjects=["Math", "Physics"], style="visual", streak=5)
        b = make_profile("b", subjects=["Physics", "Chemistry"], style="visual", streak=8)
        score, comps = score_pair(a, b)
        assert score == 41
        assert comps["subjects"] == pytest.approx(1 / 3)
        assert comps["schedule"] == 0.0
        assert comps["learning_style"] == 1.0
        assert comps["exam_goal"] == 0.0
        assert comps["streak"] == pytest.approx(0.9)

    def test_empty_profiles_only_score_streak_and_behavior(self):
        # streak gap 0 -> 0.10, behavior 0.07
        score, _ = score_pair(make_profile("a"), make_profile("b"))
        assert score == 17

    def test_perfect_match_is_97(self):
        p = dict(subjects=["Math"], times=["Morning"], style="visual", goal="SAT", streak=3)
        score, _ = score_pair(make_profile("a", **p), make_profile("b", **p))
        assert score == 97

    def test_different_style_and_goal_get_partial_credit(self):
        a = make_profile("a", style="visual", goal="SAT")
        b = make_profile("b", style="auditory", goal="ACT")
        comps = score_breakdown(a, b)
        assert comps["learning_style"] == 0.5
        assert comps["exam_goal"] == 0.3

    def test_learning_style_is_case_sensitive(self):
        a = make_profile("a", style="Visual")
        b = make_profile("b", style="visual")
        assert score_breakdown(a, b)["learning_style"] == 0.5
        assert score_breakdown(b, a)["learning_style"] == 0.5

    def test_exam_goal_is_case_insensitive(self):
        comps = score_breakdown(make_profile("a", goal="SAT"), make_profile("b", goal="sat"))
        assert comps["exam_goal"] == 1.0

    def test_streak_gap_beyond_window_is_zero(self):
        comps = score_breakdown(make_profile("a", streak=0), make_profile("b", streak=45))
        assert comps["streak"] == 0.0

    @pytest.mark.parametrize(
        "a,b",
        [
            (dict(subjects=["Math"], streak=100), dict(subjects=["Art"], streak=0)),
            (dict(subjects=["Math", "Art"], times=["AM"], style="x"), dict(subjects=["Art"], times=["PM"], style="y")),
            (dict(goal="SAT", streak=12), dict(goal="sat", streak=2)),
        ],
    )
    def test_bounded_and_symmetric(self, a, b):
        p1 = make_profile("a", **a)
        p2 = make_profile("b", **b)
        s1, _ = score_pair(p1, p2)
        s2, _ = score_pair(p2, p1)
        assert 0 <= s1 <= 100
        assert s1 == s2

    def test_custom_weights(self):
        weights = ScoreWeights(
            w_subjects=1.0, w_schedule=0, w_learning_style=0, w_exam_goal=0, w_streak=0, w_behavior=0
        )
        a = make_profile("a", subjects=["Math", "Physics"])
        b = make_profile("b", subjects=["Physics", "Chemistry"])
        score, _ = score_pair(a, b, weights)
        assert score == 33

    def test_default_weights_sum_to_one(self):
        w = DEFAULT_WEIGHTS
        total = w.w_subjects + w.w_schedule + w.w_learning_style + w.w_exam_goal + w.w_streak + w.w_behavior
        assert total == pytest.approx(1.0)


class TestMatchReason:
    def test_worked_example_reason(self):
        a = make_profile("a", subjects=["Math", "Physics"], style="visual", streak=5)
        b = make_profile("b", subjects=["Physics", "Chemistry"], style="visual", streak=8)
        assert match_reason(a, b) == "Both study Physics • Same learning style"

    def test_all_reasons_in_order(self):
        a = make_profile("a", subjects=["Physics", "Math", "Art"], times=["Evening"], style="visual", goal="SAT")
        b = make_profile("b", subjects=["math", "physics", "art"], times=["evening"], style="visual", goal="sat")
        assert match_reason(a, b) == (
            "Both study Art, Math • Similar study schedule • Same learning style • Same exam goal: SAT"
        )

    def test_fallback_when_nothing_in_common(self):
        a = make_profile("a", subjects=["Math"], style="visual")
        b = make_profile("b", subjects=["Art"], style="auditory")
        assert match_reason(a, b) == FALLBACK_REASON

    def test_differently_cased_styles_are_not_the_same_style(self):
        a = make_profile("a", style="Visual")
        b = make_profile("b", style="visual")
        assert match_reason(a, b) == FALLBACK_REASON

    def test_compatibility_returns_score_and_reason(self):
        a = make_profile("a", subjects=["Math"])
        b = make_profile("b", subjects=["Math"])
        score, reason = compatibility(a, b)
        assert score == 47
        assert reason == "Both study Math"


class TestTopK:
    def test_splits_ranked_candidates(self):
        candidates = [make_candidate("c", 40), make_candidate("a", 90), make_candidate("b", 60)]
        shortlist, rest = top_k(candidates, 2)
        assert [c.user.id for c in shortlist] == ["a", "b"]
        assert [c.user.id for c in rest] == ["c"]

    def test_ties_break_on_candidate_id(self):
        candidates = [make_candidate("zed", 70), make_candidate("amy", 70), make_candidate("kim", 70)]
        shortlist, _ = top_k(candidates, 3)
        assert [c.user.id for c in shortlist] == ["amy", "kim", "zed"]

    def test_k_larger_than_pool(self):
        shortlist, rest = top_k([make_candidate("a", 10)], 10)
        assert len(shortlist) == 1
        assert rest == []
