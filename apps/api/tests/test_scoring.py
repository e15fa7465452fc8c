import pytest

from services.scoring import (
    CATEGORY_WEIGHTS,
    PartialCategoryResults,
    aggregate_overall_score,
    category_score,
    round_half_up,
    score_breakdown,
)


def test_all_categories_use_canonical_weights():
    results = PartialCategoryResults(
        performance={"score": 90},
        seo={"score": 70},
        images={"score": 50},
    )
    # 0.4*90 + 0.3*70 + 0.3*50 = 72
    assert aggregate_overall_score(results) == 72


def test_missing_category_renormalizes_instead_of_counting_zero():
    results = PartialCategoryResults(performance={"score": 90}, seo={"score": 70})
    # (0.4*90 + 0.3*70) / 0.7 = 81.43
    assert aggregate_overall_score(results) == 81


def test_single_category_scores_as_itself():
    assert aggregate_overall_score(PartialCategoryResults(images={"score": 64})) == 64


def test_no_categories_scores_zero():
    assert aggregate_overall_score(PartialCategoryResults()) == 0


def test_accessibility_is_reported_but_not_weighted():
    with_a11y = PartialCategoryResults(performance={"score": 40}, accessibility={"score": 100})
    without = PartialCategoryResults(performance={"score": 40})
    assert aggregate_overall_score(with_a11y) == aggregate_overall_score(without) == 40
    assert "accessibility" not in CATEGORY_WEIGHTS


def test_rounding_is_half_up():
    assert round_half_up(72.5) == 73
    assert round_half_up(72.4999) == 72
    results = PartialCategoryResults(performance={"score": 85}, seo={"score": 80})
    # (34 + 24) / 0.7 = 82.857
    assert aggregate_overall_score(results) == 83


@pytest.mark.parametrize(
    "record,expected",
    [
        (None, None),
        ({}, None),
        ({"score": "n/a"}, None),
        ({"score": float("nan")}, None),
        ({"score": 120}, 100.0),
        ({"score": -5}, 0.0),
        ({"score": 55}, 55.0),
    ],
)
def test_category_score_handles_unscored_records(record, expected):
    assert category_score(record) == expected


def test_score_breakdown_reports_effective_weights():
    breakdown = score_breakdown(PartialCategoryResults(performance={"score": 90}, images={"score": 60}))
    assert breakdown["overall_score"] == 77
    assert breakdown["categories"]["seo"]["present"] is False
    assert breakdown["categories"]["seo"]["effective_weight"] == 0.0
    assert breakdown["categories"]["performance"]["effective_weight"] == pytest.approx(0.5714, abs=1e-4)
