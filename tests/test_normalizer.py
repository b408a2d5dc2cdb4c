import json

import pytest

from agroscan.normalizer import (
    FALLBACK_RECOMMENDATION,
    build_analysis,
    extract_json_object,
    normalize_analysis,
)

from .conftest import GOOD_REPLY


def as_dict(result):
    return result.model_dump(by_alias=True)


def renormalize(result):
    return normalize_analysis(result.model_dump_json(by_alias=True))


class TestExtractJsonObject:
    def test_object_embedded_in_prose(self):
        text = 'here is the result: {"a": 1, "b": {"c": 2}} thanks'
        assert extract_json_object(text) == {"a": 1, "b": {"c": 2}}

    def test_markdown_fence(self):
        assert extract_json_object('```json\n{"a": 1}\n```') == {"a": 1}

    @pytest.mark.parametrize(
        "text",
        [None, "", "not json at all", "} backwards {", "{not: valid}", "{} and {}"],
    )
    def test_unusable_text(self, text):
        assert extract_json_object(text) is None

    def test_greedy_span_covers_nested_braces(self):
        text = 'prefix {"items": [{"label": "weed"}]} suffix'
        assert extract_json_object(text) == {"items": [{"label": "weed"}]}


class TestFallback:
    @pytest.mark.parametrize("text", ["not json at all", "", "{broken", "[1, 2, 3]"])
    def test_non_json_degrades_gracefully(self, text):
        result = normalize_analysis(text)
        assert result.weed_coverage_percent == 0
        assert result.healthy_crop_coverage_percent == 100
        assert result.total_area_percent == 100
        assert result.detected_items == []
        assert result.recommendations == [FALLBACK_RECOMMENDATION]

    def test_build_analysis_none(self):
        assert build_analysis(None).recommendations == [FALLBACK_RECOMMENDATION]


class TestNormalize:
    def test_prose_wrapped_scenario(self):
        text = (
            'here is the result: {"weedCoveragePercent":30,'
            '"healthyCropCoveragePercent":60,"items":[]} thanks'
        )
        assert as_dict(normalize_analysis(text)) == {
            "totalAreaPercent": 100,
            "weedCoveragePercent": 30,
            "healthyCropCoveragePercent": 60,
            "detectedItems": [],
            "recommendations": [],
        }

    def test_weed_coverage_derived_from_box(self):
        text = json.dumps({"items": [{"label": "Weed patch", "confidence": 80, "box_2d": [100, 100, 300, 300]}]})
        result = normalize_analysis(text)
        assert result.weed_coverage_percent == 4
        assert result.healthy_crop_coverage_percent == 0

    def test_both_coverages_derived(self):
        text = json.dumps(
            {
                "items": [
                    {"label": "crop", "confidence": 90, "box_2d": [0, 0, 500, 1000]},
                    {"label": "weed", "confidence": 60, "box_2d": [500, 0, 600, 1000]},
                ]
            }
        )
        result = normalize_analysis(text)
        assert result.weed_coverage_percent == 10
        assert result.healthy_crop_coverage_percent == 50

    def test_explicit_values_are_trusted(self):
        text = json.dumps(
            {
                "weedCoverage": 70,
                "healthyCropCoverage": 5.5,
                "totalArea": 80,
                "items": [{"label": "weed", "box_2d": [0, 0, 100, 100]}],
            }
        )
        result = normalize_analysis(text)
        assert result.weed_coverage_percent == 70
        assert result.healthy_crop_coverage_percent == 5.5
        assert result.total_area_percent == 80

    @pytest.mark.parametrize("bad", [None, "30", True, [30], {"v": 30}])
    def test_non_numeric_values_are_backfilled(self, bad):
        text = json.dumps(
            {
                "weedCoverage": bad,
                "totalArea": bad,
                "items": [{"label": "weed", "box_2d": [0, 0, 200, 1000]}],
            }
        )
        result = normalize_analysis(text)
        assert result.weed_coverage_percent == 20
        assert result.total_area_percent == 100

    def test_nan_is_backfilled(self):
        result = normalize_analysis('{"weedCoverage": NaN, "items": []}')
        assert result.weed_coverage_percent == 0

    def test_items_and_recommendations_must_be_lists(self):
        text = json.dumps({"items": {"label": "weed"}, "recommendations": "spray"})
        result = normalize_analysis(text)
        assert result.detected_items == []
        assert result.recommendations == []

    def test_item_fields(self):
        result = normalize_analysis(GOOD_REPLY)
        crop, weed = result.detected_items
        assert crop.label == "crop"
        assert crop.confidence_percent == 91
        assert crop.bounding_box == [0, 0, 500, 1000]
        assert weed.label == "Weed patch"
        assert result.recommendations == ["Spot spray the lower rows"]
        assert result.weed_coverage_percent == 10
        assert result.healthy_crop_coverage_percent == 50

    def test_malformed_box_is_kept_for_display(self):
        text = json.dumps({"items": [{"label": "weed", "confidence": 50, "box_2d": [1, "two", 3]}]})
        result = normalize_analysis(text)
        assert result.detected_items[0].bounding_box == [1, "two", 3]
        assert result.weed_coverage_percent == 0

    def test_item_defaults_and_clamps(self):
        text = json.dumps({"items": [{"confidence": 250}, {"label": 7, "confidence": "high"}, "junk"]})
        first, second = normalize_analysis(text).detected_items
        assert first.label == ""
        assert first.confidence_percent == 100
        assert first.bounding_box is None
        assert second.label == "7"
        assert second.confidence_percent == 0

    def test_item_order_is_preserved(self):
        names = ["weed", "crop", "bare_soil", "weed"]
        text = json.dumps({"items": [{"label": name} for name in names]})
        assert [i.label for i in normalize_analysis(text).detected_items] == names


class TestIdempotence:
    @pytest.mark.parametrize(
        "text",
        [
            "not json at all",
            GOOD_REPLY,
            '{"weedCoveragePercent": 30, "healthyCropCoveragePercent": 60, "items": []}',
            '{"items": [{"label": 3, "confidence": 500, "box_2d": [1, "a", NaN, 4]}], "recommendations": [1, null, "x"]}',
            '{"items": [{"label": "weed", "box_2d": [0, 0, 1000, 1000]}, {"label": "weed"}], "totalArea": 55}',
            '{"items": [{"label": "weed", "box_2d": NaN}, {"label": "crop", "box_2d": [[NaN], 1, 2, 3]}]}',
            '{"items": [{"label": "weed", "box_2d": {"ymin": Infinity, "rest": [-Infinity]}}]}',
        ],
    )
    def test_normalize_is_idempotent(self, text):
        once = normalize_analysis(text)
        assert renormalize(once) == once
        assert renormalize(renormalize(once)) == once


def test_non_finite_box_values_become_null_at_any_depth():
    text = '{"items": [{"label": "weed", "box_2d": NaN}, {"label": "crop", "box_2d": [[NaN], 1, 2, 3]}]}'
    first, second = normalize_analysis(text).detected_items
    assert first.bounding_box is None
    assert second.bounding_box == [[None], 1, 2, 3]
