"""
test_plan_parsing.py — Unit tests for vision-model reply parsing.

Tests cover:
  - clean_json_text: markdown fences, leading prose, trailing commas
  - parse_model_json: valid objects, non-objects, garbage
  - recover_partial_lots: truncated "lots" arrays
  - parse_extraction_response: full parse, partial recovery, failure summary
  - parse_number: units, empties, junk
  - clean_ocr_value: conversational prefixes and units

All tests are pure unit tests; no database or external services required.
"""

import pytest

from app.services.plan_parsing import (
    clean_json_text,
    clean_ocr_value,
    parse_extraction_response,
    parse_model_json,
    parse_number,
    recover_partial_lots,
)


# ===========================================================================
# JSON cleaning
# ===========================================================================

class TestCleanJsonText:
    """clean_json_text strips wrappers the models commonly add."""

    def test_strips_json_fence(self):
        content = '```json\n{"lots": []}\n```'
        assert clean_json_text(content) == '{"lots": []}'

    def test_strips_prose_around_object(self):
        content = 'Here is the data you asked for: {"summary": "ok"} Hope this helps!'
        assert clean_json_text(content) == '{"summary": "ok"}'

    def test_removes_trailing_commas(self):
        content = '{"lots": [{"lotNumber": "1",},], "summary": "x",}'
        assert clean_json_text(content) == '{"lots": [{"lotNumber": "1"}], "summary": "x"}'

    def test_none_is_empty(self):
        assert clean_json_text(None) == ""


class TestParseModelJson:

    def test_fenced_object(self):
        parsed = parse_model_json('```\n{"lotsFound": [{"lotNumber": "7"}]}\n```')
        assert parsed == {"lotsFound": [{"lotNumber": "7"}]}

    def test_garbage_raises_value_error(self):
        with pytest.raises(ValueError):
            parse_model_json("I could not read this plan.")

    def test_truncated_object_raises(self):
        with pytest.raises(ValueError):
            parse_model_json('{"lots": [{"lotNumber": "1"}, {"lotNu')


# ===========================================================================
# Partial recovery
# ===========================================================================

class TestRecoverPartialLots:

    def test_truncated_array_keeps_complete_objects(self):
        content = '{"lots": [{"lotNumber": "1", "area": "450"}, {"lotNumber": "2", "area": "500"}, {"lotNumber": "3", "ar'
        lots = recover_partial_lots(content)
        assert [l["lotNumber"] for l in lots] == ["1", "2"]

    def test_skips_unparseable_chunks(self):
        content = '{"lots": [{"lotNumber": "1"}, {lotNumber: 2}, {"lotNumber": "3"}]}'
        lots = recover_partial_lots(content)
        assert [l["lotNumber"] for l in lots] == ["1", "3"]

    def test_no_lots_key(self):
        assert recover_partial_lots('{"stages": []}') == []


class TestParseExtractionResponse:

    def test_valid_reply_passes_through(self):
        result = parse_extraction_response('{"lots": [{"lotNumber": "5"}], "summary": "Found 1 lots"}')
        assert result["summary"] == "Found 1 lots"
        assert result["lots"][0]["lotNumber"] == "5"

    def test_partial_recovery_summary(self):
        result = parse_extraction_response('{"lots": [{"lotNumber": "1"}, {"lotNumber": "2"}, {"lot')
        assert len(result["lots"]) == 2
        assert result["summary"] == "Extracted 2 lots (partial recovery)"

    def test_unrecoverable_reply(self):
        raw = "Sorry, the image is too blurry."
        result = parse_extraction_response(raw)
        assert result["lots"] == []
        assert result["summary"] == f"Could not parse AI response. Raw: {raw}..."

    def test_failure_summary_truncates_raw_to_200(self):
        raw = "x" * 500
        result = parse_extraction_response(raw)
        assert result["summary"] == "Could not parse AI response. Raw: " + "x" * 200 + "..."


# ===========================================================================
# Numbers and OCR values
# ===========================================================================

class TestParseNumber:

    @pytest.mark.parametrize("value,expected", [
        ("450 m²", 450.0),
        ("15.00m", 15.0),
        (32.5, 32.5),
        ("-1.5", -1.5),
        ("", 0.0),
        (None, 0.0),
        ("n/a", 0.0),
    ])
    def test_values(self, value, expected):
        assert parse_number(value) == expected


class TestCleanOcrValue:

    def test_strips_prefix_and_trailing_text(self):
        assert clean_ocr_value("The 450 sqm") == "450 sqm"

    def test_label_prefix(self):
        assert clean_ocr_value("Frontage: 15.5m") == "15.5m"

    def test_plain_number(self):
        assert clean_ocr_value("  30.2  ") == "30.2"

    def test_no_number_returns_text(self):
        assert clean_ocr_value("Main St") == "Main St"
