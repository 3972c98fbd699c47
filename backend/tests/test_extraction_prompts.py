"""
test_extraction_prompts.py — Unit tests for vision prompt construction.

All tests are pure unit tests; no database or external services required.
"""

from app.services.extraction_prompts import (
    apply_continuation,
    apply_hints,
    cross_reference_prompt,
    extraction_prompt,
    ocr_region_prompt,
    pdf_direct_prompt,
    pos_analysis_prompt,
    precinct_extraction_prompt,
    stage_extraction_prompt,
    verify_calibration_prompt,
    verify_final_prompt,
)


class TestExtractionPrompts:

    def test_type_selects_schema(self):
        assert extraction_prompt("precinct") == precinct_extraction_prompt()
        assert extraction_prompt("stage") == stage_extraction_prompt()
        assert extraction_prompt("anything-else") == stage_extraction_prompt()

    def test_precinct_schema_supports_continuation(self):
        prompt = precinct_extraction_prompt()
        assert '"stages"' in prompt
        assert "hasMore" in prompt
        assert "remainingStages" in prompt

    def test_stage_schema_lists_lots(self):
        assert '"lots"' in stage_extraction_prompt()

    def test_pdf_direct_prompts(self):
        assert '"stages"' in pdf_direct_prompt("precinct")
        assert '"lots"' in pdf_direct_prompt("stage")


class TestPromptPrefixes:

    def test_blank_hints_leave_prompt_unchanged(self):
        assert apply_hints("BASE", None) == "BASE"
        assert apply_hints("BASE", "   ") == "BASE"

    def test_hints_prefixed(self):
        prompt = apply_hints("BASE", "  Stage 61A lots start with 61  ")
        assert prompt.startswith("USER-PROVIDED CONTEXT")
        assert "Stage 61A lots start with 61\n" in prompt
        assert prompt.endswith("BASE")

    def test_continuation_prefixed(self):
        prompt = apply_continuation("BASE", ["Stage 3", "Stage 4"], ["Stage 1", "Stage 2"])
        assert prompt.startswith("CONTINUATION REQUEST")
        assert "Now extract ONLY these remaining stages: Stage 3, Stage 4." in prompt
        assert "DO NOT extract stages: Stage 1, Stage 2 (already extracted)." in prompt
        assert prompt.endswith("BASE")

    def test_no_continuation(self):
        assert apply_continuation("BASE", [], ["Stage 1"]) == "BASE"


class TestVerificationPrompts:

    def test_calibration_prompt_includes_history(self):
        prompt = verify_calibration_prompt("\nLEARNING FROM PREVIOUS USER CORRECTIONS:\n- x\n")
        assert "LEARNING FROM PREVIOUS USER CORRECTIONS" in prompt
        assert '"lotsFound"' in prompt

    def test_final_prompt_includes_context_and_lots(self):
        prompt = verify_final_prompt("CALIBRATION BLOCK", "HISTORY BLOCK", "Lot 1: area=450")
        assert "CALIBRATION BLOCK" in prompt
        assert "HISTORY BLOCK" in prompt
        assert "EXISTING DATABASE VALUES TO VERIFY:\nLot 1: area=450" in prompt
        assert '"corrections"' in prompt


class TestAnalysisPrompts:

    def test_cross_reference_targets(self):
        assert "101, 102" in cross_reference_prompt(["101", "102"])

    def test_pos_targets(self):
        assert "TARGET LOTS: 101, 102" in pos_analysis_prompt(iter(["101", "102"]))

    def test_pos_without_lots_extracts_all(self):
        assert "TARGET LOTS: Extract all lots found" in pos_analysis_prompt([])


class TestOcrPrompt:

    def test_field_hints(self):
        assert "area measurement" in ocr_region_prompt("area")
        assert "frontage measurement" in ocr_region_prompt("frontage")
        assert "depth measurement" in ocr_region_prompt("depth")

    def test_default_hint(self):
        assert "Return ONLY the text or number visible" in ocr_region_prompt(None)

    def test_always_ends_with_instruction(self):
        for field in ("area", "frontage", "depth", None, "street"):
            assert ocr_region_prompt(field).endswith("Do not include any explanation, just the value.")
