from types import SimpleNamespace

import pytest

from charterx.database.schemas import RecapFacts, RiskAnalysisOutput
from charterx.services.errors import GenerationFailure
from charterx.services.llm_client import build_schema_instructions, clean_json_response, parse_structured_output
from charterx.services.llm_tracker import LLMUsageManager, LLMUsageTracker


def test_clean_json_response_strips_fences():
    assert clean_json_response('```json\n{"vessel": "MV TEST"}\n```') == '{"vessel": "MV TEST"}'
    assert clean_json_response('```\n{"vessel": "MV TEST"}\n```') == '{"vessel": "MV TEST"}'
    assert clean_json_response('  {"a": 1}  ') == '{"a": 1}'


def test_parse_structured_output_uses_camel_case_aliases():
    facts = parse_structured_output("merge", '{"vessel": "MV TEST", "loadPort": "Santos"}', RecapFacts)
    assert facts.load_port == "Santos"


@pytest.mark.parametrize("response_text", ["", "null", "{}", "```json\n```"])
def test_null_or_empty_output_is_a_generation_failure(response_text):
    with pytest.raises(GenerationFailure) as excinfo:
        parse_structured_output("analyze_risk", response_text, RiskAnalysisOutput)
    assert excinfo.value.operation == "analyze_risk"
    assert excinfo.value.stage == "generation"


def test_invalid_json_is_a_generation_failure():
    with pytest.raises(GenerationFailure) as excinfo:
        parse_structured_output("merge", "{vessel: MV TEST", RecapFacts)
    assert "invalid JSON" in excinfo.value.message


def test_schema_mismatch_is_a_generation_failure():
    with pytest.raises(GenerationFailure) as excinfo:
        parse_structured_output("analyze_risk", '{"risks": [{"sectionId": "sec-001", "severity": "extreme"}]}',
                                RiskAnalysisOutput)
    assert "RiskAnalysisOutput" in excinfo.value.message


def test_schema_instructions_name_camel_case_fields():
    assert "consistencyFindings" in build_schema_instructions(RiskAnalysisOutput)


def test_usage_tracker_counts_tokens_and_failures():
    tracker = LLMUsageTracker("merge", "gemini-2.5-flash")

    request = tracker.start_request("x" * 400)
    response = SimpleNamespace(
        text="{}", usage_metadata=SimpleNamespace(prompt_token_count=120, candidates_token_count=30)
    )
    tracker.end_request(request, response)

    request = tracker.start_request("x" * 400)
    tracker.end_request(request, failed=True)

    stats = tracker.get_stats()
    assert stats["llm_calls"] == 2
    assert stats["failures"] == 1
    assert stats["input_tokens"] == 120
    assert stats["output_tokens"] == 30
    assert stats["cost_in_usd"] >= 0


def test_usage_tracker_estimates_tokens_without_metadata():
    tracker = LLMUsageTracker("explain_clause", "gemini-unknown")
    request = tracker.start_request("x" * 400)
    tracker.end_request(request, SimpleNamespace(text="y" * 80))
    assert tracker.get_stats()["input_tokens"] == 100
    assert tracker.get_stats()["output_tokens"] == 20


def test_usage_tracker_counts_overlapping_calls():
    tracker = LLMUsageTracker("analyze_risk", "gemini-2.5-flash")
    first = tracker.start_request("a" * 400)
    second = tracker.start_request("b" * 800)

    tracker.end_request(first, SimpleNamespace(text=""))
    tracker.end_request(second, SimpleNamespace(text=""))

    stats = tracker.get_stats()
    assert stats["llm_calls"] == 2
    assert stats["failures"] == 0
    assert stats["input_tokens"] == 100 + 200


def test_usage_manager_aggregates_operations():
    manager = LLMUsageManager("gemini-2.5-flash")
    assert manager.get_tracker("merge") is manager.get_tracker("merge")

    for operation in ("merge", "analyze_risk"):
        tracker = manager.get_tracker(operation)
        request = tracker.start_request("prompt")
        tracker.end_request(request, failed=True)

    overall = manager.get_overall_stats()
    assert overall["total_llm_calls"] == 2
    assert overall["total_failures"] == 2
    assert set(overall["operations"]) == {"merge", "analyze_risk"}
