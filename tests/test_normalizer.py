"""
Tests for model-response extraction, truncation repair and content checks.
"""

import json

import pytest

from homedigest.app.errors import MalformedResponseError
from homedigest.app.normalizer import (
    DEFAULT_SUMMARY,
    extract_json_candidate,
    normalize_digest_content,
    parse_digest_response,
    repair_truncated_json,
)

DIGEST = {
    "summary": "All quiet at home.",
    "attention_items": [{"title": "Front door battery low", "severity": "warning"}],
    "observations": [],
    "housekeeping": [],
    "positives": [{"text": "Heating stable", "status": "good"}],
    "tip": {"title": "Replace front door battery", "action": "It is at 12%."},
}


class TestExtraction:
    """Fences and surrounding prose"""

    def test_bare_json(self):
        text = json.dumps(DIGEST)
        assert parse_digest_response(text) == DIGEST

    def test_json_fence(self):
        text = "```json\n" + json.dumps(DIGEST, indent=2) + "\n```"
        assert parse_digest_response(text) == DIGEST

    def test_plain_fence(self):
        text = "```\n" + json.dumps(DIGEST) + "\n```"
        assert parse_digest_response(text) == DIGEST

    def test_prose_around_json(self):
        text = "Sure! Here is your digest:\n" + json.dumps(DIGEST) + "\nLet me know if you need more."
        assert parse_digest_response(text) == DIGEST

    def test_prose_before_fence_without_closing_fence(self):
        text = "Here you go:\n```json\n" + json.dumps(DIGEST)
        assert parse_digest_response(text) == DIGEST

    def test_candidate_starts_at_first_brace(self):
        assert extract_json_candidate('noise {"a": 1}') == '{"a": 1}'

    def test_no_brace_is_malformed(self):
        with pytest.raises(MalformedResponseError) as exc:
            parse_digest_response("I could not produce a digest today.")
        assert exc.value.preview.startswith("I could not")

    def test_valid_json_is_not_altered(self):
        # looks truncated to a naive repair, but it parses as-is
        doc = {"summary": "ends with comma,", "notes": ["[", "{", "\\"]}
        assert parse_digest_response(json.dumps(doc)) == doc


class TestRepair:
    """One test per truncation shape"""

    def test_open_string_value(self):
        repaired = repair_truncated_json('{"summary": "Everything is runn')
        assert json.loads(repaired) == {"summary": "Everything is runn"}

    def test_dangling_key_with_colon(self):
        repaired = repair_truncated_json('{"summary": "ok", "tip":')
        assert json.loads(repaired) == {"summary": "ok"}

    def test_unfinished_key_string(self):
        repaired = repair_truncated_json('{"summary": "ok", "attenti')
        assert json.loads(repaired) == {"summary": "ok"}

    def test_complete_key_without_colon(self):
        repaired = repair_truncated_json('{"summary": "ok", "tip"')
        assert json.loads(repaired) == {"summary": "ok"}

    def test_open_array(self):
        repaired = repair_truncated_json('{"summary": "ok", "positives": [{"text": "a"}, {"text": "b"}')
        assert json.loads(repaired) == {"summary": "ok", "positives": [{"text": "a"}, {"text": "b"}]}

    def test_open_object_in_array(self):
        repaired = repair_truncated_json('{"summary":"ok","attention_items":[{"title":"x"')
        parsed = json.loads(repaired)
        assert parsed["summary"] == "ok"
        assert parsed["attention_items"] == [{"title": "x"}]

    def test_trailing_comma(self):
        repaired = repair_truncated_json('{"summary": "ok", "observations": [1, 2,')
        assert json.loads(repaired) == {"summary": "ok", "observations": [1, 2]}

    def test_dangling_escape(self):
        repaired = repair_truncated_json('{"summary": "path C:\\')
        assert json.loads(repaired) == {"summary": "path C:"}

    def test_half_written_literal(self):
        repaired = repair_truncated_json('{"summary": "ok", "tip": {"actionable": tru')
        assert json.loads(repaired) == {"summary": "ok", "tip": {}}

    def test_complete_number_is_kept(self):
        repaired = repair_truncated_json('{"count": 12')
        assert json.loads(repaired) == {"count": 12}

    def test_braces_inside_strings_are_ignored(self):
        repaired = repair_truncated_json('{"summary": "a {b} [c", "x": "y')
        assert json.loads(repaired) == {"summary": "a {b} [c", "x": "y"}

    def test_parse_uses_repair_for_truncated_output(self):
        parsed = parse_digest_response('```json\n{"summary": "ok", "attention_items": [{"title": "x", "descr')
        assert parsed == {"summary": "ok", "attention_items": [{"title": "x"}]}

    def test_unrepairable_raises_malformed(self):
        with pytest.raises(MalformedResponseError) as exc:
            parse_digest_response('{"summary" "missing colon"}')
        assert exc.value.original_error is not None
        assert exc.value.raw_text == '{"summary" "missing colon"}'


class TestNormalizeContent:
    """Post-parse checks"""

    def test_summary_and_count(self):
        content, summary, count = normalize_digest_content(dict(DIGEST))
        assert summary == "All quiet at home."
        assert count == 1
        assert content["tip"]["title"] == "Replace front door battery"

    def test_missing_summary_defaults(self):
        _, summary, count = normalize_digest_content({"observations": []})
        assert summary == DEFAULT_SUMMARY == "Daily Digest generated"
        assert count == 0

    def test_non_list_attention_items_count_zero(self):
        _, _, count = normalize_digest_content({"summary": "x", "attention_items": "none"})
        assert count == 0

    def test_non_object_is_malformed(self):
        with pytest.raises(MalformedResponseError):
            normalize_digest_content(["not", "an", "object"])
