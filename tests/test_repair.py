import json

import pytest

from skurecon.errors import MalformedClassifierResponse
from skurecon.repair import parse_json_response, repair_json, strip_trailing_commas


def test_fenced_payload_with_trailing_comma_decodes():
    raw = (
        '```json\n{"summary":"ok","comparedItems":[],"totalSupplierAmount":0,'
        '"totalSystemAmount":0,"difference":0,}\n```'
    )

    payload = parse_json_response(raw)

    assert payload == {
        "summary": "ok",
        "comparedItems": [],
        "totalSupplierAmount": 0,
        "totalSystemAmount": 0,
        "difference": 0,
    }


def test_clean_payload_is_returned_unchanged():
    payload = '{"summary": "a,} b]", "comparedItems": [{"details": "x, ]"}], "n": [1, 2]}'
    assert repair_json(payload) == payload


def test_clean_array_is_returned_unchanged():
    payload = '[{"name": "Bolt", "quantity": 1}, {"name": "Nut [M6]", "quantity": 2}]'
    assert repair_json(payload) == payload


def test_prose_and_trailing_garbage_are_removed():
    raw = 'Sure! Here is the result: {"summary": "done", "items": [1, 2]} Hope this helps {not json}'
    assert repair_json(raw) == '{"summary": "done", "items": [1, 2]}'


def test_brackets_and_escaped_quotes_inside_strings_are_ignored():
    raw = 'Result: {"name": "Bolt \\"M6\\" {x} ]", "items": [1]} and then } more'
    repaired = repair_json(raw)
    assert repaired == '{"name": "Bolt \\"M6\\" {x} ]", "items": [1]}'
    assert json.loads(repaired)["name"] == 'Bolt "M6" {x} ]'


def test_escaped_backslash_before_closing_quote():
    raw = '{"path": "C:\\\\temp\\\\"} trailing }'
    assert repair_json(raw) == '{"path": "C:\\\\temp\\\\"}'


def test_array_start_wins_when_it_comes_first():
    raw = 'rows: [{"a": 1}, {"b": 2},] note {"ignored": true}'
    assert repair_json(raw) == '[{"a": 1}, {"b": 2}]'


def test_first_fenced_block_is_used():
    raw = 'First:\n```json\n{"a": 1}\n```\nSecond:\n```json\n{"b": 2}\n```'
    assert parse_json_response(raw) == {"a": 1}


def test_unclosed_fence_falls_back_to_scanning():
    raw = '```json\n{"a": [1, 2,],}\n'
    assert parse_json_response(raw) == {"a": [1, 2]}


def test_nested_trailing_commas_are_stripped():
    assert strip_trailing_commas('{"a": [1, 2 , ] ,\n}') == '{"a": [1, 2  ] \n}'


def test_unbalanced_input_falls_back_to_last_closer():
    raw = 'text {"a": {"b": 1} tail'
    assert repair_json(raw) == '{"a": {"b": 1}'


def test_truncated_payload_raises_with_raw_text_kept():
    raw = '```json\n{"summary": "partial", "comparedItems": [{"status": "Matched"'

    with pytest.raises(MalformedClassifierResponse) as excinfo:
        parse_json_response(raw)

    assert excinfo.value.raw_response == raw
    assert excinfo.value.repaired_attempt.startswith('{"summary": "partial"')


@pytest.mark.parametrize("raw", ["", "   ", "no json here", "```json\n```"])
def test_empty_or_missing_payload_raises(raw):
    with pytest.raises(MalformedClassifierResponse) as excinfo:
        parse_json_response(raw)
    assert excinfo.value.raw_response == raw


def test_empty_first_fence_scans_whole_text_instead_of_later_fences():
    raw = 'Empty:\n```json\n```\nAnswer: {"a": 1}\nAlso:\n```json\n{"b": 2}\n```'
    assert parse_json_response(raw) == {"a": 1}
