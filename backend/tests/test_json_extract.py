"""
Tests for model-output JSON extraction.

All tests run fully offline.
"""
import sys
import os

sys.path.insert(0, os.path.join(os.path.dirname(__file__), ".."))

from codecraft.utils.json_extract import clean_json, parse_json_object


def test_clean_json_strips_fences():
    assert clean_json('```json\n{"a": 1}\n```') == '{"a": 1}'
    assert clean_json('```\n{"a": 1}\n```') == '{"a": 1}'


def test_parse_plain_object():
    assert parse_json_object('{"a": 1}') == {"a": 1}


def test_parse_object_with_prose_around_it():
    assert parse_json_object('Sure! Here it is: {"a": {"b": 2}} Hope that helps.') == {"a": {"b": 2}}


def test_non_object_json_is_none():
    assert parse_json_object("[1, 2, 3]") is None


def test_garbage_is_none():
    assert parse_json_object("no json here") is None
    assert parse_json_object("") is None
    assert parse_json_object(None) is None
