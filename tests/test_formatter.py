"""Tests for the shared text and JSON formatting helpers."""

from __future__ import annotations

import json

from dbindex.output.formatter import (
    ENVELOPE_SCHEMA_NAME,
    format_table,
    json_envelope,
    loc,
    to_json,
    utc_timestamp,
)


def test_loc():
    assert loc("a.kt", 3) == "a.kt:3"
    assert loc("a.kt") == "a.kt"


def test_format_table_aligns_columns():
    text = format_table(["Module", "Missing"], [["user-service", "2"], ["a", "10"]])
    lines = text.splitlines()
    assert lines[0] == "Module        Missing"
    assert lines[1] == "------------  -------"
    assert lines[2] == "user-service  2"
    assert lines[3] == "a             10"


def test_format_table_empty():
    assert format_table(["A"], []) == "(none)"


def test_format_table_keeps_every_row():
    text = format_table(["A"], [[str(i)] for i in range(50)])
    assert len(text.splitlines()) == 52
    assert text.splitlines()[-1] == "49"


def test_to_json_sorted():
    assert list(json.loads(to_json({"b": 1, "a": 2}))) == ["a", "b"]


def test_utc_timestamp_format():
    stamp = utc_timestamp()
    assert stamp.endswith("Z")
    assert "." not in stamp


def test_json_envelope():
    data = json_envelope("check", summary={"verdict": "ok"}, issues=[])
    assert data["schema"] == ENVELOPE_SCHEMA_NAME
    assert data["command"] == "check"
    assert data["summary"] == {"verdict": "ok"}
    assert data["issues"] == []
    assert "timestamp" in data["_meta"]
