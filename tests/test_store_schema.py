import json

import pytest

from app.core.errors import NotFound
from app.db.models.submission import Submission
from app.utils import store
from app.utils.schema import is_declared, parse_schema, validate_payload
from tests.conftest import DEFAULT_SCHEMA


# =============================================================================
# Schema parsing and payload validation
# =============================================================================

def test_parse_schema_accepts_bare_field_list():
    assert parse_schema('[{"id": "x"}]') == {"fields": [{"id": "x"}]}


@pytest.mark.parametrize("text", ["", "not json", "42", None])
def test_parse_schema_falls_back_to_empty(text):
    assert parse_schema(text) == {}


def test_required_and_numeric_rules():
    errors = validate_payload(DEFAULT_SCHEMA, {"budget": "lots"})
    assert errors == ["Field 'Summary' is required.", "Field 'Budget' must be a number."]


def test_complete_payload_passes():
    assert validate_payload(DEFAULT_SCHEMA, {"summary": "ok", "budget": "12.5"}) == []


def test_option_and_date_fields():
    schema = {
        "fields": [
            {"id": "kind", "label": "Kind", "type": "select", "options": [{"value": "a"}, "b"]},
            {"id": "on", "label": "On", "type": "date"},
            {"id": "tags", "label": "Tags", "type": "checkbox", "options": ["x", "y"]},
            {"id": "section", "type": "header", "required": True},
        ]
    }
    assert validate_payload(schema, {"kind": "b", "on": "2026-10-17", "tags": ["x"]}) == []
    errors = validate_payload(schema, {"kind": "c", "on": "17/10/2026", "tags": ["z"]})
    assert len(errors) == 3


def test_pattern_uses_custom_message():
    schema = {"fields": [{"id": "code", "validation": {"pattern": r"^[A-Z]{3}$", "message": "Three capitals."}}]}
    assert validate_payload(schema, {"code": "abc"}) == ["Three capitals."]
    assert validate_payload(schema, {"code": "ABC"}) == []


def test_broken_fields_list():
    assert validate_payload({"fields": "nope"}, {}) == ["Form schema is not valid."]


@pytest.mark.parametrize(
    "value,expected",
    [(True, True), ("true", True), (" TRUE ", True), (False, False), ("yes", False), (None, False)],
)
def test_is_declared(value, expected):
    assert is_declared({"declaration_checkbox": value}, "declaration_checkbox") is expected


# =============================================================================
# Submission store
# =============================================================================

def test_dump_payload_is_stable():
    assert store.dump_payload({"b": 1, "a": "é"}) == store.dump_payload({"a": "é", "b": 1})
    assert store.dump_payload(None) == "{}"


def test_load_payload_tolerates_garbage():
    assert store.load_payload(None) == {}
    assert store.load_payload(Submission(payload_json="[1, 2]")) == {}
    assert store.load_payload(Submission(payload_json="{broken")) == {}


def test_create_get_and_list(db, world):
    first = Submission(template_id=world.template.id, submitted_by_id=world.a.id, payload_json=json.dumps({"n": 1}))
    second = Submission(template_id=world.template.id, submitted_by_id=world.b.id, payload_json=json.dumps({"n": 2}))
    ids = [store.create_or_update(db, first), store.create_or_update(db, second)]
    db.commit()

    assert store.get_by_id(db, ids[0]) is first
    assert [s.id for s in store.list_by_template(db, world.template.id)] == ids
    snap = store.snapshot(second)
    assert snap["payload"] == {"n": 2}
    assert snap["status"] == "edited"


def test_get_missing_submission(db):
    with pytest.raises(NotFound):
        store.get_by_id(db, 999)
