"""Tests for the schema validator and the schema directory loader."""

import json

import pytest

from queue_pilot.errors import SchemaDirectoryError
from queue_pilot.schemas.loader import load_schemas
from queue_pilot.schemas.validator import (
    SchemaEntry,
    SchemaValidator,
    strip_non_standard_keywords,
)


def _entry(name, schema):
    return SchemaEntry(name=name, version="1.0.0", title=name, description="", schema=schema)


class TestSchemaValidator:

    def test_valid_payload(self, validator):
        result = validator.validate("order.created", {"orderId": "ORD-1", "amount": 10})
        assert result.valid
        assert result.errors == []

    def test_missing_required_reported_at_root(self, validator):
        result = validator.validate("order.created", {"orderId": "ORD-1"})
        assert not result.valid
        assert [(e.path, e.message) for e in result.errors] == [
            ("/", "'amount' is a required property"),
        ]

    def test_reports_every_violation(self, validator):
        result = validator.validate("order.created", {"orderId": 7, "amount": -1})
        assert sorted(e.path for e in result.errors) == ["/amount", "/orderId"]

    def test_format_is_checked(self, validator):
        result = validator.validate("order.created",
                                    {"orderId": "A", "amount": 1, "email": "nobody"})
        assert [e.path for e in result.errors] == ["/email"]

    def test_unknown_schema(self, validator):
        result = validator.validate("order.deleted", {})
        assert result.to_dict() == {
            "valid": False,
            "errors": [{"path": "", "message": 'Schema "order.deleted" not found'}],
        }

    def test_nested_path(self):
        validator = SchemaValidator([_entry("cart", {
            "type": "object",
            "properties": {"items": {"type": "array", "items": {"type": "integer"}}},
        })])
        result = validator.validate("cart", {"items": [1, "two"]})
        assert result.errors[0].path == "/items/1"

    def test_non_standard_keys_are_stripped(self):
        schema = {"$id": "x", "type": "object", "version": "2.0.0", "x-owner": "billing"}
        assert strip_non_standard_keywords(schema) == {"$id": "x", "type": "object"}

    def test_stripping_keeps_original_document(self, validator):
        assert validator.get_schema("order.created").schema["version"] == "1.0.0"

    def test_invalid_schema_is_quarantined(self, order_entry):
        bad = _entry("broken", {"type": 12})
        validator = SchemaValidator([bad, order_entry])

        assert validator.get_schema_names() == ["order.created"]
        assert validator.quarantined == ["broken"]
        assert validator.get_schema("broken") is None
        assert not validator.validate("broken", {}).valid

    def test_stripping_can_be_disabled(self):
        validator = SchemaValidator(
            [_entry("t", {"type": "string", "x-note": "kept"})],
            strip_unknown_keywords=False,
        )
        assert validator.validate("t", "hello").valid


ADDRESS_SCHEMA = {
    "$id": "address",
    "type": "object",
    "required": ["street"],
    "properties": {"street": {"type": "string"}},
}


def _customer(ref):
    return _entry("customer.created", {
        "$id": "customer.created",
        "type": "object",
        "properties": {"address": {"$ref": ref}},
    })


class TestSchemaReferences:

    def test_ref_to_another_loaded_schema(self):
        validator = SchemaValidator([_entry("address", ADDRESS_SCHEMA), _customer("address")])

        assert validator.validate("customer.created", {"address": {"street": "Main St"}}).valid
        result = validator.validate("customer.created", {"address": {}})
        assert [(e.path, e.message) for e in result.errors] == [
            ("/address", "'street' is a required property"),
        ]

    def test_unresolvable_ref_is_reported(self):
        validator = SchemaValidator([_customer("billing.address")])

        result = validator.validate("customer.created", {"address": {}})
        assert not result.valid
        assert result.errors[0].path == ""
        assert "billing.address" in result.errors[0].message

    def test_ref_is_only_followed_when_reached(self):
        validator = SchemaValidator([_customer("billing.address")])
        assert validator.validate("customer.created", {}).valid


class TestLoadSchemas:

    def _write(self, directory, filename, content):
        path = directory / filename
        path.write_text(content if isinstance(content, str) else json.dumps(content))
        return path

    def test_loads_sorted_with_defaults(self, tmp_path):
        self._write(tmp_path, "b.json", {"$id": "payment.failed", "type": "object"})
        self._write(tmp_path, "a.json", {
            "$id": "order.created", "version": "1.2.0",
            "title": "Order", "description": "New order", "type": "object",
        })

        entries = load_schemas(tmp_path)

        assert [e.name for e in entries] == ["order.created", "payment.failed"]
        assert (entries[0].version, entries[0].title) == ("1.2.0", "Order")
        assert (entries[1].version, entries[1].title, entries[1].description) == (
            "0.0.0", "payment.failed", "")

    def test_skips_bad_files(self, tmp_path):
        self._write(tmp_path, "good.json", {"$id": "ok", "type": "object"})
        self._write(tmp_path, "no-id.json", {"type": "object"})
        self._write(tmp_path, "numeric-id.json", {"$id": 5})
        self._write(tmp_path, "broken.json", "{not json")
        self._write(tmp_path, "list.json", [1, 2])
        self._write(tmp_path, "notes.txt", "ignored")

        assert [e.name for e in load_schemas(tmp_path)] == ["ok"]

    def test_duplicate_ids_keep_first(self, tmp_path):
        self._write(tmp_path, "1.json", {"$id": "dup", "title": "first"})
        self._write(tmp_path, "2.json", {"$id": "dup", "title": "second"})

        [entry] = load_schemas(tmp_path)
        assert entry.title == "first"

    def test_missing_directory(self, tmp_path):
        with pytest.raises(SchemaDirectoryError, match="Schema directory not found"):
            load_schemas(tmp_path / "nope")

    def test_empty_directory(self, tmp_path):
        assert load_schemas(tmp_path) == []
