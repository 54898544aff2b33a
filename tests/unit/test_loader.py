"""
Unit tests for YAML/JSON descriptor files.
"""

import json

import pytest

from dbaas.acme_server.schema.loader import (
    DescriptorFileError,
    load_descriptors,
    parse_json,
    parse_yaml,
)

ROOMS_YAML = """
entities:
  - name: Room
    table: rooms
    default_order: ["-floor", "number"]
    version_field: version
    fields:
      - name: id
        kind: integer
        primary_key: true
        auto: true
      - name: number
        kind: text
        indexed: true
      - name: floor
        kind: integer
      - name: rate
        kind: decimal
        default: "80.00"
      - name: version
        kind: integer
"""


class TestParseYaml:
    """Tests for YAML descriptor parsing."""

    def test_parse_entity(self):
        (room,) = parse_yaml(ROOMS_YAML)

        assert room.name == "Room"
        assert room.table_name == "rooms"
        assert room.default_order == ("-floor", "number")
        assert room.version_field == "version"
        assert room.primary_key.auto
        assert room.get_field("number").indexed
        assert str(room.get_field("rate").default) == "80.00"

    def test_empty_document(self):
        assert parse_yaml("") == []

    def test_invalid_yaml(self):
        with pytest.raises(DescriptorFileError, match="Invalid YAML"):
            parse_yaml("entities: [unclosed")

    def test_collects_errors_per_entity(self):
        doc = """
entities:
  - name: NoKey
    fields:
      - name: title
        kind: text
  - name: BadKind
    fields:
      - name: id
        kind: blob
        primary_key: true
  - fields: []
"""
        with pytest.raises(DescriptorFileError) as exc_info:
            parse_yaml(doc)

        errors = exc_info.value.errors
        assert len(errors) == 3
        assert errors[0].startswith("entity NoKey:")
        assert "Invalid field kind 'blob'" in errors[1]
        assert errors[2].startswith("entity #2:")

    def test_entities_must_be_a_list(self):
        with pytest.raises(DescriptorFileError, match="must be a list"):
            parse_yaml("entities: {name: Room}")


class TestParseJson:
    """Tests for JSON descriptor parsing."""

    def test_parse_entity(self):
        doc = {
            "entities": [
                {
                    "name": "Guest",
                    "fields": [
                        {"name": "email", "kind": "text", "primary_key": True},
                        {"name": "vip", "kind": "boolean", "default": False},
                    ],
                }
            ]
        }
        (guest,) = parse_json(json.dumps(doc))

        assert guest.primary_key.name == "email"
        assert guest.get_field("vip").default is False

    def test_invalid_json(self):
        with pytest.raises(DescriptorFileError, match="Invalid JSON"):
            parse_json("{not json")

    def test_document_must_be_mapping(self):
        with pytest.raises(DescriptorFileError, match="must be a mapping"):
            parse_json("[1, 2]")


class TestLoadDescriptors:
    """Tests for loading descriptor files from disk."""

    def test_load_yaml_file(self, tmp_path):
        path = tmp_path / "entities.yaml"
        path.write_text(ROOMS_YAML)

        assert [d.name for d in load_descriptors(path)] == ["Room"]

    def test_load_json_file(self, tmp_path):
        (room,) = parse_yaml(ROOMS_YAML)
        path = tmp_path / "entities.json"
        path.write_text(json.dumps({"entities": [room.to_dict()]}))

        assert load_descriptors(str(path)) == [room]
