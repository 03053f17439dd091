"""Tests for turning spilled records into JSON-LD nodes."""

import json

import pytest

from ledgermigrate.canonical import SchemaCanonicalizer, parse_predicates, user_predicates
from ledgermigrate.errors import UnknownClassError
from ledgermigrate.extractor import SpillStore
from ledgermigrate.transformer import RecordTransformer


class CollectingSink:
    def __init__(self):
        self.nodes = []

    def add(self, node):
        self.nodes.append(node)


@pytest.fixture
def registry(predicates_payload):
    canonicalizer = SchemaCanonicalizer()
    canonicalizer.canonicalize(parse_predicates(user_predicates(predicates_payload)))
    return canonicalizer.registry


@pytest.fixture
def store(tmp_path):
    spill_store = SpillStore(tmp_path / "spill")
    spill_store.reset()
    return spill_store


@pytest.fixture
def transformer(registry, store):
    return RecordTransformer(registry, store)


class TestTransformRecord:
    """Single record conversion."""

    def test_person(self, transformer):
        node = transformer.transform_record("person", {
            "_id": 101,
            "age": 41,
            "full_name": "Ada",
            "born": 1693403567000,
            "friends": [{"_id": 102}, {"_id": 103}],
        })
        assert node == {
            "@id": "101",
            "@type": "Person",
            "age": 41,
            "fullName": "Ada",
            "born": "2023-08-30T13:52:47.000Z",
            "friends": [{"@id": "102"}, {"@id": "103"}],
        }

    def test_unknown_keys_dropped(self, transformer):
        node = transformer.transform_record("blog_post", {
            "_id": 201, "title": "Hello", "_meta": "x", "rating": 5,
        })
        assert node == {"@id": "201", "@type": "BlogPost", "title": "Hello"}

    def test_qualified_keys(self, transformer):
        node = transformer.transform_record("person", {"_id": 1, "person/age": 3})
        assert node["age"] == 3

    def test_references(self, transformer):
        node = transformer.transform_record("blog_post", {
            "_id": 201, "author": 101, "tags": [{"_id": 900}],
        })
        assert node["author"] == {"@id": "101"}
        # Nested entities without a declared class are still references
        assert node["tags"] == [{"@id": "900"}]

    def test_nested_entity_reference(self, transformer):
        node = transformer.transform_record("blog_post", {
            "_id": 201, "author": {"_id": 101, "full_name": "Ada"},
        })
        assert node["author"] == {"@id": "101"}

    def test_string_instant_untouched(self, transformer):
        node = transformer.transform_record("person", {
            "_id": 1, "born": "2023-08-30T13:52:47.000Z",
        })
        assert node["born"] == "2023-08-30T13:52:47.000Z"

    def test_shared_registry_sees_later_changes(self, registry, transformer):
        registry.classes["person"].iri = "schema:Person"
        node = transformer.transform_record("person", {"_id": 1})
        assert node["@type"] == "schema:Person"


class TestTransformFile:
    """Spill file handling."""

    def test_file_consumed(self, transformer, store):
        path = store.write("person", [{"_id": 1, "age": 2}, {"_id": 2}])

        nodes = transformer.transform_file(path)

        assert [n["@id"] for n in nodes] == ["1", "2"]
        assert not path.exists()

    def test_records_without_id_skipped(self, transformer, store, caplog):
        path = store.write("person", [{"age": 1}, {"_id": 2, "age": 3}, "junk"])

        with caplog.at_level("WARNING", logger="ledgermigrate.transformer"):
            nodes = transformer.transform_file(path)

        assert nodes == [{"@id": "2", "@type": "Person", "age": 3}]
        assert caplog.text.count("without an _id") == 2
        assert not path.exists()

    def test_unknown_collection(self, transformer, store):
        path = store.write("invoice", [{"_id": 1}])

        with pytest.raises(UnknownClassError, match="invoice"):
            transformer.transform_file(path)
        assert not path.exists()

    def test_run_in_file_order(self, transformer, store):
        store.write("person", [{"_id": 1}, {"_id": 2}])
        store.write("blog_post", [{"_id": 3}])
        store.write("person", [])
        sink = CollectingSink()

        assert transformer.run(sink) == 3

        assert [(n["@id"], n["@type"]) for n in sink.nodes] == [
            ("1", "Person"),
            ("2", "Person"),
            ("3", "BlogPost"),
        ]
        assert store.files() == []

    def test_file_contents_are_json(self, transformer, store):
        path = store.write("person", [{"_id": 7, "full_name": "Grace"}])
        with open(path) as f:
            assert json.load(f) == [{"_id": 7, "full_name": "Grace"}]
        assert transformer.transform_file(path)[0]["fullName"] == "Grace"
