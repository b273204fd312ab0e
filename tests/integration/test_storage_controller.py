"""
Integration tests for EntityStorageController over in-memory SQLite.

Tests cover:
- Create, save, load of fieldable revisionable entities
- Revisions (new, non-default, loading and deleting)
- Transaction rollback on failing hooks
- Cardinality enforcement
- Static cache behaviour and load_multiple ordering
- load_by_properties
- Deleting entities
- Lifecycle hook order
"""

import logging

import pytest

from fieldstore.errors import (
    CannotDeleteDefaultRevisionError,
    MissingBundleError,
    StorageError,
    UnknownFieldError,
)
from fieldstore.schema.types import FieldInstanceDef, field
from fieldstore.storage.controller import EntityStorageController, SaveResult


def save_article(storage, title, body=None, tags=None):
    values = {"title": title}
    if body is not None:
        values["body"] = body
    if tags is not None:
        values["tags"] = tags
    article = storage.create(values)
    storage.save(article)
    return article


class TestCreate:
    """Tests for create()."""

    def test_create_sets_values_and_uuid(self, article_storage):
        article = article_storage.create({"title": "Hello", "body": "Hi"})

        assert article.is_new()
        assert article.id is None
        assert article.get("title").value == "Hello"
        assert article.get("body")[0]["value"] == "Hi"
        assert article.get("tags").is_empty()
        assert len(article.uuid) == 36

    def test_create_applies_defaults(self, manager):
        storage = manager.get_storage("node")

        node = storage.create({"type": "page"})
        explicit = storage.create({"type": "page", "status": None})

        assert node.get("status").value == 1
        assert explicit.get("status").is_empty()
        assert node.langcode == "und"

    def test_instance_default_overrides_field_default(self, manager):
        fields = manager.field_manager
        promote = fields.create_field(field("promote", "boolean", entity_type="node", default_value=0))
        fields.create_instance(FieldInstanceDef(field=promote, bundle="article", default_value=1))
        fields.create_instance(FieldInstanceDef(field=promote, bundle="page"))
        storage = manager.get_storage("node")

        assert storage.create({"type": "article"}).get("promote").value == 1
        assert storage.create({"type": "page"}).get("promote").value == 0

    def test_missing_bundle_raises(self, manager):
        with pytest.raises(MissingBundleError) as exc_info:
            manager.get_storage("node").create({"title": "No bundle"})
        assert exc_info.value.bundle_key == "type"

    def test_unknown_field_raises(self, article_storage):
        with pytest.raises(UnknownFieldError) as exc_info:
            article_storage.create({"titel": "Hello"})
        assert "title" in exc_info.value.suggestions

    def test_field_of_other_bundle_is_unknown(self, manager):
        fields = manager.field_manager
        body = fields.create_field(field("body", "text_long", entity_type="node"))
        fields.create_instance(FieldInstanceDef(field=body, bundle="article"))
        storage = manager.get_storage("node")

        storage.create({"type": "article", "body": "Hi"})
        with pytest.raises(UnknownFieldError):
            storage.create({"type": "page", "body": "Hi"})

    def test_create_hook(self, manager, article_storage):
        created = []
        manager.hooks.register("create", created.append, entity_type="article")

        article = article_storage.create({"title": "Hello"})

        assert created == [article]


class TestSaveAndLoad:
    """Tests for save() and load()."""

    def test_article_roundtrip(self, article_storage):
        article = article_storage.create({"title": "Hello", "body": "Hi"})

        assert article_storage.save(article) == SaveResult.SAVED_NEW
        assert article.id == 1
        assert article.revision_id == 1
        assert not article.is_new()
        assert not article.is_new_revision()

        loaded = article_storage.load(1)
        assert loaded.get("title").value == "Hello"
        assert loaded.get("body")[0]["value"] == "Hi"
        assert len(loaded.get("tags")) == 0
        assert loaded.is_default_revision()

    def test_new_revision_keeps_old_values(self, article_storage):
        article = save_article(article_storage, "Hello", body="Hi")

        loaded = article_storage.load(article.id)
        loaded.set("tags", ["a", "b"])
        loaded.set_new_revision()
        assert article_storage.save(loaded) == SaveResult.SAVED_UPDATED
        assert loaded.revision_id == 2

        current = article_storage.load(article.id)
        assert current.revision_id == 2
        assert [item.value for item in current.get("tags")] == ["a", "b"]
        assert current.get("body")[0]["value"] == "Hi"

        first = article_storage.load_revision(1)
        assert first.revision_id == 1
        assert first.get("tags").is_empty()
        assert first.get("body")[0]["value"] == "Hi"
        assert not first.is_default_revision()

    def test_tags_stored_with_contiguous_deltas(self, manager, article_storage):
        article = save_article(article_storage, "Hello", tags=["a", "", "b"])

        rows = manager.db.select("article__tags", {"entity_id": article.id}, order_by=["delta"])

        assert [(r["delta"], r["tags_value"]) for r in rows] == [(0, "a"), (1, "b")]
        assert all(r["revision_id"] == article.revision_id for r in rows)
        assert manager.db.count("article_revision__tags") == 2

    def test_update_in_place(self, manager, article_storage):
        article = save_article(article_storage, "Hello", body="Hi")

        article.set("title", "Hello again")
        article.set("body", "Changed")
        assert article_storage.save(article) == SaveResult.SAVED_UPDATED

        assert manager.db.count("article_revision") == 1
        assert manager.db.count("article_revision__body") == 1
        loaded = article_storage.load_unchanged(article.id)
        assert loaded.get("title").value == "Hello again"
        assert loaded.get("body")[0]["value"] == "Changed"

    def test_non_default_revision(self, article_storage):
        article = save_article(article_storage, "Published", body="Live")

        draft = article_storage.load(article.id)
        draft.set("title", "Draft")
        draft.set("body", "Work in progress")
        draft.set_new_revision()
        draft.set_default_revision(False)
        assert article_storage.save(draft) == SaveResult.SAVED_UPDATED

        current = article_storage.load(article.id)
        assert current.revision_id == 1
        assert current.get("title").value == "Published"
        assert current.get("body")[0]["value"] == "Live"

        pending = article_storage.load_revision(draft.revision_id)
        assert pending.get("title").value == "Draft"
        assert pending.get("body")[0]["value"] == "Work in progress"
        assert not pending.is_default_revision()

    def test_plain_entity_type(self, manager):
        storage = manager.get_storage("tag")
        tag = storage.create({"name": "python"})

        assert storage.save(tag) == SaveResult.SAVED_NEW
        assert storage.load(tag.id).get("weight").value == 0
        assert storage.load_revision(1) is None

        tag.set("weight", 5)
        assert storage.save(tag) == SaveResult.SAVED_UPDATED
        assert storage.load_unchanged(tag.id).get("weight").value == 5
        with pytest.raises(ValueError):
            tag.set_new_revision()

    def test_load_missing(self, article_storage):
        assert article_storage.load(42) is None
        assert article_storage.load_revision(42) is None

    def test_field_methods_run_before_write(self, manager, article_storage):
        def shout(items, entity):
            items.set_value([{"value": item["value"].upper()} for item in items])

        manager.hooks.register_field_method("string", "pre_save", shout)
        article = save_article(article_storage, "Hello", tags=["a", "b"])

        loaded = article_storage.load_unchanged(article.id)
        assert [item.value for item in loaded.get("tags")] == ["A", "B"]
        assert loaded.get("title").value == "HELLO"


class TestRevisionDelete:
    """Tests for delete_revision()."""

    def test_cannot_delete_default_revision(self, article_storage):
        article = save_article(article_storage, "Hello")
        with pytest.raises(CannotDeleteDefaultRevisionError) as exc_info:
            article_storage.delete_revision(article.revision_id)
        assert exc_info.value.revision_id == article.revision_id

    def test_delete_old_revision(self, manager, article_storage):
        article = save_article(article_storage, "Hello", body="Hi")
        article.set("body", "Second")
        article.set_new_revision()
        article_storage.save(article)
        deleted = []
        manager.hooks.register("revision_delete", deleted.append)

        article_storage.delete_revision(1)

        assert article_storage.load_revision(1) is None
        assert manager.db.count("article_revision__body", {"revision_id": 1}) == 0
        assert manager.db.count("article_revision__body", {"revision_id": 2}) == 1
        assert [e.revision_id for e in deleted] == [1]
        assert article_storage.load_unchanged(article.id).get("body")[0]["value"] == "Second"

    def test_delete_unknown_revision_is_noop(self, article_storage):
        article_storage.delete_revision(99)


class TestAtomicity:
    """Failing hooks roll back the whole operation."""

    def test_failed_insert_leaves_no_rows(self, manager, article_storage):
        def reject(entity):
            raise RuntimeError("rejected")

        manager.hooks.register("insert", reject, entity_type="article")
        article = article_storage.create({"title": "Hello", "body": "Hi", "tags": ["a"]})

        with pytest.raises(StorageError) as exc_info:
            article_storage.save(article)

        assert isinstance(exc_info.value.__cause__, RuntimeError)
        assert exc_info.value.entity_type == "article"
        for table in ("article", "article_revision", "article__body", "article_revision__tags"):
            assert manager.db.count(table) == 0
        assert article.id is None
        assert article.is_new()
        assert not manager.db.in_transaction

    def test_failed_update_keeps_stored_state(self, manager, article_storage):
        article = save_article(article_storage, "Hello", tags=["a"])

        @manager.hooks.on("update", entity_type="article")
        def reject(entity):
            raise RuntimeError("rejected")

        article.set("title", "Changed")
        article.set("tags", ["b", "c"])
        article.set_new_revision()
        with pytest.raises(StorageError):
            article_storage.save(article)

        assert article.revision_id == 1
        assert article.is_new_revision()
        stored = article_storage.load_unchanged(article.id)
        assert stored.get("title").value == "Hello"
        assert [item.value for item in stored.get("tags")] == ["a"]
        assert manager.db.count("article_revision") == 1

    def test_failed_save_is_logged(self, manager, article_storage, caplog):
        manager.hooks.register("presave", lambda e: 1 / 0, entity_type="article")

        with caplog.at_level(logging.ERROR, logger="fieldstore.storage.controller"):
            with pytest.raises(StorageError):
                article_storage.save(article_storage.create({"title": "Hello"}))

        [record] = caplog.records
        assert record.entity_type == "article"
        assert record.exc_info is not None


class TestCardinality:
    """Items beyond a field's cardinality are not stored."""

    def test_excess_items_dropped(self, article_storage, caplog):
        article = article_storage.create({"title": "Hello", "body": ["first", "second"]})

        with caplog.at_level(logging.WARNING, logger="fieldstore.storage.codec"):
            article_storage.save(article)

        loaded = article_storage.load_unchanged(article.id)
        assert [item.value for item in loaded.get("body")] == ["first"]
        assert any(getattr(r, "field_name", None) == "body" for r in caplog.records)

    def test_finite_cardinality_keeps_first_deltas(self, manager, article_storage):
        links = manager.field_manager.create_field(field("links", "string", entity_type="article", cardinality=3))
        manager.field_manager.create_instance(FieldInstanceDef(field=links, bundle="article"))
        article = article_storage.create({"title": "Hello", "links": ["a", "b", "c", "d", "e"]})

        article_storage.save(article)

        for table in ("article__links", "article_revision__links"):
            rows = manager.db.select(table, {"entity_id": article.id}, order_by=["delta"])
            assert [(r["delta"], r["links_value"]) for r in rows] == [(0, "a"), (1, "b"), (2, "c")]
        loaded = article_storage.load_unchanged(article.id)
        assert [item.value for item in loaded.get("links")] == ["a", "b", "c"]


class TestSerializedValues:
    """Values of serialized columns keep their Python types."""

    @pytest.fixture
    def map_storage(self, manager, article_storage):
        data = manager.field_manager.create_field(field("data", "map", entity_type="article"))
        manager.field_manager.create_instance(FieldInstanceDef(field=data, bundle="article"))
        return article_storage

    @pytest.mark.parametrize("value", [
        {1: "one", 2: "two"},
        {1: "one", "t": (1, (2, 3))},
        {"s": {1, 2}},
    ])
    def test_round_trip(self, map_storage, value):
        article = map_storage.create({"title": "Hello", "data": {"value": value}})
        map_storage.save(article)
        map_storage.reset_cache()

        loaded = map_storage.load(article.id)

        assert loaded.get("data").value == value

    def test_unserializable_value_rolls_back(self, manager, map_storage):
        article = map_storage.create({"title": "Hello", "data": {"value": {"obj": object()}}})

        with pytest.raises(StorageError) as exc_info:
            map_storage.save(article)

        assert isinstance(exc_info.value.cause, TypeError)
        assert manager.db.count("article") == 0
        assert article.is_new()


class TestLoadMultiple:
    """Tests for load_multiple() and the static cache."""

    def test_order_follows_request(self, article_storage):
        for title in ("one", "two", "three"):
            save_article(article_storage, title)

        loaded = article_storage.load_multiple([3, 1, 99])

        assert list(loaded) == [3, 1]
        assert loaded[3].get("title").value == "three"

    def test_load_all(self, article_storage):
        for title in ("one", "two"):
            save_article(article_storage, title)
        assert list(article_storage.load_multiple()) == [1, 2]
        assert article_storage.load_multiple([]) == {}

    def test_cache_returns_same_object(self, article_storage):
        save_article(article_storage, "one")

        first = article_storage.load(1)
        assert article_storage.load(1) is first
        article_storage.reset_cache([1])
        assert article_storage.load(1) is not first

    def test_save_invalidates_cache(self, article_storage):
        article = save_article(article_storage, "one")
        cached = article_storage.load(article.id)

        article.set("title", "changed")
        article_storage.save(article)

        assert article_storage.load(article.id) is not cached
        assert article_storage.load(article.id).get("title").value == "changed"

    def test_cache_disabled(self, manager, article_fields):
        storage = EntityStorageController(
            manager.registry.get_entity_type("article"), manager.db, manager.registry, static_cache=False,
        )
        save_article(storage, "one")
        assert storage.load(1) is not storage.load(1)

    def test_load_hook_gets_batch(self, manager, article_storage):
        for title in ("one", "two"):
            save_article(article_storage, title)
        batches = []
        manager.hooks.register("load", batches.append, entity_type="article")

        article_storage.load_multiple([1, 2])
        article_storage.load_multiple([1, 2])

        assert [sorted(b) for b in batches] == [[1, 2]]


class TestLoadByProperties:
    """Tests for load_by_properties()."""

    @pytest.fixture
    def articles(self, article_storage):
        return [
            save_article(article_storage, "Hello", tags=["a", "b"]),
            save_article(article_storage, "World", tags=["b"]),
            save_article(article_storage, "Hello"),
        ]

    def test_base_column(self, article_storage, articles):
        assert list(article_storage.load_by_properties({"title": "Hello"})) == [1, 3]

    def test_list_value(self, article_storage, articles):
        assert list(article_storage.load_by_properties({"title": ["World", "Nope"]})) == [2]

    def test_configurable_field(self, article_storage, articles):
        assert list(article_storage.load_by_properties({"tags": "b"})) == [1, 2]
        assert list(article_storage.load_by_properties({"tags": "a", "title": "Hello"})) == [1]

    def test_no_match(self, article_storage, articles):
        assert article_storage.load_by_properties({"title": "Missing"}) == {}

    def test_unknown_property(self, article_storage, articles):
        with pytest.raises(UnknownFieldError) as exc_info:
            article_storage.load_by_properties({"titel": "Hello"})
        assert "title" in exc_info.value.suggestions


class TestDelete:
    """Tests for delete()."""

    def test_delete_removes_all_rows(self, manager, article_storage):
        article = save_article(article_storage, "Hello", body="Hi", tags=["a"])
        article.set_new_revision()
        article_storage.save(article)
        other = save_article(article_storage, "Keep", tags=["b"])

        article_storage.delete([article])

        assert article_storage.load(article.id) is None
        assert article_storage.load(other.id) is not None
        assert manager.db.count("article_revision", {"id": article.id}) == 0
        assert manager.db.count("article__tags", {"entity_id": article.id}) == 0
        assert manager.db.count("article_revision__tags", {"entity_id": article.id}) == 0
        assert manager.db.count("article__tags", {"entity_id": other.id}) == 1

    def test_delete_mapping_and_hooks(self, manager, article_storage):
        save_article(article_storage, "one")
        save_article(article_storage, "two")
        calls = []
        manager.hooks.register("predelete", lambda e: calls.append(("predelete", e.id)))
        manager.hooks.register("delete", lambda e: calls.append(("delete", e.id)))

        article_storage.delete(article_storage.load_multiple([1, 2]))

        assert calls == [("predelete", 1), ("predelete", 2), ("delete", 1), ("delete", 2)]
        assert article_storage.load_multiple() == {}

    def test_delete_nothing(self, article_storage):
        article_storage.delete([])

    def test_failed_delete_rolls_back(self, manager, article_storage):
        article = save_article(article_storage, "Hello", tags=["a"])
        manager.hooks.register("delete", lambda e: 1 / 0)

        with pytest.raises(StorageError):
            article_storage.delete([article])

        assert article_storage.load_unchanged(article.id) is not None
        assert manager.db.count("article__tags") == 1


class TestHookOrder:
    """Hooks fire in lifecycle order."""

    def test_insert_and_update(self, manager, article_storage):
        calls = []
        for hook in ("create", "presave", "insert", "update"):
            manager.hooks.register(hook, lambda e, hook=hook: calls.append((hook, e.id, e.is_new())))

        article = article_storage.create({"title": "Hello"})
        article_storage.save(article)
        article_storage.save(article)

        assert calls == [
            ("create", None, True),
            ("presave", None, True),
            ("insert", 1, False),
            ("presave", 1, False),
            ("update", 1, False),
        ]

    def test_original_available_during_update(self, manager, article_storage):
        article = save_article(article_storage, "Hello")
        seen = []
        manager.hooks.register("presave", lambda e: seen.append(e.original.get("title").value))

        article.set("title", "Changed")
        article_storage.save(article)

        assert seen == ["Hello"]
        assert article.original is None
