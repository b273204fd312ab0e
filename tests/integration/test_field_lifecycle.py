"""
Integration tests for field configuration changes.

Tests cover:
- Field creation and table setup
- Field updates with and without data
- Field and instance deletion (soft delete)
- Bundle renames
- Batched purging of deleted values
"""

import sqlite3

import pytest

from fieldstore.errors import SchemaChangeForbiddenError
from fieldstore.schema.compat import ChangeKind
from fieldstore.schema.types import FieldInstanceDef, field
from fieldstore.storage.naming import uuid_hash


def save_article(storage, **values):
    article = storage.create(values)
    storage.save(article)
    return article


@pytest.fixture
def node_body(manager):
    """A node body field attached to the article and page bundles."""
    fields = manager.field_manager
    body = fields.create_field(field("body", "text_long", entity_type="node"))
    article = fields.create_instance(FieldInstanceDef(field=body, bundle="article"))
    page = fields.create_instance(FieldInstanceDef(field=body, bundle="page"))
    return body, article, page


class TestCreateField:
    """Tests for create_field()."""

    def test_tables_created(self, manager, article_fields):
        schema = manager.db.schema()
        for table in ("article__body", "article_revision__body", "article__tags", "article_revision__tags"):
            assert schema.table_exists(table)
        assert schema.index_exists("article__body", "body_format")

    def test_failed_table_creation_unregisters(self, manager, article_fields):
        manager.db.execute('CREATE TABLE "article__summary" ("x" INTEGER)')

        with pytest.raises(sqlite3.OperationalError):
            manager.field_manager.create_field(field("summary", "text", entity_type="article"))

        assert manager.registry.get_field("article", "summary") is None


class TestUpdateField:
    """Tests for update_field()."""

    def test_update_without_data_recreates_tables(self, manager, article_fields):
        tags = article_fields["tags"]

        changes = manager.field_manager.update_field(tags.with_changes(settings={"max_length": 64}))

        assert ChangeKind.COLUMNS_CHANGED in {c.kind for c in changes}
        info = manager.db.query('PRAGMA table_info("article__tags")')
        assert {r["name"]: r["type"] for r in info}["tags_value"] == "VARCHAR(64)"
        assert manager.registry.get_field("article", "tags").get_setting("max_length") == 64
        assert manager.registry.get_instance("article", "article", "tags").field.get_setting("max_length") == 64

    def test_column_change_with_data_forbidden(self, manager, article_storage, article_fields):
        save_article(article_storage, title="Hello", tags=["a"])
        tags = article_fields["tags"]

        with pytest.raises(SchemaChangeForbiddenError) as exc_info:
            manager.field_manager.update_field(tags.with_changes(settings={"max_length": 64}))

        assert exc_info.value.field_name == "tags"
        assert manager.registry.get_field("article", "tags").get_setting("max_length") == 255
        assert manager.db.count("article__tags") == 1

    def test_index_change_with_data(self, manager, article_storage, article_fields):
        article = save_article(article_storage, title="Hello", body="Hi")
        body = article_fields["body"]
        schema = manager.db.schema()

        changes = manager.field_manager.update_field(body.with_changes(indexes={"value": (("value", 32),)}))

        assert [c.kind for c in changes] == [ChangeKind.INDEX_ADDED]
        assert schema.index_exists("article__body", "body_value")
        assert schema.index_exists("article_revision__body", "body_value")
        assert article_storage.load_unchanged(article.id).get("body").value == "Hi"

        manager.field_manager.update_field(manager.registry.get_field("article", "body").with_changes(indexes={}))
        assert not schema.index_exists("article__body", "body_value")
        assert schema.index_exists("article__body", "body_format")

    def test_cardinality_change_with_data(self, manager, article_storage, article_fields):
        article = save_article(article_storage, title="Hello", body="Hi")

        manager.field_manager.update_field(article_fields["body"].with_changes(cardinality=3))

        loaded = article_storage.load_unchanged(article.id)
        loaded.set("body", ["one", "two", "three"])
        article_storage.save(loaded)
        assert len(article_storage.load_unchanged(article.id).get("body")) == 3

    def test_unknown_field(self, manager):
        with pytest.raises(KeyError):
            manager.field_manager.update_field(field("missing", "string", entity_type="article"))


class TestDeleteField:
    """Tests for delete_field()."""

    def test_tables_move_aside(self, manager, article_storage, article_fields):
        save_article(article_storage, title="Hello", body="Hi")
        body = article_fields["body"]
        schema = manager.db.schema()

        deleted = manager.field_manager.delete_field(body)

        assert deleted.deleted
        assert not schema.table_exists("article__body")
        data_table = "field_deleted_data_" + uuid_hash(body.uuid)
        revision_table = "field_deleted_revision_" + uuid_hash(body.uuid)
        assert schema.table_exists(data_table)
        assert schema.table_exists(revision_table)
        assert schema.index_exists(data_table, "body_format")
        assert [r["deleted"] for r in manager.db.select(data_table)] == [1]
        assert [r["deleted"] for r in manager.db.select(revision_table)] == [1]

    def test_deleted_field_not_loaded(self, manager, article_storage, article_fields):
        article = save_article(article_storage, title="Hello", body="Hi")

        manager.field_manager.delete_field(article_fields["body"])

        loaded = article_storage.load_unchanged(article.id)
        assert not loaded.has_field("body")
        assert loaded.get("title").value == "Hello"

    def test_name_reusable(self, manager, article_storage, article_fields):
        manager.field_manager.delete_field(article_fields["body"])

        body = manager.field_manager.create_field(field("body", "string", entity_type="article"))
        manager.field_manager.create_instance(FieldInstanceDef(field=body, bundle="article"))

        article = save_article(article_storage, title="Hello", body="plain")
        assert article_storage.load_unchanged(article.id).get("body").value == "plain"


class TestDeleteInstance:
    """Tests for delete_instance()."""

    def test_other_bundle_keeps_values(self, manager, node_body):
        body, article_instance, _ = node_body
        storage = manager.get_storage("node")
        article = save_article(storage, type="article", title="A", body="article body")
        page = save_article(storage, type="page", title="P", body="page body")

        manager.field_manager.delete_instance(article_instance)

        assert manager.registry.get_field("node", "body") is not None
        assert not storage.load_unchanged(article.id).has_field("body")
        assert storage.load_unchanged(page.id).get("body").value == "page body"
        rows = manager.db.select("node__body", order_by=["entity_id"])
        assert [(r["bundle"], r["deleted"]) for r in rows] == [("article", 1), ("page", 0)]

    def test_last_instance_deletes_field(self, manager, node_body):
        body, article_instance, page_instance = node_body

        manager.field_manager.delete_instance(article_instance)
        manager.field_manager.delete_instance(page_instance)

        assert manager.registry.get_field("node", "body") is None
        assert manager.registry.get_field_by_uuid(body.uuid).deleted
        assert not manager.db.schema().table_exists("node__body")

    def test_without_field_cleanup(self, manager, node_body):
        body, article_instance, page_instance = node_body

        manager.field_manager.delete_instance(article_instance)
        manager.field_manager.delete_instance(page_instance, field_cleanup=False)

        assert manager.registry.get_field("node", "body") is not None
        assert manager.db.schema().table_exists("node__body")


class TestRenameBundle:
    """Tests for rename_bundle()."""

    def test_field_rows_follow_bundle(self, manager, node_body):
        storage = manager.get_storage("node")
        save_article(storage, type="article", title="A", body="Hi")
        save_article(storage, type="page", title="P", body="Page")

        manager.field_manager.rename_bundle("node", "article", "story")

        assert manager.registry.get_instance("node", "story", "body") is not None
        assert manager.registry.get_instance("node", "article", "body") is None
        bundles = sorted(r["bundle"] for r in manager.db.select("node_revision__body"))
        assert bundles == ["page", "story"]

    def test_deleted_instances_renamed(self, manager, node_body):
        _, article_instance, _ = node_body
        storage = manager.get_storage("node")
        save_article(storage, type="article", title="A", body="Hi")
        manager.field_manager.delete_instance(article_instance)

        manager.field_manager.rename_bundle("node", "article", "story")

        [deleted] = manager.registry.instances(deleted_only=True)
        assert deleted.bundle == "story"
        assert manager.db.select_one("node__body", {"deleted": 1})["bundle"] == "story"


class TestPurge:
    """Tests for purge_batch()."""

    def test_purge_deleted_field_in_batches(self, manager, article_storage, article_fields):
        for i in range(3):
            save_article(article_storage, title=f"Article {i}", body=f"Body {i}")
        body = article_fields["body"]
        purged_values = []
        manager.hooks.register_field_method(
            "text_long", "delete", lambda items, entity: purged_values.append((entity.id, items.value)),
        )
        manager.field_manager.delete_field(body)
        data_table = "field_deleted_data_" + uuid_hash(body.uuid)

        assert manager.field_manager.purge_batch(2) == 2
        assert manager.db.count(data_table) == 1
        assert manager.registry.get_field_by_uuid(body.uuid) is not None

        assert manager.field_manager.purge_batch(2) == 1
        assert not manager.db.schema().table_exists(data_table)
        assert manager.registry.get_field_by_uuid(body.uuid) is None
        assert manager.registry.instances(include_deleted=True) == [
            manager.registry.get_instance("article", "article", "tags")
        ]
        assert purged_values == [(1, "Body 0"), (2, "Body 1"), (3, "Body 2")]

        assert manager.field_manager.purge_batch(2) == 0

    def test_purge_deleted_instance_keeps_live_bundle(self, manager, node_body):
        body, article_instance, _ = node_body
        storage = manager.get_storage("node")
        save_article(storage, type="article", title="A", body="Hi")
        page = save_article(storage, type="page", title="P", body="Page")
        manager.field_manager.delete_instance(article_instance)

        assert manager.field_manager.purge_batch(10) == 1

        assert manager.registry.instances(deleted_only=True) == []
        assert manager.registry.get_field("node", "body") is not None
        assert [r["entity_id"] for r in manager.db.select("node__body")] == [page.id]
        assert [r["entity_id"] for r in manager.db.select("node_revision__body")] == [page.id]

    def test_purge_field_without_data(self, manager, article_fields):
        tags = article_fields["tags"]
        manager.field_manager.delete_field(tags)

        assert manager.field_manager.purge_batch(10) == 0

        assert manager.registry.get_field_by_uuid(tags.uuid) is None
        assert not manager.db.schema().table_exists("field_deleted_data_" + uuid_hash(tags.uuid))

    def test_purge_values_only_in_old_revisions(self, manager, node_body):
        _, article_instance, _ = node_body
        storage = manager.get_storage("node")
        article = save_article(storage, type="article", title="A", body="old")
        first_revision = article.revision_id
        loaded = storage.load(article.id)
        loaded.set("body", None)
        loaded.set_new_revision()
        storage.save(loaded)
        assert manager.db.count("node__body") == 0
        manager.field_manager.delete_instance(article_instance)

        assert storage.deleted_field_entity_ids(article_instance.field, "article") == [article.id]
        assert manager.field_manager.purge_batch(10) == 1
        assert manager.field_manager.purge_batch(10) == 0

        assert manager.registry.instances(deleted_only=True) == []
        assert manager.db.count("node_revision__body", {"revision_id": first_revision}) == 0
        assert not storage.has_field_data(manager.registry.get_field("node", "body"))
