"""
Shared fixtures for fieldstore tests.

Entity types used across the suite:
- article: revisionable, fieldable, no bundles, no data table
- node: revisionable, fieldable, bundle-keyed ("type"), language-aware
- content: revisionable, fieldable, translatable (data + revision data tables)
- tag: plain, no revisions, not fieldable
"""

import pytest

from fieldstore.bootstrap import EntityManager
from fieldstore.config import FieldStoreSettings
from fieldstore.schema.registry import SchemaRegistry
from fieldstore.schema.types import (
    CARDINALITY_UNLIMITED,
    EntityKeys,
    EntityTypeDef,
    FieldInstanceDef,
    field,
)
from fieldstore.storage.database import Database
from fieldstore.storage.hooks import HookDispatcher


def make_article_type():
    return EntityTypeDef(
        name="article",
        base_table="article",
        revision_table="article_revision",
        keys=EntityKeys(id="id", uuid="uuid", revision="vid"),
        fieldable=True,
        base_fields=(field("title", "string"),),
    )


def make_node_type():
    return EntityTypeDef(
        name="node",
        base_table="node",
        revision_table="node_revision",
        keys=EntityKeys(id="nid", uuid="uuid", bundle="type", revision="vid", langcode="langcode"),
        fieldable=True,
        base_fields=(
            field("title", "string"),
            field("status", "boolean", default_value=1),
            field("created", "timestamp"),
        ),
    )


def make_content_type():
    return EntityTypeDef(
        name="content",
        base_table="content",
        revision_table="content_revision",
        data_table="content_field_data",
        revision_data_table="content_field_revision",
        keys=EntityKeys(
            id="id", uuid="uuid", bundle="bundle", revision="revision_id", langcode="langcode",
        ),
        fieldable=True,
        translatable=True,
        base_fields=(
            field("name", "string", translatable=True),
            field("user_id", "integer"),
        ),
    )


def make_tag_type():
    return EntityTypeDef(
        name="tag",
        base_table="tag",
        keys=EntityKeys(id="tid", uuid="uuid"),
        base_fields=(field("name", "string"), field("weight", "integer", default_value=0)),
    )


@pytest.fixture
def registry():
    """Registry with every test entity type registered (not frozen)."""
    registry = SchemaRegistry()
    for entity_type in (make_article_type(), make_node_type(), make_content_type(), make_tag_type()):
        registry.register_entity_type(entity_type)
    return registry


@pytest.fixture
def hooks():
    return HookDispatcher()


@pytest.fixture
def db():
    """Connected in-memory database."""
    database = Database(":memory:")
    database.connect()
    yield database
    database.close()


@pytest.fixture
def settings():
    return FieldStoreSettings(database_path=":memory:", wal_mode=False)


@pytest.fixture
def manager(settings, registry, hooks):
    """EntityManager over an in-memory database with all types installed."""
    with EntityManager(settings=settings, registry=registry, hooks=hooks) as entity_manager:
        yield entity_manager


@pytest.fixture
def article_fields(manager):
    """The article scenario fields: body (single) and tags (unlimited)."""
    fields = manager.field_manager
    body = fields.create_field(field("body", "text_long", entity_type="article"))
    tags = fields.create_field(
        field("tags", "string", entity_type="article", cardinality=CARDINALITY_UNLIMITED)
    )
    fields.create_instance(FieldInstanceDef(field=body, bundle="article"))
    fields.create_instance(FieldInstanceDef(field=tags, bundle="article"))
    return {"body": body, "tags": tags}


@pytest.fixture
def article_storage(manager, article_fields):
    return manager.get_storage("article")
