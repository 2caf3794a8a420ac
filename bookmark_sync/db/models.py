"""Peewee ORM models for the bookmark sync database."""

from __future__ import annotations

import datetime as _dt
from typing import Any

import peewee
from playhouse.sqlite_ext import JSONField

from bookmark_sync.core.time_utils import UTC

# A proxy that will be initialised with the concrete database instance at runtime.
database_proxy: peewee.Database = peewee.DatabaseProxy()


def _utcnow() -> _dt.datetime:
    return _dt.datetime.now(UTC)


class BaseModel(peewee.Model):
    """Base Peewee model bound to the lazily initialised database proxy."""

    class Meta:
        database = database_proxy
        legacy_table_names = False


class Bookmark(BaseModel):
    """One browser bookmark or folder.

    ``sync_version`` is the per-row optimistic lock. It is unrelated to the
    per-user ledger value stamped on ``SyncEvent`` rows.
    """

    id = peewee.TextField(primary_key=True)
    user_id = peewee.TextField()
    parent_id = peewee.TextField(null=True)
    title = peewee.TextField(default="")
    url = peewee.TextField(null=True)
    favicon = peewee.TextField(null=True)
    date_added = peewee.BigIntegerField()
    date_modified = peewee.BigIntegerField()
    is_folder = peewee.BooleanField(default=False)
    sort_order = peewee.IntegerField(default=0)
    sync_version = peewee.IntegerField(default=1)
    is_deleted = peewee.BooleanField(default=False)
    deleted_at = peewee.BigIntegerField(null=True)

    class Meta:
        table_name = "bookmarks"
        indexes = (
            (("user_id",), False),
            (("user_id", "parent_id"), False),
            (("user_id", "sync_version"), False),
        )


class SyncEvent(BaseModel):
    """Append-only change record; ``sync_version`` is the ledger value after the change."""

    id = peewee.TextField(primary_key=True)
    user_id = peewee.TextField()
    type = peewee.TextField()
    bookmark_id = peewee.TextField()
    data = JSONField(default=dict)
    timestamp = peewee.BigIntegerField()
    client_id = peewee.TextField()
    sync_version = peewee.IntegerField()

    class Meta:
        table_name = "sync_events"
        indexes = ((("user_id", "sync_version"), False),)


class SyncVersion(BaseModel):
    user_id = peewee.TextField(primary_key=True)
    current_version = peewee.IntegerField(default=0)
    updated_at = peewee.DateTimeField(default=_utcnow)

    class Meta:
        table_name = "sync_versions"


ALL_MODELS: tuple[type[BaseModel], ...] = (
    Bookmark,
    SyncEvent,
    SyncVersion,
)


def model_to_dict(model: BaseModel | None) -> dict[str, Any] | None:
    """Convert a Peewee model instance to a plain dictionary."""
    if model is None:
        return None
    data: dict[str, Any] = {}
    for field_name in model._meta.sorted_field_names:
        value = getattr(model, field_name)
        if isinstance(value, peewee.Model):
            value = value.get_id()
        data[field_name] = value
    return data
