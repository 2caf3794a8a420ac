"""Client that uploads a browser's bookmark tree to the sync server."""

from bookmark_sync.client.session import SyncSession
from bookmark_sync.client.storage import (
    InMemoryKeyValueStore,
    JsonFileKeyValueStore,
    KeyValueStore,
)
from bookmark_sync.client.uploader import (
    BookmarkSyncClientError,
    BookmarkUploader,
    FlatNode,
    LocalNode,
    UploadReport,
    flatten_local_tree,
)

__all__ = [
    "BookmarkSyncClientError",
    "BookmarkUploader",
    "FlatNode",
    "InMemoryKeyValueStore",
    "JsonFileKeyValueStore",
    "KeyValueStore",
    "LocalNode",
    "SyncSession",
    "UploadReport",
    "flatten_local_tree",
]
