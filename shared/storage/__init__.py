"""
Object Storage Integration
"""

from shared.storage.object_store import HttpObjectStorageClient, ObjectStorageClient

__all__ = [
    "HttpObjectStorageClient",
    "ObjectStorageClient",
]
