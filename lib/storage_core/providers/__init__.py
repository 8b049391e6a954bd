"""
Storage Core - Provider Abstractions
====================================
Storage provider factory with a unified interface.
"""

from .storage import (
    BaseStorageProvider,
    StorageProviderFactory,
    LocalStorageAdapter,
    UploadResult,
)

__all__ = [
    "BaseStorageProvider",
    "StorageProviderFactory",
    "LocalStorageAdapter",
    "UploadResult",
]
