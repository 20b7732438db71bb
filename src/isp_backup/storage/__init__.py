"""Blob stores for snapshot files.

``SupabaseBlobStore`` is only available when the ``supabase`` extra is
installed.

Usage:
    from isp_backup.storage import BlobStore, LocalBlobStore
"""

from isp_backup.storage.base import BlobStore
from isp_backup.storage.local import LocalBlobStore

__all__ = [
    "BlobStore",
    "LocalBlobStore",
]

try:
    from isp_backup.storage.supabase import SupabaseBlobStore

    __all__.append("SupabaseBlobStore")
except ImportError:
    # supabase extra not installed -- SupabaseBlobStore unavailable
    pass
