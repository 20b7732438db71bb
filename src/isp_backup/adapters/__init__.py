"""Store adapters.

``DatabaseClient`` is the Protocol the snapshot engine talks to.
``AsyncPostgresAdapter`` is always importable; ``AsyncSupabaseAdapter``
appears here only when the ``supabase`` extra is installed.
"""

from isp_backup.adapters.base import DatabaseClient
from isp_backup.adapters.postgres import AsyncPostgresAdapter

__all__ = [
    "DatabaseClient",
    "AsyncPostgresAdapter",
]

try:
    from isp_backup.adapters.supabase import AsyncSupabaseAdapter

    __all__.append("AsyncSupabaseAdapter")
except ImportError:
    # optional extra
    pass
