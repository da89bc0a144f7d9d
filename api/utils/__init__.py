"""
Shared utility functions for client dedupe services.
"""

from api.utils.datetime_utils import make_aware, parse_timestamp
from api.utils.db_paths import get_clients_db_path

__all__ = ["make_aware", "parse_timestamp", "get_clients_db_path"]
