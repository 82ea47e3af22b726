# offline_sync/DB/__init__.py
from .KV_Store_DB import KeyValueDatabase, DatabaseError, SchemaError

__all__ = ["KeyValueDatabase", "DatabaseError", "SchemaError"]
