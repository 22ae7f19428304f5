"""Persisted schema and returned value objects."""
from .cache import CacheRecord, Capabilities, RecordMetadata, SchemaVersion, tag_table

__all__ = ["CacheRecord", "Capabilities", "RecordMetadata", "SchemaVersion", "tag_table"]
