"""Persisted cache schema and the value objects handed back to callers.

The on-disk layout is fixed: other processes open the same file and expect
exactly these table, column and index names.
"""

from typing import List, Optional

from pydantic import BaseModel
from sqlalchemy import Column, Index, Integer, LargeBinary, Table, Text
from sqlmodel import Field, SQLModel


class SchemaVersion(SQLModel, table=True):
    """Single-row marker holding the schema revision."""

    __tablename__ = "version"

    num: int = Field(sa_column=Column("num", Integer, primary_key=True, autoincrement=False))


class CacheRecord(SQLModel, table=True):
    """One cached payload. ``expire == 0`` means infinite lifetime."""

    __tablename__ = "cache"
    __table_args__ = (
        Index("cache_id_expire_index", "id", "expire"),
    )

    id: str = Field(sa_column=Column("id", Text, primary_key=True))
    content: Optional[bytes] = Field(default=None, sa_column=Column("content", LargeBinary))
    last_modified: int = Field(default=0, sa_column=Column("lastModified", Integer))
    expire: int = Field(default=0, sa_column=Column("expire", Integer))


# Tag edges carry no key, which SQLModel tables cannot express
tag_table = Table(
    "tag",
    SQLModel.metadata,
    Column("name", Text),
    Column("id", Text),
    Index("tag_id_index", "id"),
    Index("tag_name_index", "name"),
)

CACHE_TABLES = [SchemaVersion.__table__, CacheRecord.__table__, tag_table]

# Columns the repair coordinator requires on each table
REQUIRED_COLUMNS = {
    "version": ("num",),
    "cache": ("id", "content", "lastModified", "expire"),
    "tag": ("name", "id"),
}

REQUIRED_INDEXES = ("tag_id_index", "tag_name_index", "cache_id_expire_index")


class RecordMetadata(BaseModel):
    """Metadata of one cache record."""

    tags: List[str]
    last_modified: int
    expire: int

    @property
    def is_infinite(self) -> bool:
        return self.expire == 0


class Capabilities(BaseModel):
    """Feature flags the cache front-end queries before using the backend."""

    automatic_cleaning: bool = True
    tags: bool = True
    expired_read: bool = True
    priority: bool = False
    infinite_lifetime: bool = True
    get_list: bool = True
