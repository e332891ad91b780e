"""Declarative base and shared column types for contest models."""

from sqlalchemy import BigInteger, Integer
from sqlalchemy.orm import DeclarativeBase

from ..db.metadata import metadata_obj

# SQLite only autoincrements INTEGER primary keys.
ID_TYPE = BigInteger().with_variant(Integer, "sqlite")


class Base(DeclarativeBase):
    metadata = metadata_obj


__all__ = ["Base", "ID_TYPE"]
