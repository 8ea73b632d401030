"""Declarative base and column types for the jobspine ORM models.

Uses SQLAlchemy 2.0 ``DeclarativeBase`` with a ``type_annotation_map``
that maps Python built-in types to portable SA column types.

Timestamps are stored as naive UTC and handed back timezone-aware, so
callers only ever see ``datetime`` values in UTC.
"""

from __future__ import annotations

import datetime
from typing import Any

from sqlalchemy import JSON, Boolean, DateTime, Float, Integer, Text
from sqlalchemy.engine import Dialect
from sqlalchemy.orm import DeclarativeBase
from sqlalchemy.types import TypeDecorator


class UTCDateTime(TypeDecorator[datetime.datetime]):
    """``DateTime`` that normalises to UTC on the way in and out.

    SQLite has no timezone-aware storage; naive values read back are
    interpreted as UTC.
    """

    impl = DateTime
    cache_ok = True

    def process_bind_param(
        self, value: datetime.datetime | None, dialect: Dialect
    ) -> datetime.datetime | None:
        if value is None:
            return None
        if value.tzinfo is not None:
            value = value.astimezone(datetime.UTC).replace(tzinfo=None)
        return value

    def process_result_value(
        self, value: Any, dialect: Dialect
    ) -> datetime.datetime | None:
        if value is None:
            return None
        if value.tzinfo is None:
            return value.replace(tzinfo=datetime.UTC)
        return value.astimezone(datetime.UTC)


class JobsBase(DeclarativeBase):
    """Shared declarative base for every jobspine table.

    * ``str``   → ``Text``
    * ``int``   → ``Integer``
    * ``float`` → ``Float``
    * ``bool``  → ``Boolean``
    * ``datetime.datetime`` → ``UTCDateTime``
    * ``dict``  → ``JSON``
    """

    type_annotation_map = {
        str: Text,
        int: Integer,
        float: Float,
        bool: Boolean,
        datetime.datetime: UTCDateTime,
        dict: JSON,
        list: JSON,
    }
