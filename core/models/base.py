"""Shared pydantic base and value parsers for platform models."""

from __future__ import annotations

from datetime import date, datetime

from pydantic import BaseModel, ConfigDict
from pydantic.functional_validators import BeforeValidator
from typing_extensions import Annotated


def _parse_date(value):
    """Parse date from the formats the platform API emits."""
    if value is None:
        return None
    if isinstance(value, datetime):
        return value.date()
    if isinstance(value, date):
        return value
    if isinstance(value, str):
        s = value.strip()
        if s == "":
            return None
        # ISO timestamps are accepted and truncated
        if "T" in s:
            s = s.split("T", 1)[0]
        for fmt in ("%Y-%m-%d", "%d/%m/%Y"):
            try:
                return datetime.strptime(s, fmt).date()
            except ValueError:
                continue
        raise ValueError(f"Cannot parse date: {s}")
    return value


DateValue = Annotated[date, BeforeValidator(_parse_date)]


class PlatformBase(BaseModel):
    """Base model for all platform data structures."""
    model_config = ConfigDict(populate_by_name=True, use_enum_values=False)
