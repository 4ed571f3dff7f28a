"""
Budget period key.

A period is one calendar month, written "YYYY-MM". It partitions every
ledger table, so it is a small frozen value type that parses, formats and
orders the same way everywhere.
"""

import calendar
import re
from datetime import date
from typing import Optional

from pydantic import BaseModel, ConfigDict, Field


_PERIOD_PATTERN = re.compile(r"(\d{4})-(\d{2})")


class PeriodKey(BaseModel):
    """Identifies a budgeting period (one calendar month)."""

    model_config = ConfigDict(frozen=True)

    year: int = Field(..., ge=1900, le=9999)
    month: int = Field(..., ge=1, le=12)

    @classmethod
    def parse(cls, value: str) -> "PeriodKey":
        """Parse a "YYYY-MM" string."""
        match = _PERIOD_PATTERN.fullmatch(value.strip()) if value else None
        if not match:
            raise ValueError(f"Invalid period key {value!r}, expected YYYY-MM")
        return cls(year=int(match.group(1)), month=int(match.group(2)))

    @classmethod
    def from_date(cls, day: date) -> "PeriodKey":
        return cls(year=day.year, month=day.month)

    @classmethod
    def current(cls, today: Optional[date] = None) -> "PeriodKey":
        return cls.from_date(today or date.today())

    @property
    def key(self) -> str:
        return f"{self.year:04d}-{self.month:02d}"

    @property
    def first_day(self) -> date:
        return date(self.year, self.month, 1)

    @property
    def last_day(self) -> date:
        return date(self.year, self.month, calendar.monthrange(self.year, self.month)[1])

    def contains(self, day: date) -> bool:
        return day.year == self.year and day.month == self.month

    def next(self) -> "PeriodKey":
        if self.month == 12:
            return PeriodKey(year=self.year + 1, month=1)
        return PeriodKey(year=self.year, month=self.month + 1)

    def previous(self) -> "PeriodKey":
        if self.month == 1:
            return PeriodKey(year=self.year - 1, month=12)
        return PeriodKey(year=self.year, month=self.month - 1)

    def __str__(self) -> str:
        return self.key

    def __lt__(self, other: "PeriodKey") -> bool:
        return (self.year, self.month) < (other.year, other.month)

    def __le__(self, other: "PeriodKey") -> bool:
        return (self.year, self.month) <= (other.year, other.month)
