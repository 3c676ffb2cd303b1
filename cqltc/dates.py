"""
Date arithmetic shared by the manifest compiler and the case summarizer.

Everything here is pure: the reference date is always passed in by the caller
so the same (spec, reference date) pair always resolves to the same date.
"""

import re
from collections import namedtuple
from datetime import date, datetime, timedelta

from cqltc import MalformedDateSpec

relative_date_rgx = re.compile(
    r"^(\d+)\s+(day|days|week|weeks|month|months|year|years)\s+(before|after)\s+reference$",
    re.IGNORECASE,
)

# ISO date, partial date or dateTime
absolute_date_rgx = re.compile(r"^\d{4}(-\d{2}(-\d{2}(T[0-9:.]+(Z|[+-]\d{2}:\d{2})?)?)?)?$")

def add_months(start, months):
    """Offset a date by whole months, letting day overflow carry into the
    following month (Jan 31 + 1 month lands on Mar 2/3, not Feb 28)"""
    year, month = divmod(start.year * 12 + (start.month - 1) + months, 12)
    return date(year, month + 1, 1) + timedelta(days=start.day - 1)

def offset_date(reference_date, amount, unit):
    unit = unit.lower().rstrip("s")
    if unit == "day":
        return reference_date + timedelta(days=amount)
    if unit == "week":
        return reference_date + timedelta(weeks=amount)
    if unit == "month":
        return add_months(reference_date, amount)
    if unit == "year":
        return add_months(reference_date, amount * 12)
    raise MalformedDateSpec(f"{amount} {unit}")

def parse_relative(spec, reference_date, field=None):
    match = relative_date_rgx.match(spec.strip())
    if match is None:
        raise MalformedDateSpec(spec, field)

    amount, unit, direction = match.groups()
    amount = int(amount)
    if direction.lower() == "before":
        amount = -amount
    return offset_date(reference_date, amount, unit)

def resolve_date(spec, reference_date, field=None):
    """Returns the ISO (YYYY-MM-DD) form of spec.

    spec can be an absolute date string (returned unchanged), a date object
    (which is what YAML hands us for unquoted dates), a relative string such as
    "13 months before reference" or a mapping holding that string under the
    key, relative.
    """
    if isinstance(spec, datetime):
        return spec.date().isoformat()
    if isinstance(spec, date):
        return spec.isoformat()

    if isinstance(spec, dict):
        if "relative" not in spec or not isinstance(spec["relative"], str):
            raise MalformedDateSpec(spec, field)
        return parse_relative(spec["relative"], reference_date, field).isoformat()

    if isinstance(spec, str):
        if relative_date_rgx.match(spec.strip()):
            return parse_relative(spec, reference_date, field).isoformat()
        if absolute_date_rgx.match(spec.strip()):
            return spec
        raise MalformedDateSpec(spec, field)

    raise MalformedDateSpec(spec, field)

def as_timestamp(iso_date):
    """Midnight UTC timestamp for a resolved date"""
    if "T" in iso_date:
        return iso_date
    return f"{iso_date}T00:00:00.000Z"

def is_iso_date(value):
    return isinstance(value, str) and absolute_date_rgx.match(value) is not None

def year_month(value):
    """(year, month) from a date, datetime or ISO date/dateTime string"""
    if isinstance(value, date):
        return value.year, value.month

    parts = str(value)[:10].split("-")
    month = int(parts[1]) if len(parts) > 1 else 1
    return int(parts[0]), month

class Age(namedtuple("Age", ["years", "months", "total_months"])):
    __slots__ = ()

    @property
    def display(self):
        if self.years > 0:
            return f"{self.years}y {self.months}m"
        return f"{self.months}m"

def calculate_age(birth_date, reference_date):
    """Completed years and months using calendar components only. The day of
    the month is not considered."""
    birth_year, birth_month = year_month(birth_date)
    ref_year, ref_month = year_month(reference_date)

    years = ref_year - birth_year
    months = ref_month - birth_month
    if months < 0:
        years -= 1
        months += 12

    return Age(years, months, years * 12 + months)

def calculate_age_at_date(birth_date, event_date):
    return calculate_age(birth_date, event_date).total_months

def long_date(value):
    """November 24, 2025"""
    return f"{value:%B} {value.day}, {value.year}"
