"""
Field derivation for raw transaction records.

Turns the raw timestamp, birth date and label fields into the
analysis-ready fields used downstream: transaction date, hour, minute,
continuous time of day, day of week, age and a clean binary label.
A record is either fully derived or rejected; nothing is coerced.
"""

from __future__ import annotations

import logging
from collections import Counter
from dataclasses import dataclass, field
from datetime import date, datetime
from typing import Any, Mapping, Optional

import pandas as pd

from fraud_factors.config import (
    AGE,
    DAY_OF_WEEK,
    DERIVED_COLUMNS,
    HOUR,
    LABEL,
    MINUTE,
    TIME_OF_DAY,
    TRANS_DATE,
    RawSchema,
)
from fraud_factors.errors import LabelFormatError, ParseError

logger = logging.getLogger(__name__)

DATE_FORMAT = "%d-%m-%Y"
TIME_FORMATS = ("%H:%M", "%H:%M:%S")
ERROR_POLICIES = ("drop", "raise")


# ----------------------------------------------------------------------
# Field-level parsers
# ----------------------------------------------------------------------

def parse_date(text: Any) -> date:
    """Parse a ``DD-MM-YYYY`` date string.

    Raises:
        ParseError: If the value is missing or not in that format.
    """
    if not isinstance(text, str):
        raise ParseError(f"Expected a DD-MM-YYYY string, got {text!r}")
    try:
        return datetime.strptime(text.strip(), DATE_FORMAT).date()
    except ValueError as exc:
        raise ParseError(f"Malformed date {text!r}: {exc}") from exc


def parse_timestamp(text: Any) -> tuple[date, int, int]:
    """Split a combined ``DD-MM-YYYY HH:MM`` string into its parts.

    Seconds are accepted and ignored.

    Returns:
        ``(date, hour, minute)``.

    Raises:
        ParseError: If the string does not have exactly one date part
            and one time part, or either part is malformed.
    """
    if not isinstance(text, str):
        raise ParseError(f"Expected a timestamp string, got {text!r}")
    parts = text.strip().split(" ")
    if len(parts) != 2:
        raise ParseError(
            f"Timestamp {text!r} must be '<date> <time>' separated by one space"
        )
    date_part, time_part = parts
    parsed_date = parse_date(date_part)
    for fmt in TIME_FORMATS:
        try:
            parsed_time = datetime.strptime(time_part, fmt).time()
        except ValueError:
            continue
        return parsed_date, parsed_time.hour, parsed_time.minute
    raise ParseError(f"Malformed time of day {time_part!r} in {text!r}")


def time_of_day(hour: int, minute: int) -> float:
    """Continuous time of day in hours, in ``[0, 24)``."""
    return hour + minute / 60


def day_of_week(value: date) -> int:
    """Weekday ordinal with Sunday = 1 through Saturday = 7."""
    return value.isoweekday() % 7 + 1


def compute_age(birth_date: date, reference_date: date) -> int:
    """Whole calendar years between ``birth_date`` and ``reference_date``.

    Raises:
        ParseError: If the birth date lies after the reference date.
    """
    if birth_date > reference_date:
        raise ParseError(
            f"Birth date {birth_date.isoformat()} is after the reference "
            f"date {reference_date.isoformat()}"
        )
    before_birthday = (reference_date.month, reference_date.day) < (
        birth_date.month,
        birth_date.day,
    )
    return reference_date.year - birth_date.year - int(before_birthday)


def clean_label(raw: Any) -> str:
    """Return the binary label carried by the first character of ``raw``.

    The source export sometimes appends unrelated text after the digit
    (``'0"2020-06-21 12:14:25'``); only the leading character counts.

    Raises:
        LabelFormatError: If the value is missing or its first character
            is not ``0`` or ``1``.
    """
    if raw is None or (isinstance(raw, float) and pd.isna(raw)):
        raise LabelFormatError("Label is missing")
    text = str(raw)
    if not text or text[0] not in ("0", "1"):
        raise LabelFormatError(f"Label {text[:20]!r} does not start with 0 or 1")
    return text[0]


# ----------------------------------------------------------------------
# Record and table derivation
# ----------------------------------------------------------------------

@dataclass(frozen=True)
class DerivationResult:
    """Outcome of deriving a whole table.

    Attributes:
        frame: Derived records (raw columns plus derived columns).
        dropped_counts: Dropped record count per error type name.
        n_input: Number of input records.
    """

    frame: pd.DataFrame
    dropped_counts: dict[str, int] = field(default_factory=dict)
    n_input: int = 0

    @property
    def n_dropped(self) -> int:
        return sum(self.dropped_counts.values())

    def summary(self) -> str:
        """Return a one-line summary of kept and dropped records."""
        line = f"Derived {len(self.frame):,} of {self.n_input:,} records"
        if self.dropped_counts:
            detail = ", ".join(
                f"{name}: {count:,}"
                for name, count in sorted(self.dropped_counts.items())
            )
            line += f" (dropped {self.n_dropped:,}: {detail})"
        return line


class FieldDeriver:
    """Derives analysis-ready fields from raw transaction records."""

    def __init__(
        self,
        schema: Optional[RawSchema] = None,
        reference_date: Optional[date] = None,
        on_error: str = "drop",
    ) -> None:
        """
        Args:
            schema: Raw column names.  Defaults to ``RawSchema()``.
            reference_date: Date ages are measured at.  Defaults to today.
            on_error: ``"drop"`` isolates and counts malformed records,
                ``"raise"`` propagates the first error.
        """
        if on_error not in ERROR_POLICIES:
            raise ValueError(
                f"on_error must be one of {ERROR_POLICIES}, got {on_error!r}"
            )
        self._schema = schema or RawSchema()
        self._reference_date = reference_date or date.today()
        self._on_error = on_error

    @property
    def reference_date(self) -> date:
        return self._reference_date

    def derive_record(self, record: Mapping[str, Any]) -> dict[str, Any]:
        """Derive one record.

        Args:
            record: Raw record keyed by column name.

        Returns:
            A new dict with the raw fields plus every derived field.

        Raises:
            ParseError: Malformed timestamp or birth date.
            LabelFormatError: Label not starting with 0/1.
        """
        schema = self._schema
        trans_date, hour, minute = parse_timestamp(record.get(schema.timestamp))
        birth_date = parse_date(record.get(schema.birth_date))
        derived = {
            TRANS_DATE: trans_date,
            HOUR: hour,
            MINUTE: minute,
            TIME_OF_DAY: time_of_day(hour, minute),
            DAY_OF_WEEK: day_of_week(trans_date),
            AGE: compute_age(birth_date, self._reference_date),
            LABEL: clean_label(record.get(schema.label)),
        }
        result = dict(record)
        result.update(derived)
        return result

    def derive(self, df: pd.DataFrame) -> DerivationResult:
        """Derive every record of a raw table.

        Args:
            df: Raw transaction table.  Not modified.

        Returns:
            ``DerivationResult`` with the derived frame and drop counts.
        """
        rows: list[dict[str, Any]] = []
        dropped: Counter[str] = Counter()

        for record in df.to_dict("records"):
            try:
                rows.append(self.derive_record(record))
            except (ParseError, LabelFormatError) as exc:
                if self._on_error == "raise":
                    raise
                dropped[type(exc).__name__] += 1
                logger.debug(
                    "Dropping record %s: %s",
                    record.get(self._schema.record_id),
                    exc,
                )

        columns = list(df.columns) + [
            c for c in DERIVED_COLUMNS if c not in df.columns
        ]
        frame = pd.DataFrame(rows, columns=columns)
        for col in (HOUR, MINUTE, DAY_OF_WEEK, AGE):
            frame[col] = frame[col].astype(int)
        frame[TIME_OF_DAY] = frame[TIME_OF_DAY].astype(float)

        result = DerivationResult(
            frame=frame, dropped_counts=dict(dropped), n_input=len(df)
        )
        if dropped:
            logger.warning(result.summary())
        else:
            logger.info(result.summary())
        return result
