"""Tests for the FieldDeriver and its field parsers."""

from datetime import date

import pandas as pd
import pytest

from fraud_factors.errors import LabelFormatError, ParseError
from fraud_factors.preprocessor import (
    FieldDeriver,
    clean_label,
    compute_age,
    day_of_week,
    parse_date,
    parse_timestamp,
    time_of_day,
)

REFERENCE = date(2021, 1, 1)


def _make_raw_df() -> pd.DataFrame:
    """Three clean records and three defective ones."""
    return pd.DataFrame({
        "trans_num": ["a1", "a2", "a3", "b1", "b2", "b3"],
        "trans_date_trans_time": [
            "01-05-2020 23:15",
            "15-06-2020 00:00",
            "31-12-2020 12:30:45",
            "2020-05-01 10:00",
            "01-05-2020 10:00",
            "01-05-2020 10:00",
        ],
        "amt": [10.5, 250.0, 3.2, 80.0, 12.0, 40.0],
        "category": ["grocery_pos", "shopping_net", "travel", "home", "home", "travel"],
        "dob": ["15-03-1980", "01-01-1990", "29-02-1972", "15-03-1980", "not a date", "01-01-1990"],
        "is_fraud": ["1", '0"2020-06-21 12:14:25', "0", "1", "0", "x"],
    })


# ── Timestamp parsing ───────────────────────────────────────────────


def test_parse_timestamp_end_to_end_example():
    parsed_date, hour, minute = parse_timestamp("01-05-2020 23:15")
    assert parsed_date == date(2020, 5, 1)
    assert hour == 23
    assert minute == 15
    assert time_of_day(hour, minute) == pytest.approx(23.25)
    assert day_of_week(parsed_date) == 6  # Friday, Sunday = 1


def test_parse_timestamp_accepts_seconds():
    assert parse_timestamp("31-12-2020 12:30:45") == (date(2020, 12, 31), 12, 30)


@pytest.mark.parametrize(
    "text",
    [
        "2020-05-01 10:00",     # year first
        "01-05-2020",           # no time
        "01-05-2020  10:00",    # double space
        "01-05-2020T10:00",     # wrong separator
        "01-05-2020 25:00",     # hour out of range
        "32-01-2020 10:00",     # day out of range
        "",
    ],
)
def test_parse_timestamp_rejects_malformed(text):
    with pytest.raises(ParseError):
        parse_timestamp(text)


def test_parse_timestamp_rejects_non_string():
    with pytest.raises(ParseError):
        parse_timestamp(float("nan"))


def test_parse_date_is_day_month_year():
    assert parse_date("02-03-2020") == date(2020, 3, 2)


def test_parse_error_is_value_error():
    with pytest.raises(ValueError):
        parse_date("13/13/2020")


# ── Derived time fields ─────────────────────────────────────────────


def test_time_of_day_range():
    assert time_of_day(0, 0) == 0.0
    assert time_of_day(23, 59) < 24


def test_day_of_week_sunday_is_one():
    assert day_of_week(date(2020, 5, 3)) == 1  # Sunday
    assert day_of_week(date(2020, 5, 4)) == 2  # Monday
    assert day_of_week(date(2020, 5, 9)) == 7  # Saturday


# ── Age ─────────────────────────────────────────────────────────────


def test_age_counts_whole_years():
    assert compute_age(date(1980, 3, 15), date(2021, 3, 14)) == 40
    assert compute_age(date(1980, 3, 15), date(2021, 3, 15)) == 41


def test_age_same_day_is_zero():
    assert compute_age(REFERENCE, REFERENCE) == 0


def test_age_leap_day_birth():
    assert compute_age(date(1972, 2, 29), date(2021, 2, 28)) == 48
    assert compute_age(date(1972, 2, 29), date(2021, 3, 1)) == 49


def test_birth_after_reference_is_rejected():
    with pytest.raises(ParseError):
        compute_age(date(2022, 1, 1), REFERENCE)


# ── Label cleaning ──────────────────────────────────────────────────


@pytest.mark.parametrize("digit", ["0", "1"])
@pytest.mark.parametrize("suffix", ["", '"2020-06-21 12:14:25', "abc", " 1", "0", "\n"])
def test_clean_label_keeps_leading_digit(digit, suffix):
    assert clean_label(digit + suffix) == digit


@pytest.mark.parametrize("raw", ["2", "x1", " 1", "", "-0", None, float("nan")])
def test_clean_label_rejects_other_leading_characters(raw):
    with pytest.raises(LabelFormatError):
        clean_label(raw)


def test_clean_label_accepts_integer_input():
    assert clean_label(1) == "1"
    assert clean_label(0) == "0"


# ── Record and table derivation ─────────────────────────────────────


def test_derive_record_adds_every_field():
    deriver = FieldDeriver(reference_date=REFERENCE)
    record = _make_raw_df().iloc[0].to_dict()
    derived = deriver.derive_record(record)
    assert derived["trans_date"] == date(2020, 5, 1)
    assert derived["hour"] == 23
    assert derived["minute"] == 15
    assert derived["time_of_day"] == pytest.approx(23.25)
    assert derived["day_of_week"] == 6
    assert derived["age"] == 40
    assert derived["label"] == "1"
    assert derived["amt"] == 10.5


def test_derive_record_does_not_mutate_input():
    deriver = FieldDeriver(reference_date=REFERENCE)
    record = _make_raw_df().iloc[0].to_dict()
    before = dict(record)
    deriver.derive_record(record)
    assert record == before


def test_derive_drops_and_counts_defective_records():
    deriver = FieldDeriver(reference_date=REFERENCE)
    result = deriver.derive(_make_raw_df())
    assert result.n_input == 6
    assert list(result.frame["trans_num"]) == ["a1", "a2", "a3"]
    assert result.dropped_counts == {"ParseError": 2, "LabelFormatError": 1}
    assert result.n_dropped == 3
    assert "dropped 3" in result.summary()


def test_derive_frame_invariants():
    deriver = FieldDeriver(reference_date=REFERENCE)
    frame = deriver.derive(_make_raw_df()).frame
    assert set(frame["label"]) <= {"0", "1"}
    assert (frame["age"] >= 0).all()
    assert frame["time_of_day"].between(0, 24, inclusive="left").all()
    assert frame["hour"].between(0, 23).all()
    assert frame["day_of_week"].between(1, 7).all()


def test_derive_leaves_input_untouched():
    deriver = FieldDeriver(reference_date=REFERENCE)
    raw = _make_raw_df()
    snapshot = raw.copy()
    deriver.derive(raw)
    pd.testing.assert_frame_equal(raw, snapshot)


def test_derive_raise_policy_propagates_first_error():
    deriver = FieldDeriver(reference_date=REFERENCE, on_error="raise")
    with pytest.raises(ParseError):
        deriver.derive(_make_raw_df())


def test_invalid_error_policy_rejected():
    with pytest.raises(ValueError, match="on_error"):
        FieldDeriver(on_error="ignore")


def test_default_reference_date_is_today():
    assert FieldDeriver().reference_date == date.today()
