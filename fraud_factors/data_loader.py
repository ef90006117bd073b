"""
Loading and generating raw transaction tables.

Reads a local CSV export of card transactions with the dirty fields
(timestamps, birth dates, labels) kept as text, and generates a seeded
synthetic table in the same format for development and testing.
"""

from __future__ import annotations

import logging
from pathlib import Path
from typing import Optional

import numpy as np
import pandas as pd

from fraud_factors.config import RawSchema

logger = logging.getLogger(__name__)


CATEGORIES = [
    "entertainment", "food_dining", "gas_transport", "grocery_net",
    "grocery_pos", "health_fitness", "home", "kids_pets", "misc_net",
    "misc_pos", "personal_care", "shopping_net", "shopping_pos", "travel",
]

# Categories over-represented among fraudulent transactions
FRAUD_CATEGORIES = ["shopping_net", "grocery_pos", "misc_net", "shopping_pos"]

MERCHANTS = [
    "fraud_Kirlin and Sons", "fraud_Sporer-Keebler", "fraud_Swaniawski, Nitzsche and Welch",
    "fraud_Haley Group", "fraud_Johnston-Casper", "fraud_Daugherty LLC",
    "fraud_Romaguera Ltd", "fraud_Reichel LLC", "fraud_Goyette Inc",
    "fraud_Kilback LLC", "fraud_Stroman, Hudson and Erdman", "fraud_Lind-Buckridge",
]

JOBS = [
    "Mechanical engineer", "Sales professional, IT", "Librarian, public",
    "Set designer", "Furniture designer", "Psychotherapist",
    "Therapist, occupational", "Development worker, international aid",
    "Advice worker", "Barrister", "Naval architect", "Film/video editor",
]

# (city, state, lat, long)
CITIES = [
    ("Columbia", "SC", 33.9659, -80.9355),
    ("Altonah", "UT", 40.3207, -110.4360),
    ("Bellmore", "NY", 40.6729, -73.5365),
    ("Titusville", "FL", 28.5697, -80.8191),
    ("Falmouth", "MI", 44.2529, -85.0170),
    ("Breesport", "NY", 42.1939, -76.7361),
    ("Carlotta", "CA", 40.5070, -123.9743),
    ("Spencer", "SD", 43.7557, -97.5936),
    ("Fort Washakie", "WY", 43.0048, -108.8964),
    ("Moab", "UT", 38.5753, -109.5371),
]

# Relative weights of legitimate activity by hour of day
LEGIT_HOUR_WEIGHTS = [
    2, 2, 2, 2, 2, 2,
    3, 4, 6, 8, 8, 8,
    10, 10, 10, 10, 10, 10,
    10, 9, 8, 6, 5, 4,
]


def validate_schema(df: pd.DataFrame, schema: Optional[RawSchema] = None) -> list[str]:
    """Return the required raw columns missing from ``df``."""
    schema = schema or RawSchema()
    return [c for c in schema.required_columns() if c not in df.columns]


def load_transactions(
    path: str | Path, schema: Optional[RawSchema] = None
) -> pd.DataFrame:
    """Load a raw transaction CSV.

    Timestamp, birth-date, identifier and label columns are read as
    strings so malformed values reach the field deriver unchanged.

    Args:
        path: CSV file.
        schema: Raw column names.  Defaults to ``RawSchema()``.

    Raises:
        FileNotFoundError: ``path`` does not exist.
        ValueError: Required columns are missing.
    """
    schema = schema or RawSchema()
    path = Path(path)
    if not path.exists():
        raise FileNotFoundError(f"Transaction file not found: {path}")

    df = pd.read_csv(path, dtype={c: str for c in schema.text_columns()})
    missing = validate_schema(df, schema)
    if missing:
        raise ValueError(f"{path} is missing required columns: {missing}")

    logger.info("Loaded %d transactions from %s", len(df), path)
    return df


def generate_synthetic_transactions(
    n_rows: int = 20000,
    fraud_rate: float = 0.05,
    seed: int = 42,
    label_defect_rate: float = 0.01,
    start_date: str = "2019-01-01",
    end_date: str = "2020-12-31",
) -> pd.DataFrame:
    """Generate a raw transaction table in the loader's input format.

    Fraudulent rows skew toward high amounts, late-night hours, online
    shopping categories and older cardholders.  A fraction of labels
    carries trailing garbage after the digit, as in the source export.

    Args:
        n_rows: Total number of transactions.
        fraud_rate: Fraction of fraudulent transactions.
        seed: Random seed for reproducibility.
        label_defect_rate: Fraction of labels with trailing garbage.
        start_date: First transaction date (ISO format).
        end_date: Last transaction date (ISO format).

    Returns:
        DataFrame with the ``RawSchema`` default columns.
    """
    schema = RawSchema()
    rng = np.random.default_rng(seed)
    n_fraud = max(int(n_rows * fraud_rate), 1)
    n_legit = n_rows - n_fraud
    is_fraud = np.zeros(n_rows, dtype=int)
    is_fraud[n_legit:] = 1
    fraud = is_fraud == 1

    start = pd.Timestamp(start_date)
    span_days = (pd.Timestamp(end_date) - start).days + 1
    days = rng.integers(0, span_days, size=n_rows)

    legit_p = np.array(LEGIT_HOUR_WEIGHTS, dtype=float)
    legit_p /= legit_p.sum()
    hours = rng.choice(24, size=n_rows, p=legit_p)
    hours[fraud] = rng.choice([22, 23, 0, 1, 2, 3], size=n_fraud)
    minutes = rng.integers(0, 60, size=n_rows)
    timestamps = (
        start
        + pd.to_timedelta(days, unit="D")
        + pd.to_timedelta(hours, unit="h")
        + pd.to_timedelta(minutes, unit="m")
    )

    amounts = rng.lognormal(mean=3.6, sigma=1.0, size=n_rows)
    amounts[fraud] = rng.lognormal(mean=5.8, sigma=0.6, size=n_fraud)

    categories = rng.choice(CATEGORIES, size=n_rows)
    categories[fraud] = rng.choice(FRAUD_CATEGORIES, size=n_fraud)

    ages = rng.integers(18, 90, size=n_rows)
    ages[fraud] = np.where(
        rng.random(n_fraud) < 0.5,
        rng.integers(60, 90, size=n_fraud),
        rng.integers(18, 90, size=n_fraud),
    )
    birth_dates = timestamps - pd.to_timedelta(
        ages * 365 + rng.integers(0, 365, size=n_rows), unit="D"
    )

    city_idx = rng.integers(0, len(CITIES), size=n_rows)
    cities = [CITIES[i] for i in city_idx]

    labels = is_fraud.astype(str).astype(object)
    defects = rng.random(n_rows) < label_defect_rate
    defect_stamps = timestamps[defects].strftime("%Y-%m-%d %H:%M:%S")
    labels[defects] = [
        f'{label}"{stamp}' for label, stamp in zip(labels[defects], defect_stamps)
    ]

    df = pd.DataFrame({
        schema.record_id: [
            f"{v:032x}" for v in rng.choice(2**62, size=n_rows, replace=False)
        ],
        schema.timestamp: timestamps.strftime("%d-%m-%Y %H:%M"),
        schema.amount: np.round(amounts, 2),
        schema.category: categories,
        schema.merchant: rng.choice(MERCHANTS, size=n_rows),
        schema.job: rng.choice(JOBS, size=n_rows),
        schema.city: [c[0] for c in cities],
        schema.state: [c[1] for c in cities],
        schema.birth_date: birth_dates.strftime("%d-%m-%Y"),
        schema.label: labels,
        schema.latitude: [c[2] for c in cities],
        schema.longitude: [c[3] for c in cities],
    })
    df = df.sample(frac=1, random_state=seed).reset_index(drop=True)

    logger.info(
        "Generated %d synthetic transactions (%d fraud, %d defective labels)",
        n_rows, n_fraud, int(defects.sum()),
    )
    return df
