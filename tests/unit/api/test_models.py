"""
Unit tests for API response models.
"""

from datetime import datetime, timezone

import pytest
from pydantic import ValidationError

from transaction_retry.api.models import DailyCountsData, PageMeta

START = datetime(2026, 3, 1, tzinfo=timezone.utc)
END = datetime(2026, 3, 1, 23, 59, 59, tzinfo=timezone.utc)


def test_page_meta_bounds():
    PageMeta(page=1, per_page=200, total=0)

    with pytest.raises(ValidationError):
        PageMeta(page=0, per_page=10, total=0)
    with pytest.raises(ValidationError):
        PageMeta(page=1, per_page=201, total=0)


def test_daily_counts_serializes_from_alias():
    data = DailyCountsData(
        date="2026-03-01",
        from_=START,
        to=END,
        attempt_records=0,
        success_records=2,
        failure_records=1,
    )

    dumped = data.model_dump(by_alias=True)

    assert dumped["from"] == START
    assert "from_" not in dumped


def test_daily_counts_accepts_alias():
    data = DailyCountsData.model_validate(
        {
            "date": "2026-03-01",
            "from": START.isoformat(),
            "to": END.isoformat(),
            "attempt_records": 1,
            "success_records": 0,
            "failure_records": 0,
        }
    )

    assert data.from_ == START
