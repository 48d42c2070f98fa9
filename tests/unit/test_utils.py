"""
Unit tests for shared utilities.
"""
import datetime
import decimal
import time

import numpy as np
import pandas as pd

from querygate.core.utils import Deadline, serialise_value, timer


def test_timer_records_elapsed():
    with timer() as t:
        time.sleep(0.01)
    assert t["elapsed_ms"] >= 10


def test_deadline_counts_down():
    deadline = Deadline(60)
    assert 0 < deadline.remaining() <= 60
    assert deadline.expired is False
    assert Deadline(0).expired is True


def test_serialise_scalars():
    assert serialise_value(decimal.Decimal("1.25")) == 1.25
    assert serialise_value(datetime.date(2024, 1, 2)) == "2024-01-02"
    assert serialise_value(datetime.datetime(2024, 1, 2, 3, 4, 5)) == "2024-01-02T03:04:05"
    assert serialise_value(b"abc") == "abc"
    assert serialise_value(float("nan")) is None
    assert serialise_value(float("inf")) is None
    assert serialise_value("text") == "text"


def test_serialise_numpy_and_pandas():
    assert serialise_value(np.int64(7)) == 7
    assert isinstance(serialise_value(np.int64(7)), int)
    assert serialise_value(np.float64(1.5)) == 1.5
    assert serialise_value(pd.Timestamp("2024-03-01")) == "2024-03-01T00:00:00"
    assert serialise_value(pd.NaT) is None


def test_serialise_nested():
    assert serialise_value({"a": [decimal.Decimal("2"), None]}) == {"a": [2.0, None]}
