"""
Date helpers for period-over-period comparison.
"""

from datetime import datetime, timedelta
from typing import Tuple


def calculate_prior_period(start: datetime, end: datetime) -> Tuple[datetime, datetime]:
    """
    The period of equal length that ends just before ``start``.

    Returns:
        (prior_start, prior_end) where prior_end = start - 1ms and
        prior_start = prior_end - (end - start)
    """
    duration = end - start
    prior_end = start - timedelta(milliseconds=1)
    prior_start = prior_end - duration
    return prior_start, prior_end
