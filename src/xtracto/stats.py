"""Summary statistics over the values extracted for one request."""

from __future__ import annotations

from dataclasses import astuple, dataclass

import numpy as np

# Scales the MAD to be a consistent estimator of the standard deviation for normal data
MAD_SCALE = 1.4826


@dataclass(frozen=True)
class Summary:
    mean: float
    stdev: float
    n: int
    median: float
    mad: float

    def as_tuple(self) -> tuple:
        return astuple(self)


EMPTY_SUMMARY = Summary(float("nan"), float("nan"), 0, float("nan"), float("nan"))


def summarize(values) -> Summary:
    """
    Mean, population standard deviation, count, median and scaled MAD of the
    finite values in ``values``. Missing values (NaN, masked, +/-inf) are
    ignored; with nothing left every statistic is NaN and the count is 0.
    """
    data = np.ma.filled(np.ma.asarray(values, dtype=float), np.nan).ravel()
    data = data[np.isfinite(data)]
    if data.size == 0:
        return EMPTY_SUMMARY

    median = float(np.median(data))
    return Summary(
        mean=float(np.mean(data)),
        stdev=float(np.std(data)),
        n=int(data.size),
        median=median,
        mad=float(MAD_SCALE * np.median(np.abs(data - median))),
    )
