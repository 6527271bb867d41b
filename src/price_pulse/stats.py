from __future__ import annotations

from typing import Iterable, Sequence

import numpy as np
import pandas as pd

from price_pulse.errors import NoDataError, NoSuccessfulWorkersError


def local_average(prices: Sequence[float]) -> float:
    """Unweighted float64 mean of one worker's samples. No outlier rejection."""
    if len(prices) == 0:
        raise NoDataError("no samples collected")
    return float(np.mean(np.asarray(prices, dtype=np.float64)))


def mean_of_means(averages: Sequence[float]) -> float:
    """Unweighted mean of local averages; each worker counts once."""
    if len(averages) == 0:
        raise NoSuccessfulWorkersError()
    return float(np.mean(np.asarray(averages, dtype=np.float64)))


def summarize_records(rows: Iterable[dict]) -> pd.DataFrame:
    """
    Tabulate read-mode records.

    Each row: {"identity", "samples", "average", "status"}.
    """
    columns = ["identity", "samples", "average", "status"]
    df = pd.DataFrame(list(rows), columns=columns)
    if df.empty:
        return df
    df["samples"] = df["samples"].astype("Int64")
    df["average"] = df["average"].astype("float64")
    return df.sort_values("identity", kind="stable").reset_index(drop=True)
