"""Utilities to work with Pandas data frames"""

from __future__ import annotations

from collections.abc import Collection
from typing import Any

import pandas as pd


def as_df(data: Collection[dict[Any, Any]], *, columns: Collection[str] = ()) -> pd.DataFrame:
    """Generates a new Pandas `DataFrame` from a collection of records.

    Each dictionary corresponds to one row of the dataframe. All dictionaries have to consist of exactly the same key-value
    pairs. Each key becomes a column in the dataframe. The precise columns are inferred from the first dictionary in the
    collection.

    Parameters
    ----------
    data : Collection[dict[Any, Any]]
        The records to convert.
    columns : Collection[str], optional
        The columns to use if `data` is empty. If records are present, the columns are always inferred from the records.

    Returns
    -------
    pd.DataFrame
        The dataframe. Empty collections produce an empty dataframe with the given `columns`.
    """
    if not data:
        return pd.DataFrame({col: [] for col in columns})
    data_template = next(iter(data))
    df_container: dict[str, list[Any]] = {col: [] for col in data_template.keys()}
    for row in data:
        for key in df_container.keys():
            df_container[key].append(row[key])
    return pd.DataFrame(df_container)
