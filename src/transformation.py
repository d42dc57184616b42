# src/transformation.py
from pathlib import Path
from typing import Dict, Iterable, Optional, Sequence, Tuple, Union

import numpy as np
import pandas as pd
from loguru import logger

from .schema import (
    CAMERA_ID_COL, SPECIES_COLS, TOTAL_COL, ANIMAL_COL, COUNT_COL, SCINAME_COL, OCCUPANCY_COL,
)
from .config import SCIENTIFIC_NAMES, OCCUPANCY_TOLERANCE
from .tables import read_table, write_table, save_workspace, require_columns, check_row_count


def add_total_counts(df: pd.DataFrame, species_cols: Sequence[str] = SPECIES_COLS) -> pd.DataFrame:
    require_columns(df, species_cols, "count matrix")
    out = df.copy()
    out[TOTAL_COL] = out[list(species_cols)].sum(axis=1, skipna=False)
    return out


def join_metadata(counts: pd.DataFrame, metadata: pd.DataFrame, on: str = CAMERA_ID_COL) -> pd.DataFrame:
    """Left join deployment metadata; one metadata row per camera."""
    require_columns(counts, [on], "count matrix")
    require_columns(metadata, [on], "metadata")
    dupes = metadata[on][metadata[on].duplicated()].unique().tolist()
    if dupes:
        raise ValueError(f"Metadata has duplicate {on} values: {dupes}")
    combined = counts.merge(metadata, on=on, how="left")
    check_row_count(len(counts), len(combined), "metadata join")

    unmatched = combined.loc[~combined[on].isin(metadata[on]), on].tolist()
    if unmatched:
        logger.warning(f"No metadata for {len(unmatched)} camera(s): {unmatched}")
    return combined


def melt_counts(
    df: pd.DataFrame,
    id_vars: Optional[Sequence[str]] = None,
    species_cols: Sequence[str] = SPECIES_COLS,
) -> pd.DataFrame:
    """Wide species columns -> one (camera, animal) row each."""
    require_columns(df, species_cols, "combined table")
    if id_vars is None:
        id_vars = [c for c in df.columns if c not in set(species_cols)]
    long = df.melt(
        id_vars=list(id_vars), value_vars=list(species_cols),
        var_name=ANIMAL_COL, value_name=COUNT_COL,
    )
    long[ANIMAL_COL] = long[ANIMAL_COL].astype(str)
    check_row_count(len(df) * len(species_cols), len(long), "melt")
    return long


def scientific_names_table(animals: Iterable[str], mapping: Dict[str, str] = SCIENTIFIC_NAMES) -> pd.DataFrame:
    animals = list(pd.unique(pd.Series(list(animals), dtype=str)))
    return pd.DataFrame({
        ANIMAL_COL: animals,
        SCINAME_COL: [mapping.get(a, np.nan) for a in animals],
    })


def add_scientific_names(long: pd.DataFrame, mapping: Dict[str, str] = SCIENTIFIC_NAMES) -> pd.DataFrame:
    require_columns(long, [ANIMAL_COL], "long table")
    names = scientific_names_table(long[ANIMAL_COL], mapping)
    unknown = names.loc[names[SCINAME_COL].isna(), ANIMAL_COL].tolist()
    if unknown:
        logger.warning(f"No scientific name for: {unknown}")
    out = long.merge(names, on=ANIMAL_COL, how="left")
    check_row_count(len(long), len(out), "scientific name join")
    return out


def add_relative_occupancy(long: pd.DataFrame) -> pd.DataFrame:
    """Share of a camera's total detections; NaN when the camera saw nothing."""
    require_columns(long, [COUNT_COL, TOTAL_COL], "long table")
    out = long.copy()
    total = out[TOTAL_COL].astype(float).replace(0, np.nan)
    out[OCCUPANCY_COL] = out[COUNT_COL].astype(float) / total
    return out


def check_occupancy_sums(
    long: pd.DataFrame,
    key: str = CAMERA_ID_COL,
    tol: float = OCCUPANCY_TOLERANCE,
) -> pd.Series:
    """Per-camera occupancy must sum to 1 (cameras with zero total are skipped)."""
    require_columns(long, [key, OCCUPANCY_COL], "long table")
    observed = long.dropna(subset=[OCCUPANCY_COL])
    sums = observed.groupby(key)[OCCUPANCY_COL].sum()
    bad = sums[(sums - 1.0).abs() > tol]
    if not bad.empty:
        raise ValueError(f"Relative occupancy does not sum to 1 for: {bad.to_dict()}")
    return sums


def run_transformation(
    clean_path: Union[str, Path],
    metadata_path: Union[str, Path],
    combined_path: Union[str, Path],
    melt_path: Union[str, Path],
    workspace_path: Optional[Union[str, Path]] = None,
    species_cols: Sequence[str] = SPECIES_COLS,
) -> Tuple[pd.DataFrame, pd.DataFrame]:
    """CountMatrix_Clean.csv + Metadata.csv -> combined wide and long tables."""
    clean = add_total_counts(read_table(clean_path), species_cols)
    metadata = read_table(metadata_path)
    combined = join_metadata(clean, metadata)

    long = melt_counts(combined, species_cols=species_cols)
    long = add_scientific_names(long)
    long = add_relative_occupancy(long)
    check_occupancy_sums(long)
    logger.info(f"Long table: {long.shape[0]} rows from {combined.shape[0]} cameras")

    write_table(combined, combined_path)
    write_table(long, melt_path)
    if workspace_path is not None:
        save_workspace(
            workspace_path,
            CountMatrix_Combined=combined, CountMatrix_Combined_Melt=long, Metadata=metadata,
        )
    return combined, long
