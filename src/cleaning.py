# src/cleaning.py
from pathlib import Path
from typing import Iterable, List, Optional, Sequence, Union

import pandas as pd
from loguru import logger

from .schema import SITE_COL, CAMERA_COL, CAMERA_ID_COL, SPECIES_COLS, COUNT_ID_COLS
from .config import CAMERA_ID_SEP, OUTLIER_THRESHOLD, EXCLUDED_CAMERAS
from .tables import read_table, write_table, save_workspace, require_columns


def coerce_count_types(df: pd.DataFrame, species_cols: Sequence[str] = SPECIES_COLS) -> pd.DataFrame:
    """Camera becomes categorical; species counts numeric (bad entries -> NaN)."""
    require_columns(df, [CAMERA_COL, *species_cols], "count matrix")
    out = df.copy()
    out[CAMERA_COL] = out[CAMERA_COL].astype("category")
    for col in species_cols:
        out[col] = pd.to_numeric(out[col], errors="coerce").astype(float)
    return out


def load_count_matrix(path: Union[str, Path], species_cols: Sequence[str] = SPECIES_COLS) -> pd.DataFrame:
    return coerce_count_types(read_table(path), species_cols)


def animal_columns(df: pd.DataFrame, id_cols: Iterable[str] = COUNT_ID_COLS) -> List[str]:
    id_cols = set(id_cols)
    return [c for c in df.columns if c not in id_cols]


def add_camera_id(df: pd.DataFrame, sep: str = CAMERA_ID_SEP) -> pd.DataFrame:
    """Camera numbers repeat across sites, so key cameras by site + number."""
    require_columns(df, [SITE_COL, CAMERA_COL], "count matrix")
    out = df.copy()
    out[CAMERA_ID_COL] = out[SITE_COL].astype(str) + sep + out[CAMERA_COL].astype(str)
    return out


def find_outliers(df: pd.DataFrame, column: str, threshold: float = OUTLIER_THRESHOLD) -> List[str]:
    require_columns(df, [CAMERA_ID_COL, column], "count matrix")
    return df.loc[df[column] > threshold, CAMERA_ID_COL].tolist()


def find_missing(df: pd.DataFrame, column: str) -> List[str]:
    require_columns(df, [CAMERA_ID_COL, column], "count matrix")
    return df.loc[df[column].isna(), CAMERA_ID_COL].tolist()


def flag_bad_cameras(
    df: pd.DataFrame,
    species_cols: Sequence[str] = SPECIES_COLS,
    threshold: float = OUTLIER_THRESHOLD,
) -> List[str]:
    """Camera_IDs with an impossible or missing count in any species column."""
    flagged: List[str] = []
    for col in species_cols:
        for cam in find_outliers(df, col, threshold) + find_missing(df, col):
            if cam not in flagged:
                flagged.append(cam)
    return flagged


def drop_cameras(df: pd.DataFrame, camera_ids: Iterable[str]) -> pd.DataFrame:
    require_columns(df, [CAMERA_ID_COL], "count matrix")
    camera_ids = list(camera_ids)
    out = df.loc[~df[CAMERA_ID_COL].isin(camera_ids)].reset_index(drop=True)
    if CAMERA_COL in out.columns and isinstance(out[CAMERA_COL].dtype, pd.CategoricalDtype):
        out[CAMERA_COL] = out[CAMERA_COL].cat.remove_unused_categories()
    return out


def run_cleaning(
    input_path: Union[str, Path],
    output_path: Union[str, Path],
    workspace_path: Optional[Union[str, Path]] = None,
    threshold: float = OUTLIER_THRESHOLD,
    exclude: Iterable[str] = EXCLUDED_CAMERAS,
    species_cols: Sequence[str] = SPECIES_COLS,
) -> pd.DataFrame:
    """Raw count matrix -> CountMatrix_Clean.csv."""
    counts = add_camera_id(load_count_matrix(input_path, species_cols))

    flagged = flag_bad_cameras(counts, species_cols, threshold)
    to_drop = flagged + [c for c in exclude if c not in flagged]
    if to_drop:
        logger.warning(f"Dropping {len(to_drop)} camera(s): {to_drop}")

    clean = drop_cameras(counts, to_drop)
    logger.info(f"Clean count matrix: {clean.shape[0]} of {counts.shape[0]} rows kept")

    write_table(clean, output_path)
    if workspace_path is not None:
        save_workspace(workspace_path, CountMatrix=counts, CountMatrix_Clean=clean, dropped=to_drop)
    return clean
