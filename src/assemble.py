# src/assemble.py
from pathlib import Path
from typing import Optional, Sequence, Tuple, Union

import pandas as pd
from scipy import stats
from loguru import logger

from .schema import SITE_ID_COL, X_COL, Y_COL, COORD_ALIASES, MINT_COL, RAIN_COL
from .tables import PathLike, read_table, write_table, save_workspace, require_columns, check_row_count


def harmonize_coordinate_columns(df: pd.DataFrame) -> pd.DataFrame:
    """Older spatial exports name coordinates coords.x1 / coords.x2."""
    return df.rename(columns={k: v for k, v in COORD_ALIASES.items() if k in df.columns})


def _with_string_ids(df: pd.DataFrame) -> pd.DataFrame:
    out = df.copy()
    out[SITE_ID_COL] = out[SITE_ID_COL].astype(str)
    return out


def _sort_ids(df: pd.DataFrame) -> pd.DataFrame:
    """Numeric ids sort numerically, anything else lexically."""
    numeric = pd.to_numeric(df[SITE_ID_COL], errors="coerce")
    if numeric.notna().all():
        order = numeric.sort_values(kind="stable").index
    else:
        order = df[SITE_ID_COL].sort_values(kind="stable").index
    return df.loc[order].reset_index(drop=True)


def assemble_analysis_table(
    spp_df: pd.DataFrame,
    hab_df: pd.DataFrame,
    clim_df: pd.DataFrame,
) -> pd.DataFrame:
    """
    One row per site: presence data + land cover (by id) + climate (by x/y).

    Climate is joined on coordinates because the extracted climate table may
    carry ids from a different numbering. Both joins are left joins and must
    keep the site count unchanged.
    """
    require_columns(spp_df, [SITE_ID_COL, X_COL, Y_COL], "species table")
    require_columns(hab_df, [SITE_ID_COL], "habitat table")
    clim_df = harmonize_coordinate_columns(clim_df)
    require_columns(clim_df, [X_COL, Y_COL], "climate table")

    spp_df, hab_df = _with_string_ids(spp_df), _with_string_ids(hab_df)
    alldata = spp_df.merge(hab_df, on=SITE_ID_COL, how="left", validate="one_to_one")
    check_row_count(len(spp_df), len(alldata), "habitat join")
    alldata = _sort_ids(alldata)

    clim_cols = [c for c in clim_df.columns if c not in alldata.columns or c in (X_COL, Y_COL)]
    climate = clim_df[clim_cols].drop_duplicates(subset=[X_COL, Y_COL])
    before = len(alldata)
    alldata = alldata.merge(climate, on=[X_COL, Y_COL], how="left")
    check_row_count(before, len(alldata), "climate join")

    logger.info(f"Analysis table: {alldata.shape[0]} sites x {alldata.shape[1]} columns")
    return alldata


def assemble_background_table(
    points: pd.DataFrame,
    cover_df: pd.DataFrame,
    clim_df: pd.DataFrame,
) -> pd.DataFrame:
    """Same joins for random background points (no presence columns)."""
    return assemble_analysis_table(points, cover_df, clim_df)


def predictor_correlations(
    df: pd.DataFrame, columns: Optional[Sequence[str]] = None, method: str = "spearman"
) -> pd.DataFrame:
    if columns is None:
        columns = [c for c in df.select_dtypes("number").columns if c != SITE_ID_COL]
    require_columns(df, columns, "analysis table")
    return df[list(columns)].corr(method=method)


def spearman_summary(
    df: pd.DataFrame,
    x_cols: Sequence[str] = (X_COL, Y_COL),
    y_cols: Sequence[str] = (MINT_COL, RAIN_COL),
) -> pd.DataFrame:
    """Spearman rho and p-value for every (x, y) pair, e.g. climate vs. position."""
    require_columns(df, [*x_cols, *y_cols], "analysis table")
    rows = []
    for x in x_cols:
        for y in y_cols:
            pair = df[[x, y]].dropna()
            rho, p = stats.spearmanr(pair[x], pair[y])
            rows.append({"x": x, "y": y, "rho": float(rho), "p_value": float(p), "n": len(pair)})
    return pd.DataFrame(rows)


def run_assembly(
    species_path: Union[str, Path],
    hab_path: Union[str, Path],
    clim_path: Union[str, Path],
    out_path: Union[str, Path],
    workspace_path: Optional[Union[str, Path]] = None,
    background_paths: Optional[Tuple[PathLike, PathLike, PathLike]] = None,
    background_out: Optional[PathLike] = None,
) -> pd.DataFrame:
    """
    spp_df.csv + hab_df.csv + clim_df.csv -> alldata.csv.

    With `background_paths` (points, habitat, climate tables for the random
    background points) and `background_out`, the same joins also produce
    bkgrddata.csv.
    """
    spp_df = read_table(species_path, dtype={SITE_ID_COL: str})
    hab_df = read_table(hab_path, dtype={SITE_ID_COL: str})
    clim_df = read_table(clim_path, dtype={SITE_ID_COL: str})

    alldata = assemble_analysis_table(spp_df, hab_df, clim_df)
    if {MINT_COL, RAIN_COL}.issubset(alldata.columns):
        summary = spearman_summary(alldata)
        for row in summary.itertuples():
            logger.info(f"Spearman {row.x} vs {row.y}: rho={row.rho:.3f} p={row.p_value:.3g}")

    write_table(alldata, out_path)

    objects = dict(alldata=alldata, spp_df=spp_df, hab_df=hab_df, clim_df=clim_df)
    if background_paths is not None and background_out is not None:
        points, cover, clim = (read_table(p, dtype={SITE_ID_COL: str}) for p in background_paths)
        bkgrddata = assemble_background_table(points, cover, clim)
        write_table(bkgrddata, background_out)
        objects["bkgrddata"] = bkgrddata

    if workspace_path is not None:
        save_workspace(workspace_path, **objects)
    return alldata
