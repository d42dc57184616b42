# src/habitat.py
from pathlib import Path
from typing import Optional, Sequence, Union

import numpy as np
import pandas as pd
import geopandas as gpd
import rasterio
import rasterio.mask
from shapely.geometry import mapping
from loguru import logger

from .schema import (
    SITE_ID_COL, LEGEND_VALUE_COL, LEGEND_LABEL_COL,
    COVER_ID_COL, COVER_LABEL_COL, PROPORTION_COL, OTHER_COL,
)
from .config import LANDCOVER_BUFFER_M, OTHER_COVER_CLASSES
from .tables import read_table, write_table, require_columns
from .sites import sites_from_table


def load_legend(path: Union[str, Path]) -> pd.DataFrame:
    """NLCD legend: integer class `Value` -> `Legend` label (blank labels dropped)."""
    legend = read_table(path)
    require_columns(legend, [LEGEND_VALUE_COL, LEGEND_LABEL_COL], "land-cover legend")
    legend = legend.dropna(subset=[LEGEND_LABEL_COL])
    legend = legend[legend[LEGEND_LABEL_COL].astype(str).str.strip() != ""]
    legend[LEGEND_VALUE_COL] = legend[LEGEND_VALUE_COL].astype(int)
    return legend[[LEGEND_VALUE_COL, LEGEND_LABEL_COL]].reset_index(drop=True)


def _point_cell(src, point) -> np.ndarray:
    value = next(src.sample([(point.x, point.y)], indexes=1, masked=True))
    return np.ma.compressed(value)


def _cells_in_buffer(src, point, buffer: Optional[float]) -> np.ndarray:
    """Values of cells whose centres lie within `buffer` of the point."""
    if buffer is None:
        return _point_cell(src, point)
    try:
        data, _ = rasterio.mask.mask(
            src, [mapping(point.buffer(buffer))], crop=True, filled=False, indexes=1
        )
    except ValueError:
        # buffer entirely off the raster
        return np.array([])
    values = np.ma.compressed(data)
    if values.size == 0:
        # buffer narrower than a cell: fall back to the cell under the point
        return _point_cell(src, point)
    return values


def summarize_landcover(
    raster_path: Union[str, Path],
    legend: pd.DataFrame,
    sites: gpd.GeoDataFrame,
    site_ids: Sequence[str],
    buffer: Optional[float] = LANDCOVER_BUFFER_M,
) -> pd.DataFrame:
    """
    Proportion of each land-cover class around every site.

    Returns one row per (site, class) with the numeric class code, its
    proportion among the sampled cells and the legend label. Proportions for a
    site sum to 1. Sites with no usable cells are skipped with a warning.
    """
    if len(site_ids) != len(sites):
        raise ValueError(f"Got {len(site_ids)} site ids for {len(sites)} sites.")
    labels = dict(zip(legend[LEGEND_VALUE_COL].astype(int), legend[LEGEND_LABEL_COL].astype(str)))

    frames = []
    skipped = []
    with rasterio.open(raster_path) as src:
        pts = sites.to_crs(src.crs) if sites.crs is not None else sites
        for site_id, point in zip(site_ids, pts.geometry):
            values = _cells_in_buffer(src, point, buffer)
            if values.size == 0:
                skipped.append(str(site_id))
                continue
            props = pd.Series(values.astype(int)).value_counts(normalize=True).sort_index()
            frames.append(pd.DataFrame({
                SITE_ID_COL: str(site_id),
                COVER_ID_COL: props.index.to_numpy(),
                PROPORTION_COL: props.to_numpy(),
            }))

    if skipped:
        logger.warning(f"No land-cover cells for {len(skipped)} site(s): {skipped}")
    if not frames:
        raise ValueError("No site overlaps the land-cover raster.")

    out = pd.concat(frames, ignore_index=True)
    out[COVER_LABEL_COL] = [labels.get(code, f"Class {code}") for code in out[COVER_ID_COL]]
    used = legend[legend[LEGEND_VALUE_COL].isin(out[COVER_ID_COL].unique())]
    logger.info(f"Land-cover classes found: {used[LEGEND_LABEL_COL].tolist()}")
    return out


def widen_landcover(long: pd.DataFrame) -> pd.DataFrame:
    """One row per site, one column per cover label (absent classes are 0)."""
    require_columns(long, [SITE_ID_COL, COVER_LABEL_COL, PROPORTION_COL], "land-cover table")
    wide = long.pivot_table(
        index=SITE_ID_COL, columns=COVER_LABEL_COL, values=PROPORTION_COL,
        aggfunc="sum", fill_value=0,
    ).reset_index()
    wide.columns.name = None
    return wide


def add_other_cover(wide: pd.DataFrame, classes: Sequence[str] = OTHER_COVER_CLASSES) -> pd.DataFrame:
    """Lump rare classes into a single `Other` column."""
    present = [c for c in classes if c in wide.columns]
    out = wide.copy()
    out[OTHER_COL] = out[present].sum(axis=1) if present else 0.0
    return out


def cover_presence_counts(wide: pd.DataFrame) -> pd.Series:
    """Number of sites with a non-zero share of each class."""
    return (wide.drop(columns=[SITE_ID_COL], errors="ignore") != 0).sum()


def _habitat_frame(raster_path, legend, points_df, buffer) -> pd.DataFrame:
    points = sites_from_table(points_df)
    long = summarize_landcover(raster_path, legend, points, points_df[SITE_ID_COL].astype(str).tolist(), buffer)
    wide = add_other_cover(widen_landcover(long))
    logger.info(f"Sites per cover class: {cover_presence_counts(wide).to_dict()}")
    return wide


def run_habitat_prep(
    raster_path: Union[str, Path],
    legend_path: Union[str, Path],
    species_path: Union[str, Path],
    hab_out: Union[str, Path],
    buffer: Optional[float] = LANDCOVER_BUFFER_M,
    background_path: Optional[Union[str, Path]] = None,
    background_out: Optional[Union[str, Path]] = None,
) -> pd.DataFrame:
    """NLCD raster + spp_df.csv -> hab_df.csv (wide cover proportions per site)."""
    legend = load_legend(legend_path)
    spp_df = read_table(species_path, dtype={SITE_ID_COL: str})
    hab_df = _habitat_frame(raster_path, legend, spp_df, buffer)
    write_table(hab_df, hab_out)

    if background_path is not None and background_out is not None:
        bkgrd = read_table(background_path, dtype={SITE_ID_COL: str})
        write_table(_habitat_frame(raster_path, legend, bkgrd, buffer), background_out)
    return hab_df
