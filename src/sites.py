# src/sites.py
from pathlib import Path
from typing import Optional, Union

import numpy as np
import pandas as pd
import geopandas as gpd
import shapely
from loguru import logger

from .schema import (
    SITE_ID_COL, X_COL, Y_COL, YEAR_COL, TARGET_SPECIES, PRESENCE_COLS,
    LAT_COL, LON_COL, LAT_MIN, LAT_MAX, LON_MIN, LON_MAX,
)
from .config import SITE_EPSG, GEOGRAPHIC_EPSG, BACKGROUND_SEED
from .tables import read_table, write_table, require_columns

MAX_SAMPLING_ROUNDS = 100


def load_species_data(path: Union[str, Path]) -> pd.DataFrame:
    """Site presence/absence table with string ids and categorical years."""
    df = read_table(path)
    require_columns(df, [SITE_ID_COL, X_COL, Y_COL], "species data")
    df[SITE_ID_COL] = df[SITE_ID_COL].astype(str).str.strip()
    if YEAR_COL in df.columns:
        df[YEAR_COL] = df[YEAR_COL].astype("category")
    for col in PRESENCE_COLS:
        if col in df.columns:
            df[col] = pd.to_numeric(df[col], errors="coerce")
    return df


def presence_count(df: pd.DataFrame, species: str = TARGET_SPECIES) -> int:
    require_columns(df, [species], "species data")
    return int((df[species] == 1).sum())


def sites_from_table(df: pd.DataFrame, epsg: int = SITE_EPSG) -> gpd.GeoDataFrame:
    require_columns(df, [X_COL, Y_COL], "species data")
    xy = df[[X_COL, Y_COL]].astype(float)
    if xy.isna().any().any():
        raise ValueError("Site coordinates contain missing values.")
    return gpd.GeoDataFrame(
        df.copy(), geometry=gpd.points_from_xy(xy[X_COL], xy[Y_COL]), crs=f"EPSG:{epsg}"
    )


def load_outline(path: Union[str, Path], crs=f"EPSG:{SITE_EPSG}") -> gpd.GeoDataFrame:
    path = Path(path)
    if not path.exists():
        raise FileNotFoundError(f"Boundary shapefile not found at {path}")
    outline = gpd.read_file(path)
    if outline.crs is None:
        raise ValueError(f"{path.name} has no CRS; cannot reproject.")
    logger.info(f"Read boundary {path.name} ({len(outline)} feature(s), {outline.crs})")
    return outline.to_crs(crs)


def sample_background_points(
    outline: gpd.GeoDataFrame, n: int, seed: Optional[int] = BACKGROUND_SEED
) -> gpd.GeoDataFrame:
    """n uniform random points inside the boundary (rejection sampling on its bbox)."""
    if n <= 0:
        raise ValueError(f"Number of background points must be positive, got {n}.")
    region = outline.geometry.union_all()
    xmin, ymin, xmax, ymax = region.bounds
    rng = np.random.default_rng(seed)

    xs, ys = [], []
    for _ in range(MAX_SAMPLING_ROUNDS):
        need = n - len(xs)
        if need <= 0:
            break
        cx = rng.uniform(xmin, xmax, size=need * 2)
        cy = rng.uniform(ymin, ymax, size=need * 2)
        inside = shapely.contains_xy(region, cx, cy)
        xs.extend(cx[inside][:need].tolist())
        ys.extend(cy[inside][:need].tolist())
    if len(xs) < n:
        raise ValueError(f"Could only place {len(xs)} of {n} points inside the boundary.")

    pts = pd.DataFrame({
        X_COL: xs,
        Y_COL: ys,
        SITE_ID_COL: [str(i) for i in range(1, n + 1)],
    })
    return gpd.GeoDataFrame(pts, geometry=gpd.points_from_xy(pts[X_COL], pts[Y_COL]), crs=outline.crs)


def geographic_coordinates(gdf: gpd.GeoDataFrame) -> pd.DataFrame:
    """Return lat/lon degrees (EPSG:4326) with sanity checks."""
    if gdf.crs is None:
        raise ValueError("Sites have no CRS; cannot convert to latitude/longitude.")
    geo = gdf.to_crs(epsg=GEOGRAPHIC_EPSG)
    lat = geo.geometry.y.to_numpy()
    lon = geo.geometry.x.to_numpy()

    if np.any((lat < LAT_MIN) | (lat > LAT_MAX)):
        raise ValueError("Latitude values out of bounds [-90, 90].")
    if np.any((lon < LON_MIN) | (lon > LON_MAX)):
        raise ValueError("Longitude values out of bounds [-180, 180].")
    return pd.DataFrame({LAT_COL: lat, LON_COL: lon}, index=gdf.index)


def write_sites(gdf: gpd.GeoDataFrame, path: Union[str, Path]) -> Path:
    path = Path(path)
    path.parent.mkdir(parents=True, exist_ok=True)
    out = gdf.copy()
    for col in out.columns:
        if isinstance(out[col].dtype, pd.CategoricalDtype):
            out[col] = out[col].astype(str)
    out.to_file(path, driver="ESRI Shapefile")
    logger.info(f"Wrote {len(gdf)} sites to {path}")
    return path


def run_species_prep(
    species_path: Union[str, Path],
    species_out: Union[str, Path],
    sites_out: Union[str, Path],
    outline_path: Optional[Union[str, Path]] = None,
    background_out: Optional[Union[str, Path]] = None,
    species: str = TARGET_SPECIES,
    seed: Optional[int] = BACKGROUND_SEED,
):
    """sppdata.csv -> spp_df.csv + sites.shp (+ background points inside the boundary)."""
    spp_df = load_species_data(species_path)
    sites = sites_from_table(spp_df)
    if species in spp_df.columns:
        counts = spp_df[species].value_counts(dropna=False).to_dict()
        logger.info(f"{species} detections: {counts}")

    write_table(spp_df, species_out)
    write_sites(sites, sites_out)

    background = None
    if outline_path is not None:
        outline = load_outline(outline_path, sites.crs)
        n = presence_count(spp_df, species)
        background = sample_background_points(outline, n, seed)
        if background_out is not None:
            write_table(pd.DataFrame(background.drop(columns="geometry")), background_out)
    return spp_df, sites, background
