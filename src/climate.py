# src/climate.py
import io
import math
import warnings
import zipfile
from pathlib import Path
from typing import Dict, Iterable, List, Optional, Sequence, Tuple, Union

import numpy as np
import pandas as pd
import geopandas as gpd
import rasterio
import requests
from rasterio.crs import CRS
from rasterio.transform import from_origin
from rasterio.warp import Resampling, calculate_default_transform, reproject
from loguru import logger

from .schema import SITE_ID_COL, X_COL, Y_COL, MINT_COL, RAIN_COL
from .config import PRISM_URL, PRISM_RESOLUTION, PRISM_MONTHS, SITE_EPSG, HTTP_TIMEOUT, USER_AGENT
from .tables import read_table, write_table
from .sites import sites_from_table, load_outline

RASTER_SUFFIXES = (".bil", ".tif", ".tiff")
Bounds = Tuple[float, float, float, float]


def download_prism_normals(
    variable: str,
    dest_dir: Union[str, Path],
    months: Iterable[int] = PRISM_MONTHS,
    resolution: str = PRISM_RESOLUTION,
    session: Optional[requests.Session] = None,
) -> List[Path]:
    """
    Fetch PRISM 30-year monthly normals (e.g. variable="tmin" or "ppt").

    Each month arrives as a zip which is unpacked into its own folder under
    `dest_dir`. Months already on disk are not downloaded again.
    """
    session = session or requests.Session()
    dest_dir = Path(dest_dir)
    paths: List[Path] = []
    for month in months:
        target = dest_dir / f"{variable}_{resolution}_{month:02d}"
        existing = list_rasters(target)
        if existing:
            logger.debug(f"PRISM {variable} month {month:02d} already present")
            paths.extend(existing)
            continue

        url = f"{PRISM_URL}/{resolution}/{variable}/{month:02d}"
        logger.info(f"Downloading PRISM {variable} normals for month {month:02d}")
        resp = session.get(url, timeout=HTTP_TIMEOUT, headers={"User-Agent": USER_AGENT})
        resp.raise_for_status()
        target.mkdir(parents=True, exist_ok=True)
        with zipfile.ZipFile(io.BytesIO(resp.content)) as zf:
            zf.extractall(target)
        found = list_rasters(target)
        if not found:
            raise ValueError(f"No raster found in PRISM archive from {url}")
        paths.extend(found)
    return paths


def list_rasters(directory: Union[str, Path]) -> List[Path]:
    directory = Path(directory)
    if not directory.is_dir():
        return []
    return sorted(p for p in directory.rglob("*") if p.suffix.lower() in RASTER_SUFFIXES)


def _cropped_grid(first: str, dst_crs: CRS, bounds: Optional[Bounds]):
    """Target grid in dst_crs at the source resolution, snapped and cropped to bounds."""
    with rasterio.open(first) as src:
        transform, width, height = calculate_default_transform(
            src.crs, dst_crs, src.width, src.height, *src.bounds
        )
    xres, yres = transform.a, -transform.e
    left, top = transform.c, transform.f
    if bounds is None:
        return transform, width, height

    bxmin, bymin, bxmax, bymax = bounds
    c0 = max(0, math.floor((bxmin - left) / xres))
    c1 = min(width, math.ceil((bxmax - left) / xres))
    r0 = max(0, math.floor((top - bymax) / yres))
    r1 = min(height, math.ceil((top - bymin) / yres))
    if c1 <= c0 or r1 <= r0:
        raise ValueError("Boundary does not overlap the raster extent.")
    return from_origin(left + c0 * xres, top - r0 * yres, xres, yres), c1 - c0, r1 - r0


def mean_raster(
    paths: Sequence[Union[str, Path]],
    out_path: Union[str, Path],
    name: str,
    dst_crs=f"EPSG:{SITE_EPSG}",
    bounds: Optional[Bounds] = None,
    resampling: Resampling = Resampling.bilinear,
) -> Path:
    """
    Average a stack of single-band rasters into one GeoTIFF.

    Every layer is warped onto the same grid in `dst_crs` and cropped to
    `bounds` (xmin, ymin, xmax, ymax, in `dst_crs` units) before the cellwise
    NaN-aware mean is taken. The band is labelled `name`.
    """
    if not paths:
        raise ValueError(f"No rasters given for {name}.")
    dst_crs = CRS.from_user_input(dst_crs)
    transform, width, height = _cropped_grid(str(paths[0]), dst_crs, bounds)

    layers = []
    for path in paths:
        dst = np.full((height, width), np.nan, dtype="float32")
        with rasterio.open(path) as src:
            reproject(
                source=rasterio.band(src, 1),
                destination=dst,
                src_transform=src.transform,
                src_crs=src.crs,
                src_nodata=src.nodata,
                dst_transform=transform,
                dst_crs=dst_crs,
                dst_nodata=np.nan,
                resampling=resampling,
            )
        layers.append(dst)

    with warnings.catch_warnings():
        warnings.simplefilter("ignore", category=RuntimeWarning)  # all-NaN cells
        mean = np.nanmean(np.stack(layers), axis=0).astype("float32")

    out_path = Path(out_path)
    out_path.parent.mkdir(parents=True, exist_ok=True)
    profile = {
        "driver": "GTiff", "dtype": "float32", "count": 1, "nodata": np.nan,
        "width": width, "height": height, "crs": dst_crs, "transform": transform,
    }
    with rasterio.open(out_path, "w", **profile) as dst:
        dst.write(mean, 1)
        dst.set_band_description(1, name)
    logger.info(f"Wrote {name} ({height}x{width}, mean of {len(layers)} layers) to {out_path}")
    return out_path


def extract_values(raster_path: Union[str, Path], points: gpd.GeoDataFrame) -> np.ndarray:
    """Cell value under each point; NaN off-grid or on nodata."""
    with rasterio.open(raster_path) as src:
        pts = points.to_crs(src.crs) if points.crs is not None else points
        xs, ys = pts.geometry.x.to_numpy(), pts.geometry.y.to_numpy()
        left, bottom, right, top = src.bounds
        inside = (xs >= left) & (xs < right) & (ys > bottom) & (ys <= top)

        values = np.full(len(xs), np.nan)
        if inside.any():
            sampled = src.sample(zip(xs[inside], ys[inside]), indexes=1, masked=True)
            vals = np.ma.array([v[0] for v in sampled], dtype=float)
            values[inside] = vals.filled(np.nan)
    n_missing = int(np.isnan(values).sum())
    if n_missing:
        logger.warning(f"{n_missing} of {len(values)} points have no value in {Path(raster_path).name}")
    return values


def climate_table(points: gpd.GeoDataFrame, rasters: Dict[str, Union[str, Path]]) -> pd.DataFrame:
    """id/x/y of each point plus one column per named raster."""
    out = pd.DataFrame({
        SITE_ID_COL: points[SITE_ID_COL].astype(str).to_numpy(),
        X_COL: points.geometry.x.to_numpy(),
        Y_COL: points.geometry.y.to_numpy(),
    })
    for name, path in rasters.items():
        out[name] = extract_values(path, points)
    return out


def run_climate_prep(
    species_path: Union[str, Path],
    outline_path: Union[str, Path],
    mint_dir: Union[str, Path],
    rain_dir: Union[str, Path],
    out_dir: Union[str, Path],
    clim_out: Union[str, Path],
    background_path: Optional[Union[str, Path]] = None,
    background_out: Optional[Union[str, Path]] = None,
    download: bool = False,
) -> pd.DataFrame:
    """PRISM normals -> MinT.tif / Rain.tif cropped to the boundary -> clim_df.csv."""
    sites = sites_from_table(read_table(species_path, dtype={SITE_ID_COL: str}))
    outline = load_outline(outline_path, sites.crs)
    bounds = tuple(outline.total_bounds)

    if download:
        download_prism_normals("tmin", mint_dir)
        download_prism_normals("ppt", rain_dir)

    out_dir = Path(out_dir)
    rasters = {
        MINT_COL: mean_raster(list_rasters(mint_dir), out_dir / "MinT.tif", MINT_COL, sites.crs, bounds),
        RAIN_COL: mean_raster(list_rasters(rain_dir), out_dir / "Rain.tif", RAIN_COL, sites.crs, bounds),
    }
    clim = climate_table(sites, rasters)
    write_table(clim, clim_out)

    if background_path is not None and background_out is not None:
        bkgrd = sites_from_table(read_table(background_path, dtype={SITE_ID_COL: str}))
        write_table(climate_table(bkgrd, rasters), background_out)
    return clim
