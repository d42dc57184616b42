# src/daymet.py
import io
from pathlib import Path
from typing import List, Optional, Sequence, Union

import pandas as pd
import geopandas as gpd
import requests
from loguru import logger

from .schema import DAYMET_SITE_COL, SITE_ID_COL, LAT_COL, LON_COL
from .config import DAYMET_URL, DAYMET_VARS, HTTP_TIMEOUT, USER_AGENT
from .tables import write_table, require_columns
from .sites import geographic_coordinates

DATA_HEADER_PREFIX = "year,yday"
SITE_COL_DEFAULT = "Site"


def sites_to_daymet_table(sites: gpd.GeoDataFrame, site_col: Optional[str] = None) -> pd.DataFrame:
    """
    site / latitude / longitude table in the layout the Daymet batch tools expect.

    Without `site_col`, sites are named by a `Site` column if there is one,
    otherwise by the `id` column written by species-prep.
    """
    if site_col is None:
        site_col = SITE_COL_DEFAULT if SITE_COL_DEFAULT in sites.columns else SITE_ID_COL
    require_columns(sites, [site_col], "sites")
    coords = geographic_coordinates(sites)
    return pd.DataFrame({
        DAYMET_SITE_COL: sites[site_col].astype(str).to_numpy(),
        LAT_COL: coords[LAT_COL].to_numpy(),
        LON_COL: coords[LON_COL].to_numpy(),
    })


def parse_daymet_csv(text: str) -> pd.DataFrame:
    """Drop the free-text metadata block that precedes the data table."""
    lines = text.splitlines()
    for i, line in enumerate(lines):
        if line.startswith(DATA_HEADER_PREFIX):
            return pd.read_csv(io.StringIO("\n".join(lines[i:])))
    raise ValueError("Daymet response has no data table (missing 'year,yday' header).")


def fetch_daymet_point(
    lat: float,
    lon: float,
    start: int,
    end: int,
    variables: Sequence[str] = DAYMET_VARS,
    session: Optional[requests.Session] = None,
) -> pd.DataFrame:
    """Daily Daymet values for one location, years start..end inclusive."""
    if end < start:
        raise ValueError(f"End year {end} is before start year {start}.")
    session = session or requests.Session()
    params = {
        "lat": lat,
        "lon": lon,
        "vars": ",".join(variables),
        "start": f"{start}-01-01",
        "end": f"{end}-12-31",
        "format": "csv",
    }
    resp = session.get(DAYMET_URL, params=params, timeout=HTTP_TIMEOUT, headers={"User-Agent": USER_AGENT})
    resp.raise_for_status()
    return parse_daymet_csv(resp.text)


def download_daymet_batch(
    sites_df: pd.DataFrame,
    start: int,
    end: int,
    out_dir: Union[str, Path],
    variables: Sequence[str] = DAYMET_VARS,
    session: Optional[requests.Session] = None,
    force: bool = False,
) -> List[Path]:
    """One CSV per site; sites that fail are logged and skipped."""
    require_columns(sites_df, [DAYMET_SITE_COL, LAT_COL, LON_COL], "Daymet site table")
    session = session or requests.Session()
    out_dir = Path(out_dir)
    written: List[Path] = []
    for row in sites_df.itertuples(index=False):
        site = getattr(row, DAYMET_SITE_COL)
        path = out_dir / f"{site}_{start}_{end}.csv"
        if path.exists() and not force:
            logger.debug(f"Daymet file for {site} exists; skipping")
            written.append(path)
            continue
        try:
            daily = fetch_daymet_point(
                getattr(row, LAT_COL), getattr(row, LON_COL), start, end, variables, session
            )
        except (requests.RequestException, ValueError) as exc:
            logger.warning(f"Daymet download failed for site {site}: {exc}")
            continue
        written.append(write_table(daily, path))
    logger.info(f"Daymet: {len(written)} of {len(sites_df)} sites available in {out_dir}")
    return written


def run_daymet_download(
    sites_path: Union[str, Path],
    sites_out: Union[str, Path],
    out_dir: Union[str, Path],
    start: int,
    end: int,
    site_col: Optional[str] = None,
    force: bool = False,
) -> List[Path]:
    """sites shapefile -> sites_df.csv (lat/lon) -> per-site Daymet CSVs."""
    sites_path = Path(sites_path)
    if not sites_path.exists():
        raise FileNotFoundError(f"Sites file not found at {sites_path}")
    sites = gpd.read_file(sites_path)
    sites_df = sites_to_daymet_table(sites, site_col)
    write_table(sites_df, sites_out)
    return download_daymet_batch(sites_df, start, end, out_dir, force=force)
