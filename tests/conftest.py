"""Pytest fixtures for pipeline tests."""

import tempfile
from pathlib import Path

import numpy as np
import pandas as pd
import pytest
import geopandas as gpd
import rasterio
import requests
from rasterio.transform import from_origin
from shapely.geometry import box

from src.cleaning import add_camera_id, coerce_count_types, drop_cameras


@pytest.fixture
def temp_dir():
    """Create a temporary directory for test files."""
    with tempfile.TemporaryDirectory() as tmpdir:
        yield Path(tmpdir)


@pytest.fixture
def count_matrix_csv(temp_dir):
    """Raw count matrix with one impossible count (Beta_2) and one blank (Gamma_1)."""
    csv_content = """Site_Name,Camera,Grouse,Rabbit,Rattlesnake,Falcon
Alpha,1,3,5,0,2
Alpha,2,2,6,2,0
Beta,1,1,8,0,1
Beta,2,5000,4,1,0
Gamma,1,4,,2,1
Gamma,2,0,0,0,0
"""
    csv_path = temp_dir / "CountMatrix.csv"
    csv_path.write_text(csv_content)
    return csv_path


@pytest.fixture
def metadata_csv(temp_dir):
    """Camera metadata, saved with a BOM like spreadsheet exports."""
    csv_content = """Camera_ID,Lab_Member,Date
Alpha_1,Sam,2021-05-03
Alpha_2,Sam,2021-05-10
Beta_1,Jordan,2021-05-03
Beta_2,Jordan,2021-05-10
Gamma_1,Alex,2021-05-03
Gamma_2,Alex,2021-05-10
"""
    csv_path = temp_dir / "Metadata.csv"
    csv_path.write_text(csv_content, encoding="utf-8-sig")
    return csv_path


@pytest.fixture
def clean_counts(count_matrix_csv):
    """Typed count matrix with Camera_ID, bad cameras removed."""
    df = coerce_count_types(pd.read_csv(count_matrix_csv))
    return drop_cameras(add_camera_id(df), ["Beta_2", "Gamma_1"])


@pytest.fixture
def outline_gdf():
    """Square study area in Wisconsin Transverse Mercator metres."""
    return gpd.GeoDataFrame({"name": ["study"]}, geometry=[box(500000, 250000, 600000, 350000)], crs="EPSG:3071")


@pytest.fixture
def outline_shp(temp_dir, outline_gdf):
    path = temp_dir / "outline" / "outline.shp"
    path.parent.mkdir()
    outline_gdf.to_crs(epsg=4326).to_file(path, driver="ESRI Shapefile")
    return path


@pytest.fixture
def species_df():
    return pd.DataFrame({
        "id": ["1", "2", "3", "4"],
        "x": [520000.0, 550000.0, 570000.0, 590000.0],
        "y": [260000.0, 300000.0, 290000.0, 340000.0],
        "Year": [2015, 2015, 2016, 2016],
        "heth": [1, 0, 1, 1],
        "eame": [0, 1, 0, 0],
    })


def _write_constant_raster(path, value, crs="EPSG:3071"):
    """140 x 140 km grid of 1 km cells covering the study area with margin."""
    data = np.full((140, 140), value, dtype="float32")
    profile = {
        "driver": "GTiff", "dtype": "float32", "count": 1, "nodata": -9999.0,
        "width": 140, "height": 140, "crs": crs,
        "transform": from_origin(480000, 370000, 1000, 1000),
    }
    with rasterio.open(path, "w", **profile) as dst:
        dst.write(data, 1)
    return path


@pytest.fixture
def constant_raster():
    return _write_constant_raster


@pytest.fixture
def climate_rasters(temp_dir):
    """Two monthly layers (10 and 20) whose mean is 15 everywhere."""
    folder = temp_dir / "prism"
    folder.mkdir()
    return [
        _write_constant_raster(folder / "tmin_06.tif", 10.0),
        _write_constant_raster(folder / "tmin_07.tif", 20.0),
    ]


@pytest.fixture
def landcover_raster(temp_dir):
    """20 x 20 grid of 30 m cells: left half Deciduous Forest (41), right half Crops (82)."""
    data = np.full((20, 20), 41, dtype="uint8")
    data[:, 10:] = 82
    path = temp_dir / "nlcd.tif"
    profile = {
        "driver": "GTiff", "dtype": "uint8", "count": 1, "nodata": 0,
        "width": 20, "height": 20, "crs": "EPSG:3071",
        "transform": from_origin(500000, 300600, 30, 30),
    }
    with rasterio.open(path, "w", **profile) as dst:
        dst.write(data, 1)
    return path


@pytest.fixture
def legend_csv(temp_dir):
    csv_content = """Value,Legend
0,
11,Open Water
41,Deciduous Forest
42,Evergreen Forest
82,Cultivated Crops
"""
    path = temp_dir / "NLCD_Land_Cover_Legend.csv"
    path.write_text(csv_content)
    return path


class FakeResponse:
    def __init__(self, text="", content=b"", status_code=200):
        self.text = text
        self.content = content
        self.status_code = status_code

    def raise_for_status(self):
        if self.status_code >= 400:
            raise requests.HTTPError(f"{self.status_code} error")


class FakeSession:
    """Stands in for requests.Session; `handler(url, params)` returns a response or raises."""

    def __init__(self, handler):
        self.handler = handler
        self.calls = []

    def get(self, url, params=None, timeout=None, headers=None):
        self.calls.append((url, params))
        return self.handler(url, params)


@pytest.fixture
def fake_session():
    return FakeSession


@pytest.fixture
def fake_response():
    return FakeResponse
