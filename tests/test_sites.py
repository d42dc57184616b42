import geopandas as gpd
import pandas as pd
import pytest
import shapely

from src.sites import (
    load_species_data, presence_count, sites_from_table, load_outline,
    sample_background_points, geographic_coordinates, write_sites, run_species_prep,
)
from src.tables import write_table


@pytest.fixture
def species_csv(species_df, temp_dir):
    return write_table(species_df, temp_dir / "sppdata.csv")


def test_load_species_data(species_csv):
    df = load_species_data(species_csv)
    assert df["id"].tolist() == ["1", "2", "3", "4"]
    assert isinstance(df["Year"].dtype, pd.CategoricalDtype)
    assert presence_count(df) == 3
    assert presence_count(df, "eame") == 1


def test_sites_from_table(species_df):
    sites = sites_from_table(species_df)
    assert sites.crs.to_epsg() == 3071
    assert sites.geometry.x.tolist() == species_df["x"].tolist()


def test_sites_from_table_rejects_missing_coordinates(species_df):
    species_df.loc[0, "x"] = None
    with pytest.raises(ValueError, match="missing"):
        sites_from_table(species_df)


def test_load_outline_reprojects(outline_shp):
    outline = load_outline(outline_shp)
    assert outline.crs.to_epsg() == 3071
    xmin, ymin, xmax, ymax = outline.total_bounds
    assert xmin == pytest.approx(500000, abs=1)
    assert ymax == pytest.approx(350000, abs=1)


def test_load_outline_missing(temp_dir):
    with pytest.raises(FileNotFoundError):
        load_outline(temp_dir / "none.shp")


def test_background_points_inside_outline(outline_gdf):
    pts = sample_background_points(outline_gdf, 50, seed=1)
    region = outline_gdf.geometry.union_all()
    assert len(pts) == 50
    assert shapely.contains_xy(region, pts["x"].to_numpy(), pts["y"].to_numpy()).all()
    assert pts["id"].tolist() == [str(i) for i in range(1, 51)]
    assert pts.crs == outline_gdf.crs


def test_background_points_reproducible(outline_gdf):
    a = sample_background_points(outline_gdf, 5, seed=7)
    b = sample_background_points(outline_gdf, 5, seed=7)
    assert a["x"].tolist() == b["x"].tolist()


def test_background_points_need_positive_count(outline_gdf):
    with pytest.raises(ValueError):
        sample_background_points(outline_gdf, 0)


def test_geographic_coordinates(species_df):
    coords = geographic_coordinates(sites_from_table(species_df))
    assert list(coords.columns) == ["latitude", "longitude"]
    assert coords["latitude"].between(42, 47).all()
    assert coords["longitude"].between(-93, -86).all()


def test_geographic_coordinates_need_crs(species_df):
    sites = gpd.GeoDataFrame(species_df, geometry=gpd.points_from_xy(species_df["x"], species_df["y"]))
    with pytest.raises(ValueError):
        geographic_coordinates(sites)


def test_write_sites(species_csv, temp_dir):
    sites = sites_from_table(load_species_data(species_csv))
    path = write_sites(sites, temp_dir / "shp" / "sites.shp")
    back = gpd.read_file(path)
    assert len(back) == 4
    assert back.crs is not None
    assert back.geometry.x.tolist() == pytest.approx(sites.geometry.x.tolist())


def test_run_species_prep(species_csv, outline_shp, temp_dir):
    spp_df, sites, background = run_species_prep(
        species_csv, temp_dir / "spp_df.csv", temp_dir / "sites.shp",
        outline_path=outline_shp, background_out=temp_dir / "bkgrd_pnts.csv",
    )
    assert len(spp_df) == 4
    assert (temp_dir / "sites.shp").exists()
    # one background point per presence
    assert len(background) == 3
    written = pd.read_csv(temp_dir / "bkgrd_pnts.csv")
    assert list(written.columns) == ["x", "y", "id"]


def test_run_species_prep_without_outline(species_csv, temp_dir):
    _, _, background = run_species_prep(species_csv, temp_dir / "spp_df.csv", temp_dir / "sites.shp")
    assert background is None
