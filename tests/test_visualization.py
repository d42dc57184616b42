import folium
import numpy as np
import pandas as pd
import plotly.graph_objects as go
import pytest

from src.visualization import (
    load_melted, animal_boxplot, occupancy_summary, occupancy_timeseries, occupancy_smooth,
    presence_scatter, habitat_histogram, covariate_scatter_matrix, spearman_scatter, roc_plot,
    importance_plot, site_map, save_figure, load_figure, run_visualization,
)
from src.sites import sites_from_table
from src.transformation import run_transformation
from src.tables import write_table


@pytest.fixture
def melt_csv(clean_counts, metadata_csv, temp_dir):
    clean_path = write_table(clean_counts, temp_dir / "CountMatrix_Clean.csv")
    melt_path = temp_dir / "CountMatrix_Combined_Melt.csv"
    run_transformation(clean_path, metadata_csv, temp_dir / "CountMatrix_Combined.csv", melt_path)
    return melt_path


@pytest.fixture
def season():
    """Two animals observed weekly through a season."""
    dates = pd.date_range("2021-05-03", periods=10, freq="7D")
    rng = np.random.default_rng(0)
    rows = []
    for animal in ["Grouse", "Rabbit"]:
        for d in dates:
            rows.append({"Animal": animal, "PrettyDate": d, "Relative_Occupancy": rng.uniform()})
    return pd.DataFrame(rows)


def test_load_melted_restores_types(melt_csv):
    long = load_melted(melt_csv)
    assert isinstance(long["Camera"].dtype, pd.CategoricalDtype)
    assert pd.api.types.is_datetime64_any_dtype(long["PrettyDate"])


def test_animal_boxplot(melt_csv):
    fig = animal_boxplot(load_melted(melt_csv), y_range=(0, 10), y_ticks=[0, 5, 10])
    assert fig.layout.title.text == "Animal Site Counts"
    assert len(fig.data) == 3  # one box per site
    assert list(fig.layout.yaxis.range) == [0, 10]


def test_occupancy_summary(melt_csv):
    summary = occupancy_summary(load_melted(melt_csv))
    grouse = summary[summary["Animal"] == "Grouse"].set_index("PrettyDate")["Occupancy"]
    # Alpha_1 (0.3) and Beta_1 (0.1) on 3 May; Gamma_2 has no detections
    assert grouse[pd.Timestamp("2021-05-03")] == pytest.approx(0.2)


def test_occupancy_timeseries(melt_csv):
    fig = occupancy_timeseries(load_melted(melt_csv))
    assert len(fig.data) == 4


def test_occupancy_smooth_has_trend_per_animal(season):
    fig = occupancy_smooth(season)
    assert len(fig.data) == 4


def test_habitat_histogram():
    habdf = pd.DataFrame({
        "cover_label": ["Deciduous Forest", "Cultivated Crops"] * 3,
        "proportion": [0.2, 0.8, 0.5, 0.5, 1.0, 0.0],
    })
    fig = habitat_histogram(habdf)
    assert len(fig.data) == 2


def test_presence_scatter(species_df):
    fig = presence_scatter(species_df)
    assert len(fig.data) == 2  # presences and absences
    assert fig.layout.yaxis.scaleanchor == "x"


def test_covariate_scatter_matrix():
    df = pd.DataFrame({"MinT": [8.0, 9.0, 10.0], "Rain": [90.0, 80.0, 70.0], "Other": [0.1, 0.2, 0.3]})
    fig = covariate_scatter_matrix(df, ["MinT", "Rain", "Other"])
    assert len(fig.data) == 1
    assert len(fig.data[0].dimensions) == 3


def test_spearman_scatter_title():
    df = pd.DataFrame({"x": np.arange(10.0), "MinT": np.arange(10.0) * 2})
    fig = spearman_scatter(df, "x", "MinT")
    assert fig.layout.title.text.startswith("Spearman R = 1.00")


def test_model_plots():
    roc = pd.DataFrame({"method": ["glm"] * 3, "fpr": [0, 0.5, 1], "tpr": [0, 0.9, 1]})
    assert len(roc_plot(roc).data) == 2
    imp = pd.DataFrame({"method": ["glm", "glm"], "variable": ["a", "b"], "auc_decrease": [0.2, 0.01]})
    assert isinstance(importance_plot(imp), go.Figure)


def test_site_map(species_df, outline_gdf):
    m = site_map(sites_from_table(species_df), outline_gdf)
    assert isinstance(m, folium.Map)
    assert 42 < m.location[0] < 47


def test_save_and_load_json(melt_csv, temp_dir):
    fig = animal_boxplot(load_melted(melt_csv))
    path = save_figure(fig, temp_dir / "figs" / "box.json")
    again = load_figure(path)
    assert again.layout.title.text == "Animal Site Counts"
    assert len(again.data) == len(fig.data)


def test_web_map_only_saves_html(species_df, temp_dir):
    m = site_map(sites_from_table(species_df))
    with pytest.raises(ValueError):
        save_figure(m, temp_dir / "map.png")
    assert save_figure(m, temp_dir / "map.html").exists()


def test_load_figure_missing(temp_dir):
    with pytest.raises(FileNotFoundError):
        load_figure(temp_dir / "nope.json")


def test_run_visualization(melt_csv, temp_dir):
    paths = run_visualization(melt_csv, temp_dir / "figures")
    assert set(paths) == {"boxplot", "boxplot_spec", "occupancy", "occupancy_smooth"}
    assert all(p.exists() for p in paths.values())
    assert paths["boxplot"].name == "AnimalCount_Box.html"
