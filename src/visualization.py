# src/visualization.py
from pathlib import Path
from typing import Dict, Optional, Sequence, Tuple, Union

import pandas as pd
import geopandas as gpd
import plotly.express as px
import plotly.graph_objects as go
import plotly.io as pio
import folium
from scipy import stats
from loguru import logger

from .schema import (
    SITE_COL, CAMERA_COL, DATE_COL, TOTAL_COL, ANIMAL_COL, COUNT_COL, OCCUPANCY_COL,
    PRETTY_DATE_COL, MEAN_OCCUPANCY_COL, X_COL, Y_COL, TARGET_SPECIES,
    COVER_LABEL_COL, PROPORTION_COL,
)
from .config import (
    PALETTE, BASE_FONT_SIZE, FIGURE_WIDTH_IN, FIGURE_HEIGHT_IN, FIGURE_DPI, GEOGRAPHIC_EPSG,
)
from .tables import read_table, require_columns

Figure = Union[go.Figure, folium.Map]


def load_melted(path: Union[str, Path]) -> pd.DataFrame:
    """Re-read the long table; CSV loses dtypes, so restore them."""
    long = read_table(path)
    require_columns(long, [ANIMAL_COL, COUNT_COL, TOTAL_COL], "long table")
    if CAMERA_COL in long.columns:
        long[CAMERA_COL] = long[CAMERA_COL].astype("category")
    long[TOTAL_COL] = pd.to_numeric(long[TOTAL_COL], errors="coerce")
    long[COUNT_COL] = pd.to_numeric(long[COUNT_COL], errors="coerce")
    if DATE_COL in long.columns:
        long[PRETTY_DATE_COL] = pd.to_datetime(long[DATE_COL], errors="coerce")
    return long


def _classic(fig: go.Figure, title: Optional[str] = None) -> go.Figure:
    """White background, larger base font, centred title, legend underneath."""
    fig.update_layout(
        template="simple_white",
        font=dict(size=BASE_FONT_SIZE),
        title=dict(text=title, x=0.5, xanchor="center") if title else None,
        legend=dict(orientation="h", yanchor="top", y=-0.2, xanchor="center", x=0.5),
    )
    return fig


def animal_boxplot(
    long: pd.DataFrame,
    y_range: Optional[Tuple[float, float]] = None,
    y_ticks: Optional[Sequence[float]] = None,
    title: str = "Animal Site Counts",
) -> go.Figure:
    """Counts per animal, one box per site, with the raw points jittered alongside."""
    require_columns(long, [ANIMAL_COL, COUNT_COL, SITE_COL], "long table")
    fig = px.box(
        long, x=ANIMAL_COL, y=COUNT_COL, color=SITE_COL, points="all",
        color_discrete_sequence=PALETTE,
        labels={ANIMAL_COL: "Animal Type", COUNT_COL: "Site Counts", SITE_COL: "Sites"},
    )
    fig.update_traces(jitter=0.1, pointpos=0)
    if y_range is not None:
        fig.update_yaxes(range=list(y_range))
    if y_ticks is not None:
        fig.update_yaxes(tickvals=list(y_ticks))
    return _classic(fig, title)


def occupancy_summary(long: pd.DataFrame) -> pd.DataFrame:
    require_columns(long, [ANIMAL_COL, PRETTY_DATE_COL, OCCUPANCY_COL], "long table")
    return (
        long.groupby([ANIMAL_COL, PRETTY_DATE_COL], as_index=False)[OCCUPANCY_COL]
        .mean()
        .rename(columns={OCCUPANCY_COL: MEAN_OCCUPANCY_COL})
    )


def occupancy_timeseries(long: pd.DataFrame) -> go.Figure:
    summary = occupancy_summary(long)
    fig = px.line(
        summary, x=PRETTY_DATE_COL, y=MEAN_OCCUPANCY_COL, color=ANIMAL_COL, markers=True,
        color_discrete_sequence=PALETTE,
        labels={PRETTY_DATE_COL: "Sampling date", MEAN_OCCUPANCY_COL: "Mean occupancy", ANIMAL_COL: "Species"},
    )
    fig.update_traces(line=dict(width=3), marker=dict(size=9))
    return _classic(fig)


def occupancy_smooth(long: pd.DataFrame) -> go.Figure:
    """Raw relative occupancy with a LOWESS trend per animal."""
    require_columns(long, [ANIMAL_COL, PRETTY_DATE_COL, OCCUPANCY_COL], "long table")
    data = long.dropna(subset=[PRETTY_DATE_COL, OCCUPANCY_COL])
    fig = px.scatter(
        data, x=PRETTY_DATE_COL, y=OCCUPANCY_COL, color=ANIMAL_COL, trendline="lowess",
        color_discrete_sequence=PALETTE,
    )
    return _classic(fig)


def presence_scatter(spp_df: pd.DataFrame, species: str = TARGET_SPECIES) -> go.Figure:
    require_columns(spp_df, [X_COL, Y_COL, species], "species data")
    fig = px.scatter(
        spp_df, x=X_COL, y=Y_COL, color=spp_df[species].astype(str),
        color_discrete_sequence=PALETTE, labels={"color": species},
    )
    fig.update_yaxes(scaleanchor="x", scaleratio=1)
    fig.update_layout(template="plotly_white")
    return fig


def habitat_histogram(habdf: pd.DataFrame, bins: int = 5) -> go.Figure:
    """Distribution of cover percentage around sites, one panel per class."""
    require_columns(habdf, [COVER_LABEL_COL, PROPORTION_COL], "land-cover table")
    data = habdf.assign(habitat_pct=habdf[PROPORTION_COL] * 100)
    fig = px.histogram(
        data, x="habitat_pct", facet_col=COVER_LABEL_COL, facet_col_wrap=4, nbins=bins,
        opacity=0.5, labels={"habitat_pct": "Habitat (%)"},
    )
    fig.update_yaxes(matches=None, showticklabels=True)
    fig.for_each_annotation(lambda a: a.update(text=a.text.split("=")[-1]))
    return _classic(fig)


def covariate_scatter_matrix(df: pd.DataFrame, columns: Sequence[str]) -> go.Figure:
    require_columns(df, columns, "analysis table")
    fig = px.scatter_matrix(df, dimensions=list(columns))
    fig.update_traces(diagonal_visible=False, marker=dict(size=3, opacity=0.5))
    return fig


def spearman_scatter(df: pd.DataFrame, x: str, y: str) -> go.Figure:
    """Scatter with an OLS line; Spearman rho / p in the title."""
    require_columns(df, [x, y], "analysis table")
    pair = df[[x, y]].dropna()
    rho, p = stats.spearmanr(pair[x], pair[y])
    fig = px.scatter(pair, x=x, y=y, trendline="ols", opacity=0.6)
    fig.update_layout(template="plotly_white", title=f"Spearman R = {rho:.2f}, p = {p:.2g}")
    return fig


def roc_plot(roc_df: pd.DataFrame) -> go.Figure:
    require_columns(roc_df, ["method", "fpr", "tpr"], "ROC table")
    fig = px.line(
        roc_df, x="fpr", y="tpr", color="method", color_discrete_sequence=PALETTE,
        labels={"fpr": "1 - Specificity", "tpr": "Sensitivity"},
    )
    fig.add_trace(go.Scatter(x=[0, 1], y=[0, 1], mode="lines", line=dict(dash="dash", color="grey"),
                             showlegend=False))
    return _classic(fig, "ROC")


def importance_plot(importance: pd.DataFrame) -> go.Figure:
    require_columns(importance, ["method", "variable", "auc_decrease"], "importance table")
    fig = px.bar(
        importance, x="auc_decrease", y="variable", facet_col="method", orientation="h",
        labels={"auc_decrease": "AUC decrease", "variable": ""},
    )
    fig.for_each_annotation(lambda a: a.update(text=a.text.split("=")[-1]))
    return _classic(fig, "Variable importance")


def site_map(
    sites: gpd.GeoDataFrame,
    outline: Optional[gpd.GeoDataFrame] = None,
    presence_col: str = TARGET_SPECIES,
) -> folium.Map:
    """Sites over the study boundary; presences and absences in different colours."""
    if sites.crs is None:
        raise ValueError("Sites have no CRS; cannot place them on a web map.")
    geo = sites.to_crs(epsg=GEOGRAPHIC_EPSG)
    center = [float(geo.geometry.y.mean()), float(geo.geometry.x.mean())]
    m = folium.Map(location=center, zoom_start=7, tiles="CartoDB Positron")

    if outline is not None:
        folium.GeoJson(
            outline.to_crs(epsg=GEOGRAPHIC_EPSG).geometry.to_json(),
            style_function=lambda _: {"color": "#264653", "weight": 2, "fillOpacity": 0},
        ).add_to(m)

    has_presence = presence_col in geo.columns
    for _, r in geo.iterrows():
        present = has_presence and r[presence_col] == 1
        col = PALETTE[1] if present else PALETTE[0]
        folium.CircleMarker(
            location=[r.geometry.y, r.geometry.x], radius=4, color=col,
            fill=True, fill_color=col, fill_opacity=0.7,
        ).add_to(m)
    return m


def save_figure(
    fig: Figure,
    path: Union[str, Path],
    width_in: float = FIGURE_WIDTH_IN,
    height_in: float = FIGURE_HEIGHT_IN,
    dpi: int = FIGURE_DPI,
) -> Path:
    """
    Write a figure according to the file suffix.

    .html  interactive page (plotly or folium)
    .json  plotly figure spec, reloadable with load_figure
    other  static image via kaleido, sized in inches at `dpi`
    """
    path = Path(path)
    path.parent.mkdir(parents=True, exist_ok=True)
    suffix = path.suffix.lower()
    if isinstance(fig, folium.Map):
        if suffix != ".html":
            raise ValueError(f"Web maps can only be saved as .html, not {suffix!r}.")
        fig.save(str(path))
    elif suffix == ".html":
        fig.write_html(str(path), include_plotlyjs="cdn")
    elif suffix == ".json":
        fig.write_json(str(path))
    else:
        # plotly sizes in CSS pixels (96 per inch); scale up to the requested dpi
        fig.write_image(str(path), width=int(width_in * 96), height=int(height_in * 96), scale=dpi / 96)
    logger.info(f"Saved figure to {path}")
    return path


def load_figure(path: Union[str, Path]) -> go.Figure:
    path = Path(path)
    if not path.exists():
        raise FileNotFoundError(f"Figure not found at {path}")
    return pio.read_json(str(path))


def run_visualization(
    melt_path: Union[str, Path],
    figure_dir: Union[str, Path],
    fmt: str = "html",
) -> Dict[str, Path]:
    """CountMatrix_Combined_Melt.csv -> box plot + occupancy plots."""
    long = load_melted(melt_path)
    figure_dir = Path(figure_dir)
    ext = fmt.lstrip(".")

    box = animal_boxplot(long)
    paths = {
        "boxplot": save_figure(box, figure_dir / f"AnimalCount_Box.{ext}"),
        "boxplot_spec": save_figure(box, figure_dir / "AnimalCount_Box.json"),
    }
    if PRETTY_DATE_COL in long.columns and long[PRETTY_DATE_COL].notna().any():
        paths["occupancy"] = save_figure(occupancy_timeseries(long), figure_dir / f"Occupancy_Time.{ext}")
        paths["occupancy_smooth"] = save_figure(occupancy_smooth(long), figure_dir / f"Occupancy_Smooth.{ext}")
    else:
        logger.warning("No sampling dates in the long table; skipping occupancy plots")
    return paths
