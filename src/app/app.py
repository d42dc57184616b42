# app.py
from pathlib import Path

import streamlit as st
import pandas as pd
import geopandas as gpd
from streamlit_folium import st_folium

from src.config import DATA_DIR
from src.schema import SITE_COL, ANIMAL_COL, TARGET_SPECIES, PRETTY_DATE_COL
from src.tables import read_table, describe_table
from src.visualization import (
    load_melted, animal_boxplot, occupancy_timeseries, occupancy_smooth,
    site_map, roc_plot, importance_plot,
)
from src.sites import sites_from_table

# --- Page + CSS (robust loader)
st.set_page_config(page_title="EcoCam Pipeline Explorer", layout="wide")

css_path = Path(__file__).parent / "style.css"
if css_path.exists():
    st.markdown(f"<style>{css_path.read_text()}</style>", unsafe_allow_html=True)

data_dir = Path(st.sidebar.text_input("Data folder", str(DATA_DIR)))


@st.cache_data(show_spinner=False)
def load_csv(path: str) -> pd.DataFrame:
    return read_table(path)


@st.cache_data(show_spinner=False)
def load_long(path: str) -> pd.DataFrame:
    return load_melted(path)


def _missing(name: str) -> bool:
    if not (data_dir / name).exists():
        st.info(f"{name} not found in {data_dir}. Run the matching pipeline stage first.")
        return True
    return False


# ==============================
# Sidebar navigation
# ==============================
MODES = ["Count Tables", "Occupancy", "Sites Map", "SDM Results"]
if "mode" not in st.session_state:
    st.session_state["mode"] = MODES[0]


def _set_mode(m: str):
    st.session_state["mode"] = m


with st.sidebar:
    st.markdown('<div class="sidebar-title">EcoCam</div>', unsafe_allow_html=True)
    for m in MODES:
        st.button(m, key=f"nav_{m}", on_click=_set_mode, args=(m,), use_container_width=True)

mode = st.session_state["mode"]

# =========================================================
# --------------------- COUNT TABLES ----------------------
# =========================================================
if mode == "Count Tables":
    st.header("Camera-trap counts")
    stage = st.selectbox(
        "Stage output",
        ["CountMatrix.csv", "CountMatrix_Clean.csv", "CountMatrix_Combined.csv", "CountMatrix_Combined_Melt.csv"],
    )
    if not _missing(stage):
        df = load_csv(str(data_dir / stage))
        st.caption(f"{df.shape[0]} rows x {df.shape[1]} columns")
        st.dataframe(df, use_container_width=True)
        with st.expander("Column types"):
            st.dataframe(describe_table(df), use_container_width=True)

# =========================================================
# ----------------------- OCCUPANCY -----------------------
# =========================================================
elif mode == "Occupancy":
    st.header("Animal counts and occupancy")
    if not _missing("CountMatrix_Combined_Melt.csv"):
        long = load_long(str(data_dir / "CountMatrix_Combined_Melt.csv"))
        sites = sorted(long[SITE_COL].dropna().astype(str).unique())
        chosen = st.multiselect("Sites", sites, default=sites)
        long = long[long[SITE_COL].astype(str).isin(chosen)]

        if long.empty:
            st.info("No rows for the selected sites.")
        else:
            st.plotly_chart(animal_boxplot(long), use_container_width=True)
            if PRETTY_DATE_COL in long.columns and long[PRETTY_DATE_COL].notna().any():
                tab1, tab2 = st.tabs(["Mean by date", "Smoothed"])
                with tab1:
                    st.plotly_chart(occupancy_timeseries(long), use_container_width=True)
                with tab2:
                    st.plotly_chart(occupancy_smooth(long), use_container_width=True)
            st.caption(f"Animals: {', '.join(sorted(long[ANIMAL_COL].unique()))}")

# =========================================================
# ----------------------- SITES MAP -----------------------
# =========================================================
elif mode == "Sites Map":
    st.header("Survey sites")
    if not _missing("spp_df.csv"):
        spp_df = load_csv(str(data_dir / "spp_df.csv"))
        sites = sites_from_table(spp_df)
        outline_path = st.text_input("Boundary shapefile (optional)", "")
        outline = gpd.read_file(outline_path) if outline_path and Path(outline_path).exists() else None
        species = st.selectbox(
            "Colour by", [c for c in spp_df.columns if c == TARGET_SPECIES] + ["(none)"]
        )
        st_folium(site_map(sites, outline, species), use_container_width=True, height=520)

# =========================================================
# ---------------------- SDM RESULTS ----------------------
# =========================================================
elif mode == "SDM Results":
    st.header("Species distribution models")
    if not _missing("sdm_evaluation.csv"):
        st.dataframe(load_csv(str(data_dir / "sdm_evaluation.csv")), use_container_width=True)
        col1, col2 = st.columns(2)
        with col1:
            if (data_dir / "sdm_roc.csv").exists():
                st.plotly_chart(roc_plot(load_csv(str(data_dir / "sdm_roc.csv"))), use_container_width=True)
        with col2:
            if (data_dir / "sdm_importance.csv").exists():
                st.plotly_chart(
                    importance_plot(load_csv(str(data_dir / "sdm_importance.csv"))), use_container_width=True
                )
