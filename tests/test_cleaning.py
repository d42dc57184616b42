"""Tests for count-matrix cleaning."""

import pandas as pd
import pytest

from src.cleaning import (
    coerce_count_types, load_count_matrix, animal_columns, add_camera_id,
    find_outliers, find_missing, flag_bad_cameras, drop_cameras, run_cleaning,
)
from src.tables import load_workspace
from src.schema import SPECIES_COLS


@pytest.fixture
def counts(count_matrix_csv):
    return add_camera_id(load_count_matrix(count_matrix_csv))


def test_types_after_load(count_matrix_csv):
    df = load_count_matrix(count_matrix_csv)
    assert isinstance(df["Camera"].dtype, pd.CategoricalDtype)
    for col in SPECIES_COLS:
        assert pd.api.types.is_float_dtype(df[col])
    assert df["Rabbit"].isna().sum() == 1


def test_unparseable_counts_become_nan():
    df = pd.DataFrame({
        "Site_Name": ["A"], "Camera": [1],
        "Grouse": ["three"], "Rabbit": [1], "Rattlesnake": [0], "Falcon": [0],
    })
    out = coerce_count_types(df)
    assert pd.isna(out.loc[0, "Grouse"])


def test_coerce_requires_species_columns():
    with pytest.raises(ValueError, match="Falcon"):
        coerce_count_types(pd.DataFrame({"Camera": [1], "Grouse": [1], "Rabbit": [1], "Rattlesnake": [1]}))


def test_camera_id(counts):
    assert counts["Camera_ID"].tolist() == ["Alpha_1", "Alpha_2", "Beta_1", "Beta_2", "Gamma_1", "Gamma_2"]


def test_animal_columns(counts):
    assert animal_columns(counts) == SPECIES_COLS


def test_find_outliers_and_missing(counts):
    assert find_outliers(counts, "Grouse") == ["Beta_2"]
    assert find_outliers(counts, "Grouse", threshold=4) == ["Beta_2"]
    assert find_outliers(counts, "Grouse", threshold=3) == ["Beta_2", "Gamma_1"]
    assert find_missing(counts, "Rabbit") == ["Gamma_1"]
    assert find_missing(counts, "Grouse") == []


def test_flag_bad_cameras(counts):
    assert flag_bad_cameras(counts) == ["Beta_2", "Gamma_1"]


def test_drop_cameras_removes_every_listed_camera(counts):
    clean = drop_cameras(counts, ["Beta_2", "Gamma_1"])
    assert len(clean) == 4
    assert not clean["Camera_ID"].isin(["Beta_2", "Gamma_1"]).any()
    assert clean.index.tolist() == [0, 1, 2, 3]


def test_run_cleaning(count_matrix_csv, temp_dir):
    out = temp_dir / "CountMatrix_Clean.csv"
    ws = temp_dir / "ws" / "cleaning.pkl"
    clean = run_cleaning(count_matrix_csv, out, ws, exclude=["Alpha_2"])

    assert clean["Camera_ID"].tolist() == ["Alpha_1", "Beta_1", "Gamma_2"]
    written = pd.read_csv(out)
    assert written["Camera_ID"].tolist() == ["Alpha_1", "Beta_1", "Gamma_2"]
    assert written[SPECIES_COLS].notna().all().all()

    objects = load_workspace(ws)
    assert objects["dropped"] == ["Beta_2", "Gamma_1", "Alpha_2"]
    assert len(objects["CountMatrix"]) == 6
