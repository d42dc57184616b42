# src/tables.py
import pickle
from pathlib import Path
from typing import Any, Dict, Iterable, Union

import pandas as pd
from loguru import logger

PathLike = Union[str, Path]


def read_table(path: PathLike, **kwargs) -> pd.DataFrame:
    """Read a CSV; tolerates a UTF-8 BOM and whitespace after delimiters."""
    path = Path(path)
    if not path.exists():
        raise FileNotFoundError(f"CSV not found at {path}")
    kwargs.setdefault("encoding", "utf-8-sig")
    kwargs.setdefault("skipinitialspace", True)
    df = pd.read_csv(path, **kwargs)
    logger.info(f"Read {path.name}: {df.shape[0]} rows x {df.shape[1]} cols")
    return df


def write_table(df: pd.DataFrame, path: PathLike) -> Path:
    path = Path(path)
    path.parent.mkdir(parents=True, exist_ok=True)
    df.to_csv(path, index=False)
    logger.info(f"Wrote {path} ({len(df)} rows)")
    return path


def save_workspace(path: PathLike, **objects: Any) -> Path:
    """Snapshot named objects so the next stage (or a later session) can resume."""
    path = Path(path)
    path.parent.mkdir(parents=True, exist_ok=True)
    with open(path, "wb") as fh:
        pickle.dump(objects, fh)
    logger.info(f"Saved workspace {path.name} with {sorted(objects)}")
    return path


def load_workspace(path: PathLike) -> Dict[str, Any]:
    path = Path(path)
    if not path.exists():
        raise FileNotFoundError(f"Workspace not found at {path}")
    with open(path, "rb") as fh:
        objects = pickle.load(fh)
    logger.info(f"Loaded workspace {path.name}: {sorted(objects)}")
    return objects


def require_columns(df: pd.DataFrame, columns: Iterable[str], context: str = "table") -> None:
    missing = set(columns) - set(df.columns)
    if missing:
        raise ValueError(f"Missing required columns in {context}: {sorted(missing)}")


def check_row_count(before: int, after: int, context: str = "join") -> None:
    """Joins onto a lookup table must never add or drop rows."""
    if before != after:
        raise ValueError(f"{context} changed row count from {before} to {after}")


def describe_table(df: pd.DataFrame) -> pd.DataFrame:
    """Per-column dtype, missing and distinct counts."""
    return pd.DataFrame({
        "column": df.columns,
        "dtype": [str(t) for t in df.dtypes],
        "n_missing": df.isna().sum().to_numpy(),
        "n_unique": df.nunique(dropna=True).to_numpy(),
    })
