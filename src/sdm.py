# src/sdm.py
"""
Species distribution models for presence/absence survey data.

Three model families are fit on the same standardized covariates, following
the classic glm / random forest / boosted regression tree trio:

    fits = fit_sdm(train, test, response="heth", covariates=covs)
    evaluation_table(fits)

Each model is evaluated on AUC plus the sensitivity, specificity and TSS at
the threshold that maximizes sensitivity + specificity.
"""
from dataclasses import dataclass, field
from pathlib import Path
from typing import Dict, Iterable, List, Optional, Sequence, Tuple, Union

import numpy as np
import pandas as pd
from loguru import logger

from sklearn.compose import ColumnTransformer
from sklearn.ensemble import GradientBoostingClassifier, RandomForestClassifier
from sklearn.impute import SimpleImputer
from sklearn.inspection import permutation_importance
from sklearn.linear_model import LogisticRegression
from sklearn.metrics import roc_auc_score, roc_curve
from sklearn.pipeline import Pipeline
from sklearn.preprocessing import StandardScaler

from .schema import SITE_ID_COL, X_COL, Y_COL, YEAR_COL, PRESENCE_COLS, TARGET_SPECIES, OTHER_COL
from .config import (
    OTHER_COVER_CLASSES,
    SDM_METHODS, TEST_ROWS_DEFAULT, RANDOM_STATE, RF_TREES, BRT_TREES, PERMUTATION_REPEATS,
)
from .tables import read_table, write_table, save_workspace, require_columns

NON_COVARIATES = (SITE_ID_COL, X_COL, Y_COL, YEAR_COL, *PRESENCE_COLS)

# Cover proportions sum to 1 per site; the lumped rare classes are the
# reference level and stay out of the covariates.
REFERENCE_COVER = (OTHER_COL, *OTHER_COVER_CLASSES)


@dataclass
class SDMFit:
    """A fitted model with its training/test evaluation and variable importance."""
    method: str
    model: object
    covariates: List[str]
    train_metrics: Dict[str, float] = field(default_factory=dict)
    test_metrics: Dict[str, float] = field(default_factory=dict)
    importance: Optional[pd.DataFrame] = None

    def predict(self, df: pd.DataFrame) -> np.ndarray:
        """Probability of presence."""
        return self.model.predict_proba(df[self.covariates])[:, 1]


def covariate_columns(
    df: pd.DataFrame, exclude: Iterable[str] = (*NON_COVARIATES, *REFERENCE_COVER)
) -> List[str]:
    exclude = set(exclude)
    return [c for c in df.columns if c not in exclude]


def make_covariate_preprocessor(columns: Sequence[str]) -> ColumnTransformer:
    """Impute + scale numeric covariates."""
    num_pipe = Pipeline(steps=[
        ("imputer", SimpleImputer(strategy="median", keep_empty_features=True)),
        ("scaler", StandardScaler()),
    ])
    return ColumnTransformer(transformers=[("num", num_pipe, list(columns))])


def standardize_covariates(df: pd.DataFrame, columns: Sequence[str]) -> pd.DataFrame:
    """Replace covariates by their z-scores (other columns untouched)."""
    require_columns(df, columns, "analysis table")
    non_numeric = [c for c in columns if not pd.api.types.is_numeric_dtype(df[c])]
    if non_numeric:
        raise ValueError(f"Covariates must be numeric: {non_numeric}")
    pre = make_covariate_preprocessor(columns)
    out = df.copy()
    out[list(columns)] = pre.fit_transform(df)
    return out


def partition_test_rows(
    df: pd.DataFrame, n_test: int = TEST_ROWS_DEFAULT, seed: Optional[int] = RANDOM_STATE
) -> Tuple[pd.DataFrame, pd.DataFrame]:
    """Hold out `n_test` random rows (without replacement). Returns (train, test)."""
    if not 0 < n_test < len(df):
        raise ValueError(f"n_test must be between 1 and {len(df) - 1}, got {n_test}.")
    rng = np.random.default_rng(seed)
    test_pos = np.sort(rng.choice(len(df), size=n_test, replace=False))
    mask = np.zeros(len(df), dtype=bool)
    mask[test_pos] = True
    return df.loc[~mask].copy(), df.loc[mask].copy()


def make_model(method: str, seed: Optional[int] = RANDOM_STATE):
    """Return an unfitted classifier for 'glm', 'rf' or 'brt'."""
    if method == "glm":
        return LogisticRegression(penalty=None, max_iter=5000)
    if method == "rf":
        return RandomForestClassifier(n_estimators=RF_TREES, random_state=seed, n_jobs=1)
    if method == "brt":
        return GradientBoostingClassifier(
            n_estimators=BRT_TREES, learning_rate=0.05, max_depth=3, subsample=0.75, random_state=seed
        )
    raise ValueError(f"Unknown SDM method {method!r}; expected one of {SDM_METHODS}.")


def evaluate_predictions(y_true: Sequence[int], prob: Sequence[float]) -> Dict[str, float]:
    """AUC and threshold-dependent scores at max(sensitivity + specificity)."""
    y_true = np.asarray(y_true).astype(int)
    prob = np.asarray(prob, dtype=float)
    if len(np.unique(y_true)) < 2:
        raise ValueError("Evaluation needs both presences and absences.")

    fpr, tpr, thresholds = roc_curve(y_true, prob)
    best = int(np.argmax(tpr - fpr))
    sensitivity = float(tpr[best])
    specificity = float(1.0 - fpr[best])
    return {
        "AUC": float(roc_auc_score(y_true, prob)),
        "threshold": float(min(thresholds[best], 1.0)),
        "sensitivity": sensitivity,
        "specificity": specificity,
        "TSS": sensitivity + specificity - 1.0,
    }


def variable_importance(
    model, X: pd.DataFrame, y: Sequence[int], seed: Optional[int] = RANDOM_STATE
) -> pd.DataFrame:
    """Drop in AUC when each covariate is permuted."""
    result = permutation_importance(
        model, X, y, scoring="roc_auc", n_repeats=PERMUTATION_REPEATS, random_state=seed
    )
    return (
        pd.DataFrame({
            "variable": list(X.columns),
            "auc_decrease": result.importances_mean,
            "auc_decrease_sd": result.importances_std,
        })
        .sort_values("auc_decrease", ascending=False)
        .reset_index(drop=True)
    )


def fit_sdm(
    train: pd.DataFrame,
    test: Optional[pd.DataFrame],
    response: str = TARGET_SPECIES,
    covariates: Optional[Sequence[str]] = None,
    methods: Sequence[str] = SDM_METHODS,
    seed: Optional[int] = RANDOM_STATE,
) -> Dict[str, SDMFit]:
    if covariates is None:
        covariates = covariate_columns(train)
    covariates = list(covariates)
    require_columns(train, [response, *covariates], "training data")
    if train[response].isna().any():
        raise ValueError(f"Response {response!r} has missing values in training data.")

    X_train, y_train = train[covariates], train[response].astype(int)
    fits: Dict[str, SDMFit] = {}
    for method in methods:
        model = make_model(method, seed)
        model.fit(X_train, y_train)
        fit = SDMFit(method=method, model=model, covariates=covariates)
        fit.train_metrics = evaluate_predictions(y_train, fit.predict(train))
        fit.importance = variable_importance(model, X_train, y_train, seed)
        if test is not None and len(test):
            fit.test_metrics = evaluate_predictions(test[response].astype(int), fit.predict(test))
        logger.info(
            f"{method}: train AUC={fit.train_metrics['AUC']:.3f}"
            + (f", test AUC={fit.test_metrics['AUC']:.3f}" if fit.test_metrics else "")
        )
        fits[method] = fit
    return fits


def evaluation_table(fits: Dict[str, SDMFit]) -> pd.DataFrame:
    rows = []
    for method, fit in fits.items():
        for split, metrics in (("training", fit.train_metrics), ("test", fit.test_metrics)):
            if metrics:
                rows.append({"method": method, "split": split, **metrics})
    return pd.DataFrame(rows)


def importance_table(fits: Dict[str, SDMFit]) -> pd.DataFrame:
    frames = [fit.importance.assign(method=m) for m, fit in fits.items() if fit.importance is not None]
    return pd.concat(frames, ignore_index=True) if frames else pd.DataFrame()


def roc_table(fits: Dict[str, SDMFit], data: pd.DataFrame, response: str = TARGET_SPECIES) -> pd.DataFrame:
    """Long ROC curve coordinates per method, for plotting."""
    frames = []
    for method, fit in fits.items():
        fpr, tpr, _ = roc_curve(data[response].astype(int), fit.predict(data))
        frames.append(pd.DataFrame({"method": method, "fpr": fpr, "tpr": tpr}))
    return pd.concat(frames, ignore_index=True)


def run_sdm(
    alldata_path: Union[str, Path],
    out_dir: Union[str, Path],
    response: str = TARGET_SPECIES,
    drop: Sequence[str] = ("eame",),
    n_test: int = TEST_ROWS_DEFAULT,
    methods: Sequence[str] = SDM_METHODS,
    seed: Optional[int] = RANDOM_STATE,
    workspace_path: Optional[Union[str, Path]] = None,
) -> Dict[str, SDMFit]:
    """alldata.csv -> train/test partitions, fitted models and evaluation tables."""
    alldata = read_table(alldata_path, dtype={SITE_ID_COL: str})
    pa_data = alldata.drop(columns=[c for c in drop if c in alldata.columns])
    pa_data = pa_data.dropna(subset=[response])

    covariates = covariate_columns(pa_data)
    logger.info(f"Covariates: {covariates}")
    pa_data = standardize_covariates(pa_data, covariates)
    train, test = partition_test_rows(pa_data, n_test, seed)
    logger.info(f"Training rows: {len(train)}, test rows: {len(test)}")

    fits = fit_sdm(train, test, response, covariates, methods, seed)

    out_dir = Path(out_dir)
    write_table(train, out_dir / "train_padata.csv")
    write_table(test, out_dir / "test_padata.csv")
    write_table(evaluation_table(fits), out_dir / "sdm_evaluation.csv")
    write_table(importance_table(fits), out_dir / "sdm_importance.csv")
    write_table(roc_table(fits, test, response), out_dir / "sdm_roc.csv")
    if workspace_path is not None:
        save_workspace(workspace_path, fits=fits, train=train, test=test, covariates=covariates)
    return fits
