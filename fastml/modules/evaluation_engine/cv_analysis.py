import numpy as np
import pandas as pd
from typing import Dict, Any


def cv_fold_consistency(fold_scores: Dict[str, Any], metric: str) -> pd.DataFrame:
    """
    Summarize resampling fold consistency per model.
    Expects fold_scores like {"rand_forest (sklearn)": np.array([...]), ...}
    """
    rows = []
    for model, scores in fold_scores.items():
        scores = np.asarray(scores, dtype=float)
        scores = scores[~np.isnan(scores)]
        if scores.size == 0:
            continue
        rows.append({
            "model": model,
            "metric": metric,
            "folds": len(scores),
            "mean": float(np.mean(scores)),
            "std": float(np.std(scores)),
            "min": float(np.min(scores)),
            "max": float(np.max(scores)),
            "range": float(np.max(scores) - np.min(scores)),
        })
    return pd.DataFrame(rows)


def overfitting_gaps(cv_scores: Dict[str, float], test_scores: Dict[str, float], metric: str) -> pd.DataFrame:
    """
    Gap between the resampled estimate and the held-out estimate for each model.
    """
    rows = []
    for model in cv_scores.keys() & test_scores.keys():
        cv_val = cv_scores.get(model)
        test_val = test_scores.get(model)
        if cv_val is None or test_val is None or np.isnan(cv_val) or np.isnan(test_val):
            continue
        rows.append({
            "model": model,
            "metric": metric,
            "resampled": cv_val,
            "test": test_val,
            "gap": test_val - cv_val,
        })
    return pd.DataFrame(rows).sort_values("model").reset_index(drop=True) if rows else pd.DataFrame()
