"""Training examples for the meta-learners and their tabular form."""

from dataclasses import dataclass, field
from pathlib import Path
from typing import Dict, List, Mapping, Optional, Sequence, Tuple, Union

import numpy as np
import pandas as pd

from metaforecast.features.extraction import FeatureVector
from metaforecast.models.candidates import CandidateModel
from metaforecast.utils.error_handling import (
    FeatureDimensionMismatchError,
    MismatchedModelSetError,
)
from metaforecast.utils.serialization import load_json, load_parquet, save_json, save_parquet

LOSS_PREFIX = "loss__"
LABEL_COLUMN = "best_model"


@dataclass(frozen=True)
class TrainingExample:
    """
    A feature vector paired with a best-model label, per-model losses, or both.

    When only losses are given the label is their argmin (ties resolved in
    candidate-pool order).
    """
    features: FeatureVector
    best_model: Optional[CandidateModel] = None
    losses: Optional[Dict[CandidateModel, float]] = field(default=None)

    def __post_init__(self):
        if self.best_model is None and not self.losses:
            raise ValueError("TrainingExample needs a best_model label or per-model losses")
        if self.best_model is not None:
            object.__setattr__(self, "best_model", CandidateModel(self.best_model))
        if self.losses is not None:
            losses = {CandidateModel(k): float(v) for k, v in self.losses.items()}
            bad = [k.value for k, v in losses.items() if not np.isfinite(v)]
            if bad:
                raise ValueError(f"Non-finite losses for {bad}")
            object.__setattr__(self, "losses", losses)

    @property
    def label(self) -> CandidateModel:
        if self.best_model is not None:
            return self.best_model
        order = list(CandidateModel)
        return min(self.losses, key=lambda m: (self.losses[m], order.index(m)))

    @property
    def series_id(self) -> Optional[str]:
        return self.features.series_id


def feature_schema(examples: Sequence[TrainingExample]) -> Tuple[Tuple[str, ...], str]:
    """
    Return the (feature names, signature) shared by all examples.

    Raises:
        ValueError: If ``examples`` is empty
        FeatureDimensionMismatchError: If examples disagree on names, order or signature
    """
    if not examples:
        raise ValueError("No training examples given")
    names = examples[0].features.feature_names
    signature = examples[0].features.signature
    for example in examples[1:]:
        if example.features.feature_names != names or example.features.signature != signature:
            raise FeatureDimensionMismatchError(
                f"Example '{example.series_id}' has features {example.features.feature_names} "
                f"({example.features.signature}); expected {names} ({signature})"
            )
    return names, signature


def feature_matrix(examples: Sequence[TrainingExample]) -> pd.DataFrame:
    """One row per example, one column per feature."""
    names, _ = feature_schema(examples)
    return pd.DataFrame(
        [example.features.feature_values for example in examples],
        columns=list(names),
    )


def label_vector(examples: Sequence[TrainingExample]) -> pd.Series:
    return pd.Series([example.label.value for example in examples], name=LABEL_COLUMN)


def loss_matrix(examples: Sequence[TrainingExample]) -> pd.DataFrame:
    """
    One row per example, one column per candidate model.

    Raises:
        ValueError: If an example carries no losses
        MismatchedModelSetError: If examples disagree on the candidate set
    """
    if not examples:
        raise ValueError("No training examples given")
    models: Optional[List[CandidateModel]] = None
    rows = []
    for example in examples:
        if not example.losses:
            raise ValueError(f"Example '{example.series_id}' has no per-model losses")
        if models is None:
            models = [m for m in CandidateModel if m in example.losses]
        elif set(example.losses) != set(models):
            raise MismatchedModelSetError(
                f"Example '{example.series_id}' has losses for "
                f"{sorted(m.value for m in example.losses)}; expected {sorted(m.value for m in models)}"
            )
        rows.append([example.losses[m] for m in models])
    return pd.DataFrame(rows, columns=[m.value for m in models])


def save_training_examples(examples: Sequence[TrainingExample], path: Union[str, Path]) -> None:
    """
    Save examples to a directory:

    - examples.parquet: features, ``loss__<model>`` columns and the label
    - schema.json: feature names and extractor signature
    """
    save_dir = Path(path)
    names, signature = feature_schema(examples)

    table = feature_matrix(examples)
    table.insert(0, "series_id", [example.series_id for example in examples])
    table[LABEL_COLUMN] = [example.best_model.value if example.best_model else None for example in examples]
    for model in CandidateModel:
        column = [example.losses.get(model, np.nan) if example.losses else np.nan for example in examples]
        if not np.all(np.isnan(column)):
            table[LOSS_PREFIX + model.value] = column

    save_parquet(table, save_dir / "examples.parquet", index=False)
    save_json({"feature_names": list(names), "signature": signature}, save_dir / "schema.json")


def load_training_examples(path: Union[str, Path]) -> List[TrainingExample]:
    """Inverse of save_training_examples."""
    load_dir = Path(path)
    if not load_dir.exists():
        raise FileNotFoundError(f"Training example directory not found: {path}")

    schema = load_json(load_dir / "schema.json")
    names = tuple(schema["feature_names"])
    table = load_parquet(load_dir / "examples.parquet")
    loss_columns = [c for c in table.columns if c.startswith(LOSS_PREFIX)]

    examples = []
    for _, row in table.iterrows():
        losses: Mapping[CandidateModel, float] = {
            CandidateModel(c[len(LOSS_PREFIX):]): row[c] for c in loss_columns if pd.notna(row[c])
        }
        label = row.get(LABEL_COLUMN)
        series_id = row["series_id"]
        examples.append(
            TrainingExample(
                features=FeatureVector(
                    feature_names=names,
                    feature_values=tuple(row[name] for name in names),
                    signature=schema["signature"],
                    series_id=None if pd.isna(series_id) else str(series_id),
                ),
                best_model=CandidateModel(label) if isinstance(label, str) else None,
                losses=dict(losses) or None,
            )
        )
    return examples
