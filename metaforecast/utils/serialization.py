"""
Serialization helpers for JSON metadata, pickled estimators and Parquet tables.
"""

import json
import logging
import pickle
from datetime import datetime
from enum import Enum
from pathlib import Path
from typing import Any, Union

import numpy as np
import pandas as pd

logger = logging.getLogger(__name__)


class MetadataEncoder(json.JSONEncoder):
    """JSON encoder that handles datetime, enum and numpy types."""

    def default(self, obj):
        if isinstance(obj, (datetime, pd.Timestamp)):
            return obj.isoformat()
        if isinstance(obj, Enum):
            return obj.value
        if isinstance(obj, np.integer):
            return int(obj)
        if isinstance(obj, np.floating):
            return float(obj)
        if isinstance(obj, np.ndarray):
            return obj.tolist()
        return super().default(obj)


def save_json(data: Any, path: Union[str, Path], **kwargs) -> None:
    """Save data to JSON, creating parent directories."""
    Path(path).parent.mkdir(parents=True, exist_ok=True)
    with open(path, "w") as f:
        json.dump(data, f, cls=MetadataEncoder, indent=2, **kwargs)
    logger.debug(f"Saved JSON to {path}")


def load_json(path: Union[str, Path]) -> Any:
    with open(path, "r") as f:
        return json.load(f)


def save_pickle(obj: Any, path: Union[str, Path]) -> None:
    """Save object to pickle, creating parent directories."""
    Path(path).parent.mkdir(parents=True, exist_ok=True)
    with open(path, "wb") as f:
        pickle.dump(obj, f)
    logger.debug(f"Saved pickle to {path}")


def load_pickle(path: Union[str, Path]) -> Any:
    with open(path, "rb") as f:
        return pickle.load(f)


def save_parquet(df: pd.DataFrame, path: Union[str, Path], **kwargs) -> None:
    """Save DataFrame to Parquet, creating parent directories."""
    Path(path).parent.mkdir(parents=True, exist_ok=True)
    df.to_parquet(path, **kwargs)
    logger.debug(f"Saved Parquet to {path}")


def load_parquet(path: Union[str, Path], **kwargs) -> pd.DataFrame:
    return pd.read_parquet(path, **kwargs)
