"""Loading series corpora from long-format CSV or Parquet tables."""

import logging
from dataclasses import dataclass
from pathlib import Path
from typing import Any, Dict, Iterator, List, Mapping, Optional, Union

import pandas as pd

from metaforecast.data.structs import TimeSeries

logger = logging.getLogger(__name__)


@dataclass
class ValidationResult:
    """Result of table validation."""
    is_valid: bool
    errors: List[str]
    warnings: List[str]

    def to_dict(self) -> Dict[str, Any]:
        """Convert to dictionary for serialization."""
        return {
            "is_valid": self.is_valid,
            "errors": self.errors,
            "warnings": self.warnings,
        }


class SeriesLoader:
    """
    Builds TimeSeries objects from a long-format table.

    The table holds one row per observation with an id column and a value
    column. Period and horizon come either from columns of the same name in
    the table (constant within a series) or from a separate metadata mapping.
    """

    def __init__(
        self,
        id_col: str = "series_id",
        value_col: str = "value",
        order_col: Optional[str] = None,
        default_period: int = 1,
    ):
        self.id_col = id_col
        self.value_col = value_col
        self.order_col = order_col
        self.default_period = default_period

    def load(
        self,
        path: Union[str, Path],
        metadata: Optional[Union[pd.DataFrame, Mapping[str, Mapping[str, Any]]]] = None,
    ) -> List[TimeSeries]:
        """
        Load a corpus from a CSV or Parquet file.

        Raises:
            FileNotFoundError: If the file doesn't exist
            ValueError: If the table fails validation or has an unsupported suffix
        """
        file_path = Path(path)
        if not file_path.exists():
            raise FileNotFoundError(f"Series file not found: {path}")

        if file_path.suffix == ".parquet":
            df = pd.read_parquet(file_path)
        elif file_path.suffix == ".csv":
            df = pd.read_csv(file_path)
        else:
            raise ValueError(f"Unsupported series file format: {file_path.suffix}")

        logger.info(f"Loaded {len(df)} rows from {path}")
        return list(self.from_frame(df, metadata))

    def validate(self, df: pd.DataFrame) -> ValidationResult:
        """Check required columns and value types."""
        errors: List[str] = []
        warnings: List[str] = []

        for col in (self.id_col, self.value_col):
            if col not in df.columns:
                errors.append(f"Missing required column: {col}")
        if self.order_col and self.order_col not in df.columns:
            errors.append(f"Missing order column: {self.order_col}")

        if self.value_col in df.columns:
            if not pd.api.types.is_numeric_dtype(df[self.value_col]):
                errors.append(f"Column '{self.value_col}' must be numeric, got {df[self.value_col].dtype}")
            elif df[self.value_col].isna().any():
                warnings.append(f"{int(df[self.value_col].isna().sum())} missing values will be dropped")

        return ValidationResult(is_valid=not errors, errors=errors, warnings=warnings)

    def from_frame(
        self,
        df: pd.DataFrame,
        metadata: Optional[Union[pd.DataFrame, Mapping[str, Mapping[str, Any]]]] = None,
    ) -> Iterator[TimeSeries]:
        """Yield one TimeSeries per id, in order of first appearance."""
        result = self.validate(df)
        if not result.is_valid:
            raise ValueError(f"Series table validation failed: {'; '.join(result.errors)}")
        for warning in result.warnings:
            logger.warning(warning)

        meta_lookup = self._metadata_lookup(metadata)

        for series_id, group in df.groupby(self.id_col, sort=False):
            if self.order_col:
                group = group.sort_values(self.order_col)
            values = group[self.value_col].dropna().to_numpy(dtype=float)

            info = dict(meta_lookup.get(str(series_id), {}))
            for key in ("period", "horizon"):
                if key not in info and key in group.columns:
                    info[key] = group[key].iloc[0]

            period = int(info.pop("period", self.default_period))
            horizon = info.pop("horizon", None)
            if horizon is not None and pd.isna(horizon):
                horizon = None

            yield TimeSeries(
                values=values,
                period=period,
                horizon=int(horizon) if horizon is not None else None,
                series_id=str(series_id),
                metadata=info,
            )

    def _metadata_lookup(self, metadata) -> Dict[str, Dict[str, Any]]:
        if metadata is None:
            return {}
        if isinstance(metadata, pd.DataFrame):
            table = metadata.set_index(self.id_col) if self.id_col in metadata.columns else metadata
            return {str(k): v for k, v in table.to_dict(orient="index").items()}
        return {str(k): dict(v) for k, v in metadata.items()}
