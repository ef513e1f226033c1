"""
End-to-end training run: load a corpus, optionally augment it by simulation,
label it, and train the FFORMS selector and FFORMA weighter.
"""

import logging
from dataclasses import dataclass, field
from pathlib import Path
from typing import Any, Dict, List, Optional, Tuple, Union

import pandas as pd

from metaforecast.data.loaders import SeriesLoader
from metaforecast.data.simulation import SeriesSimulator
from metaforecast.data.structs import TimeSeries
from metaforecast.evaluation.labelling import build_training_examples
from metaforecast.features.extraction import FeatureExtractor
from metaforecast.models.candidates import CandidateModel
from metaforecast.models.examples import TrainingExample, save_training_examples
from metaforecast.models.selector import ModelSelector
from metaforecast.models.weighter import ModelWeighter
from metaforecast.utils.config_manager import load_pipeline_config
from metaforecast.utils.error_handling import RecoveryContext
from metaforecast.utils.serialization import save_json

logger = logging.getLogger(__name__)


@dataclass
class PipelineResult:
    """Outputs of a training run."""
    examples: List[TrainingExample]
    failures: Dict[str, RecoveryContext] = field(default_factory=dict)
    selector: Optional[ModelSelector] = None
    weighter: Optional[ModelWeighter] = None

    def save(self, output_dir: Union[str, Path]) -> None:
        """
        Write examples, trained models and the failure log:

        - examples/: labelled training examples
        - selector/, weighter/: trained meta-learners
        - failures.json: per-series failure records
        """
        out = Path(output_dir)
        save_training_examples(self.examples, out / "examples")
        if self.selector is not None:
            self.selector.save(out / "selector")
        if self.weighter is not None:
            self.weighter.save(out / "weighter")
        save_json({k: ctx.to_dict() for k, ctx in self.failures.items()}, out / "failures.json")
        logger.info(f"Pipeline outputs written to {out}")


class MetaForecastPipeline:
    """
    Orchestrates a run from a validated configuration dictionary.

    Example:
        >>> pipeline = MetaForecastPipeline.from_config("run.yaml")
        >>> result = pipeline.run(pipeline.load_corpus("series.csv"))
    """

    def __init__(self, config: Optional[Dict[str, Any]] = None):
        self.config = config if config is not None else load_pipeline_config()
        feature_cfg = self.config["features"]
        self.extractor = FeatureExtractor(
            features=feature_cfg.get("names"),
            min_observations=feature_cfg.get("min_observations", 10),
        )
        self.models = CandidateModel.parse(self.config["candidates"])

    @classmethod
    def from_config(
        cls,
        path: Optional[Union[str, Path]] = None,
        overrides: Optional[Dict[str, Any]] = None,
    ) -> "MetaForecastPipeline":
        return cls(load_pipeline_config(path, overrides))

    def load_corpus(
        self,
        path: Union[str, Path],
        metadata: Optional[Union[str, Path]] = None,
        default_period: int = 1,
    ) -> List[TimeSeries]:
        """Read series (and an optional metadata table) from CSV or Parquet."""
        meta_df = None
        if metadata is not None:
            meta_path = Path(metadata)
            meta_df = pd.read_parquet(meta_path) if meta_path.suffix == ".parquet" else pd.read_csv(meta_path)
        return SeriesLoader(default_period=default_period).load(path, meta_df)

    def augment(
        self, corpus: List[TimeSeries]
    ) -> Tuple[List[TimeSeries], Dict[str, RecoveryContext]]:
        """
        Append simulated series when ``simulation.n_per_series`` is positive.

        Returns:
            (augmented corpus, failures keyed by ``"<series_id>@simulation"``)
        """
        sim_cfg = self.config["simulation"]
        n = sim_cfg.get("n_per_series", 0)
        if n <= 0:
            return list(corpus), {}

        simulator = SeriesSimulator(random_state=sim_cfg.get("random_state"))
        augmented = list(corpus)
        failures: Dict[str, RecoveryContext] = {}
        for series in corpus:
            try:
                augmented.extend(simulator.simulate(series, n))
            except Exception as e:
                key = f"{series.series_id}@simulation"
                failures[key] = RecoveryContext.from_exception(key, e)
                logger.warning(f"Simulation failed for '{series.series_id}': {e}")
        logger.info(
            f"Augmented corpus from {len(corpus)} to {len(augmented)} series "
            f"({len(failures)} simulation failures)"
        )
        return augmented, failures

    def label(self, corpus: List[TimeSeries]):
        label_cfg = self.config["labelling"]
        return build_training_examples(
            corpus,
            extractor=self.extractor,
            models=self.models,
            loss=label_cfg.get("loss", "owa"),
            level=label_cfg.get("level", 95.0),
            n_workers=self.config["batch"].get("n_workers", 1),
        )

    def train_selector(self, examples: List[TrainingExample]) -> ModelSelector:
        cfg = self.config["selector"]
        return ModelSelector(
            class_weight=cfg.get("class_weight", "balanced"),
            hyperparameters=cfg.get("hyperparameters"),
            random_state=cfg.get("random_state", 0),
            extractor=self.extractor,
        ).fit(examples)

    def train_weighter(self, examples: List[TrainingExample]) -> ModelWeighter:
        cfg = self.config["weighter"]
        return ModelWeighter(
            policy=cfg.get("policy", "softmax"),
            temperature=cfg.get("temperature", 0.1),
            policy_params=cfg.get("policy_params"),
            hyperparameters=cfg.get("hyperparameters"),
            optimize=cfg.get("optimize", False),
            optimization_params=cfg.get("optimization"),
            random_state=cfg.get("random_state", 0),
            extractor=self.extractor,
        ).fit(examples)

    def run(self, corpus: List[TimeSeries]) -> PipelineResult:
        """
        Augment, label and train.

        Raises:
            ValueError: If no series could be labelled
            TrainingConvergenceError: If either meta-learner fails to train
        """
        corpus, simulation_failures = self.augment(corpus)
        examples, failures = self.label(corpus)
        failures = {**simulation_failures, **failures}
        if not examples:
            raise ValueError(f"No series could be labelled ({len(failures)} failures)")
        if failures:
            logger.warning(f"{len(failures)} of {len(corpus)} series could not be labelled")

        return PipelineResult(
            examples=examples,
            failures=failures,
            selector=self.train_selector(examples),
            weighter=self.train_weighter(examples),
        )
