"""Per-series batch execution with failure collection."""

import logging
import multiprocessing
from concurrent.futures import ProcessPoolExecutor, as_completed
from dataclasses import dataclass, field
from typing import Any, Callable, Dict, Iterable, List, Optional, Tuple

from metaforecast.utils.error_handling import RecoveryContext

logger = logging.getLogger(__name__)


def _run_task(task: Tuple[Callable[[Any], Any], Any, str]) -> Tuple[str, bool, Any]:
    """
    Module-level worker so it can be pickled into a process pool.

    Returns (series_id, ok, result_or_recovery_context).
    """
    func, item, series_id = task
    try:
        return series_id, True, func(item)
    except Exception as exc:
        return series_id, False, RecoveryContext.from_exception(series_id, exc)


def _default_id(item: Any) -> str:
    return str(getattr(item, "series_id"))


@dataclass
class BatchResult:
    """Successes and failures of a batch, keyed by series id in input order."""
    successes: Dict[str, Any] = field(default_factory=dict)
    failures: Dict[str, RecoveryContext] = field(default_factory=dict)

    @property
    def n_success(self) -> int:
        return len(self.successes)

    @property
    def n_failed(self) -> int:
        return len(self.failures)

    def summary(self) -> str:
        lines = [f"{self.n_success} succeeded, {self.n_failed} failed"]
        lines.extend(f"  {ctx.summary()}" for ctx in self.failures.values())
        return "\n".join(lines)


class BatchProcessor:
    """
    Applies a function to independent series, optionally across processes.

    A failure on one series is captured as a RecoveryContext and never stops
    the remaining series. ``n_workers=1`` runs in-process; ``None`` uses all
    cores but one. The function must be picklable when ``n_workers > 1``.
    """

    def __init__(self, n_workers: Optional[int] = 1):
        if n_workers is None:
            n_workers = max(1, multiprocessing.cpu_count() - 1)
        self.n_workers = max(1, int(n_workers))

    def map(
        self,
        func: Callable[[Any], Any],
        items: Iterable[Any],
        id_func: Callable[[Any], str] = _default_id,
    ) -> BatchResult:
        """
        Run ``func`` on every item.

        Args:
            func: Function applied to each item
            items: Work items, typically TimeSeries
            id_func: Maps an item to its identifier (defaults to ``item.series_id``)

        Returns:
            BatchResult with per-item results and failures in input order
        """
        tasks: List[Tuple[Callable[[Any], Any], Any, str]] = []
        seen = set()
        for item in items:
            series_id = id_func(item)
            if series_id in seen:
                raise ValueError(f"Duplicate series id in batch: {series_id}")
            seen.add(series_id)
            tasks.append((func, item, series_id))

        if self.n_workers == 1 or len(tasks) <= 1:
            outcomes = [_run_task(task) for task in tasks]
        else:
            outcomes = self._map_parallel(tasks)

        result = BatchResult()
        for series_id, ok, value in outcomes:
            if ok:
                result.successes[series_id] = value
            else:
                result.failures[series_id] = value
                logger.warning(f"Series failed: {value.summary()}")

        logger.info(
            f"Batch finished: {result.n_success} succeeded, {result.n_failed} failed"
        )
        return result

    def _map_parallel(self, tasks):
        logger.info(f"Processing {len(tasks)} series using {self.n_workers} workers")
        outcomes = [None] * len(tasks)
        with ProcessPoolExecutor(max_workers=self.n_workers) as executor:
            try:
                future_to_idx = {
                    executor.submit(_run_task, task): idx for idx, task in enumerate(tasks)
                }
                for future in as_completed(future_to_idx):
                    outcomes[future_to_idx[future]] = future.result()
            except KeyboardInterrupt:
                logger.warning("Interrupted; cancelling pending series")
                executor.shutdown(wait=False, cancel_futures=True)
                raise
        return outcomes
