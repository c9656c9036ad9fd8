import time
import logging
from collections import defaultdict
from contextlib import contextmanager
from typing import DefaultDict, Dict, Iterable, Iterator, Sequence, Tuple, TypeVar

logger = logging.getLogger(__name__)

T = TypeVar("T")


class StageTimer:
    """Measure run times of multiple non-overlapping stages of a command"""

    def __init__(self) -> None:
        self._start: Dict[str, float] = dict()
        self._elapsed: DefaultDict[str, float] = defaultdict(float)
        self._overall_start_time = time.time()

    def start(self, stage: str) -> None:
        self._start[stage] = time.time()

    def stop(self, stage: str) -> float:
        t = time.time() - self._start.pop(stage)
        if t < 0:
            logger.warning("Unreliable runtime measurement for stage %r", stage)
            t = 0
        self._elapsed[stage] += t
        return t

    def elapsed(self, stage: str) -> float:
        """
        Return total time spent in a stage. A currently running invocation
        is not counted.
        """
        return self._elapsed[stage]

    def sum(self) -> float:
        return sum(self._elapsed.values())

    def total(self) -> float:
        return time.time() - self._overall_start_time

    @contextmanager
    def __call__(self, stage: str):
        self.start(stage)
        try:
            yield
        finally:
            self.stop(stage)

    def iterate(self, stage: str, iterator: Iterable[T]) -> Iterator[T]:
        """Measure time spent producing the items of an iterator"""
        self.start(stage)
        for item in iterator:
            self.stop(stage)
            yield item
            self.start(stage)
        self.stop(stage)

    def log_summary(self, stages: Sequence[Tuple[str, str]]) -> None:
        """
        Log one line per (stage, description) pair, followed by the time
        not attributed to any stage and the total.
        """
        total = self.total()
        width = max([len(description) for _, description in stages] + [len("Total elapsed time")])
        for stage, description in stages:
            logger.info("%s %6.1f s", (description + ":").ljust(width + 1), self.elapsed(stage))
        logger.info("%s %6.1f s", "Time spent on rest:".ljust(width + 1), total - self.sum())
        logger.info("%s %6.1f s", "Total elapsed time:".ljust(width + 1), total)
