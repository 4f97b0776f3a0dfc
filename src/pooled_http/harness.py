"""
Concurrency harness: many callers sharing one pool and executor
"""

import logging
from concurrent.futures import ThreadPoolExecutor
from dataclasses import dataclass, field
from typing import Callable, List

import httpx

from .executor import RequestExecutor

logger = logging.getLogger(__name__)


@dataclass
class UnitResult:
    """Outcome of one execution unit"""

    unit: int
    successes: int = 0
    failures: List[BaseException] = field(default_factory=list)


@dataclass
class HarnessReport:
    """Combined outcome of a harness run"""

    units: List[UnitResult]

    @property
    def total_successes(self) -> int:
        return sum(u.successes for u in self.units)

    @property
    def total_failures(self) -> int:
        return sum(len(u.failures) for u in self.units)


class ConcurrencyHarness:
    """
    Runs ``units`` independent callers, each calling ``executor.execute``
    ``iterations`` times, and waits for all of them to finish.

    Units share nothing but the executor (and so the pool). Each unit builds
    its own requests through ``request_factory(unit, iteration)`` and records
    its own results.
    """

    def __init__(
        self,
        executor: RequestExecutor,
        request_factory: Callable[[int, int], httpx.Request],
    ) -> None:
        self._executor = executor
        self._request_factory = request_factory

    def run(self, units: int, iterations: int = 1) -> HarnessReport:
        if units < 1:
            raise ValueError("units must be at least 1")

        with ThreadPoolExecutor(max_workers=units, thread_name_prefix="harness-unit") as pool:
            futures = [pool.submit(self._run_unit, unit, iterations) for unit in range(units)]
            results = [future.result() for future in futures]

        report = HarnessReport(units=results)
        logger.info(
            f"Harness finished: {units} unit(s) x {iterations} iteration(s), "
            f"{report.total_successes} succeeded, {report.total_failures} failed"
        )
        return report

    def _run_unit(self, unit: int, iterations: int) -> UnitResult:
        result = UnitResult(unit=unit)
        for iteration in range(iterations):
            request = self._request_factory(unit, iteration)
            try:
                self._executor.execute(request)
            except Exception as error:
                result.failures.append(error)
            else:
                result.successes += 1
        return result
