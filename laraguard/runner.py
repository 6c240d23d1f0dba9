"""
Detector runner
===============
Selects the detectors for a batch, gates each one (applicability, CI,
environment), runs the rest on a worker pool and collects one RunResult per
detector in registration order.

Nothing raised by a detector escapes: it becomes an ``Error`` result with
the exception message and no findings.
"""

import logging
import time
from concurrent.futures import ThreadPoolExecutor
from typing import Iterable, List, Optional, Sequence

from .config import EngineConfig
from .detector import Detector, RunContext
from .models import RunResult, Status
from .report import BatchReport
from .suppression import InlineSuppressor

logger = logging.getLogger(__name__)


class DetectorRunner:
    def __init__(self, detectors: Sequence[Detector], config: Optional[EngineConfig] = None,
                 suppress: bool = True):
        self.detectors = list(detectors)
        self.config = config or EngineConfig()
        self.suppress = suppress

    # ------------------------------------------------------------------
    # Selection
    # ------------------------------------------------------------------

    def select(self, only: Optional[Iterable[str]] = None) -> List[Detector]:
        """Detectors taking part in the batch.

        Disabled ids and disabled categories are left out entirely; they do
        not show up as Skipped.
        """
        wanted = set(only) if only else None
        selected = []
        for detector in self.detectors:
            descriptor = detector.descriptor
            if wanted is not None and descriptor.id not in wanted:
                continue
            if descriptor.id in self.config.disabled_detectors:
                continue
            if not self.config.is_category_enabled(descriptor.category):
                continue
            selected.append(detector)
        return selected

    def gate(self, detector: Detector, context: RunContext) -> Optional[str]:
        """Skip reason for ``detector`` in ``context``, or None when it should run."""
        descriptor = detector.descriptor
        if context.ci and not descriptor.runs_in_ci:
            return "Not applicable in CI environment"
        environments = descriptor.relevant_environments
        if environments is not None and not self.config.skip_env_specific \
                and context.environment not in environments:
            return (f"Only relevant in {', '.join(sorted(environments))} "
                    f"(current: {context.environment})")
        if not detector.is_applicable(context):
            return detector.skip_reason()
        return None

    # ------------------------------------------------------------------
    # Execution
    # ------------------------------------------------------------------

    def run_one(self, detector: Detector, context: RunContext) -> RunResult:
        detector_id = detector.descriptor.id
        start = time.perf_counter()
        try:
            reason = self.gate(detector, context)
            if reason is not None:
                return RunResult.skipped(detector_id, reason).with_elapsed(time.perf_counter() - start)
            result = detector.run(context)
        except Exception as e:
            logger.debug("Detector %s raised", detector_id, exc_info=True)
            message = str(e) or e.__class__.__name__
            return RunResult.error(detector_id, message).with_elapsed(time.perf_counter() - start)

        if not isinstance(result, RunResult):
            result = RunResult.error(detector_id, f"Detector returned {type(result).__name__}")
        elif result.status is Status.ERROR and result.findings:
            result = RunResult.error(detector_id, result.summary)

        if self.suppress and result.findings:
            suppressor = InlineSuppressor(context.root, self.config.suppression_keyword)
            result = suppressor.apply(result)
        return result.with_elapsed(time.perf_counter() - start)

    def run(self, context: RunContext, only: Optional[Iterable[str]] = None) -> BatchReport:
        detectors = self.select(only)
        start = time.perf_counter()
        workers = max(1, min(self.config.worker_count(), len(detectors)))
        logger.debug("Running %d detector(s) on %d worker(s)", len(detectors), workers)

        if workers == 1:
            results = [self.run_one(d, context) for d in detectors]
        else:
            with ThreadPoolExecutor(max_workers=workers) as pool:
                results = list(pool.map(lambda d: self.run_one(d, context), detectors))

        for result in results:
            if result.status is Status.ERROR:
                logger.warning("%s: %s", result.detector_id, result.summary)

        return BatchReport(
            results=results,
            descriptors={d.descriptor.id: d.descriptor for d in detectors},
            dont_report=frozenset(self.config.dont_report),
            environment=context.environment,
            ci=context.ci,
            root=str(context.root),
            elapsed=time.perf_counter() - start,
        )
