"""
Up-to-date Composer dependencies
================================
Compares ``composer install --dry-run --no-dev`` with
``composer install --dry-run``. Which scope is stale (production, dev or
both) is inferred by comparing the two outputs after normalisation. That
comparison is a heuristic and findings say so in their metadata.
"""

import logging
import re
from typing import Callable, Optional

from ..detector import Detector, RunContext, docs_url
from ..errors import ToolNotFoundError
from ..models import Category, DetectorDescriptor, RunResult, Severity
from ..process import CommandOutcome, run_command

logger = logging.getLogger(__name__)

COMPOSER_JSON = "composer.json"
COMPOSER_LOCK = "composer.lock"

DRY_RUN = ["composer", "install", "--dry-run", "--no-interaction", "--no-ansi"]

NOTHING_TO_UPDATE = (
    "Nothing to install or update",
    "Nothing to install, update or remove",
)

_NOISE = re.compile(r'^(loading composer repositories|installing dependencies from lock file'
                    r'|verifying lock file contents|warning:|info:)', re.IGNORECASE)

BOTH_RECOMMENDATION = (
    "Your application's production and development dependencies are not up-to-date. "
    "These may include bug fixes and/or security patches. "
    'Run "composer update" to update all dependencies within your version constraints. '
    "Review the changes before deploying to production."
)
PRODUCTION_RECOMMENDATION = (
    "Your application's production dependencies are not up-to-date. "
    "These may include bug fixes and/or security patches. "
    'Run "composer update --no-dev" to update production dependencies only, '
    'or "composer update" to update all dependencies. '
    "Review the changes before deploying to production."
)
DEV_RECOMMENDATION = (
    "Your application's development dependencies are not up-to-date. "
    "While these don't affect production, keeping them updated helps maintain a healthy "
    'development environment. Run "composer update" to update all dependencies.'
)


def is_up_to_date(output: str) -> bool:
    return any(marker in output for marker in NOTHING_TO_UPDATE)


def normalize_output(output: str) -> str:
    """Dry-run output without progress chatter, whitespace or case differences."""
    kept = []
    for line in output.splitlines():
        line = ' '.join(line.split()).lower()
        if line and not _NOISE.match(line):
            kept.append(line)
    return '\n'.join(kept)


class UpToDateDependenciesDetector(Detector):
    descriptor = DetectorDescriptor(
        id="up-to-date-dependencies",
        name="Up-to-Date Dependencies",
        description="Checks if dependencies are up-to-date with available bug fixes and security patches",
        category=Category.SECURITY,
        default_severity=Severity.LOW,
        tags=frozenset({"dependencies", "composer", "updates", "maintenance"}),
        estimated_fix_minutes=60,
        docs_url=docs_url("up-to-date-dependencies"),
    )

    def __init__(self, config=None,
                 command_runner: Optional[Callable[..., Optional[CommandOutcome]]] = None):
        super().__init__(config)
        self.command_runner = command_runner or run_command

    def is_applicable(self, context: RunContext) -> bool:
        source = self.source(context)
        return source.exists(COMPOSER_JSON) or source.exists(COMPOSER_LOCK)

    def skip_reason(self) -> str:
        return "No composer.json file found"

    def run(self, context: RunContext) -> RunResult:
        source = self.source(context)
        if not source.exists(COMPOSER_LOCK):
            return self.result("composer.lock file not found", [self.finding(
                source, source.path(COMPOSER_LOCK), 1,
                "composer.lock file is missing",
                Severity.MEDIUM,
                'Run "composer install" to generate composer.lock for dependency tracking.',
            )])

        try:
            prod = self._dry_run(source.root, no_dev=True)
            everything = self._dry_run(source.root, no_dev=False)
        except ToolNotFoundError as e:
            return self.error(str(e))
        if prod is None or everything is None:
            return self.skipped("composer dry run did not complete; dependency freshness inconclusive")

        prod_current = is_up_to_date(prod.output)
        all_current = is_up_to_date(everything.output)
        outputs_differ = normalize_output(prod.output) != normalize_output(everything.output)

        lock_path = source.path(COMPOSER_LOCK)
        if not prod_current:
            if outputs_differ:
                scope, message, recommendation = (
                    "production and dev", "Production and development dependencies are not up-to-date",
                    BOTH_RECOMMENDATION)
            else:
                scope, message, recommendation = (
                    "production", "Production dependencies are not up-to-date", PRODUCTION_RECOMMENDATION)
            severity = Severity.MEDIUM
        elif not all_current:
            scope, message, recommendation = (
                "dev", "Development dependencies are not up-to-date", DEV_RECOMMENDATION)
            severity = Severity.LOW
        else:
            return self.passed("All dependencies are up-to-date")

        finding = self.finding(
            source, lock_path, 1, message, severity, recommendation,
            metadata={
                "scope": scope,
                "composer_version_check": "install --dry-run" + (" --no-dev" if scope == "production" else ""),
                "heuristic": True,
            },
        )
        return self.result("Found 1 dependency update issue(s)", [finding])

    def _dry_run(self, root, no_dev: bool) -> Optional[CommandOutcome]:
        args = DRY_RUN + (["--no-dev"] if no_dev else [])
        outcome = self.command_runner(args, cwd=root, timeout=self.config.command_timeout)
        if outcome is None:
            return None
        if not outcome.ok:
            logger.debug("%s exited with %s", " ".join(args), outcome.returncode)
            return None
        return outcome
