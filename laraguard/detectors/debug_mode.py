"""
Debug mode
==========
Flags ``APP_DEBUG`` enabled in ``.env``, ``debug`` forced on in
``config/app.php``, and leftover dump helpers (``dd()``, ``var_dump()``...)
in application code. Only relevant to production-like environments.
"""

import logging
from pathlib import Path
from typing import List

from ..detector import Detector, ParseTally, RunContext, collect_per_file, docs_url, plural
from ..models import Category, DetectorDescriptor, Finding, Resolution, RunResult, Severity
from ..resolver import as_bool, parse_config_table
from ..source import ProjectSource
from ..syntax import ParseFailure, call_name, find_nodes, get_node_line, parse

logger = logging.getLogger(__name__)

APP_CONFIG = ("config", "app.php")

LOCAL_ENVIRONMENTS = {"local", "development", "testing"}
TRUTHY = {"true", "1", "yes", "on", "(true)"}

DEBUG_FUNCTIONS = {
    "dd": Severity.HIGH,
    "dump": Severity.HIGH,
    "var_dump": Severity.HIGH,
    "print_r": Severity.HIGH,
    "ray": Severity.HIGH,
    "var_export": Severity.MEDIUM,
    "debug_backtrace": Severity.MEDIUM,
    "debug_print_backtrace": Severity.MEDIUM,
}

_TEST_DIRS = {"tests", "test"}


class DebugModeDetector(Detector):
    descriptor = DetectorDescriptor(
        id="debug-mode",
        name="Debug Mode",
        description="Detects debug mode enabled and debugging functions that expose sensitive information",
        category=Category.SECURITY,
        default_severity=Severity.CRITICAL,
        tags=frozenset({"debug", "information-disclosure", "configuration"}),
        estimated_fix_minutes=5,
        relevant_environments=frozenset({"production", "staging"}),
        docs_url=docs_url("debug-mode"),
    )

    def is_applicable(self, context: RunContext) -> bool:
        source = self.source(context)
        return source.exists(".env") or source.exists(*APP_CONFIG) or bool(source.list_files([".php"]))

    def skip_reason(self) -> str:
        return "No configuration files, environment files, or PHP code found to analyze"

    def run(self, context: RunContext) -> RunResult:
        source = self.source(context)
        tally = ParseTally()
        findings: List[Finding] = []
        findings.extend(self.check_env_file(source, tally))
        findings.extend(self.check_app_config(source))

        files = [f for f in source.list_files([".php"]) if not self._is_test_file(source, f)]
        findings.extend(collect_per_file(
            files, lambda f: self.check_debug_functions(source, f, tally), self.config.worker_count(),
        ))

        return self.conclude(tally, findings, "No debug mode security issues detected",
                             f"Found {plural(len(findings), 'debug mode security issue')}")

    def check_env_file(self, source: ProjectSource, tally: ParseTally) -> List[Finding]:
        env = source.read_env_file()
        if not env:
            return []
        tally.mark_analysed()
        app_env = env["APP_ENV"].value if "APP_ENV" in env else None
        if app_env is not None and app_env.lower() in LOCAL_ENVIRONMENTS:
            return []
        debug = env.get("APP_DEBUG")
        if debug is None or debug.value.lower() not in TRUTHY:
            return []
        return [self.finding(
            source, source.path(".env"), debug.line,
            f"Debug mode is enabled (APP_DEBUG=true) in {app_env or 'unknown'} environment",
            Severity.CRITICAL,
            "Set APP_DEBUG=false in production/staging environments to prevent information disclosure",
            metadata={"file": ".env", "env_var": "APP_DEBUG", "value": debug.value, "app_env": app_env},
        )]

    def check_app_config(self, source: ProjectSource) -> List[Finding]:
        path = source.path(*APP_CONFIG)
        if not path.is_file():
            return []
        content = source.read_text(path)
        if content is None:
            return []
        tree = parse(content, str(path))
        if isinstance(tree, ParseFailure):
            logger.debug("Skipping %s: %s", path, tree.reason)
            return []

        table = parse_config_table(tree)
        entry = table.get("debug")
        if entry is None or not entry.is_determinate or as_bool(entry.value) is not True:
            return []
        if entry.resolution is Resolution.LITERAL:
            return [self.finding(
                source, path, entry.source_line,
                "Debug mode hardcoded to true in config/app.php",
                Severity.CRITICAL,
                'Use env("APP_DEBUG", false) instead of hardcoded true',
                metadata={"file": "app.php", "config_key": "debug", "value": "true"},
            )]
        return [self.finding(
            source, path, entry.source_line,
            "Debug mode defaults to true in config/app.php when APP_DEBUG is not set",
            Severity.HIGH,
            'Use env("APP_DEBUG", false) so a missing APP_DEBUG keeps debug mode off',
            metadata={"file": "app.php", "config_key": "debug", "value": "true",
                      "resolution": entry.resolution.value, "env_var": table.env_var("debug")},
        )]

    def check_debug_functions(self, source: ProjectSource, file_path: Path,
                              tally: ParseTally) -> List[Finding]:
        content = source.read_text(file_path)
        if content is None:
            return []
        tree = parse(content, str(file_path))
        if not tally.record(tree, source.relative(file_path)):
            return []

        findings = []
        for call in find_nodes(tree, "function_call_expression"):
            # PHP function names are case-insensitive
            name = call_name(call).lower()
            severity = DEBUG_FUNCTIONS.get(name)
            if severity is None:
                continue
            findings.append(self.finding(
                source, file_path, get_node_line(call),
                f"Debug function {name}() found in production code",
                severity,
                f"Remove {name}() calls before deploying to production or replace with structured logging",
                metadata={"function": name, "file": file_path.name},
            ))
        return findings

    @staticmethod
    def _is_test_file(source: ProjectSource, file_path: Path) -> bool:
        parts = source.relative(file_path).lower().split('/')
        return bool(_TEST_DIRS.intersection(parts[:-1])) or parts[-1].endswith("test.php")
