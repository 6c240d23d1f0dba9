"""
Cookie security
===============
- ``config/session.php``: ``http_only``, ``secure`` and ``same_site`` as
  statically resolved by the config value resolver. Keys that resolve to
  Indeterminate are not evaluated.
- EncryptCookies middleware: asked of the live introspection probe first,
  then looked up in ``app/Http/Kernel.php`` or, for applications without
  an HTTP kernel, ``bootstrap/app.php``.
"""

import logging
import re
from typing import List, Optional

from ..detector import Detector, ParseTally, RunContext, docs_url, plural
from ..models import Category, DetectorDescriptor, Finding, RunResult, Severity
from ..probe import LiveIntrospectionProbe, NullIntrospectionProbe, ProbeAnswer
from ..resolver import ConfigTable, as_bool, parse_config_table
from ..source import ProjectSource
from ..syntax import find_member_calls, find_nodes_multi, node_text, parse_file

logger = logging.getLogger(__name__)

SESSION_CONFIG = ("config", "session.php")
HTTP_KERNEL = ("app", "Http", "Kernel.php")
BOOTSTRAP_APP = ("bootstrap", "app.php")

MIDDLEWARE = "EncryptCookies"

_LINE_COMMENT = re.compile(r'^\s*//')


def _display(value) -> str:
    if value is None:
        return "null"
    if isinstance(value, bool):
        return "true" if value else "false"
    return str(value)


class CookieSecurityDetector(Detector):
    descriptor = DetectorDescriptor(
        id="cookie-security",
        name="Cookie Security",
        description="Checks session cookie flags and cookie encryption middleware",
        category=Category.SECURITY,
        default_severity=Severity.HIGH,
        tags=frozenset({"cookies", "session", "xss", "csrf", "encryption"}),
        estimated_fix_minutes=10,
        docs_url=docs_url("cookie-security"),
    )

    def __init__(self, config=None, probe: Optional[LiveIntrospectionProbe] = None):
        super().__init__(config)
        self.probe = probe or NullIntrospectionProbe()

    def is_applicable(self, context: RunContext) -> bool:
        source = self.source(context)
        return any(source.exists(*p) for p in (SESSION_CONFIG, HTTP_KERNEL, BOOTSTRAP_APP))

    def skip_reason(self) -> str:
        return "No session configuration, HTTP kernel or bootstrap/app.php found"

    def run(self, context: RunContext) -> RunResult:
        source = self.source(context)
        tally = ParseTally()
        findings: List[Finding] = []
        findings.extend(self.check_session_config(source, tally))
        findings.extend(self.check_encrypt_cookies(source, tally))

        # Any unparsable config file leaves the cookie setup unknown
        if tally.unparsable and not findings:
            return self.error(tally.describe())
        return self.conclude(tally, findings, "Cookie security configuration is properly set",
                             f"Found {plural(len(findings), 'cookie security issue')}")

    # ------------------------------------------------------------------
    # config/session.php
    # ------------------------------------------------------------------

    def check_session_config(self, source: ProjectSource, tally: ParseTally) -> List[Finding]:
        path = source.path(*SESSION_CONFIG)
        if not path.is_file():
            return []
        tree = parse_file(path)
        if not tally.record(tree, source.relative(path)):
            return []
        table = parse_config_table(tree)
        findings = []

        entry = table.get("http_only")
        if entry is not None and entry.is_determinate and as_bool(entry.value) is False:
            findings.append(self._session_finding(
                source, table, "http_only",
                "Session cookies are not secured with HttpOnly flag",
                Severity.CRITICAL,
                'Set "http_only" => true in config/session.php to protect against XSS attacks',
            ))

        entry = table.get("secure")
        if entry is not None and entry.is_determinate and as_bool(entry.value) is False:
            findings.append(self._session_finding(
                source, table, "secure",
                "Session cookies are not restricted to HTTPS (secure flag disabled)",
                Severity.HIGH,
                'Set "secure" => env("SESSION_SECURE_COOKIE", true) for HTTPS-only applications',
            ))

        entry = table.get("same_site")
        if entry is not None and entry.is_determinate:
            value = entry.value
            weak = value is None or (isinstance(value, str) and value.lower() in ("null", "none"))
            if weak:
                findings.append(self._session_finding(
                    source, table, "same_site",
                    "Session cookies have weak SameSite protection",
                    Severity.MEDIUM,
                    'Use "same_site" => "lax" or "strict" to protect against CSRF attacks',
                ))

        for key, line in table.duplicates:
            first = table.get(key)
            findings.append(self.finding(
                source, path, line,
                f'Session config key "{key}" is assigned more than once (first at line {first.source_line})',
                Severity.LOW,
                "Remove the duplicate entry; PHP keeps the last assignment, "
                "which may not be the one that was reviewed",
                metadata={"file": "session.php", "config_key": key, "first_line": first.source_line},
            ))
        return findings

    def _session_finding(self, source: ProjectSource, table: ConfigTable, key: str,
                         message: str, severity: Severity, recommendation: str) -> Finding:
        entry = table.get(key)
        metadata = {
            "file": "session.php",
            "config_key": key,
            "current_value": _display(entry.value),
            "resolution": entry.resolution.value,
        }
        env_var = table.env_var(key)
        if env_var:
            metadata["env_var"] = env_var
        return self.finding(
            source, source.path(*SESSION_CONFIG), entry.source_line, message, severity, recommendation,
            metadata=metadata,
        )

    # ------------------------------------------------------------------
    # EncryptCookies middleware
    # ------------------------------------------------------------------

    def check_encrypt_cookies(self, source: ProjectSource, tally: ParseTally) -> List[Finding]:
        answer = self.probe.middleware_registered(MIDDLEWARE)
        if answer is ProbeAnswer.YES:
            return []
        if answer is ProbeAnswer.NO:
            config_file = HTTP_KERNEL if source.exists(*HTTP_KERNEL) else BOOTSTRAP_APP
            return [self.finding(
                source, source.path(*config_file), None,
                "EncryptCookies middleware is not registered globally",
                Severity.CRITICAL,
                "Register EncryptCookies middleware globally in app/Http/Kernel.php "
                "or bootstrap/app.php to enable cookie encryption",
                metadata={"middleware": MIDDLEWARE, "status": "missing", "detection_method": "runtime"},
            )]

        if source.exists(*HTTP_KERNEL):
            return self._check_kernel(source)
        if source.exists(*BOOTSTRAP_APP):
            return self._check_bootstrap(source, tally)
        return []

    def _check_kernel(self, source: ProjectSource) -> List[Finding]:
        kernel = source.path(*HTTP_KERNEL)
        content = source.read_text(kernel)
        if content is None:
            return []

        if MIDDLEWARE not in content:
            return [self.finding(
                source, kernel, None,
                "EncryptCookies middleware is not registered in HTTP Kernel",
                Severity.CRITICAL,
                "Add \\App\\Http\\Middleware\\EncryptCookies::class to $middleware array in app/Http/Kernel.php",
                metadata={"file": "Kernel.php", "middleware": MIDDLEWARE, "status": "missing"},
            )]

        findings = []
        for number, line in source.numbered_lines(kernel):
            if MIDDLEWARE in line and _LINE_COMMENT.match(line):
                findings.append(self.finding(
                    source, kernel, number,
                    "EncryptCookies middleware is commented out",
                    Severity.CRITICAL,
                    "Uncomment the EncryptCookies middleware to enable cookie encryption",
                    metadata={"file": "Kernel.php", "middleware": MIDDLEWARE, "status": "commented"},
                ))
        return findings

    def _check_bootstrap(self, source: ProjectSource, tally: ParseTally) -> List[Finding]:
        path = source.path(*BOOTSTRAP_APP)
        tree = parse_file(path)
        if not tally.record(tree, source.relative(path)):
            return []

        if find_member_calls(tree, "encryptCookies", ignore_case=True):
            return []
        for name in find_nodes_multi(tree, {"name", "qualified_name"}):
            if MIDDLEWARE in node_text(name):
                return []
        for string in find_nodes_multi(tree, {"string", "encapsed_string"}):
            text = node_text(string)
            if MIDDLEWARE in text or "encryptCookies" in text:
                return []

        return [self.finding(
            source, path, None,
            "EncryptCookies middleware may not be properly configured in bootstrap/app.php",
            Severity.HIGH,
            "Add EncryptCookies middleware using ->withMiddleware() in bootstrap/app.php "
            "to enable cookie encryption",
            metadata={"file": "bootstrap/app.php", "middleware": MIDDLEWARE, "status": "missing"},
        )]
