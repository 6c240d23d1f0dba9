"""
XSS vulnerabilities
===================
Line scan of PHP files and Blade views for unescaped output of request
data. Lines inside ``<script>`` regions get the stricter JavaScript rules
(Blade ``{{ }}`` escaping is HTML escaping and does not protect a JS
context).

Outside CI, when an application URL is known, the Content-Security-Policy
of the live site is checked as well. Any fetch failure means the header
check is dropped, never a finding.
"""

import logging
import re
from pathlib import Path
from typing import List, Optional

from ..detector import Detector, RunContext, collect_per_file, docs_url
from ..models import Category, DetectorDescriptor, Finding, RunResult, Severity
from ..probe import Fetcher, HttpxFetcher, is_local_url
from ..script_context import ScriptContextTracker
from ..source import ProjectSource

logger = logging.getLogger(__name__)

SUPERGLOBALS = ('$_GET', '$_POST', '$_REQUEST', '$_COOKIE')

RAW_BLADE_OUTPUT = re.compile(r'\{!!.*?!!\}')
ECHO_SUPERGLOBAL = re.compile(r'echo\s+\$_(GET|POST|REQUEST|COOKIE)')
ECHO_REQUEST = re.compile(r'echo\s+.*?request\(')
E_HELPER = re.compile(r'\be\s*\(')
REQUEST_HELPER = re.compile(r'\brequest\s*\(')
REQUEST_ACCESSOR = re.compile(r'(\$request|request\(.*?\))\s*->\s*(input|get|post|query|cookie)\s*\(')
SCRIPT_BLADE_INPUT = re.compile(r'\{\{[^@].*?(\$_(GET|POST|REQUEST|COOKIE)|request\(|->get\(|->post\()')
SCRIPT_JSON_SUPERGLOBAL = re.compile(r'@json\(\$_(GET|POST|REQUEST|COOKIE)')

CSP_META_DOUBLE = re.compile(r'<meta[^>]+http-equiv="Content-Security-Policy"[^>]+content="([^"]+)"',
                             re.IGNORECASE)
CSP_META_SINGLE = re.compile(r"<meta[^>]+http-equiv='Content-Security-Policy'[^>]+content='([^']+)'",
                             re.IGNORECASE)


def might_contain_user_input(line: str) -> bool:
    if any(sg in line for sg in SUPERGLOBALS):
        return True
    if 'Input::' in line or 'Request::' in line:
        return True
    return bool(REQUEST_HELPER.search(line) or REQUEST_ACCESSOR.search(line))


def is_valid_csp(policy: str) -> bool:
    """A policy restricts scripts when it has script-src or default-src and no unsafe-* escape hatch."""
    if 'default-src' not in policy and 'script-src' not in policy:
        return False
    return 'unsafe-eval' not in policy and 'unsafe-inline' not in policy


def csp_from_meta(html: str) -> Optional[str]:
    for pattern in (CSP_META_DOUBLE, CSP_META_SINGLE):
        m = pattern.search(html)
        if m:
            return m.group(1)
    return None


class XssDetector(Detector):
    descriptor = DetectorDescriptor(
        id="xss-vulnerabilities",
        name="XSS Vulnerabilities",
        description="Detects XSS vulnerabilities via code analysis and HTTP header verification",
        category=Category.SECURITY,
        default_severity=Severity.HIGH,
        tags=frozenset({"xss", "cross-site-scripting", "blade", "csp", "headers"}),
        estimated_fix_minutes=30,
        docs_url=docs_url("xss-vulnerabilities"),
    )

    def __init__(self, config=None, fetcher: Optional[Fetcher] = None):
        super().__init__(config)
        self.fetcher = fetcher or HttpxFetcher(self.config.connect_timeout, self.config.read_timeout)

    def is_applicable(self, context: RunContext) -> bool:
        return bool(self.source(context).list_files([".php"]))

    def skip_reason(self) -> str:
        return "No PHP files or Blade views found to analyze"

    def run(self, context: RunContext) -> RunResult:
        source = self.source(context)
        files = source.list_files([".php"])
        findings = collect_per_file(files, lambda f: self.check_file(source, f),
                                    self.config.worker_count())

        check_headers = not (context.ci or self.config.ci_mode)
        if check_headers:
            findings.extend(self.check_headers(context))

        if not findings:
            if check_headers:
                return self.passed("No XSS vulnerabilities detected (code and headers verified)")
            return self.passed("No XSS vulnerabilities detected in code")
        return self.result(f"Found {len(findings)} XSS issue(s)", findings)

    # ------------------------------------------------------------------
    # Code patterns
    # ------------------------------------------------------------------

    def check_file(self, source: ProjectSource, file_path: Path) -> List[Finding]:
        lines = source.get_lines(file_path)
        findings = []

        def add(number, message, severity, recommendation):
            findings.append(self.finding(source, file_path, number, message, severity, recommendation))

        for ctx in ScriptContextTracker().classify(lines):
            if ctx.structural:
                continue
            line = ctx.text

            if RAW_BLADE_OUTPUT.search(line) and might_contain_user_input(line):
                add(ctx.number, "Potential XSS: Unescaped blade output with possible user input",
                    Severity.HIGH,
                    "Use {{ $var }} instead of {!! $var !!} or sanitize with e() helper or Purifier")

            if ECHO_SUPERGLOBAL.search(line):
                add(ctx.number, "Critical XSS: Direct echo of superglobal without escaping",
                    Severity.CRITICAL,
                    'Always escape output: echo htmlspecialchars($_GET["var"], ENT_QUOTES, "UTF-8")')

            if ECHO_REQUEST.search(line) and 'htmlspecialchars' not in line and 'e(' not in line:
                add(ctx.number, "Potential XSS: Echo of request data without escaping",
                    Severity.HIGH, "Use e() helper or htmlspecialchars() to escape output")

            if 'Response::make' in line and not E_HELPER.search(line) \
                    and 'htmlspecialchars' not in line and might_contain_user_input(line):
                add(ctx.number, "Potential XSS: Response::make() with possible unescaped user input",
                    Severity.HIGH,
                    "Escape user input before rendering or use response()->json() for JSON responses")

            if ctx.inside and (SCRIPT_BLADE_INPUT.search(line) or SCRIPT_JSON_SUPERGLOBAL.search(line)):
                add(ctx.number, "Potential XSS: User data in JavaScript without proper encoding",
                    Severity.HIGH,
                    "Use @json() directive for variables or json_encode() with "
                    "JSON_HEX_TAG | JSON_HEX_APOS | JSON_HEX_QUOT | JSON_HEX_AMP flags")
        return findings

    # ------------------------------------------------------------------
    # Content-Security-Policy
    # ------------------------------------------------------------------

    def check_headers(self, context: RunContext) -> List[Finding]:
        url = self.app_url(context)
        if not url or is_local_url(url):
            return []
        response = self.fetcher.fetch(url)
        if response is None:
            logger.debug("CSP check skipped, %s not reachable", url)
            return []

        policy = response.header("Content-Security-Policy") or csp_from_meta(response.body)
        if not policy:
            return [self.remote_finding(
                "HTTP Headers",
                "HTTP XSS: Content-Security-Policy header not set",
                Severity.HIGH,
                "Set Content-Security-Policy header with script-src or default-src directive "
                "without unsafe-eval or unsafe-inline. Example: \"default-src 'self'; script-src 'self'\"",
                metadata={"url": url},
            )]
        if not is_valid_csp(policy):
            return [self.remote_finding(
                "HTTP Headers",
                "HTTP XSS: Content-Security-Policy header is inadequate for XSS protection",
                Severity.HIGH,
                'Set a "script-src" or "default-src" policy directive without "unsafe-eval" '
                'or "unsafe-inline". Current policy may allow inline scripts which defeats XSS protection.',
                metadata={"url": url, "current_csp": policy},
            )]
        return []
