"""
.env HTTP accessibility
=======================
Requests well-known ``.env`` locations under the application URL and
reports those that answer 200 with content that looks like an environment
file.

Transport errors, timeouts and non-200 answers all count as "not
reachable": this check only reports what it could actually download.
Not run in CI, and skipped for localhost URLs.
"""

import re
from typing import List, Optional

from ..detector import Detector, RunContext, docs_url
from ..models import Category, DetectorDescriptor, Finding, RunResult, Severity
from ..probe import Fetcher, FetchResponse, HttpxFetcher, base_url, is_local_url

ENV_PATHS = [
    '.env',
    '../.env',
    '../../.env',
    '../../../.env',
    'storage/.env',
    'public/.env',
    'app/.env',
    'config/.env',
]

ENV_INDICATORS = [
    'APP_NAME=',
    'APP_ENV=',
    'APP_KEY=',
    'DB_CONNECTION=',
    'DB_HOST=',
    'DB_DATABASE=',
    'DB_USERNAME=',
    'DB_PASSWORD=',
]

_KEY_VALUE = re.compile(r'^[A-Z_][A-Z0-9_]*\s*=\s*.+$', re.MULTILINE)

_ACTION = 'IMMEDIATE ACTION REQUIRED: '


def env_indicators(response: Optional[FetchResponse]) -> List[str]:
    """Evidence that a response body is an environment file; empty when it is not."""
    if response is None or response.status != 200:
        return []
    found = [i for i in ENV_INDICATORS if i in response.body]
    if len(found) >= 2:
        return found
    if _KEY_VALUE.search(response.body):
        return ['KEY=VALUE pattern detected']
    return []


def severity_for_path(path: str) -> Severity:
    if 'public/' in path or path in ('.env', '../.env'):
        return Severity.CRITICAL
    if 'storage/' in path or 'app/' in path or 'config/' in path:
        return Severity.HIGH
    return Severity.MEDIUM


def recommendation_for_path(path: str) -> str:
    if 'public/' in path:
        return (_ACTION + 'Remove .env from the public directory immediately. '
                'The .env file must NEVER be in a publicly accessible directory. '
                'Configure your web server to serve only from public/ and keep .env one level above.')
    if path in ('.env', '../.env'):
        return (_ACTION + 'Configure your web server to block access to .env files. '
                'Add deny rules in .htaccess (Apache): "RewriteRule ^\\.env$ - [F,L]" or '
                'nginx config: "location ~ /\\.env { deny all; }" '
                'Also ensure your document root is set to public/ directory.')
    return (_ACTION + 'Configure your web server to block directory traversal and access to .env files. '
            'Review your web server configuration and ensure path traversal attacks are blocked.')


class EnvHttpAccessibilityDetector(Detector):
    descriptor = DetectorDescriptor(
        id="env-http-accessibility",
        name="Environment File HTTP Accessibility",
        description="Verifies .env file is not accessible via HTTP requests to the web server",
        category=Category.SECURITY,
        default_severity=Severity.CRITICAL,
        tags=frozenset({"env", "http", "runtime", "web-server", "deployment"}),
        estimated_fix_minutes=20,
        runs_in_ci=False,
        docs_url=docs_url("env-http-accessibility"),
    )

    def __init__(self, config=None, fetcher: Optional[Fetcher] = None):
        super().__init__(config)
        self.fetcher = fetcher or HttpxFetcher(self.config.connect_timeout, self.config.read_timeout)
        self._skip_reason = "No application URL configured for HTTP accessibility check"

    def is_applicable(self, context: RunContext) -> bool:
        url = self.app_url(context)
        if url is None:
            self._skip_reason = "No application URL configured for HTTP accessibility check"
            return False
        if is_local_url(url):
            self._skip_reason = "Skipped for localhost URLs (local development environment)"
            return False
        if base_url(url) is None:
            self._skip_reason = f"Application URL {url!r} has no host to probe"
            return False
        return True

    def skip_reason(self) -> str:
        return self._skip_reason

    def run(self, context: RunContext) -> RunResult:
        url = self.app_url(context)
        root_url = base_url(url) if url is not None else None
        if root_url is None:
            return self.skipped(self._skip_reason)

        findings: List[Finding] = []
        tested = set()
        for path in ENV_PATHS:
            test_url = root_url.rstrip('/') + '/' + path.lstrip('/')
            if test_url in tested:
                continue
            tested.add(test_url)

            indicators = env_indicators(self.fetcher.fetch(test_url))
            if not indicators:
                continue
            # Located at the URL, there is no local line to point at
            findings.append(self.remote_finding(
                test_url,
                f'.env file is publicly accessible via HTTP at: {test_url}',
                severity_for_path(path),
                recommendation_for_path(path),
                metadata={"url": test_url, "path": path, "accessible": True,
                          "indicators_found": indicators},
            ))

        if not findings:
            return self.passed('.env file is not accessible via HTTP - web server properly configured')
        if any(f.severity is Severity.CRITICAL for f in findings):
            return self.result(
                f'CRITICAL SECURITY ISSUE: .env file is publicly accessible at {len(findings)} location(s)!',
                findings)
        return self.result(f'Found {len(findings)} potential .env accessibility issue(s)', findings)
