"""Tests for the cookie-security and debug-mode detectors."""

from laraguard.config import EngineConfig
from laraguard.detector import RunContext
from laraguard.detectors import CookieSecurityDetector, DebugModeDetector
from laraguard.models import Severity, Status
from laraguard.probe import LiveIntrospectionProbe, ProbeAnswer
from laraguard.runner import DetectorRunner

SESSION_HTTP_ONLY_OFF = """
<?php

use Illuminate\\Support\\Str;

return [
    'driver' => env('SESSION_DRIVER', 'file'),
    'lifetime' => 120,
    'expire_on_close' => false,
    'encrypt' => false,
    'cookie' => 'laravel_session',
    'secure' => env('SESSION_SECURE_COOKIE'),
    'http_only' => false,
    'same_site' => 'lax',
];
"""

SESSION_ENV_DEFAULTS = """
<?php

return [
    'secure' => env('SESSION_SECURE_COOKIE', false),
    'http_only' => env('SESSION_HTTP_ONLY', true),
    'same_site' => null,
];
"""

KERNEL_OK = """
<?php

namespace App\\Http;

class Kernel
{
    protected $middleware = [
        \\App\\Http\\Middleware\\EncryptCookies::class,
    ];
}
"""

KERNEL_COMMENTED = """
<?php

namespace App\\Http;

class Kernel
{
    protected $middleware = [
        // \\App\\Http\\Middleware\\EncryptCookies::class,
    ];
}
"""

KERNEL_MISSING = """
<?php

namespace App\\Http;

class Kernel
{
    protected $middleware = [];
}
"""

BOOTSTRAP_PLAIN = """
<?php

use Illuminate\\Foundation\\Application;

return Application::configure(dirname(__DIR__))
    ->withRouting(__DIR__ . '/../routes/web.php')
    ->create();
"""

BOOTSTRAP_ENCRYPTS = """
<?php

use Illuminate\\Foundation\\Application;

return Application::configure(dirname(__DIR__))
    ->withMiddleware(function ($middleware) {
        $middleware->encryptCookies(['theme']);
    })
    ->create();
"""


class FixedProbe(LiveIntrospectionProbe):
    def __init__(self, answer):
        self.answer = answer

    def middleware_registered(self, middleware):
        return self.answer


class TestCookieSecurity:
    """config/session.php flags and EncryptCookies registration."""

    def test_http_only_disabled(self, project, context, config):
        project({"config/session.php": SESSION_HTTP_ONLY_OFF})
        result = CookieSecurityDetector(config).run(context)
        assert result.status is Status.FAILED
        assert len(result.findings) == 1
        finding = result.findings[0]
        assert finding.severity is Severity.CRITICAL
        assert finding.location.path == "config/session.php"
        assert finding.location.line == 12
        assert finding.metadata["config_key"] == "http_only"
        assert finding.metadata["current_value"] == "false"
        assert ">12 |" in finding.code_snippet

    def test_env_defaults_are_analysed(self, project, context, config):
        project({"config/session.php": SESSION_ENV_DEFAULTS})
        findings = CookieSecurityDetector(config).run(context).findings
        by_key = {f.metadata["config_key"]: f for f in findings}
        assert set(by_key) == {"secure", "same_site"}
        assert by_key["secure"].severity is Severity.HIGH
        assert by_key["secure"].metadata["resolution"] == "env_default"
        assert by_key["secure"].metadata["env_var"] == "SESSION_SECURE_COOKIE"
        assert "env_var" not in by_key["same_site"].metadata
        assert by_key["same_site"].severity is Severity.MEDIUM

    def test_indeterminate_keys_are_not_evaluated(self, project, context, config):
        project({"config/session.php": "<?php\nreturn ['http_only' => env('X'), "
                                       "'secure' => config('app.secure')];\n"})
        result = CookieSecurityDetector(config).run(context)
        assert result.status is Status.PASSED
        assert result.summary == "Cookie security configuration is properly set"

    def test_duplicate_keys(self, project, context, config):
        project({"config/session.php": "<?php\nreturn [\n    'secure' => true,\n    'secure' => false,\n];\n"})
        findings = CookieSecurityDetector(config).run(context).findings
        assert [(f.severity, f.location.line) for f in findings] == [(Severity.LOW, 4)]
        assert findings[0].metadata["first_line"] == 3

    def test_kernel_registered(self, project, context, config):
        project({"app/Http/Kernel.php": KERNEL_OK})
        assert CookieSecurityDetector(config).run(context).status is Status.PASSED

    def test_kernel_missing_middleware(self, project, context, config):
        project({"app/Http/Kernel.php": KERNEL_MISSING})
        finding = CookieSecurityDetector(config).run(context).findings[0]
        assert finding.severity is Severity.CRITICAL
        assert finding.location.line is None
        assert finding.metadata["status"] == "missing"

    def test_kernel_commented_out(self, project, context, config):
        project({"app/Http/Kernel.php": KERNEL_COMMENTED})
        finding = CookieSecurityDetector(config).run(context).findings[0]
        assert finding.message == "EncryptCookies middleware is commented out"
        assert finding.location.line == 8

    def test_bootstrap_without_encryption(self, project, context, config):
        project({"bootstrap/app.php": BOOTSTRAP_PLAIN})
        finding = CookieSecurityDetector(config).run(context).findings[0]
        assert finding.severity is Severity.HIGH
        assert finding.location.path == "bootstrap/app.php"

    def test_bootstrap_with_encryption(self, project, context, config):
        project({"bootstrap/app.php": BOOTSTRAP_ENCRYPTS})
        assert CookieSecurityDetector(config).run(context).findings == ()

    def test_probe_answer_wins(self, project, context, config):
        project({"app/Http/Kernel.php": KERNEL_MISSING})
        assert CookieSecurityDetector(config, probe=FixedProbe(ProbeAnswer.YES)).run(context).findings == ()

        project({"app/Http/Kernel.php": KERNEL_OK})
        findings = CookieSecurityDetector(config, probe=FixedProbe(ProbeAnswer.NO)).run(context).findings
        assert findings[0].message == "EncryptCookies middleware is not registered globally"
        assert findings[0].metadata["detection_method"] == "runtime"

    def test_unparsable_session_config_is_an_error(self, project, context, config):
        project({"config/session.php": "<?php\nreturn ['http_only' => false,\n"})
        result = CookieSecurityDetector(config).run(context)
        assert result.status is Status.ERROR
        assert result.summary == "Unable to parse 1 file: config/session.php"

    def test_unparsable_session_config_beside_kernel_finding(self, project, context, config):
        project({
            "config/session.php": "<?php\nreturn ['http_only' => false,\n",
            "app/Http/Kernel.php": KERNEL_MISSING,
        })
        result = CookieSecurityDetector(config).run(context)
        assert result.status is Status.FAILED
        assert result.summary == "Found 1 cookie security issue (1 file could not be parsed)"

    def test_unparsable_bootstrap_is_an_error(self, project, context, config):
        project({"bootstrap/app.php": "<?php\nreturn Application::configure(\n"})
        result = CookieSecurityDetector(config).run(context)
        assert result.status is Status.ERROR
        assert "bootstrap/app.php" in result.summary

    def test_not_applicable_without_files(self, context, config):
        assert not CookieSecurityDetector(config).is_applicable(context)


class TestDebugMode:
    """.env, config/app.php and leftover dump helpers."""

    def test_env_debug_in_production(self, project, context, config):
        project({".env": "APP_ENV=production\nAPP_DEBUG=true\n"})
        finding = DebugModeDetector(config).run(context).findings[0]
        assert finding.severity is Severity.CRITICAL
        assert finding.location.path == ".env"
        assert finding.location.line == 2
        assert finding.message == "Debug mode is enabled (APP_DEBUG=true) in production environment"

    def test_env_debug_in_local_is_fine(self, project, context, config):
        project({".env": "APP_ENV=local\nAPP_DEBUG=true\n"})
        assert DebugModeDetector(config).run(context).status is Status.PASSED

    def test_hardcoded_config(self, project, context, config):
        project({"config/app.php": "<?php\nreturn [\n    'debug' => true,\n];\n"})
        finding = DebugModeDetector(config).run(context).findings[0]
        assert finding.severity is Severity.CRITICAL
        assert finding.location.line == 3

    def test_env_default_true(self, project, context, config):
        project({"config/app.php": "<?php\nreturn ['debug' => env('APP_DEBUG', true)];\n"})
        finding = DebugModeDetector(config).run(context).findings[0]
        assert finding.severity is Severity.HIGH
        assert finding.metadata["env_var"] == "APP_DEBUG"

    def test_cast_env_lookup_is_not_evaluated(self, project, context, config):
        project({"config/app.php": "<?php\nreturn ['debug' => (bool) env('APP_DEBUG', false)];\n"})
        assert DebugModeDetector(config).run(context).status is Status.PASSED

    def test_debug_functions(self, project, context, config):
        project({
            "app/Http/Controllers/HomeController.php":
                "<?php\nclass HomeController {\n    public function index() {\n"
                "        DD($user);\n        var_export($x);\n        $logger->dump($y);\n    }\n}\n",
            "app/Support/DebugTest.php": "<?php\ndd(1);\n",
            "app/Broken.php": "<?php\nfunction (\n",
        })
        findings = DebugModeDetector(config).run(context).findings
        assert [(f.metadata["function"], f.severity, f.location.line) for f in findings] == [
            ("dd", Severity.HIGH, 4),
            ("var_export", Severity.MEDIUM, 5),
        ]

    def test_nothing_parsable_is_an_error(self, project, context, config):
        project({"app/Broken.php": "<?php\nfunction (\n", "config/app.php": "<?php\nreturn [\n"})
        result = DebugModeDetector(config).run(context)
        assert result.status is Status.ERROR
        assert result.summary == "Unable to parse 2 files: app/Broken.php, config/app.php"

    def test_env_file_counts_as_analysed(self, project, context, config):
        project({".env": "APP_ENV=production\nAPP_DEBUG=false\n", "app/Broken.php": "<?php\nfunction (\n"})
        result = DebugModeDetector(config).run(context)
        assert result.status is Status.PASSED
        assert result.summary == "No debug mode security issues detected (1 file could not be parsed)"

    def test_skipped_outside_production(self, project, tmp_path):
        project({".env": "APP_ENV=production\nAPP_DEBUG=true\n"})
        runner = DetectorRunner([DebugModeDetector()], EngineConfig(workers=1))
        report = runner.run(RunContext(root=tmp_path, environment="local"))
        assert report.results[0].status is Status.SKIPPED
