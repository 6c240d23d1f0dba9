"""Tests for the unguarded-models, mass-assignment and xss-vulnerabilities detectors."""

from dataclasses import replace

from laraguard.config import EngineConfig
from laraguard.detector import RunContext
from laraguard.detectors import MassAssignmentDetector, UnguardedModelsDetector, XssDetector
from laraguard.detectors.unguarded import is_eloquent_scope, severity_for_path
from laraguard.detectors.xss import csp_from_meta, is_valid_csp, might_contain_user_input
from laraguard.models import Severity, Status
from laraguard.probe import FetchResponse

from conftest import FakeFetcher

IMPORT_CONTROLLER = """
<?php

namespace App\\Http\\Controllers;

use Illuminate\\Database\\Eloquent\\Model;

class ImportController
{
    public function import()
    {
        Model::unguard();
        User::create([]);
        Model::reguard();
    }

    public function seed()
    {
        Model::unguard();
    }
}
"""


class TestUnguardedModels:
    """unguard()/reguard() pairing per file."""

    def test_unpaired_unguard_in_controller(self, project, context, config):
        project({"app/Http/Controllers/ImportController.php": IMPORT_CONTROLLER})
        result = UnguardedModelsDetector(config).run(context)
        assert result.status is Status.FAILED
        assert len(result.findings) == 1
        finding = result.findings[0]
        assert finding.location.line == 18
        assert finding.severity is Severity.CRITICAL
        assert finding.message.endswith("(Model::unguard())")
        assert result.summary == "Found 1 instances of unguarded models"

    def test_seeder_is_medium(self, project, context, config):
        project({"database/seeders/DatabaseSeeder.php": "<?php\nEloquent::unguard();\n"})
        finding = UnguardedModelsDetector(config).run(context).findings[0]
        assert finding.severity is Severity.MEDIUM
        assert finding.message.endswith("(Eloquent::unguard())")

    def test_dynamic_scope_counts(self, project, context, config):
        project({"routes/console.php": "<?php\n$model::unguard();\n"})
        finding = UnguardedModelsDetector(config).run(context).findings[0]
        assert finding.severity is Severity.HIGH
        assert finding.message.endswith("(Model::unguard())")

    def test_other_classes_and_comments_ignored(self, project, context, config):
        project({"routes/web.php": "<?php\n// Model::unguard();\nCollection::unguard();\n"
                                   "$x = 'Model::unguard()';\n"})
        result = UnguardedModelsDetector(config).run(context)
        assert result.status is Status.PASSED
        assert result.summary == "No unguarded models detected"

    def test_unparsable_candidate_is_an_error(self, project, context, config):
        project({
            "app/Console/Import.php": "<?php\nModel::unguard(\n",
            "routes/web.php": "<?php\nRoute::get('/', fn () => view('home'));\n",
        })
        result = UnguardedModelsDetector(config).run(context)
        assert result.status is Status.ERROR
        assert result.summary == "Unable to parse 1 file: app/Console/Import.php"

    def test_helpers(self):
        assert is_eloquent_scope(None)
        assert is_eloquent_scope("\\Illuminate\\Database\\Eloquent\\Model")
        assert not is_eloquent_scope("User")
        assert severity_for_path("app/Services/Importer.php") is Severity.CRITICAL
        assert severity_for_path("database/seeds/Old.php") is Severity.MEDIUM
        assert severity_for_path("routes/api.php") is Severity.HIGH


USER_MODEL = """
<?php

namespace App\\Models;

use Illuminate\\Database\\Eloquent\\Model;

class User extends Model
{
    protected $table = 'users';
}
"""

POST_MODEL = """
<?php

namespace App\\Models;

class Post extends \\Illuminate\\Database\\Eloquent\\Model
{
    protected $guarded = [];
}
"""

SAFE_MODELS = """
<?php

namespace App\\Models;

abstract class Base extends Model
{
    protected $guarded = ['*'];
}

class Tag extends Base
{
}

class Comment extends Model
{
    protected $fillable = ['body'];
}
"""

USER_CONTROLLER = """
<?php

namespace App\\Http\\Controllers;

class UserController
{
    public function store(Request $request)
    {
        User::create($request->all());
        $user->fill(request()->all());
        DB::table('users')->insert($request->input());
        User::create($request->only(['name']));
        User::create(['name' => $request->input('name')]);
        $user->update(Request::all());
        $user->save();
    }
}
"""


class TestMassAssignment:
    def test_model_protection(self, project, context, config):
        project({
            "app/Models/User.php": USER_MODEL,
            "app/Models/Post.php": POST_MODEL,
            "app/Models/Safe.php": SAFE_MODELS,
        })
        findings = MassAssignmentDetector(config).run(context).findings
        summary = sorted((f.metadata["model"], f.metadata["issue_type"], f.severity) for f in findings)
        assert summary == [
            ("Post", "empty_guarded_array", Severity.CRITICAL),
            ("User", "missing_model_protection", Severity.HIGH),
        ]

    def test_request_data_writes(self, project, context, config):
        project({
            "app/Models/.keep": "",
            "app/Http/Controllers/UserController.php": USER_CONTROLLER,
        })
        result = MassAssignmentDetector(config).run(context)
        flagged = [(f.location.line, f.metadata["call_type"], f.metadata["method"]) for f in result.findings]
        assert flagged == [
            (9, "static", "create"),
            (10, "instance", "fill"),
            (11, "builder", "insert"),
            (14, "instance", "update"),
        ]
        assert all(f.severity is Severity.CRITICAL for f in result.findings)
        assert result.summary == "Found 4 potential mass assignment vulnerabilities"

    def test_unparsable_model_is_an_error(self, project, context, config):
        project({"app/Models/User.php": "<?php\nclass User extends Model {\n"})
        result = MassAssignmentDetector(config).run(context)
        assert result.status is Status.ERROR
        assert "app/Models/User.php" in result.summary

    def test_partial_parse_is_noted(self, project, context, config):
        project({
            "app/Models/User.php": "<?php\nclass User extends Model {\n",
            "app/Models/Comment.php": "<?php\nclass Comment extends Model\n{\n    protected $fillable = ['body'];\n}\n",
        })
        result = MassAssignmentDetector(config).run(context)
        assert result.status is Status.PASSED
        assert result.summary == "No mass assignment vulnerabilities detected (1 file could not be parsed)"

    def test_requires_models_directory(self, project, context, config):
        project({"app/Http/Controllers/UserController.php": USER_CONTROLLER})
        detector = MassAssignmentDetector(config)
        assert not detector.is_applicable(context)
        assert detector.skip_reason() == "No app/Models directory found"


SHOW_VIEW = """
<div>{!! request('q') !!}</div>
<div>{{ $name }}</div>
<script>
    var q = "{{ request('q') }}";
</script>
<p>{{ request('q') }}</p>
<div>{!! $trusted !!}</div>
"""


class TestXss:
    """Template line scan plus the CSP header check."""

    def detector(self, config, fetcher=None):
        return XssDetector(config, fetcher=fetcher or FakeFetcher())

    def test_view_patterns(self, project, context, config):
        project({"resources/views/show.blade.php": SHOW_VIEW})
        findings = self.detector(config).run(context).findings
        assert [(f.location.line, f.severity) for f in findings] == [
            (1, Severity.HIGH),
            (4, Severity.HIGH),
        ]
        assert "JavaScript" in findings[1].message

    def test_stray_closing_tag_is_not_script(self, project, context, config):
        project({"resources/views/stray.blade.php": "<p>{{ request('q') }}</script>\n"})
        assert self.detector(config).run(context).findings == ()

    def test_php_echo(self, project, context, config):
        project({"app/legacy.php": "<?php\necho $_GET['name'];\necho e(request('q'));\n"
                                   "echo request('q');\n"})
        findings = self.detector(config).run(context).findings
        assert [(f.location.line, f.severity) for f in findings] == [
            (2, Severity.CRITICAL),
            (4, Severity.HIGH),
        ]

    def test_ci_skips_headers(self, project, tmp_path, config):
        project({"resources/views/ok.blade.php": "<p>{{ $x }}</p>\n",
                 ".env": "APP_URL=https://example.com\n"})
        fetcher = FakeFetcher()
        ci_config = replace(config, ci_mode=True)
        result = self.detector(ci_config, fetcher).run(RunContext(root=tmp_path))
        assert result.summary == "No XSS vulnerabilities detected in code"
        assert fetcher.requested == []

    def test_missing_csp(self, project, context, config):
        project({"resources/views/ok.blade.php": "<p>{{ $x }}</p>\n",
                 ".env": "APP_URL=https://example.com\n"})
        fetcher = FakeFetcher({"https://example.com": FetchResponse(200, "<html></html>", {})})
        finding = self.detector(config, fetcher).run(context).findings[0]
        assert finding.location.path == "HTTP Headers"
        assert finding.message == "HTTP XSS: Content-Security-Policy header not set"

    def test_weak_csp(self, project, context, config):
        project({"resources/views/ok.blade.php": "<p>{{ $x }}</p>\n"})
        cfg = EngineConfig(workers=1, detectors={"xss-vulnerabilities": {"app_url": "https://example.com"}})
        fetcher = FakeFetcher({"https://example.com": FetchResponse(
            200, "", {"content-security-policy": "default-src 'self' 'unsafe-inline'"})})
        finding = self.detector(cfg, fetcher).run(context).findings[0]
        assert finding.metadata["current_csp"] == "default-src 'self' 'unsafe-inline'"

    def test_good_csp_and_unreachable(self, project, context, config):
        project({"resources/views/ok.blade.php": "<p>{{ $x }}</p>\n",
                 ".env": "APP_URL=https://example.com\n"})
        good = FakeFetcher({"https://example.com": FetchResponse(
            200, "", {"Content-Security-Policy": "default-src 'self'"})})
        result = self.detector(config, good).run(context)
        assert result.summary == "No XSS vulnerabilities detected (code and headers verified)"
        assert self.detector(config, FakeFetcher()).run(context).status is Status.PASSED

    def test_localhost_not_fetched(self, project, context, config):
        project({"resources/views/ok.blade.php": "<p>{{ $x }}</p>\n",
                 ".env": "APP_URL=http://localhost:8000\n"})
        fetcher = FakeFetcher()
        self.detector(config, fetcher).run(context)
        assert fetcher.requested == []

    def test_helpers(self):
        assert might_contain_user_input("{!! $request->input('a') !!}")
        assert not might_contain_user_input("{!! $html !!}")
        assert is_valid_csp("script-src 'self'")
        assert not is_valid_csp("img-src *")
        assert csp_from_meta('<meta http-equiv="Content-Security-Policy" content="default-src \'self\'">') \
            == "default-src 'self'"
