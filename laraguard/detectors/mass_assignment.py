"""
Mass assignment
===============
- Eloquent models (classes directly extending ``Model``) that declare
  neither ``$fillable`` nor ``$guarded``, or that set ``$guarded = []``.
- Model, instance and query builder writes fed straight from unfiltered
  request data (``User::create($request->all())``).

Models inheriting ``Model`` through an intermediate base class are not
resolved.
"""

from pathlib import Path
from typing import List, Optional

from tree_sitter import Node

from ..detector import Detector, ParseTally, RunContext, collect_per_file, docs_url
from ..models import Category, DetectorDescriptor, Finding, RunResult, Severity
from ..source import ProjectSource
from ..syntax import (
    MEMBER_CALL_KINDS, SyntaxTree, call_arguments, call_name,
    call_object, call_scope, class_name, class_properties, find_classes_extending,
    find_nodes, find_nodes_multi, get_node_line, node_text, parse, unwrap,
)

MODEL_SUPERTYPES = {"Model", "Illuminate\\Database\\Eloquent\\Model"}

MODEL_STATIC_METHODS = {
    "create", "forceCreate", "firstOrCreate", "updateOrCreate", "firstOrNew",
    "make", "insert", "upsert", "insertOrIgnore",
}
MODEL_INSTANCE_METHODS = {"fill", "forceFill", "update"}
BUILDER_METHODS = {
    "update", "insert", "upsert", "insertOrIgnore", "insertUsing", "insertGetId", "updateOrInsert",
}

REQUEST_DATA_METHODS = {"all", "input", "post", "get", "query", "except", "json"}
# Called with a key these only read one field
KEYED_READ_METHODS = {"input", "get", "post", "query"}

_CALL_LABELS = {
    "static": "Static call to",
    "instance": "Instance call to",
    "builder": "Query builder call to",
}


def is_request_data(node: Node) -> bool:
    """Whether an argument expression hands over the whole request payload."""
    node = unwrap(node)
    if node.type in MEMBER_CALL_KINDS:
        method = call_name(node)
        if method not in REQUEST_DATA_METHODS:
            return False
        receiver = call_object(node)
        if receiver is None:
            return False
        from_request = (
            (receiver.type == "function_call_expression" and call_name(receiver) == "request")
            or (receiver.type == "variable_name" and node_text(receiver) == "$request")
        )
        if not from_request:
            return False
        return not (method in KEYED_READ_METHODS and call_arguments(node))

    if node.type == "scoped_call_expression":
        if call_name(node) not in REQUEST_DATA_METHODS:
            return False
        scope = call_scope(node) or ""
        return "Request" in scope or scope == "Input" or scope.endswith("\\Input")
    return False


def is_builder_receiver(call: Node) -> bool:
    receiver = call_object(call)
    if receiver is None:
        return False
    if receiver.type == "scoped_call_expression":
        scope = call_scope(receiver) or ""
        return scope == "DB" or scope.endswith("\\DB")
    if receiver.type in MEMBER_CALL_KINDS:
        return call_name(receiver) in ("query", "table")
    return False


class MassAssignmentDetector(Detector):
    descriptor = DetectorDescriptor(
        id="mass-assignment",
        name="Mass Assignment",
        description="Detects mass assignment vulnerabilities in Eloquent models and query builders",
        category=Category.SECURITY,
        default_severity=Severity.HIGH,
        tags=frozenset({"mass-assignment", "eloquent", "models"}),
        estimated_fix_minutes=25,
        docs_url=docs_url("mass-assignment"),
    )

    def is_applicable(self, context: RunContext) -> bool:
        return self.source(context).path("app", "Models").is_dir()

    def skip_reason(self) -> str:
        return "No app/Models directory found"

    def run(self, context: RunContext) -> RunResult:
        source = self.source(context)
        files = source.list_files([".php"])
        tally = ParseTally()
        findings = collect_per_file(files, lambda f: self.check_file(source, f, tally),
                                    self.config.worker_count())
        count = len(findings)
        noun = "vulnerability" if count == 1 else "vulnerabilities"
        return self.conclude(tally, findings, "No mass assignment vulnerabilities detected",
                             f"Found {count} potential mass assignment {noun}")

    def check_file(self, source: ProjectSource, file_path: Path, tally: ParseTally) -> List[Finding]:
        content = source.read_text(file_path)
        if content is None:
            return []
        tree = parse(content, str(file_path))
        if not tally.record(tree, source.relative(file_path)):
            return []
        findings = []
        for cls in find_classes_extending(tree, MODEL_SUPERTYPES):
            findings.extend(self._check_model(source, file_path, cls))
        findings.extend(self._check_writes(source, file_path, tree))
        return findings

    def _check_model(self, source: ProjectSource, file_path: Path, cls: Node) -> List[Finding]:
        name = class_name(cls) or "Unknown"
        line = get_node_line(cls)
        props = class_properties(cls)
        findings = []

        if "fillable" not in props and "guarded" not in props:
            findings.append(self.finding(
                source, file_path, line,
                f"Model '{name}' lacks mass assignment protection ($fillable or $guarded)",
                Severity.HIGH,
                'Add protected $fillable = [...] or protected $guarded = ["*"] to the model',
                metadata={"model": name, "issue_type": "missing_model_protection"},
            ))

        guarded = props.get("guarded")
        if guarded is not None and guarded.type == "array_creation_expression" \
                and not find_nodes(guarded, "array_element_initializer"):
            findings.append(self.finding(
                source, file_path, line,
                f"Model '{name}' has $guarded = [] which allows mass assignment of all attributes",
                Severity.CRITICAL,
                'Either specify fillable attributes or use $guarded = ["*"] to protect all',
                metadata={"model": name, "issue_type": "empty_guarded_array"},
            ))
        return findings

    def _check_writes(self, source: ProjectSource, file_path: Path, tree: SyntaxTree) -> List[Finding]:
        findings = []
        for call in find_nodes_multi(tree, {"scoped_call_expression"} | MEMBER_CALL_KINDS):
            method = call_name(call)
            call_type = self._call_type(call, method)
            if call_type is None:
                continue
            if not any(is_request_data(arg) for arg in call_arguments(call)):
                continue
            findings.append(self.finding(
                source, file_path, get_node_line(call),
                f"{_CALL_LABELS[call_type]} {method}() with unfiltered request data "
                "may result in mass assignment vulnerability",
                Severity.CRITICAL,
                "Use request()->only([...]) or request()->validated() to specify allowed fields explicitly",
                metadata={"method": method, "call_type": call_type,
                          "issue_type": "dangerous_method_with_request_data"},
            ))
        return findings

    @staticmethod
    def _call_type(call: Node, method: str) -> Optional[str]:
        if call.type == "scoped_call_expression":
            return "static" if method in MODEL_STATIC_METHODS else None
        if method in BUILDER_METHODS and is_builder_receiver(call):
            return "builder"
        if method in MODEL_INSTANCE_METHODS:
            return "instance"
        return None
