"""Tests for the tree-sitter PHP front-end."""

from laraguard.syntax import (
    ParseFailure, SyntaxTree, call_arguments, call_scope, class_name, class_properties,
    find_calls_by_name, find_classes_extending, find_member_calls, get_node_line, parse, parse_file,
)


def tree_of(source):
    tree = parse(source)
    assert isinstance(tree, SyntaxTree)
    return tree


class TestParse:
    def test_valid_source(self):
        tree = tree_of("<?php\n$a = 1;\n")
        assert tree.root.type == "program"
        assert tree.source.splitlines()[1] == "$a = 1;"

    def test_syntax_error_is_a_value(self):
        result = parse("<?php\nfunction broken( {\n", path="broken.php")
        assert isinstance(result, ParseFailure)
        assert result.path == "broken.php"

    def test_unreadable_file(self, tmp_path):
        result = parse_file(tmp_path / "missing.php")
        assert isinstance(result, ParseFailure)
        assert result.reason.startswith("unreadable")


class TestCalls:
    """Call lookup by callee name."""

    SOURCE = (
        "<?php\n"
        "Model::unguard();\n"
        "\\Illuminate\\Database\\Eloquent\\Model::unguard();\n"
        "Model::Unguard();\n"
        "env('APP_DEBUG', false);\n"
        "$user->fill($data);\n"
    )

    def test_static_calls(self):
        calls = find_calls_by_name(tree_of(self.SOURCE), "unguard")
        assert [get_node_line(c) for c in calls] == [2, 3]
        assert [call_scope(c) for c in calls] == ["Model", "Illuminate\\Database\\Eloquent\\Model"]

    def test_case_sensitive(self):
        assert find_calls_by_name(tree_of(self.SOURCE), "UNGUARD") == []

    def test_free_function_call(self):
        calls = find_calls_by_name(tree_of(self.SOURCE), "env")
        assert len(calls) == 1
        assert call_scope(calls[0]) is None
        assert len(call_arguments(calls[0])) == 2

    def test_qualified_free_function(self):
        tree = tree_of("<?php\n\\Illuminate\\Support\\env('A');\n")
        assert len(find_calls_by_name(tree, "env")) == 1

    def test_member_calls_are_separate(self):
        tree = tree_of(self.SOURCE)
        assert find_calls_by_name(tree, "fill") == []
        assert len(find_member_calls(tree, "fill")) == 1
        assert len(find_member_calls(tree, "FILL", ignore_case=True)) == 1


class TestClasses:
    """Declared-parent class lookup."""

    SOURCE = (
        "<?php\n"
        "class User extends Model {\n"
        "    protected $fillable = ['name'];\n"
        "    protected $guarded = [];\n"
        "    public $timestamps;\n"
        "}\n"
        "class Admin extends User {}\n"
        "class Post extends \\Illuminate\\Database\\Eloquent\\Model {}\n"
        "class Plain {}\n"
    )

    def test_one_level_only(self):
        classes = find_classes_extending(tree_of(self.SOURCE), {"Model"})
        assert [class_name(c) for c in classes] == ["User", "Post"]

    def test_fully_qualified_supertype(self):
        classes = find_classes_extending(tree_of(self.SOURCE), {"Illuminate\\Database\\Eloquent\\Model"})
        assert [class_name(c) for c in classes] == ["Post"]

    def test_class_properties(self):
        user = find_classes_extending(tree_of(self.SOURCE), {"Model"})[0]
        props = class_properties(user)
        assert set(props) == {"fillable", "guarded", "timestamps"}
        assert props["guarded"].type == "array_creation_expression"
        assert props["timestamps"] is None
