"""
Syntax tree front-end (tree-sitter PHP)
=======================================
Parses one PHP source unit into a tree-sitter tree and answers the generic
queries detectors need: nodes of a kind, calls by callee name (free and
class-scoped), and classes declaring a given parent.

A file that does not parse cleanly comes back as a ``ParseFailure`` value;
callers skip it and carry on with the rest of the batch.
"""

import logging
from dataclasses import dataclass
from pathlib import Path
from typing import Dict, Iterable, List, Optional, Set, Union

import tree_sitter_php as tsphp
from tree_sitter import Language, Node, Parser

logger = logging.getLogger(__name__)

PHP_LANG = Language(tsphp.language_php())

CALL_KINDS = {"function_call_expression", "scoped_call_expression"}
MEMBER_CALL_KINDS = {"member_call_expression", "nullsafe_member_call_expression"}


@dataclass(frozen=True)
class ParseFailure:
    """A source unit that could not be parsed."""
    path: Optional[str]
    reason: str
    line: Optional[int] = None


class SyntaxTree:
    """A parsed PHP source unit."""

    def __init__(self, tree, source: str, path: Optional[str] = None):
        self.tree = tree
        self.root: Node = tree.root_node
        self.source = source
        self.path = path


def parse(source: str, path: Optional[str] = None) -> Union[SyntaxTree, ParseFailure]:
    """Parse PHP source; any syntax error yields a ParseFailure."""
    parser = Parser(PHP_LANG)
    tree = parser.parse(source.encode('utf-8'))
    root = tree.root_node
    if root.has_error:
        bad = _first_error(root)
        line = get_node_line(bad) if bad is not None else None
        logger.debug("Syntax error in %s near line %s", path or "<source>", line)
        return ParseFailure(path=path, reason="syntax error", line=line)
    return SyntaxTree(tree, source, path)


def parse_file(file_path: Union[str, Path], source: Optional[str] = None) -> Union[SyntaxTree, ParseFailure]:
    """Read and parse a PHP file."""
    if source is None:
        try:
            with open(file_path, 'r', encoding='utf-8', errors='replace') as f:
                source = f.read()
        except (IOError, OSError) as e:
            return ParseFailure(path=str(file_path), reason=f"unreadable: {e}")
    return parse(source, str(file_path))


def _first_error(node: Node) -> Optional[Node]:
    stack = [node]
    while stack:
        current = stack.pop()
        if current.type == "ERROR" or current.is_missing:
            return current
        if current.has_error:
            stack.extend(reversed(current.children))
    return None


# ============================================================================
# AST Helpers
# ============================================================================

def _root_of(target: Union[SyntaxTree, Node]) -> Node:
    return target.root if isinstance(target, SyntaxTree) else target


def find_nodes(target: Union[SyntaxTree, Node], type_name: str) -> List[Node]:
    """All descendant nodes (self included) of a given type, in document order."""
    return find_nodes_multi(target, {type_name})


def find_nodes_multi(target: Union[SyntaxTree, Node], type_names: Set[str]) -> List[Node]:
    """All descendant nodes matching any of the given types, in document order."""
    results = []
    stack = [_root_of(target)]
    while stack:
        node = stack.pop()
        if node.type in type_names:
            results.append(node)
        stack.extend(reversed(node.children))
    return results


def node_text(node: Node) -> str:
    """Get the source text of a node."""
    return node.text.decode('utf-8') if node.text else ""


def get_node_line(node: Node) -> int:
    """Get 1-based line number."""
    return node.start_point[0] + 1


def get_child_by_type(node: Node, type_name: str) -> Optional[Node]:
    """Get first direct child of a given type."""
    for child in node.children:
        if child.type == type_name:
            return child
    return None


def get_children_by_type(node: Node, type_name: str) -> List[Node]:
    """Get all direct children of a given type."""
    return [c for c in node.children if c.type == type_name]


def unwrap(node: Node) -> Node:
    """Strip redundant parentheses around an expression."""
    while node.type == "parenthesized_expression":
        inner = [c for c in node.named_children if c.type != "comment"]
        if len(inner) != 1:
            break
        node = inner[0]
    return node


# ============================================================================
# Calls
# ============================================================================

def _last_segment(name: str) -> str:
    return name.rsplit('\\', 1)[-1]


def call_name(call: Node) -> str:
    """Bare callee name of a function, static or member call.

    ``\\Illuminate\\Support\\env(...)`` gives ``env``; ``Model::unguard()``
    gives ``unguard``.
    """
    if call.type == "function_call_expression":
        fn = call.child_by_field_name("function")
        if fn is None:
            fn = next((c for c in call.named_children if c.type != "arguments"), None)
        if fn is None or fn.type not in ("name", "qualified_name"):
            return ""
        return _last_segment(node_text(fn))

    name_node = call.child_by_field_name("name")
    if name_node is None:
        for child in call.children:
            if child.type == "name" and child.next_sibling and child.next_sibling.type == "arguments":
                name_node = child
                break
    if name_node is None or name_node.type != "name":
        return ""
    return node_text(name_node)


def call_scope(call: Node) -> Optional[str]:
    """Class part of a static call (``Model`` in ``Model::unguard()``), without leading backslash."""
    if call.type != "scoped_call_expression":
        return None
    scope = call.child_by_field_name("scope")
    if scope is None and call.named_children:
        scope = call.named_children[0]
    if scope is None:
        return None
    return node_text(scope).lstrip('\\')


def call_object(call: Node) -> Optional[Node]:
    """Receiver of a member call (``$request`` in ``$request->all()``)."""
    if call.type not in MEMBER_CALL_KINDS:
        return None
    obj = call.child_by_field_name("object")
    if obj is None and call.named_children:
        obj = call.named_children[0]
    return unwrap(obj) if obj is not None else None


def call_arguments(call: Node) -> List[Node]:
    """Argument expressions of a call, in order."""
    args_node = call.child_by_field_name("arguments") or get_child_by_type(call, "arguments")
    if args_node is None:
        return []
    result = []
    for child in args_node.children:
        if child.type == "argument":
            # Named arguments carry a leading name node
            exprs = [c for c in child.named_children if c.type not in ("name", "comment")]
            if not exprs:
                exprs = [c for c in child.named_children if c.type != "comment"]
            if exprs:
                result.append(exprs[-1])
        elif child.is_named and child.type not in ("comment",):
            result.append(child)
    return result


def find_calls_by_name(target: Union[SyntaxTree, Node], name: str) -> List[Node]:
    """Free-function and static/class-scoped calls whose callee name equals ``name``.

    Matching is case-sensitive.
    """
    return [c for c in find_nodes_multi(target, CALL_KINDS) if call_name(c) == name]


def find_member_calls(target: Union[SyntaxTree, Node], name: str,
                      ignore_case: bool = False) -> List[Node]:
    """Instance method calls (``$x->name()`` / ``$x?->name()``)."""
    wanted = name.lower() if ignore_case else name
    result = []
    for call in find_nodes_multi(target, MEMBER_CALL_KINDS):
        called = call_name(call)
        if (called.lower() if ignore_case else called) == wanted:
            result.append(call)
    return result


# ============================================================================
# Classes
# ============================================================================

def class_name(cls: Node) -> str:
    name = cls.child_by_field_name("name") or get_child_by_type(cls, "name")
    return node_text(name) if name else ""


def class_parent_name(cls: Node) -> Optional[str]:
    """Declared parent class, as written (leading backslash removed)."""
    base = get_child_by_type(cls, "base_clause")
    if base is None:
        return None
    for child in base.named_children:
        if child.type in ("name", "qualified_name"):
            return node_text(child).lstrip('\\')
    return None


def parent_matches(parent: str, supertype_names: Iterable[str]) -> bool:
    """Exact or namespace-suffix match of a declared parent against supertypes."""
    for wanted in supertype_names:
        wanted = wanted.lstrip('\\')
        if parent == wanted or parent.endswith('\\' + wanted):
            return True
    return False


def find_classes_extending(target: Union[SyntaxTree, Node], supertype_names: Set[str]) -> List[Node]:
    """Classes whose declared parent matches one of ``supertype_names``.

    Only the directly declared parent is inspected: ``class B extends A``
    where ``A extends Model`` is not reported for ``{"Model"}``.
    """
    result = []
    for cls in find_nodes(target, "class_declaration"):
        parent = class_parent_name(cls)
        if parent is not None and parent_matches(parent, supertype_names):
            result.append(cls)
    return result


def class_properties(cls: Node) -> Dict[str, Optional[Node]]:
    """Declared properties of a class mapped to their default value node (or None)."""
    body = cls.child_by_field_name("body") or get_child_by_type(cls, "declaration_list")
    if body is None:
        return {}
    props: Dict[str, Optional[Node]] = {}
    for decl in get_children_by_type(body, "property_declaration"):
        for element in get_children_by_type(decl, "property_element"):
            var = get_child_by_type(element, "variable_name")
            if var is None:
                continue
            default = None
            for child in element.named_children:
                if child.type == "variable_name":
                    continue
                if child.type == "property_initializer":
                    child = child.named_children[0] if child.named_children else None
                default = unwrap(child) if child is not None else None
                break
            props[node_text(var).lstrip('$')] = default
    return props
