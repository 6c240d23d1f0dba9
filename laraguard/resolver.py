"""
Config value resolver
=====================
Static resolution of the values assigned in a PHP configuration file
(``return [ 'key' => <expr>, ... ];``).

Each assigned expression resolves to one of:

- ``LITERAL``       the expression is a scalar literal
- ``ENV_DEFAULT``   ``env('NAME', <literal>)``; analysed as if the default
                    were the installed value
- ``INDETERMINATE`` anything else, including ``env('NAME')`` with no default.
                    Checks must skip the key instead of guessing.
"""

import logging
from dataclasses import dataclass, field
from typing import Any, Dict, Iterable, List, Optional, Set, Tuple

from tree_sitter import Node

from .models import ConfigEntry, Resolution
from .syntax import (
    SyntaxTree, call_arguments, call_name, find_nodes, get_node_line,
    node_text, unwrap,
)

logger = logging.getLogger(__name__)

ENV_FUNCTIONS = frozenset({"env"})


class _NotLiteral:
    def __repr__(self):
        return "NOT_LITERAL"


NOT_LITERAL = _NotLiteral()

_STRING_PARTS = {"string_content", "string_value", "escape_sequence"}

_DOUBLE_QUOTE_ESCAPES = {
    'n': '\n', 't': '\t', 'r': '\r', 'v': '\v', 'f': '\f', 'e': '\x1b',
    '\\': '\\', '$': '$', '"': '"', '0': '\0',
}


# ============================================================================
# Literals
# ============================================================================

def literal_value(node: Node) -> Any:
    """Python value of a scalar literal node, or ``NOT_LITERAL``.

    Strings, integers, floats, booleans and null are literals. Negated
    numbers (``-1``) count too. Interpolated strings do not.
    """
    node = unwrap(node)
    kind = node.type
    text = node_text(node)

    if kind == "string":
        return _single_quoted(text)
    if kind == "encapsed_string":
        if any(c.type not in _STRING_PARTS for c in node.named_children):
            return NOT_LITERAL
        return _double_quoted(text)
    if kind == "integer":
        return _php_int(text)
    if kind == "float":
        try:
            return float(text.replace('_', ''))
        except ValueError:
            return NOT_LITERAL
    if kind in ("boolean", "null", "name"):
        lowered = text.lower()
        if lowered == "true":
            return True
        if lowered == "false":
            return False
        if lowered == "null":
            return None
        return NOT_LITERAL
    if kind == "unary_op_expression":
        operand = node.named_children[-1] if node.named_children else None
        if operand is None or not text.lstrip().startswith(('-', '+')):
            return NOT_LITERAL
        value = literal_value(operand)
        if isinstance(value, bool) or not isinstance(value, (int, float)):
            return NOT_LITERAL
        return -value if text.lstrip().startswith('-') else value
    return NOT_LITERAL


def _single_quoted(text: str) -> Any:
    if len(text) < 2 or text[0] != "'" or text[-1] != "'":
        # Nowdoc / prefixed strings are left alone
        return NOT_LITERAL
    body = text[1:-1]
    return body.replace("\\\\", "\x00").replace("\\'", "'").replace("\x00", "\\")


def _double_quoted(text: str) -> Any:
    if len(text) < 2 or text[0] != '"' or text[-1] != '"':
        return NOT_LITERAL
    body = text[1:-1]
    out = []
    i = 0
    while i < len(body):
        ch = body[i]
        if ch == '\\' and i + 1 < len(body):
            nxt = body[i + 1]
            if nxt in _DOUBLE_QUOTE_ESCAPES:
                out.append(_DOUBLE_QUOTE_ESCAPES[nxt])
                i += 2
                continue
        out.append(ch)
        i += 1
    return ''.join(out)


def _php_int(text: str) -> Any:
    cleaned = text.replace('_', '').lower()
    try:
        if cleaned.startswith(('0x', '0b', '0o')):
            return int(cleaned, 0)
        if len(cleaned) > 1 and cleaned.startswith('0'):
            return int(cleaned, 8)
        return int(cleaned)
    except ValueError:
        return NOT_LITERAL


# ============================================================================
# Expression resolution
# ============================================================================

def is_env_lookup(node: Node, env_functions: Iterable[str] = ENV_FUNCTIONS) -> bool:
    node = unwrap(node)
    return node.type == "function_call_expression" and call_name(node) in set(env_functions)


def resolve_expression(node: Node, env_functions: Iterable[str] = ENV_FUNCTIONS,
                       source_line: Optional[int] = None) -> ConfigEntry:
    """Resolve one assigned expression to a ConfigEntry."""
    line = source_line if source_line is not None else get_node_line(node)
    value = literal_value(node)
    if value is not NOT_LITERAL:
        return ConfigEntry(Resolution.LITERAL, value, line)

    if is_env_lookup(node, env_functions):
        args = call_arguments(unwrap(node))
        if len(args) == 2:
            default = literal_value(args[1])
            if default is not NOT_LITERAL:
                return ConfigEntry(Resolution.ENV_DEFAULT, default, line)
    return ConfigEntry(Resolution.INDETERMINATE, None, line)


def env_lookup_name(node: Node) -> Optional[str]:
    """Variable name passed to an env lookup, when it is a literal string."""
    node = unwrap(node)
    if not is_env_lookup(node):
        return None
    args = call_arguments(node)
    if not args:
        return None
    name = literal_value(args[0])
    return name if isinstance(name, str) else None


# ============================================================================
# Config tables
# ============================================================================

@dataclass
class ConfigTable:
    """Flattened ``dotted.key -> ConfigEntry`` view of one config file."""
    entries: Dict[str, ConfigEntry] = field(default_factory=dict)
    duplicates: List[Tuple[str, int]] = field(default_factory=list)
    nodes: Dict[str, Node] = field(default_factory=dict)

    def get(self, key: str) -> Optional[ConfigEntry]:
        return self.entries.get(key)

    def env_var(self, key: str) -> Optional[str]:
        """Environment variable read by the value of ``key``, if it is an env lookup."""
        node = self.nodes.get(key)
        return env_lookup_name(node) if node is not None else None

    def __contains__(self, key: str) -> bool:
        return key in self.entries

    def keys(self) -> List[str]:
        return list(self.entries)


def parse_config_table(tree: SyntaxTree, env_functions: Iterable[str] = ENV_FUNCTIONS) -> ConfigTable:
    """Resolve every key of the array returned by a config file.

    Nested associative arrays are flattened into dotted keys
    (``'cookie' => ['secure' => true]`` gives ``cookie.secure``). The first
    assignment of a key decides its entry and line; later ones are listed
    in ``duplicates``.
    """
    table = ConfigTable()
    array = _returned_array(tree)
    if array is None:
        logger.debug("No returned array in %s", tree.path or "<source>")
        return table
    _flatten(array, "", table, set(env_functions))
    return table


def _returned_array(tree: SyntaxTree) -> Optional[Node]:
    for ret in find_nodes(tree, "return_statement"):
        for child in ret.named_children:
            expr = unwrap(child)
            if expr.type == "array_creation_expression":
                return expr
    return None


def _split_element(element: Node) -> Tuple[Optional[Node], Optional[Node]]:
    """(key, value) of an array element; key is None for list-style elements."""
    children = [c for c in element.children if c.type != "comment"]
    for i, child in enumerate(children):
        if child.type == "=>":
            key = children[i - 1] if i > 0 else None
            value = children[i + 1] if i + 1 < len(children) else None
            return key, value
    named = [c for c in children if c.is_named]
    return None, (named[0] if named else None)


def _key_string(key: Node) -> str:
    value = literal_value(key)
    if value is NOT_LITERAL or value is None or isinstance(value, bool):
        return node_text(key)
    return str(value)


def _is_associative(array: Node) -> bool:
    for element in array.named_children:
        if element.type == "array_element_initializer":
            key, _ = _split_element(element)
            if key is not None:
                return True
    return False


def _flatten(array: Node, prefix: str, table: ConfigTable, env_functions: Set[str]):
    for element in array.named_children:
        if element.type != "array_element_initializer":
            continue
        key_node, value_node = _split_element(element)
        if key_node is None or value_node is None:
            continue
        key = prefix + _key_string(key_node)
        line = get_node_line(key_node)
        value_node = unwrap(value_node)

        if value_node.type == "array_creation_expression" and _is_associative(value_node):
            _record(table, key, ConfigEntry(Resolution.INDETERMINATE, None, line), value_node)
            _flatten(value_node, key + ".", table, env_functions)
            continue

        if value_node.type == "array_creation_expression":
            entry = ConfigEntry(Resolution.INDETERMINATE, None, line)
            items = _list_literal(value_node)
            if items is not None:
                entry = ConfigEntry(Resolution.LITERAL, items, line)
        else:
            entry = resolve_expression(value_node, env_functions, source_line=line)
        _record(table, key, entry, value_node)


def _list_literal(array: Node) -> Optional[list]:
    items = []
    for element in array.named_children:
        if element.type != "array_element_initializer":
            continue
        _, value = _split_element(element)
        if value is None:
            return None
        literal = literal_value(value)
        if literal is NOT_LITERAL:
            return None
        items.append(literal)
    return items


def _record(table: ConfigTable, key: str, entry: ConfigEntry, node: Node):
    if key in table.entries:
        table.duplicates.append((key, entry.source_line))
        return
    table.entries[key] = entry
    table.nodes[key] = node


_TRUTHY_STRINGS = {"true", "1", "on", "yes"}
_FALSY_STRINGS = {"false", "0", "off", "no", ""}


def as_bool(value: Any) -> Optional[bool]:
    """PHP-ish boolean reading of a resolved value; None when unclear."""
    if isinstance(value, bool):
        return value
    if isinstance(value, (int, float)):
        return value != 0
    if value is None:
        return False
    if isinstance(value, str):
        lowered = value.strip().strip('()').lower()
        if lowered in _TRUTHY_STRINGS:
            return True
        if lowered in _FALSY_STRINGS:
            return False
    return None
