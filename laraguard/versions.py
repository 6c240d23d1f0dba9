"""
Semantic versions and version ranges
====================================
Version precedence follows semver: numeric ``major.minor.patch`` (an
optional fourth component is kept for Composer's ``1.2.3.4`` style), a
pre-release sorts before its release, pre-release identifiers compare
numerically when numeric and lexically otherwise, build metadata is
ignored. A leading ``v`` or ``=`` is dropped.

Range grammar (npm / Composer flavoured):

- ``||`` or ``|``       union of alternatives
- ``,`` or whitespace   intersection of comparators
- ``<``, ``<=``, ``>``, ``>=``, ``=``, ``==``, ``!=``
- ``^1.2.3``            up to the next change of the left-most non-zero part
- ``~1.2.3``            up to the next minor (``~1`` up to the next major)
- ``1.2.3 - 2.3``       inclusive hyphen range, partial upper bound rounded up
- ``*``, ``x``, ``X``   wildcard components; a bare partial ``1.2`` is ``1.2.x``
"""

import functools
import logging
import re
from dataclasses import dataclass
from typing import Iterable, List, Optional, Sequence, Tuple, Union

logger = logging.getLogger(__name__)

_NUM = r'(\d+|[xX*])'
_PARTIAL_RE = re.compile(
    r'^[vV=]?\s*' + _NUM +
    r'(?:\.' + _NUM + r')?' +
    r'(?:\.' + _NUM + r')?' +
    r'(?:\.' + _NUM + r')?' +
    r'(?:-([0-9A-Za-z.-]+)|([A-Za-z][0-9A-Za-z.-]*))?' +
    r'(?:\+[0-9A-Za-z.-]+)?$'
)

_OPERATOR_RE = re.compile(r'^(<=|>=|!=|==|~>|<|>|=|\^|~)?\s*(.*)$')
_HYPHEN_RE = re.compile(r'^(\S+)\s+-\s+(\S+)$')
_OP_SPACING_RE = re.compile(r'(<=|>=|!=|==|~>|<|>|=|\^|~)\s+')
_STABILITY_FLAG_RE = re.compile(r'@[A-Za-z]+$')


def _pre_key(identifier: Union[int, str]):
    return (0, identifier, "") if isinstance(identifier, int) else (1, 0, identifier)


@functools.total_ordering
@dataclass(frozen=True)
class Version:
    """A concrete, normalised version."""
    release: Tuple[int, ...]
    prerelease: Tuple[Union[int, str], ...] = ()

    def __post_init__(self):
        release = tuple(self.release) + (0,) * (3 - len(self.release))
        while len(release) > 3 and release[-1] == 0:
            release = release[:-1]
        object.__setattr__(self, "release", release)

    @classmethod
    def parse(cls, text: str) -> Optional["Version"]:
        """Parse a concrete version; None when it is not one (``dev-main``, ``1.x``)."""
        if not isinstance(text, str):
            return None
        m = _PARTIAL_RE.match(text.strip())
        if not m:
            return None
        parts = m.group(1, 2, 3, 4)
        if any(p is not None and not p.isdigit() for p in parts):
            return None
        release = tuple(int(p) for p in parts if p is not None)
        return cls(release, _prerelease(m.group(5) or m.group(6)))

    @property
    def major(self) -> int:
        return self.release[0]

    @property
    def minor(self) -> int:
        return self.release[1]

    @property
    def patch(self) -> int:
        return self.release[2]

    def _key(self):
        release = self.release + (0,) * (4 - len(self.release))
        pre = tuple(_pre_key(i) for i in self.prerelease)
        return (release, 0 if self.prerelease else 1, pre)

    def __lt__(self, other: "Version") -> bool:
        if not isinstance(other, Version):
            return NotImplemented
        return self._key() < other._key()

    def __str__(self) -> str:
        text = '.'.join(str(p) for p in self.release)
        if self.prerelease:
            text += '-' + '.'.join(str(p) for p in self.prerelease)
        return text


def _prerelease(text: Optional[str]) -> Tuple[Union[int, str], ...]:
    if not text:
        return ()
    identifiers = []
    for part in re.split(r'[.-]', text):
        if not part:
            continue
        identifiers.append(int(part) if part.isdigit() else part.lower())
    return tuple(identifiers)


def parse_version(text: str) -> Optional[Version]:
    return Version.parse(text)


# ============================================================================
# Ranges
# ============================================================================

Comparator = Tuple[str, Version]

_COMPARE = {
    '<': lambda a, b: a < b,
    '<=': lambda a, b: a <= b,
    '>': lambda a, b: a > b,
    '>=': lambda a, b: a >= b,
    '=': lambda a, b: a == b,
    '!=': lambda a, b: a != b,
}


@dataclass(frozen=True)
class _Partial:
    numbers: Tuple[int, ...]
    prerelease: Tuple[Union[int, str], ...] = ()

    @property
    def is_full(self) -> bool:
        return len(self.numbers) >= 3

    def floor(self) -> Version:
        return Version(self.numbers, self.prerelease if self.is_full else ())

    def bump(self, level: int) -> Version:
        """Smallest version past every version sharing the first ``level`` parts."""
        head = list(self.numbers[:level]) + [0] * max(0, level - len(self.numbers))
        head[level - 1] += 1
        return Version(tuple(head))


def _parse_partial(text: str) -> _Partial:
    m = _PARTIAL_RE.match(text.strip())
    if not m:
        raise ValueError(f"invalid version in range: {text!r}")
    numbers = []
    for part in m.group(1, 2, 3, 4):
        if part is None or not part.isdigit():
            break
        numbers.append(int(part))
    return _Partial(tuple(numbers), _prerelease(m.group(5) or m.group(6)))


def _caret_upper(partial: _Partial) -> Version:
    nums = partial.numbers
    if len(nums) == 1 or nums[0] != 0:
        return partial.bump(1)
    if len(nums) == 2 or nums[1] != 0:
        return partial.bump(2)
    return partial.bump(3)


def _expand(token: str) -> List[Comparator]:
    """Comparators equivalent to one range token."""
    token = _STABILITY_FLAG_RE.sub('', token)
    m = _OPERATOR_RE.match(token)
    op, rest = m.group(1) or '', m.group(2)
    if rest in ('', '*', 'x', 'X'):
        if op in ('', '=', '==', '>=', '<=', '^', '~', '~>'):
            return []
        raise ValueError(f"unsatisfiable range token: {token!r}")

    partial = _parse_partial(rest)
    n = len(partial.numbers)
    if n == 0:
        if op in ('<', '>', '!='):
            raise ValueError(f"unsatisfiable range token: {token!r}")
        return []

    if op in ('', '=', '=='):
        if partial.is_full:
            return [('=', partial.floor())]
        return [('>=', partial.floor()), ('<', partial.bump(n))]
    if op == '!=':
        if not partial.is_full:
            raise ValueError(f"'!=' needs a full version: {token!r}")
        return [('!=', partial.floor())]
    if op == '>':
        if partial.is_full:
            return [('>', partial.floor())]
        return [('>=', partial.bump(n))]
    if op == '>=':
        return [('>=', partial.floor())]
    if op == '<':
        return [('<', partial.floor())]
    if op == '<=':
        if partial.is_full:
            return [('<=', partial.floor())]
        return [('<', partial.bump(n))]
    if op == '^':
        return [('>=', partial.floor()), ('<', _caret_upper(partial))]
    # ~ and ~>
    return [('>=', partial.floor()), ('<', partial.bump(1 if n == 1 else 2))]


def _parse_alternative(text: str) -> List[Comparator]:
    text = text.strip()
    hyphen = _HYPHEN_RE.match(text)
    if hyphen:
        low, high = _parse_partial(hyphen.group(1)), _parse_partial(hyphen.group(2))
        comparators: List[Comparator] = []
        if low.numbers:
            comparators.append(('>=', low.floor()))
        if high.is_full:
            comparators.append(('<=', high.floor()))
        elif high.numbers:
            comparators.append(('<', high.bump(len(high.numbers))))
        return comparators

    text = _OP_SPACING_RE.sub(r'\1', text)
    comparators = []
    for token in re.split(r'[\s,]+', text):
        if token:
            comparators.extend(_expand(token))
    return comparators


class VersionRange:
    """A parsed range expression: a union of comparator intersections."""

    def __init__(self, text: str, alternatives: Sequence[Sequence[Comparator]]):
        self.text = text
        self.alternatives = tuple(tuple(a) for a in alternatives)

    @classmethod
    def parse(cls, text: str) -> "VersionRange":
        """Parse a range expression. Raises ValueError when it is malformed."""
        if not isinstance(text, str):
            raise ValueError(f"range must be a string, got {type(text).__name__}")
        alternatives = [_parse_alternative(alt) for alt in re.split(r'\|\|?', text)]
        return cls(text, alternatives)

    def contains(self, version: Union[str, Version]) -> bool:
        if isinstance(version, str):
            version = Version.parse(version)
        if version is None:
            return False
        return any(
            all(_COMPARE[op](version, bound) for op, bound in alternative)
            for alternative in self.alternatives
        )

    __contains__ = contains

    def __repr__(self) -> str:
        return f"VersionRange({self.text!r})"


def matches(version: Union[str, Version], constraints: Union[str, Iterable[str]]) -> bool:
    """True when the version satisfies any of the constraints.

    Malformed constraints and unparseable versions never match; both are
    logged at DEBUG.
    """
    if isinstance(constraints, str):
        constraints = [constraints]
    parsed = version if isinstance(version, Version) else Version.parse(version)
    if parsed is None:
        logger.debug("Unparseable version %r", version)
        return False
    for constraint in constraints:
        try:
            if VersionRange.parse(constraint).contains(parsed):
                return True
        except ValueError as e:
            logger.debug("Skipping malformed range %r: %s", constraint, e)
    return False
