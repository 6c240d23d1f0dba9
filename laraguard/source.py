"""
Source access
=============
Resolves the project root, lists candidate files by extension and
exclusion globs, reads content, and extracts numbered code snippets.
"""

import fnmatch
import logging
import os
import re
from dataclasses import dataclass
from pathlib import Path
from typing import Dict, Iterable, Iterator, List, Optional, Sequence, Tuple, Union

logger = logging.getLogger(__name__)

PathLike = Union[str, Path]

# Directories never worth descending into, whatever the configuration says
ALWAYS_SKIPPED_DIRS = {'.git', 'node_modules', 'vendor', '.idea', '.vscode', '__pycache__'}


@dataclass(frozen=True)
class EnvVar:
    value: str
    line: int


class ProjectSource:
    """Read-only view over one project tree."""

    def __init__(self, root: PathLike, analyze_paths: Sequence[str] = (),
                 excluded_paths: Sequence[str] = ()):
        self.root = Path(root).resolve()
        self.analyze_paths = [p.strip('/') for p in analyze_paths if p.strip('/')]
        self.excluded_paths = list(excluded_paths)

    @classmethod
    def from_config(cls, root: PathLike, config) -> "ProjectSource":
        return cls(root, config.paths, config.excluded_paths)

    # ------------------------------------------------------------------
    # Paths
    # ------------------------------------------------------------------

    def path(self, *parts: str) -> Path:
        return self.root.joinpath(*parts)

    def exists(self, *parts: str) -> bool:
        return self.path(*parts).is_file()

    def relative(self, file_path: PathLike) -> str:
        """Project-relative POSIX path, or the path unchanged when outside the root."""
        p = Path(file_path)
        try:
            return p.resolve().relative_to(self.root).as_posix()
        except ValueError:
            return p.as_posix()

    def is_excluded(self, relative_path: str) -> bool:
        """Check if a relative path matches any exclusion pattern."""
        relative_path = relative_path.replace('\\', '/')
        for pattern in self.excluded_paths:
            if fnmatch.fnmatch(relative_path, pattern):
                return True
            # Also check if any path component matches
            if pattern.endswith('/') and pattern.rstrip('/') in relative_path.split('/'):
                return True
        return False

    def list_files(self, extensions: Iterable[str], paths: Optional[Sequence[str]] = None) -> List[Path]:
        """List files under the analyze paths ending with any of the extensions.

        Extensions are matched against the end of the file name so that
        compound suffixes like ``.blade.php`` work. Output is sorted so file
        iteration order is stable across runs.
        """
        suffixes = tuple(e.lower() for e in extensions)
        roots = paths if paths is not None else self.analyze_paths
        search_roots = [self.root / r for r in roots] if roots else [self.root]

        found = set()
        for search_root in search_roots:
            if search_root.is_file():
                if search_root.name.lower().endswith(suffixes):
                    found.add(search_root)
                continue
            if not search_root.is_dir():
                continue
            for dirpath, dirnames, filenames in os.walk(search_root):
                dirnames[:] = [d for d in dirnames if d not in ALWAYS_SKIPPED_DIRS]
                for name in filenames:
                    if not name.lower().endswith(suffixes):
                        continue
                    full = Path(dirpath) / name
                    if self.is_excluded(self.relative(full)):
                        continue
                    found.add(full)
        return sorted(found)

    # ------------------------------------------------------------------
    # Content
    # ------------------------------------------------------------------

    def read_text(self, file_path: PathLike) -> Optional[str]:
        """Read a file, returning None when it cannot be read."""
        try:
            with open(file_path, 'r', encoding='utf-8', errors='replace') as f:
                return f.read()
        except (IOError, OSError) as e:
            logger.debug("Error reading %s: %s", file_path, e)
            return None

    def get_lines(self, file_path: PathLike) -> List[str]:
        """File lines without terminators; ``lines[n - 1]`` is line ``n``."""
        content = self.read_text(file_path)
        if content is None:
            return []
        return content.splitlines()

    def numbered_lines(self, file_path: PathLike) -> Iterator[Tuple[int, str]]:
        """Yield ``(line_number, text)`` pairs, 1-indexed."""
        return enumerate(self.get_lines(file_path), 1)

    def code_snippet(self, file_path: PathLike, line: Optional[int], context: int = 2) -> Optional[str]:
        """Numbered snippet of ``context`` lines around ``line``."""
        if not line or line < 1:
            return None
        return snippet_from_lines(self.get_lines(file_path), line, context)

    def read_env_file(self, name: str = '.env') -> Optional[Dict[str, EnvVar]]:
        """Parse a key=value environment file, or None when it does not exist."""
        env_path = self.path(name)
        if not env_path.is_file():
            return None
        content = self.read_text(env_path)
        if content is None:
            return None
        return parse_env(content)


def snippet_from_lines(lines: List[str], line: int, context: int = 2) -> Optional[str]:
    if not lines or line > len(lines):
        return None
    start = max(1, line - context)
    end = min(len(lines), line + context)
    width = len(str(end))
    out = []
    for n in range(start, end + 1):
        marker = '>' if n == line else ' '
        out.append(f"{marker}{str(n).rjust(width)} | {lines[n - 1]}")
    return '\n'.join(out)


_ENV_LINE = re.compile(r'^\s*(?:export\s+)?([A-Za-z_][A-Za-z0-9_.]*)\s*=\s*(.*)$')


def parse_env(content: str) -> Dict[str, EnvVar]:
    """Parse dotenv content. The first assignment of a key wins."""
    result: Dict[str, EnvVar] = {}
    for number, raw in enumerate(content.splitlines(), 1):
        stripped = raw.strip()
        if not stripped or stripped.startswith('#'):
            continue
        m = _ENV_LINE.match(raw)
        if not m:
            continue
        key, value = m.group(1), m.group(2).strip()
        if value[:1] in ('"', "'"):
            quote = value[0]
            end = value.find(quote, 1)
            value = value[1:end] if end != -1 else value[1:]
        else:
            # Unquoted values end at an inline comment
            value = re.split(r'\s+#', value, maxsplit=1)[0].strip()
        if key not in result:
            result[key] = EnvVar(value=value, line=number)
    return result
