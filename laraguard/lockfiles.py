"""
Dependency lock file readers
============================
- ``composer.lock``: ``packages`` + ``packages-dev``; leading ``v`` dropped
- ``package-lock.json``: v1 nested ``dependencies`` objects and the v2/v3
  ``packages`` map keyed by ``node_modules/...`` install path
- ``yarn.lock``: ``name@range:`` blocks carrying an indented version line
  (classic ``version "x"`` and berry ``version: x``)

Readers raise LockFileError when the file cannot be read or decoded; they
never guess at a broken file.
"""

import json
import re
from dataclasses import dataclass
from pathlib import Path
from typing import Any, Dict, List, Optional, Union

from .errors import LockFileError

PathLike = Union[str, Path]


@dataclass(frozen=True)
class InstalledPackage:
    name: str
    version: str
    dev: bool = False
    abandoned: bool = False
    replacement: Optional[str] = None


def installed_versions(packages: Dict[str, InstalledPackage]) -> Dict[str, str]:
    """Plain ``name -> version`` view, keeping insertion order."""
    return {name: pkg.version for name, pkg in packages.items()}


def _read(path: PathLike) -> str:
    try:
        with open(path, 'r', encoding='utf-8') as f:
            return f.read()
    except (OSError, UnicodeDecodeError) as e:
        raise LockFileError(f"Unable to read {Path(path).name}: {e}") from e


def _read_json(path: PathLike) -> Dict[str, Any]:
    content = _read(path)
    try:
        decoded = json.loads(content)
    except json.JSONDecodeError as e:
        raise LockFileError(f"{Path(path).name} is invalid JSON: {e}") from e
    if not isinstance(decoded, dict):
        raise LockFileError(f"{Path(path).name} does not contain a JSON object")
    return decoded


# ============================================================================
# Composer
# ============================================================================

def read_composer_lock(path: PathLike) -> Dict[str, InstalledPackage]:
    decoded = _read_json(path)
    packages: Dict[str, InstalledPackage] = {}
    for section in ('packages', 'packages-dev'):
        entries = decoded.get(section)
        if not isinstance(entries, list):
            continue
        for entry in entries:
            if not isinstance(entry, dict):
                continue
            name, version = entry.get('name'), entry.get('version')
            if not isinstance(name, str) or not isinstance(version, str):
                continue
            flag = entry.get('abandoned', False)
            replacement = flag if isinstance(flag, str) and flag else None
            packages[name] = InstalledPackage(
                name=name,
                version=version.lstrip('v'),
                dev=section == 'packages-dev',
                abandoned=bool(flag),
                replacement=replacement,
            )
    return packages


# ============================================================================
# npm
# ============================================================================

def _package_name_from_path(install_path: str) -> Optional[str]:
    marker = 'node_modules/'
    idx = install_path.rfind(marker)
    if idx == -1:
        return None
    return install_path[idx + len(marker):] or None


def read_package_lock(path: PathLike) -> Dict[str, InstalledPackage]:
    """Installed packages of a package-lock.json; the shallowest install wins."""
    decoded = _read_json(path)
    packages: Dict[str, InstalledPackage] = {}

    installs = decoded.get('packages')
    if isinstance(installs, dict):
        ordered = sorted(
            (k for k in installs if isinstance(k, str) and k),
            key=lambda k: k.count('node_modules/'),
        )
        for install_path in ordered:
            entry = installs[install_path]
            name = _package_name_from_path(install_path)
            if not name or not isinstance(entry, dict) or name in packages:
                continue
            version = entry.get('version')
            if isinstance(version, str):
                packages[name] = InstalledPackage(name, version, dev=bool(entry.get('dev')))
        return packages

    # lockfileVersion 1
    queue = [decoded.get('dependencies')]
    while queue:
        deps = queue.pop(0)
        if not isinstance(deps, dict):
            continue
        for name, entry in deps.items():
            if not isinstance(entry, dict):
                continue
            version = entry.get('version')
            if isinstance(version, str) and name not in packages:
                packages[name] = InstalledPackage(name, version, dev=bool(entry.get('dev')))
            queue.append(entry.get('dependencies'))
    return packages


# ============================================================================
# Yarn
# ============================================================================

_YARN_VERSION_RE = re.compile(r'^\s+version:?\s+"?([^"\s]+)"?\s*$')


def _yarn_descriptor_name(descriptor: str) -> Optional[str]:
    descriptor = descriptor.strip().strip('"\'')
    at = descriptor.find('@', 1)
    if at <= 0:
        return None
    return descriptor[:at]


def parse_yarn_lock(content: str) -> Dict[str, InstalledPackage]:
    packages: Dict[str, InstalledPackage] = {}
    current: List[str] = []
    for raw in content.splitlines():
        if not raw.strip() or raw.lstrip().startswith('#'):
            continue
        if not raw[0].isspace():
            header = raw.rstrip().rstrip(':')
            current = []
            if header.strip('"') == '__metadata':
                continue
            for descriptor in header.split(','):
                name = _yarn_descriptor_name(descriptor)
                if name and name not in current:
                    current.append(name)
            continue
        m = _YARN_VERSION_RE.match(raw)
        if m and current:
            for name in current:
                packages.setdefault(name, InstalledPackage(name, m.group(1)))
            current = []
    return packages


def read_yarn_lock(path: PathLike) -> Dict[str, InstalledPackage]:
    return parse_yarn_lock(_read(path))


# ============================================================================
# Line lookup
# ============================================================================

def _line_patterns(lock_name: str, package: str) -> List[re.Pattern]:
    quoted = re.escape(package)
    if lock_name == 'yarn.lock':
        return [re.compile(r'^"?' + quoted + r'@', re.IGNORECASE)]
    if lock_name == 'composer.lock':
        return [re.compile(r'"name"\s*:\s*"' + quoted + r'"')]
    return [
        re.compile(r'"node_modules/' + quoted + r'"\s*:\s*\{', re.IGNORECASE),
        re.compile(r'"' + quoted + r'"\s*:\s*\{', re.IGNORECASE),
    ]


def find_package_line(lines: List[str], lock_name: str, package: str) -> int:
    """First 1-based line declaring ``package`` in a lock file, or 1."""
    for pattern in _line_patterns(lock_name, package):
        for number, line in enumerate(lines, 1):
            if pattern.search(line.strip()):
                return number
    return 1
