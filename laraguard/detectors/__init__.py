"""Built-in detectors, in registration (and report) order."""

from typing import List, Optional

from ..config import EngineConfig
from ..detector import Detector
from ..probe import Fetcher, LiveIntrospectionProbe
from .cookie import CookieSecurityDetector
from .debug_mode import DebugModeDetector
from .env_http import EnvHttpAccessibilityDetector
from .frontend_deps import FrontendDependenciesDetector
from .mass_assignment import MassAssignmentDetector
from .unguarded import UnguardedModelsDetector
from .up_to_date import UpToDateDependenciesDetector
from .vulnerable_deps import VulnerableDependenciesDetector
from .xss import XssDetector

__all__ = [
    "CookieSecurityDetector",
    "DebugModeDetector",
    "EnvHttpAccessibilityDetector",
    "FrontendDependenciesDetector",
    "MassAssignmentDetector",
    "UnguardedModelsDetector",
    "UpToDateDependenciesDetector",
    "VulnerableDependenciesDetector",
    "XssDetector",
    "default_detectors",
]


def default_detectors(config: Optional[EngineConfig] = None, fetcher: Optional[Fetcher] = None,
                      probe: Optional[LiveIntrospectionProbe] = None, advisory_source=None,
                      command_runner=None) -> List[Detector]:
    """One instance of every built-in detector, sharing the given collaborators."""
    config = config or EngineConfig()
    return [
        CookieSecurityDetector(config, probe=probe),
        DebugModeDetector(config),
        UnguardedModelsDetector(config),
        MassAssignmentDetector(config),
        XssDetector(config, fetcher=fetcher),
        VulnerableDependenciesDetector(config, advisory_source=advisory_source),
        FrontendDependenciesDetector(config, command_runner=command_runner),
        UpToDateDependenciesDetector(config, command_runner=command_runner),
        EnvHttpAccessibilityDetector(config, fetcher=fetcher),
    ]
