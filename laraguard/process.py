"""External command execution under a hard wall-clock timeout."""

import logging
import shutil
import subprocess
from dataclasses import dataclass
from pathlib import Path
from typing import Optional, Sequence, Union

from .errors import ToolNotFoundError

logger = logging.getLogger(__name__)


@dataclass(frozen=True)
class CommandOutcome:
    returncode: int
    stdout: str
    stderr: str

    @property
    def ok(self) -> bool:
        return self.returncode == 0

    @property
    def output(self) -> str:
        """stdout and stderr together; several tools report on stderr."""
        return self.stdout + ("\n" + self.stderr if self.stderr else "")


def run_command(args: Sequence[str], cwd: Union[str, Path],
                timeout: float = 60.0) -> Optional[CommandOutcome]:
    """Run ``args`` in ``cwd``; None when the timeout killed it.

    Raises ToolNotFoundError when the executable is not on PATH.
    """
    executable = shutil.which(args[0])
    if executable is None:
        raise ToolNotFoundError(args[0])
    try:
        completed = subprocess.run(
            [executable, *args[1:]],
            cwd=str(cwd),
            stdin=subprocess.DEVNULL,
            capture_output=True,
            text=True,
            encoding='utf-8',
            errors='replace',
            timeout=timeout,
        )
    except subprocess.TimeoutExpired:
        logger.warning("%s timed out after %ss", " ".join(args), timeout)
        return None
    except OSError as e:
        # Present on PATH but not runnable
        raise ToolNotFoundError(args[0]) from e
    return CommandOutcome(completed.returncode, completed.stdout or "", completed.stderr or "")
