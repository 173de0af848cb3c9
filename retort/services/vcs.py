from __future__ import annotations

import logging
import subprocess
from pathlib import Path
from typing import Sequence

from retort.core.errors import ExternalToolError

logger = logging.getLogger(__name__)


class GitClient:
    """Runs git in a working tree and judges each call by its exit status."""

    def __init__(self, workdir: Path, executable: str = "git") -> None:
        self._workdir = workdir
        self._executable = executable

    def add(self, path: str) -> None:
        result = self._run(["add", path])
        if result.returncode != 0:
            raise ExternalToolError(f"git add failed for {path}", result.returncode)

    def commit(self, message: str) -> None:
        result = self._run(["commit", "-m", message])
        if result.returncode != 0:
            raise ExternalToolError("git commit failed", result.returncode)

    def _run(self, args: Sequence[str]) -> subprocess.CompletedProcess[str]:
        command = [self._executable, *args]
        logger.debug("Running %s in %s", command, self._workdir)
        try:
            result = subprocess.run(
                command,
                cwd=self._workdir,
                capture_output=True,
                text=True,
            )
        except OSError as exc:
            raise ExternalToolError(f"Could not run {self._executable}: {exc}") from exc
        if result.returncode != 0:
            logger.warning(
                "%s exited with %s: %s",
                " ".join(command[:2]),
                result.returncode,
                (result.stderr or result.stdout).strip(),
            )
        return result
