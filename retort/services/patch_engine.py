from __future__ import annotations

import enum
import logging
import os
import re
from dataclasses import dataclass
from pathlib import Path
from typing import Callable, Optional

from retort.core.errors import (
    AmbiguousMatchError,
    InvalidRequestError,
    NotFoundError,
    UnauthorizedPathError,
)
from retort.services.vcs import GitClient

logger = logging.getLogger(__name__)

SEARCH_MARKER = "<<<<<<< SEARCH"
DIVIDER_MARKER = "======="
REPLACE_MARKER = ">>>>>>> REPLACE"
FALLBACK_COMMIT_MESSAGE = "Apply changes from LLM"

CODE_FENCE_PATTERN = re.compile(r"```[a-zA-Z]*\n?.*?\n?```", re.DOTALL)


@dataclass
class FileChange:
    """One exact-match edit proposed by the model."""

    path: str
    search_content: str
    replace_content: str


@dataclass
class ParsedResponse:
    """A model response split into the commit message and its edits."""

    commit_message: str
    changes: list[FileChange]


class _ParseState(enum.Enum):
    SCANNING = "scanning"
    IN_SEARCH = "in_search"
    IN_REPLACE = "in_replace"


def _looks_like_path(line: str) -> bool:
    return bool(line) and " " not in line and not line.startswith("#")


def split_lines(text: str) -> list[str]:
    """Split on ``\\n`` only, dropping one trailing ``\\r`` per line.

    Other Unicode line boundaries stay inside the line so block bodies
    survive unchanged.
    """

    lines = text.split("\n")
    if lines[-1] == "":
        lines.pop()
    return [line[:-1] if line.endswith("\r") else line for line in lines]


def parse_changes(response: str) -> ParsedResponse:
    """Extract SEARCH/REPLACE blocks and the leftover commit message text.

    A block is a path line, ``<<<<<<< SEARCH``, search lines, ``=======``,
    replace lines and ``>>>>>>> REPLACE``. Blocks missing their closing
    marker are ignored and their lines stay in the commit message.
    """

    lines = split_lines(response)
    changes: list[FileChange] = []
    consumed: set[int] = set()

    state = _ParseState.SCANNING
    block_start = 0
    path = ""
    search_lines: list[str] = []
    replace_lines: list[str] = []

    index = 0
    while index < len(lines):
        line = lines[index]
        if state is _ParseState.SCANNING:
            candidate = line.strip()
            next_line = lines[index + 1] if index + 1 < len(lines) else None
            if next_line == SEARCH_MARKER and _looks_like_path(candidate):
                state = _ParseState.IN_SEARCH
                block_start = index
                path = candidate
                search_lines = []
                replace_lines = []
                index += 2
                continue
        elif state is _ParseState.IN_SEARCH:
            if line == DIVIDER_MARKER:
                state = _ParseState.IN_REPLACE
            else:
                search_lines.append(line)
        elif line == REPLACE_MARKER:
            changes.append(
                FileChange(
                    path=path,
                    search_content="\n".join(search_lines),
                    replace_content="\n".join(replace_lines),
                )
            )
            consumed.update(range(block_start, index + 1))
            state = _ParseState.SCANNING
        else:
            replace_lines.append(line)
        index += 1

    if state is not _ParseState.SCANNING:
        logger.info("Ignoring unterminated SEARCH/REPLACE block for %s", path)

    remainder = "\n".join(line for i, line in enumerate(lines) if i not in consumed)
    commit_message = CODE_FENCE_PATTERN.sub("", remainder).strip()
    return ParsedResponse(commit_message=commit_message, changes=changes)


def canonical_path(path: Path) -> Path:
    """Resolve ``path`` to an absolute canonical location.

    A file that does not exist yet is placed under its canonicalized parent.
    """

    absolute = path if path.is_absolute() else Path.cwd() / path
    if absolute.exists():
        return absolute.resolve()
    return absolute.parent.resolve() / absolute.name


class PatchEngine:
    """Apply parsed edits to the working tree and commit them with git."""

    def __init__(
        self,
        workdir: Optional[Path] = None,
        git: Optional[GitClient] = None,
        echo: Callable[[str], None] | None = None,
    ) -> None:
        self._workdir = workdir
        self._git = git
        self._echo = echo or (lambda _text: None)

    @property
    def workdir(self) -> Path:
        return self._workdir or Path.cwd()

    def post_send(self, response: str, project_root: Optional[Path]) -> None:
        """Hook entry point: apply and commit whatever the response proposes."""

        parsed = parse_changes(response)
        if parsed.changes:
            self.apply_and_commit(parsed.commit_message, parsed.changes, project_root)

    def apply_and_commit(
        self,
        commit_message: str,
        changes: list[FileChange],
        project_root: Optional[Path] = None,
    ) -> None:
        if not changes:
            return
        if project_root is not None:
            self.check_containment(changes, project_root)

        # Files are written one by one; a failure leaves earlier files rewritten
        # but unstaged.
        for change in changes:
            self._echo(f"Applying changes to {change.path}")
            self.apply_change(change)

        git = self._git or GitClient(self.workdir)
        self._echo("Staging changes...")
        for change in changes:
            git.add(change.path)

        message = commit_message or FALLBACK_COMMIT_MESSAGE
        self._echo(f"Committing changes with message: {message}")
        git.commit(message)
        self._echo("Changes committed successfully.")

    def check_containment(self, changes: list[FileChange], project_root: Path) -> None:
        """Reject the batch if any change resolves outside ``project_root``."""

        root = project_root.resolve()
        for change in changes:
            target = canonical_path(self._target(change.path))
            if not target.is_relative_to(root):
                raise UnauthorizedPathError(
                    f"Attempted to modify file {change.path} which is outside "
                    f"the project root {project_root}."
                )

    def apply_change(self, change: FileChange) -> None:
        target = self._target(change.path)
        if change.search_content:
            try:
                with open(target, encoding="utf-8", newline="") as handle:
                    original = handle.read()
            except FileNotFoundError as exc:
                raise NotFoundError(f"File {change.path} not found.") from exc
            except UnicodeDecodeError as exc:
                raise InvalidRequestError(f"File {change.path} is not valid UTF-8 text.") from exc
            except OSError as exc:
                raise InvalidRequestError(f"Could not read file {change.path}: {exc.strerror}") from exc
            occurrences = original.count(change.search_content)
            if occurrences == 0:
                raise NotFoundError(f"SEARCH block not found in file {change.path}")
            if occurrences > 1:
                raise AmbiguousMatchError(change.path, occurrences)
            new_content = original.replace(change.search_content, change.replace_content, 1)
        else:
            new_content = change.replace_content

        if new_content and not new_content.endswith("\n"):
            new_content += "\n"
        try:
            target.parent.mkdir(parents=True, exist_ok=True)
            with open(target, "w", encoding="utf-8", newline="") as handle:
                handle.write(new_content)
        except OSError as exc:
            raise InvalidRequestError(f"Could not write file {change.path}: {exc.strerror}") from exc
        logger.info("Rewrote %s", os.fspath(target))

    def _target(self, path: str) -> Path:
        candidate = Path(path)
        if candidate.is_absolute():
            return candidate
        return self.workdir / candidate
