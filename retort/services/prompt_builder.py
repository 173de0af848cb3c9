from __future__ import annotations

import logging
import os
import platform
from pathlib import Path
from typing import Iterable, List, Mapping, Optional, Protocol

logger = logging.getLogger(__name__)

FENCE = "```"
ROLES = ("system", "user", "assistant")

READ_ONLY_FILES_PREFIX = "The user has provided the following read-only files:"
CHAT_FILES_PREFIX = "The user has added these files to the chat. You may propose edits to them."
READ_ONLY_FILES_REPLY = "Ok, I will use these files as references."
CHAT_FILES_REPLY = "Ok, any changes I propose will be to those files."
RENAME_WITH_SHELL = (
    "To rename files which have been added to the chat, "
    "use shell commands at the end of your response."
)
GO_AHEAD_TIP = (
    'If the user just says something like "ok" or "go ahead" or "do that" they probably want '
    "you to make SEARCH/REPLACE blocks for the code changes you just proposed.\n"
    "The user will say when they've applied your edits. If they haven't explicitly confirmed "
    "the edits have been applied, they probably want proper SEARCH/REPLACE blocks."
)
OVEREAGER_PROMPT = (
    "Pay careful attention to the scope of the user's request.\n"
    "Do what they ask, but no more.\n"
    "Do not improve, comment, fix or modify unrelated parts of the code in any way!"
)


class HistoryEntry(Protocol):
    role: str
    content: str


def split_chat_history_markdown(text: str) -> list[dict]:
    """Split ``## role`` headed markdown into chat messages.

    Only ``system``, ``user`` and ``assistant`` headings start a new message;
    any other ``## `` line is content. Messages that are empty after trimming
    are dropped.
    """

    messages: list[dict] = []
    current_role: Optional[str] = None
    current_lines: list[str] = []

    def flush() -> None:
        if current_role is None:
            return
        content = "\n".join(current_lines).strip()
        if content:
            messages.append({"role": current_role, "content": content})

    for line in text.splitlines():
        if line.startswith("## "):
            candidate = line[3:].strip().lower()
            if candidate in ROLES:
                flush()
                current_role = candidate
                current_lines = []
                continue
        current_lines.append(line)
    flush()
    return messages


class PromptBuilder:
    """Compose the system prompt and message list for a coding turn."""

    def __init__(self, prompts_dir: Optional[str] = None) -> None:
        self._prompts_dir = Path(prompts_dir).expanduser() if prompts_dir else None

    def build_messages(
        self,
        history: Iterable[HistoryEntry],
        read_write_files: Mapping[str, str],
        read_only_files: Mapping[str, str],
    ) -> tuple[str, List[dict]]:
        """Return ``(system_prompt, messages)`` for the provider.

        ``history`` is the conversation root first, ending with the newest
        user turn. File mappings are ``path -> content``.
        """

        entries = [{"role": item.role, "content": item.content} for item in history]
        current: list[dict] = []
        if entries and entries[-1]["role"] == "user":
            current = [entries.pop()]

        messages: list[dict] = []
        messages.extend(self._example_messages())
        messages.extend(entries)
        if read_only_files:
            messages.append(
                {
                    "role": "user",
                    "content": f"{READ_ONLY_FILES_PREFIX}\n\n{self._render_files(read_only_files)}",
                }
            )
            messages.append({"role": "assistant", "content": READ_ONLY_FILES_REPLY})
        if read_write_files:
            messages.append(
                {
                    "role": "user",
                    "content": f"{CHAT_FILES_PREFIX}\n\n{self._render_files(read_write_files)}",
                }
            )
            messages.append({"role": "assistant", "content": CHAT_FILES_REPLY})
        messages.extend(current)
        return self.system_prompt(), messages

    def system_prompt(self) -> str:
        override = self._read_prompt_file("system.md")
        if override is not None:
            return override

        return (
            "Act as an expert software developer.\n"
            "Always use best practices when coding.\n"
            "Respect and use existing conventions, libraries, etc that are already present "
            "in the code base.\n"
            f"{OVEREAGER_PROMPT}\n\n"
            "Take requests for changes to the supplied code.\n"
            "If the request is ambiguous, ask questions.\n\n"
            "Once you understand the request you MUST:\n"
            "1. Decide if you need to propose edits to any files that haven't been added "
            "to the chat.\n"
            "2. Think step-by-step and explain the needed changes in a few short sentences.\n"
            "3. Describe each change with a *SEARCH/REPLACE block* per the examples below.\n\n"
            "All changes to files must use this *SEARCH/REPLACE block* format.\n"
            "ONLY EVER RETURN CODE IN A *SEARCH/REPLACE BLOCK*!\n\n"
            "# *SEARCH/REPLACE block* Rules:\n\n"
            "Every *SEARCH/REPLACE block* must use this format:\n"
            "1. The *FULL* file path alone on a line, verbatim. No bold asterisks, no quotes "
            "around it, no escaping of characters, etc.\n"
            f"2. The opening fence and code language, eg: {FENCE}python\n"
            "3. The start of search block: <<<<<<< SEARCH\n"
            "4. A contiguous chunk of lines to search for in the existing source code\n"
            "5. The dividing line: =======\n"
            "6. The lines to replace into the source code\n"
            "7. The end of the replace block: >>>>>>> REPLACE\n"
            f"8. The closing fence: {FENCE}\n\n"
            "Every *SEARCH* section must *EXACTLY MATCH* the existing file content, "
            "character for character, including all comments, docstrings, etc.\n"
            "*SEARCH/REPLACE* blocks will *only* replace the first match occurrence, so "
            "include enough lines to make the SEARCH section uniquely match.\n"
            "To create a new file, use an empty SEARCH section and the new file's contents "
            "in the REPLACE section.\n"
            "Only create *SEARCH/REPLACE* blocks for files that the user has added to the chat!\n"
            "Text outside the *SEARCH/REPLACE* blocks becomes the commit message, so keep "
            "explanations short.\n"
            f"{RENAME_WITH_SHELL}\n\n"
            f"{GO_AHEAD_TIP}\n\n"
            "Reply in the same language they are using.\n\n"
            f"{self._platform_info()}"
        )

    def _example_messages(self) -> list[dict]:
        text = self._read_prompt_file("examples.md")
        if not text:
            return []
        return split_chat_history_markdown(text)

    def _read_prompt_file(self, name: str) -> Optional[str]:
        if not self._prompts_dir:
            return None
        path = self._prompts_dir / name
        if not path.is_file():
            return None
        logger.debug("Using prompt override %s", path)
        return path.read_text(encoding="utf-8")

    @staticmethod
    def _render_files(files: Mapping[str, str]) -> str:
        blocks = []
        for path, content in files.items():
            body = content if content.endswith("\n") or not content else content + "\n"
            blocks.append(f"{path}\n{FENCE}\n{body}{FENCE}")
        return "\n\n".join(blocks)

    @staticmethod
    def _platform_info() -> str:
        return (
            f"- Platform: {platform.system().lower()}-{platform.machine()}\n"
            f"- Shell: {os.environ.get('SHELL', 'unknown')}"
        )
