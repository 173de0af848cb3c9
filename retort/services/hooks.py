from __future__ import annotations

from pathlib import Path
from typing import Optional, Protocol


class PostSendHook(Protocol):
    """Runs after the model has answered and before the turn is recorded."""

    def post_send(self, response: str, project_root: Optional[Path]) -> None:
        """Act on the complete response text."""


class HookManager:
    """Ordered registry of post-send hooks; the first failure stops the chain."""

    def __init__(self) -> None:
        self._hooks: list[PostSendHook] = []

    def register(self, hook: PostSendHook) -> None:
        self._hooks.append(hook)

    def run_post_send_hooks(self, response: str, project_root: Optional[Path]) -> None:
        for hook in self._hooks:
            hook.post_send(response, project_root)
