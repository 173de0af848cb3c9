"""
retort - command-line interface.

Every command opens the configured database, runs one operation and prints
plain, column-aligned text that is easy to parse with standard tools.
"""

import asyncio
from typing import Awaitable, Callable, Optional, TypeVar

import typer

from retort.app import open_app
from retort.core.errors import RetortError
from retort.schemas.context import MessageMetadata, PreparedContext
from retort.services.chat_service import SendRequest
from retort.services.context_service import ResolvedContext

T = TypeVar("T")

PREVIEW_WIDTH = 70

app = typer.Typer(
    name="retort",
    help="Branching AI pair-programming chats with staged file context",
    no_args_is_help=True,
)
tag_app = typer.Typer(help="Manage chat tags", no_args_is_help=True)
app.add_typer(tag_app, name="tag")


def _run(operation: Callable[[], Awaitable[T]]) -> T:
    """Run an async command body, turning domain errors into ``Error: ...``."""

    try:
        return asyncio.run(operation())
    except RetortError as exc:
        typer.echo(f"Error: {exc.message}", err=True)
        raise typer.Exit(1)


def _file_section(label: str, paths: list[str]) -> list[str]:
    if not paths:
        return []
    return [f"  {label}:"] + [f"    - {path}" for path in paths]


def _context_lines(read_write: list[str], read_only: list[str]) -> list[str]:
    lines = _file_section("Read-Write", read_write) + _file_section("Read-Only", read_only)
    return lines or ["  (empty)"]


def format_stage(inherited: MessageMetadata, prepared: PreparedContext) -> str:
    """Render the inherited and prepared context the way ``retort stage`` shows them."""

    lines = ["Inherited Context (from active chat):"]
    lines += _context_lines(
        [ref.path for ref in inherited.read_write_files],
        [ref.path for ref in inherited.read_only_files],
    )
    lines += ["", "Prepared Context (for next message):"]
    lines += _context_lines(prepared.read_write_files, prepared.read_only_files)
    return "\n".join(lines)


def format_final_context(context: ResolvedContext) -> str:
    lines = ["---", "CONTEXT (for this message):"]
    lines += _context_lines(context.read_write_paths(), context.read_only_paths())
    lines.append("---")
    return "\n".join(lines)


def preview_text(content: str, width: int = PREVIEW_WIDTH) -> str:
    return content[:width].replace("\n", " ")


@app.command("list")
def list_chats() -> None:
    """List every conversation tip, newest first."""

    async def _main():
        async with open_app() as retort:
            return await retort.history_service.list_chats()

    chats = _run(_main)
    typer.echo(f"{'ID':<5} {'Tag':<20} Last User Message")
    typer.echo(f"{'-' * 5} {'-' * 20} {'-' * PREVIEW_WIDTH}")
    for chat in chats:
        tag_display = chat.leaf.tag or "-"
        typer.echo(f"{chat.leaf.id:<5} {tag_display:<20} {preview_text(chat.preview)}")


@app.command()
def history(
    target: Optional[str] = typer.Argument(
        None, help="Tag or message ID to show. Defaults to the active chat tag."
    ),
    tag: bool = typer.Option(False, "--tag", "-t", help="Treat the target as a tag"),
    message: bool = typer.Option(False, "--message", "-m", help="Treat the target as a message ID"),
) -> None:
    """Show the conversation leading to a tag or message."""

    async def _main():
        async with open_app() as retort:
            profile = await retort.profile_service.get_profile()
            leaf_id = await retort.history_service.resolve_target(
                target,
                as_tag=tag,
                as_message=message,
                active_tag=profile.active_chat_tag,
            )
            return await retort.history_service.ancestors(leaf_id)

    messages = _run(_main)
    blocks = [f"[{item.role}]\n{item.content}" for item in messages]
    typer.echo("\n---\n".join(blocks))


@app.command()
def send(
    prompt: str = typer.Argument(..., help="The prompt to send"),
    parent: Optional[int] = typer.Option(
        None, "--parent", help="Branch from this message ID without updating any tag"
    ),
    chat: Optional[str] = typer.Option(None, "--chat", help="Continue (or start) this chat tag"),
    new: bool = typer.Option(False, "--new", help="Start a new chat, ignoring the active tag"),
    stream: Optional[bool] = typer.Option(
        None, "--stream/--no-stream", help="Stream the response (overrides config)"
    ),
    ignore_inherited_stage: bool = typer.Option(
        False,
        "--ignore-inherited-stage",
        help="Do not carry over the file context of the previous turn",
    ),
) -> None:
    """Send a prompt to the model and apply any edits it proposes."""

    def _print_chunk(chunk: str) -> None:
        typer.echo(chunk, nl=False)

    def _print_context(context: ResolvedContext) -> None:
        typer.echo(format_final_context(context))

    async def _main():
        async with open_app(echo=typer.echo) as retort:
            profile = await retort.profile_service.get_profile()
            request = SendRequest(
                prompt=prompt,
                parent_id=parent,
                chat_tag=chat,
                new=new,
                stream=stream,
                ignore_inherited=ignore_inherited_stage,
                active_tag=profile.active_chat_tag,
                project_root=profile.project_root,
            )
            await retort.chat_service.send(
                request,
                echo=typer.echo,
                on_chunk=_print_chunk,
                on_context=_print_context,
            )

    _run(_main)


@tag_app.command("set")
def tag_set(
    tag: str = typer.Argument(..., help="Tag name"),
    message: int = typer.Option(..., "--message", "-m", help="Message ID to tag"),
) -> None:
    """Point a tag at a message."""

    async def _main():
        async with open_app() as retort:
            return await retort.tag_service.set_tag(tag, message)

    update = _run(_main)
    if update.unchanged:
        typer.echo(f"Tag '{tag}' already points to message {message}.")
    elif update.created:
        typer.echo(f"Tagged message {message} with '{tag}'")
    else:
        typer.echo(f"Moved tag '{tag}' from message {update.previous_id} to {message}.")


@tag_app.command("delete")
def tag_delete(tag: str = typer.Argument(..., help="Tag name")) -> None:
    """Delete a tag; the messages it pointed to are kept."""

    async def _main():
        async with open_app() as retort:
            return await retort.tag_service.delete_tag(tag)

    message_id = _run(_main)
    if message_id is None:
        typer.echo(f"Tag '{tag}' not found.")
    else:
        typer.echo(f"Deleted tag '{tag}' which pointed to message ID {message_id}")


@tag_app.command("list")
def tag_list() -> None:
    """List all tags."""

    async def _main():
        async with open_app() as retort:
            return await retort.tag_service.list_tags()

    tags = _run(_main)
    if not tags:
        typer.echo("No tags found.")
        return
    typer.echo(f"{'Tag':<30} Message ID")
    typer.echo(f"{'-' * 30} {'-' * 10}")
    for item in tags:
        typer.echo(f"{item.tag:<30} {item.message_id}")


@app.command()
def stage(
    file_path: Optional[str] = typer.Argument(None, help="File to stage or drop"),
    read_only: bool = typer.Option(False, "--read-only", "-r", help="Stage the file read-only"),
    drop: bool = typer.Option(False, "--drop", "-d", help="Remove the file from the context"),
) -> None:
    """Stage files for the next message, or show the current context."""

    async def _main():
        async with open_app() as retort:
            if file_path is not None:
                if drop:
                    await retort.context_service.remove_file(file_path)
                    return f"Removed {file_path} from stage."
                await retort.context_service.add_file(file_path, read_only=read_only)
                visibility = "read-only" if read_only else "read-write"
                return f"Staged {file_path} as {visibility}."
            profile = await retort.profile_service.get_profile()
            inherited = await retort.context_service.inherited_for_tag(profile.active_chat_tag)
            prepared = await retort.context_service.get_stage()
            return format_stage(inherited, prepared)

    typer.echo(_run(_main))


@app.command()
def profile(
    active_chat: Optional[str] = typer.Option(
        None, "--active-chat", help="Set the active chat tag"
    ),
    set_project_root: Optional[str] = typer.Option(
        None, "--set-project-root", help="Restrict edits to this directory"
    ),
) -> None:
    """Show or update the active profile."""

    async def _main():
        lines = []
        async with open_app() as retort:
            if active_chat is not None:
                await retort.profile_service.set_active_chat(active_chat)
                lines.append(f"Set active chat tag to: {active_chat}")
            if set_project_root is not None:
                root = await retort.profile_service.set_project_root(set_project_root)
                lines.append(f"Set project root to: {root}")
            if not lines:
                current = await retort.profile_service.get_profile()
                lines.append(f"Active Profile: {current.name}")
                lines.append(f"  active_chat_tag: {current.active_chat_tag or 'None'}")
                lines.append(f"  project_root: {current.project_root or 'None'}")
        return lines

    for line in _run(_main):
        typer.echo(line)


if __name__ == "__main__":
    app()
