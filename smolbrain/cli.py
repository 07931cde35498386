"""
CLI interface for smolbrain.

Usage:
    smolbrain add "Deploys go out on Tuesdays" -t ops
    smolbrain find deploy tuesday
    smolbrain similar "when do we ship?"
    smolbrain task "Fix flaky login test" -t ci
    smolbrain mark 12 wip
"""

import json
import os
import select
import sys
from contextlib import contextmanager
from pathlib import Path
from typing import Iterator, Optional

import typer
from typing_extensions import Annotated

from .api import Brain
from .errors import (
    EmbeddingProviderError,
    NotFoundError,
    StorageError,
    TaskError,
    ValidationError,
    log_exception,
)
from .filters import Filters, Window
from .logging_config import configure_quiet_mode, enable_debug_mode
from .tasks import Task
from .types import Memory, Page, ScoredMemory


def _has_stdin_data() -> bool:
    """Check if stdin has data available without blocking.

    Returns True only when stdin is a pipe with data ready to read.
    Returns False for TTYs, sockets and empty pipes.
    """
    if sys.stdin.isatty():
        return False
    try:
        ready, _, _ = select.select([sys.stdin], [], [], 0)
        return bool(ready)
    except (ValueError, OSError):
        return False


# Configure quiet mode by default (suppress verbose library output)
# Set SMOLBRAIN_VERBOSE=1 to enable debug mode via environment
if os.environ.get("SMOLBRAIN_VERBOSE") == "1":
    enable_debug_mode()
else:
    configure_quiet_mode(quiet=True)


def _version_callback(value: bool):
    if value:
        from importlib.metadata import version
        print(f"smolbrain {version('smolbrain')}")
        raise typer.Exit()


def _verbose_callback(value: bool):
    if value:
        enable_debug_mode()


# Global state for CLI options
_json_output = False
_store_override: Optional[Path] = None


def _json_callback(value: bool):
    global _json_output
    _json_output = value


def _get_json_output() -> bool:
    return _json_output


def _store_callback(value: Optional[Path]):
    global _store_override
    _store_override = value


def _get_store_override() -> Optional[Path]:
    return _store_override


def _error_log_for(brain: Optional[Brain]) -> Optional[Path]:
    """Error log inside the store the command targeted, even if it failed to open."""
    if brain is not None:
        return brain.store_path / "smolbrain-errors.log"
    if _store_override is not None:
        return Path(_store_override).expanduser() / "smolbrain-errors.log"
    return None


app = typer.Typer(
    name="smolbrain",
    help="Long-term memory for AI agents.",
    no_args_is_help=True,
    rich_markup_mode=None,
)


@app.callback()
def main_callback(
    verbose: Annotated[bool, typer.Option(
        "--verbose", "-v",
        help="Enable debug-level logging to stderr",
        callback=_verbose_callback,
        is_eager=True,
    )] = False,
    output_json: Annotated[bool, typer.Option(
        "--json", "-j",
        help="Output as JSON",
        callback=_json_callback,
        is_eager=True,
    )] = False,
    version: Annotated[Optional[bool], typer.Option(
        "--version",
        help="Show version and exit",
        callback=_version_callback,
        is_eager=True,
    )] = None,
    store: Annotated[Optional[Path], typer.Option(
        "--store", "-s",
        envvar="SMOLBRAIN_STORE_PATH",
        help="Path to the store directory (default: ~/.smolbrain/)",
        callback=_store_callback,
        is_eager=True,
    )] = None,
):
    """Long-term memory for AI agents."""


# -----------------------------------------------------------------------------
# Common Options
# -----------------------------------------------------------------------------

TagOption = Annotated[
    Optional[list[str]],
    typer.Option(
        "--tag", "-t",
        help="Tag (repeatable)"
    )
]

FilterTagOption = Annotated[
    Optional[list[str]],
    typer.Option(
        "--tag", "-t",
        help="Only memories with any of these tags (repeatable)"
    )
]

FromOption = Annotated[
    Optional[str],
    typer.Option(
        "--from",
        help="Only memories created at or after (timestamp, date, or ISO duration: P3D, PT1H)"
    )
]

ToOption = Annotated[
    Optional[str],
    typer.Option(
        "--to",
        help="Only memories created at or before (timestamp, date, or ISO duration)"
    )
]

ArchivedOption = Annotated[
    bool,
    typer.Option(
        "--archived", "-a",
        help="Include archived memories"
    )
]

LimitOption = Annotated[
    Optional[int],
    typer.Option(
        "--limit", "-n",
        help="First N matches, oldest first (default: 20)"
    )
]

TailOption = Annotated[
    Optional[int],
    typer.Option(
        "--tail",
        help="Last N matches, still shown oldest first"
    )
]

OffsetOption = Annotated[
    int,
    typer.Option(
        "--offset",
        help="Skip N matches (from the end with --tail)"
    )
]


# -----------------------------------------------------------------------------
# Output Formatting
# -----------------------------------------------------------------------------

def _format_header(memory: Memory, score: Optional[float] = None) -> str:
    header = f"[{memory.id}] [{memory.timestamp}]"
    if score is not None:
        header += f" ({score:.3f})"
    if memory.tags:
        header += " " + " ".join(f"#{t}" for t in memory.tags)
    return header


def format_memory(memory: Memory, score: Optional[float] = None) -> str:
    """One memory as a header line followed by its content."""
    return f"{_format_header(memory, score)}\n{memory.content}"


def format_excerpt(content: str, tokens: list[str]) -> str:
    """
    Show only the lines of ``content`` that contain a search token.

    Each matching line is shown with one line before and two after.
    Separate groups are joined with "...", and elided text at the start
    or end is marked the same way.
    """
    lines = content.split("\n")
    needles = [t.casefold() for t in tokens]
    keep: set[int] = set()
    for i, line in enumerate(lines):
        folded = line.casefold()
        if any(n in folded for n in needles):
            keep.update(range(max(0, i - 1), min(len(lines), i + 3)))

    if not keep:
        # Tokens can span lines; fall back to the whole content
        return content

    indices = sorted(keep)
    groups: list[list[int]] = []
    for idx in indices:
        if groups and idx == groups[-1][-1] + 1:
            groups[-1].append(idx)
        else:
            groups.append([idx])

    body = "\n...\n".join("\n".join(lines[i] for i in group) for group in groups)
    prefix = "...\n" if indices[0] > 0 else ""
    suffix = "\n..." if indices[-1] < len(lines) - 1 else ""
    return prefix + body + suffix


def _echo_page(page: Page, *, render=None, empty: str = "No memories found.") -> None:
    """Print a page (JSON or text) and a footer with counts."""
    if _get_json_output():
        typer.echo(json.dumps(page.to_dict(), ensure_ascii=False))
        return

    if not page.items:
        typer.echo(empty)
        return

    blocks = []
    for item in page.items:
        if render is not None:
            blocks.append(render(item))
        elif isinstance(item, ScoredMemory):
            blocks.append(format_memory(item.memory, item.score))
        else:
            blocks.append(format_memory(item))
    typer.echo("\n\n".join(blocks))

    if page.remaining:
        typer.echo(
            f"\n({len(page.items)} of {page.total} shown, {page.remaining} more)",
            err=True,
        )


def _echo_memory(memory: Memory, message: Optional[str] = None) -> None:
    if _get_json_output():
        typer.echo(json.dumps(memory.to_dict(), ensure_ascii=False))
    else:
        if message:
            typer.echo(message)
        typer.echo(format_memory(memory))


def _echo_result(id: int, changed: bool, done: str, noop: str) -> None:
    """Report an idempotent mutation. No-ops are informational, not errors."""
    if _get_json_output():
        typer.echo(json.dumps({"id": id, "changed": changed}))
    else:
        typer.echo(f"[{id}] {done if changed else noop}")


# -----------------------------------------------------------------------------
# Input and invocation helpers
# -----------------------------------------------------------------------------

def _read_content(text: Optional[list[str]]) -> str:
    """Content from arguments, or from stdin when no arguments are given."""
    if text:
        return " ".join(text)
    if _has_stdin_data():
        try:
            return sys.stdin.read().strip()
        except UnicodeDecodeError:
            raise ValidationError("stdin contains binary data (not valid UTF-8)")
    return ""


def _filters(tag, since, until, archived) -> Filters:
    return Filters(tags=tuple(tag or ()), since=since, until=until, include_archived=archived)


@contextmanager
def _open_brain(command: str) -> Iterator[Brain]:
    """
    Open the store for one command and map failures to exit codes.

    - NotFound / not-a-task: message on stderr, exit 0 (informational)
    - invalid input or config: message on stderr, exit 1
    - storage or embedding failure: logged with traceback, exit 1
    """
    brain: Optional[Brain] = None
    try:
        brain = Brain(_get_store_override())
        yield brain
    except (NotFoundError, TaskError) as e:
        typer.echo(str(e), err=True)
    except ValidationError as e:
        typer.echo(f"Error: {e}", err=True)
        raise typer.Exit(1)
    except (StorageError, EmbeddingProviderError) as e:
        log_path = log_exception(e, command, log_path=_error_log_for(brain))
        typer.echo(f"Error: {e}", err=True)
        typer.echo(f"Details logged to {log_path}", err=True)
        raise typer.Exit(1)
    except (ValueError, OSError) as e:
        # Unreadable or invalid store configuration
        typer.echo(f"Error: {e}", err=True)
        raise typer.Exit(1)
    finally:
        if brain is not None:
            brain.close()


# -----------------------------------------------------------------------------
# Commands
# -----------------------------------------------------------------------------

@app.command()
def add(
    text: Annotated[Optional[list[str]], typer.Argument(
        help="Memory text (or pipe via stdin)"
    )] = None,
    tag: TagOption = None,
):
    """
    Store a memory.

    \b
    Examples:
        smolbrain add "Staging DB password rotates monthly" -t ops
        git log -1 --format=%B | smolbrain add -t commits
    """
    with _open_brain("add") as brain:
        memory = brain.add(_read_content(text), tag or ())
        _echo_memory(memory, message=f"Stored memory {memory.id}.")


@app.command()
def get(
    id: Annotated[int, typer.Argument(help="Memory ID")],
):
    """Show one memory by ID, archived or not."""
    with _open_brain("get") as brain:
        _echo_memory(brain.get(id))


@app.command("ls")
def list_memories(
    tag: FilterTagOption = None,
    since: FromOption = None,
    until: ToOption = None,
    archived: ArchivedOption = False,
    limit: LimitOption = None,
    tail: TailOption = None,
    offset: OffsetOption = 0,
):
    """
    List memories in chronological order.

    \b
    Examples:
        smolbrain ls                     # First 20 memories
        smolbrain ls --tail 5            # Five most recent
        smolbrain ls -t ops -t infra     # Tagged ops or infra
        smolbrain ls --from P7D          # Created in the last week
        smolbrain ls --archived          # Include archived memories
    """
    with _open_brain("ls") as brain:
        window = Window(limit=limit, tail=tail, offset=offset)
        page = brain.list_memories(_filters(tag, since, until, archived), window)
        _echo_page(page)


@app.command()
def find(
    query: Annotated[list[str], typer.Argument(help="Words that must all appear")],
    tag: FilterTagOption = None,
    since: FromOption = None,
    until: ToOption = None,
    archived: ArchivedOption = False,
    limit: LimitOption = None,
    tail: TailOption = None,
    offset: OffsetOption = 0,
):
    """
    Full-text search (every word must appear, case-insensitive).

    Results are in chronological order. Each hit shows the matching lines
    with a little surrounding context.
    """
    text = " ".join(query)
    tokens = text.split()
    with _open_brain("find") as brain:
        window = Window(limit=limit, tail=tail, offset=offset)
        page = brain.find(text, _filters(tag, since, until, archived), window)
        _echo_page(
            page,
            render=lambda m: f"{_format_header(m)}\n{format_excerpt(m.content, tokens)}",
        )


@app.command()
def similar(
    query: Annotated[list[str], typer.Argument(help="Text to compare against")],
    tag: FilterTagOption = None,
    since: FromOption = None,
    until: ToOption = None,
    archived: ArchivedOption = False,
    limit: LimitOption = None,
    tail: TailOption = None,
    offset: OffsetOption = 0,
):
    """Semantic search: memories ranked by similarity to the query."""
    with _open_brain("similar") as brain:
        window = Window(limit=limit, tail=tail, offset=offset)
        page = brain.similar(" ".join(query), _filters(tag, since, until, archived), window)
        _echo_page(page)


@app.command()
def edit(
    id: Annotated[int, typer.Argument(help="Memory ID to replace")],
    text: Annotated[Optional[list[str]], typer.Argument(
        help="New text (or pipe via stdin)"
    )] = None,
):
    """
    Replace a memory's content with a new version.

    The original is archived, never changed. The new version gets a new ID
    and the original's tags.
    """
    with _open_brain("edit") as brain:
        memory = brain.edit(id, _read_content(text))
        _echo_memory(memory, message=f"Memory {id} archived; new version is {memory.id}.")


@app.command()
def tag(
    id: Annotated[int, typer.Argument(help="Memory ID")],
    labels: Annotated[list[str], typer.Argument(help="Tags to add")],
):
    """Add tags to a memory."""
    with _open_brain("tag") as brain:
        for label in labels:
            changed = brain.tag(id, label)
            _echo_result(id, changed, f"tagged {label}", f"already tagged {label}")


@app.command()
def untag(
    id: Annotated[int, typer.Argument(help="Memory ID")],
    labels: Annotated[list[str], typer.Argument(help="Tags to remove")],
):
    """Remove tags from a memory."""
    with _open_brain("untag") as brain:
        for label in labels:
            changed = brain.untag(id, label)
            _echo_result(id, changed, f"untagged {label}", f"not tagged {label}")


@app.command("rm")
def remove(
    ids: Annotated[list[int], typer.Argument(help="Memory IDs to archive")],
):
    """Archive memories (soft delete; see 'restore')."""
    with _open_brain("rm") as brain:
        for id in ids:
            _echo_result(id, brain.remove(id), "archived", "already archived")


@app.command()
def restore(
    ids: Annotated[list[int], typer.Argument(help="Memory IDs to restore")],
):
    """Restore archived memories."""
    with _open_brain("restore") as brain:
        for id in ids:
            _echo_result(id, brain.restore(id), "restored", "not archived")


@app.command()
def task(
    text: Annotated[Optional[list[str]], typer.Argument(
        help="Task description (or pipe via stdin)"
    )] = None,
    tag: TagOption = None,
):
    """Create a task (tagged 'task' and 'todo')."""
    with _open_brain("task") as brain:
        memory = brain.create_task(_read_content(text), tag or ())
        _echo_memory(memory, message=f"Created task {memory.id}.")


@app.command()
def tasks(
    status: Annotated[Optional[str], typer.Argument(
        help="todo, wip, done, or all (default: todo and wip)"
    )] = None,
    tag: FilterTagOption = None,
    since: FromOption = None,
    until: ToOption = None,
    archived: ArchivedOption = False,
    limit: LimitOption = None,
    tail: TailOption = None,
    offset: OffsetOption = 0,
):
    """List tasks, open ones by default."""
    with _open_brain("tasks") as brain:
        window = Window(limit=limit, tail=tail, offset=offset)
        page = brain.list_tasks(status, _filters(tag, since, until, archived), window)
        _echo_page(page, empty="No tasks found.")


@app.command()
def mark(
    id: Annotated[int, typer.Argument(help="Task ID")],
    status: Annotated[str, typer.Argument(help="todo, wip or done")],
):
    """Set a task's status."""
    with _open_brain("mark") as brain:
        memory = brain.mark_task(id, status)
        _echo_memory(memory, message=f"Task {id} is now {Task(memory).status}.")


@app.command()
def status():
    """Show open tasks and recent memories."""
    with _open_brain("status") as brain:
        summary = brain.status_summary()
        if _get_json_output():
            typer.echo(json.dumps(summary.to_dict(), ensure_ascii=False))
            return

        counts = ", ".join(f"{n} {s}" for s, n in summary.tasks_by_status.items())
        typer.echo(f"{summary.total_memories} memories; tasks: {counts}")

        typer.echo("\nOpen tasks:")
        if summary.open_tasks:
            for memory in summary.open_tasks:
                statuses = "/".join(Task(memory).statuses)
                typer.echo(f"  [{memory.id}] ({statuses}) {memory.content.splitlines()[0]}")
        else:
            typer.echo("  none")

        typer.echo("\nRecent:")
        if summary.recent:
            for memory in summary.recent:
                typer.echo(f"  [{memory.id}] [{memory.timestamp}] {memory.content.splitlines()[0]}")
        else:
            typer.echo("  none")


@app.command("tags")
def list_tags():
    """List tags in use with their counts."""
    with _open_brain("tags") as brain:
        counts = brain.list_tags()
        if _get_json_output():
            typer.echo(json.dumps(dict(counts)))
        elif not counts:
            typer.echo("No tags found.")
        else:
            for label, n in counts:
                typer.echo(f"{label}\t{n}")


@app.command()
def reembed():
    """Compute embeddings for memories missing one for the current model."""
    with _open_brain("reembed") as brain:
        count = brain.reembed_all()
        if _get_json_output():
            typer.echo(json.dumps({"reembedded": count}))
        else:
            typer.echo(f"Re-embedded {count} memories.")


def main():
    app()


if __name__ == "__main__":
    main()
