from __future__ import annotations

import shlex
from dataclasses import dataclass, field
from typing import Any, Literal, Optional

CommandKind = Literal["tool", "create", "help"]

USAGE = "\n".join(
    [
        "Commands:",
        "`{p}runs` list walkthrough runs",
        "`{p}pooms` list runs and active creation jobs",
        "`{p}create <video_url> [run_id]` create a POOM and follow its progress",
        "`{p}status <job_id>` show a creation job",
        "`{p}open [run_id|poom://run/<id>]` open the chaptered player",
        "`{p}quiz <run_id> <segment_id>` show a segment quiz",
        "`{p}score <run_id> <segment_id> <question_id>=<option_index> ...` score quiz answers",
    ]
)


class CommandError(ValueError):
    """A recognised command with unusable arguments; the message is shown to the user."""


@dataclass(frozen=True, slots=True)
class ParsedCommand:
    kind: CommandKind
    tool: Optional[str] = None
    arguments: dict[str, Any] = field(default_factory=dict)


def usage(prefix: str) -> str:
    return USAGE.format(p=prefix)


def parse_command(content: str, prefix: str) -> Optional[ParsedCommand]:
    """
    Map a chat message to a tool invocation.

    Returns None for messages that are not bridge commands. Raises CommandError when the
    command is known but its arguments are not.
    """
    text = (content or "").strip()
    if not prefix or not text.startswith(prefix):
        return None

    try:
        tokens = shlex.split(text[len(prefix) :])
    except ValueError as e:
        raise CommandError(f"Could not parse command: {e}") from e
    if not tokens:
        return None

    name, args = tokens[0].lower(), tokens[1:]

    if name in ("help", "poom"):
        return ParsedCommand(kind="help")

    if name == "runs":
        return ParsedCommand(kind="tool", tool="list_runs")

    if name == "pooms":
        return ParsedCommand(kind="tool", tool="list_pooms")

    if name == "create":
        if not 1 <= len(args) <= 2:
            raise CommandError(f"Usage: {prefix}create <video_url> [run_id]")
        arguments: dict[str, Any] = {"source_url": args[0]}
        if len(args) == 2:
            arguments["run_id"] = args[1]
        return ParsedCommand(kind="create", tool="create_poom", arguments=arguments)

    if name == "status":
        if len(args) != 1:
            raise CommandError(f"Usage: {prefix}status <job_id>")
        return ParsedCommand(kind="tool", tool="get_poom_status", arguments={"job_id": args[0]})

    if name == "open":
        if len(args) > 1:
            raise CommandError(f"Usage: {prefix}open [run_id|reference]")
        if not args:
            return ParsedCommand(kind="tool", tool="open_run_player")
        if "://" in args[0] or "run_id=" in args[0]:
            return ParsedCommand(kind="tool", tool="open_run_player", arguments={"reference": args[0]})
        return ParsedCommand(kind="tool", tool="open_run_player", arguments={"run_id": args[0]})

    if name == "quiz":
        if len(args) != 2:
            raise CommandError(f"Usage: {prefix}quiz <run_id> <segment_id>")
        return ParsedCommand(
            kind="tool",
            tool="get_segment_quiz",
            arguments={"run_id": args[0], "segment_id": args[1]},
        )

    if name == "score":
        if len(args) < 3:
            raise CommandError(f"Usage: {prefix}score <run_id> <segment_id> <question_id>=<option_index> ...")
        answers = [_parse_answer(token) for token in args[2:]]
        return ParsedCommand(
            kind="tool",
            tool="submit_segment_quiz",
            arguments={"run_id": args[0], "segment_id": args[1], "answers": answers},
        )

    return None


def _parse_answer(token: str) -> dict[str, Any]:
    question_id, sep, index = token.partition("=")
    if not sep or not question_id:
        raise CommandError(f"Answers look like question_id=option_index, got: {token}")
    try:
        selected_index = int(index)
    except ValueError as e:
        raise CommandError(f"Option index must be a number, got: {index}") from e
    return {"id": question_id, "selected_index": selected_index}
