"""
PreToolUse hook for AI agent shell commands.

Reads the tool call as JSON on stdin and decides, per command:
- block: reason on stderr, exit 2 (the host treats this as deny)
- passthrough: no output, exit 0
- rewrite: wrap the command in rv-exec so secrets are injected, exit 0

Only the Bash tool is inspected. Malformed input is a passthrough.
"""

import json
import os
import re
import sys
from dataclasses import dataclass
from enum import Enum
from pathlib import Path
from typing import Callable, Iterable, Optional

from .approval import ApprovalStore
from .config import CONFIG_FILENAME
from .errors import ApprovalRequiredError, ConfigValidationError
from .manifest import build_key_specs, find_config_upward, get_project_name, read_config

BLOCK_EXIT_CODE = 2
SHELL_TOOL = "Bash"
EXEC_PREFIX = "rv-exec"

REASON_EXPOSES_SECRETS = "redpill-vault: blocked: this command could expose secret values"
REASON_USER_ONLY = "redpill-vault: blocked: only the user may run this command"
REASON_UNKNOWN_SUBCOMMAND = "redpill-vault: blocked: unknown psst subcommand"
REASON_NOT_APPROVED = "redpill-vault: project not approved. The user must run: rv approve"

_SAFE_SPEC = re.compile(r"[A-Za-z0-9_.=-]+")


class Action(str, Enum):
    BLOCK = "block"
    PASSTHROUGH = "passthrough"
    REWRITE = "rewrite"


@dataclass(frozen=True)
class Decision:
    action: Action
    reason: Optional[str] = None
    command: Optional[str] = None

    @classmethod
    def block(cls, reason: str) -> "Decision":
        return cls(Action.BLOCK, reason=reason)

    @classmethod
    def passthrough(cls) -> "Decision":
        return cls(Action.PASSTHROUGH)

    @classmethod
    def rewrite(cls, command: str) -> "Decision":
        return cls(Action.REWRITE, command=command)


def shell_quote(text: str) -> str:
    """POSIX single-quote text; embedded ' becomes '\\''."""
    return "'" + text.replace("'", "'\\''") + "'"


# Rule predicates take the stripped command

def dumps_environment(command: str) -> bool:
    return bool(
        re.match(r"^env\s*$", command)
        or re.match(r"^env\s+-", command)
        or re.match(r"^printenv\b", command)
    )


def reads_vault_file(command: str) -> bool:
    return bool(
        re.search(r"\bcat\b.*vault\.db", command)
        or re.search(r"\bsqlite3?\b.*vault\.db", command)
    )


def reads_legacy_store(command: str) -> bool:
    return bool(re.match(r"^psst\s+(--global\s+)?(get|export)\b", command))


def is_user_only(command: str) -> bool:
    return bool(re.match(r"^rv\s+(approve|revoke)\b", command))


def is_wrapped(command: str) -> bool:
    return command.startswith(EXEC_PREFIX + " ")


def is_management(command: str) -> bool:
    return command == "rv" or command.startswith("rv ")


def is_legacy_store(command: str) -> bool:
    return command.startswith("psst ")


def is_safe_legacy_store(command: str) -> bool:
    return bool(re.match(r"^psst\s+(--global\s+)?(list|set|rm|init|scan|import)\b", command))


# Checked in order, first match wins
BLOCK_RULES: list[tuple[Callable[[str], bool], str]] = [
    (dumps_environment, REASON_EXPOSES_SECRETS),
    (reads_vault_file, REASON_EXPOSES_SECRETS),
    (reads_legacy_store, REASON_EXPOSES_SECRETS),
    (is_user_only, REASON_USER_ONLY),
]

SKIP_RULES: list[Callable[[str], bool]] = [is_wrapped, is_management]


def locate_config(directories: Iterable[Optional[str]]) -> Optional[Path]:
    """First manifest found walking upward from each candidate in turn."""
    for directory in directories:
        if not directory or not Path(directory).is_dir():
            continue
        path = find_config_upward(directory)
        if path is not None:
            return path
    return None


def build_exec_command(command: str, project: str, key_specs: list[str]) -> str:
    specs = [s if _SAFE_SPEC.fullmatch(s) else shell_quote(s) for s in key_specs]
    parts = [EXEC_PREFIX, "--project", shell_quote(project), *specs, "--", "bash", "-c", shell_quote(command)]
    return " ".join(parts)


def _wrap(command: str, directories: list[Optional[str]], approvals: ApprovalStore) -> Decision:
    config_path = locate_config(directories)
    if config_path is None:
        return Decision.passthrough()

    config = read_config(config_path)
    if not config.secrets:
        return Decision.passthrough()

    project_root = config_path.parent
    if not approvals.is_approved(project_root):
        raise ApprovalRequiredError(REASON_NOT_APPROVED)

    project = get_project_name(config, project_root)
    return Decision.rewrite(build_exec_command(command, project, build_key_specs(config)))


def decide(
    command: str,
    cwd: Optional[str] = None,
    fallback_dirs: Iterable[Optional[str]] = (),
    approvals: Optional[ApprovalStore] = None,
) -> Decision:
    """
    Decide what to do with a shell command proposed by the agent.

    The manifest is looked up from cwd, then from each fallback directory.
    """
    trimmed = command.strip()

    for matches, reason in BLOCK_RULES:
        if matches(trimmed):
            return Decision.block(reason)

    if any(skip(trimmed) for skip in SKIP_RULES):
        return Decision.passthrough()

    if is_legacy_store(trimmed):
        if is_safe_legacy_store(trimmed):
            return Decision.passthrough()
        return Decision.block(REASON_UNKNOWN_SUBCOMMAND)

    approvals = approvals or ApprovalStore()
    try:
        return _wrap(command, [cwd, *fallback_dirs], approvals)
    except ConfigValidationError as e:
        return Decision.block(
            f"redpill-vault: invalid {CONFIG_FILENAME} ({e}). The user must fix it or run: rv init"
        )
    except ApprovalRequiredError as e:
        return Decision.block(str(e))


def hook_output(command: str) -> dict:
    return {
        "hookSpecificOutput": {
            "hookEventName": "PreToolUse",
            "permissionDecision": "allow",
            "updatedInput": {"command": command},
        }
    }


def main(stdin=None, stdout=None, stderr=None, environ=None) -> int:
    """Main entry point."""
    stdin = stdin or sys.stdin
    stdout = stdout or sys.stdout
    stderr = stderr or sys.stderr
    environ = os.environ if environ is None else environ

    raw = stdin.read()
    if not raw.strip():
        return 0

    try:
        payload = json.loads(raw)
    except ValueError:
        return 0

    if not isinstance(payload, dict) or payload.get("tool_name") != SHELL_TOOL:
        return 0

    tool_input = payload.get("tool_input")
    command = tool_input.get("command") if isinstance(tool_input, dict) else None
    if not isinstance(command, str) or not command:
        return 0

    cwd = payload.get("cwd") if isinstance(payload.get("cwd"), str) else None
    decision = decide(command, cwd, [environ.get("CLAUDE_PROJECT_DIR"), os.getcwd()])

    if decision.action is Action.BLOCK:
        stderr.write(decision.reason + "\n")
        return BLOCK_EXIT_CODE

    if decision.action is Action.REWRITE:
        stdout.write(json.dumps(hook_output(decision.command)))

    return 0


if __name__ == "__main__":
    sys.exit(main())
