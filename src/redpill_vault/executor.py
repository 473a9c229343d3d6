"""
rv-exec: run a command with secrets injected as environment variables.

    rv-exec [--project NAME] [--dotenv PATH] [--no-mask] [--all] [KEY|KEY=ALIAS ...] -- command [args...]

Secret values that show up in the command's stdout/stderr are replaced with
[REDACTED]. Masking is a literal substring match applied to each chunk read
from the pipe, so a value split across two reads is not masked, and a short
value can mask unrelated text that happens to match.
"""

import argparse
import os
import subprocess
import sys
import threading
from contextlib import contextmanager
from pathlib import Path
from typing import BinaryIO, Iterable, Mapping, Optional

from rich.console import Console
from rich.markup import escape

from . import __version__
from .config import AUTH_ENV_VAR, get_master_key_path, get_vault_path
from .errors import (
    AuthenticationError,
    ConfigValidationError,
    MissingSecretError,
    NotUnlockedError,
    SpawnError,
    VaultError,
)
from .manifest import build_key_specs, find_config_upward, get_project_name, read_config
from .resolver import Resolution, resolve_keys
from .vault import Vault, resolve_passphrase

err_console = Console(stderr=True)

REDACTED = b"[REDACTED]"
SPAWN_FAILURE_EXIT_CODE = 127
USAGE_EXIT_CODE = 1
CHUNK_SIZE = 65536

USAGE_LINE = "rv-exec [--project NAME] [--dotenv PATH] [--no-mask] [--all] KEY1 [KEY2...] -- command [args...]"
USAGE = "Usage: " + USAGE_LINE


def mask_bytes(data: bytes, values: Iterable[bytes]) -> bytes:
    """Replace every occurrence of each value in data with REDACTED."""
    # Longest first so a value containing another is masked whole
    for value in sorted(values, key=len, reverse=True):
        if value:
            data = data.replace(value, REDACTED)
    return data


def build_child_env(secrets: Mapping[str, str], environ: Optional[Mapping[str, str]] = None) -> dict:
    """Parent environment without the vault passphrase, overlaid with secrets."""
    env = dict(os.environ if environ is None else environ)
    env.pop(AUTH_ENV_VAR, None)
    env.update(secrets)
    return env


def write_dotenv(path: Path, secrets: Mapping[str, str]) -> None:
    """Write KEY=value lines, readable by the owner only."""
    content = "".join(f"{name}={value}\n" for name, value in secrets.items())
    fd = os.open(str(path), os.O_WRONLY | os.O_CREAT | os.O_TRUNC, 0o600)
    with os.fdopen(fd, "w") as f:
        f.write(content)
    os.chmod(path, 0o600)


@contextmanager
def dotenv_scope(path: Optional[Path]):
    """Guarantee the dotenv file is gone when the block exits, however it exits."""
    try:
        yield path
    finally:
        if path is not None:
            try:
                path.unlink()
            except (FileNotFoundError, NotADirectoryError):
                pass


def _pump(source: BinaryIO, sink: BinaryIO, values: list[bytes]) -> None:
    fd = source.fileno()
    try:
        while True:
            chunk = os.read(fd, CHUNK_SIZE)
            if not chunk:
                break
            if sink is None:
                continue
            try:
                sink.write(mask_bytes(chunk, values))
                sink.flush()
            except OSError:
                # Reader went away; keep draining so the child never blocks on a full pipe
                sink = None
    finally:
        source.close()


def exit_code(returncode: int) -> int:
    """Shell-style exit code: a child killed by signal N exits 128 + N."""
    return 128 - returncode if returncode < 0 else returncode


def run_command(
    command: list[str],
    env: Mapping[str, str],
    mask_values: Optional[list[str]] = None,
    stdout: Optional[BinaryIO] = None,
    stderr: Optional[BinaryIO] = None,
) -> int:
    """
    Run command and return its exit code.

    With mask_values, both output streams are piped and drained concurrently
    so the child never blocks on a full pipe. Without, the child inherits
    our stdout/stderr directly.
    """
    values = [v.encode("utf-8") for v in (mask_values or []) if v]

    try:
        if not values:
            return exit_code(subprocess.run(command, env=env).returncode)

        proc = subprocess.Popen(command, env=env, stdout=subprocess.PIPE, stderr=subprocess.PIPE)
    except OSError as e:
        raise SpawnError(f"Cannot run {command[0]}: {e.strerror or e}") from e

    stdout = stdout or sys.stdout.buffer
    stderr = stderr or sys.stderr.buffer
    pumps = [
        threading.Thread(target=_pump, args=(proc.stdout, stdout, values), daemon=True),
        threading.Thread(target=_pump, args=(proc.stderr, stderr, values), daemon=True),
    ]
    for t in pumps:
        t.start()
    try:
        returncode = proc.wait()
    finally:
        for t in pumps:
            t.join()
    return exit_code(returncode)


def load_secrets(vault: Vault, resolution: Resolution) -> dict[str, str]:
    """Decrypt resolved keys into {env name: value}. Keys gone since listing become missing."""
    secrets = {}
    for vault_key, env_name in resolution.resolved:
        try:
            secrets[env_name] = vault.require_secret(vault_key)
        except MissingSecretError:
            resolution.missing.append(env_name)
        except AuthenticationError as e:
            raise AuthenticationError(f"{env_name} could not be decrypted") from e
    return secrets


def report_missing(missing: list[str]) -> None:
    for name in missing:
        err_console.print(
            f"[yellow]rv-exec:[/yellow] secret {escape(name)} not found in vault, running without it"
        )
    if missing:
        err_console.print(f"[dim]Set with: rv set {escape(missing[0])}[/dim]")


def execute(
    key_specs: list[str],
    command: list[str],
    project: Optional[str] = None,
    dotenv: Optional[Path] = None,
    mask: bool = True,
    *,
    vault_path: Optional[Path] = None,
    master_key_path: Optional[Path] = None,
    environ: Optional[Mapping[str, str]] = None,
    stdout: Optional[BinaryIO] = None,
    stderr: Optional[BinaryIO] = None,
) -> int:
    """Resolve, decrypt and inject key_specs, then run command."""
    environ = os.environ if environ is None else environ

    with dotenv_scope(dotenv):
        passphrase = resolve_passphrase(environ, master_key_path or get_master_key_path())
        if not passphrase:
            raise NotUnlockedError(
                f"No {AUTH_ENV_VAR} and no master key at {master_key_path or get_master_key_path()}"
            )

        with Vault(vault_path or get_vault_path()) as vault:
            vault.unlock(passphrase)
            resolution = resolve_keys(key_specs, vault.keys(), project)
            secrets = load_secrets(vault, resolution)

        report_missing(resolution.missing)

        if dotenv is not None:
            write_dotenv(dotenv, secrets)

        env = build_child_env(secrets, environ)
        mask_values = list(secrets.values()) if mask else None
        return run_command(command, env, mask_values, stdout, stderr)


def manifest_key_specs(start: Path) -> tuple[list[str], Optional[str]]:
    """Key specs and project name from the nearest .rv.json at or above start."""
    path = find_config_upward(start)
    if path is None:
        return [], None
    config = read_config(path)
    return build_key_specs(config), get_project_name(config, path.parent)


def build_parser() -> argparse.ArgumentParser:
    parser = argparse.ArgumentParser(
        prog="rv-exec",
        description="Run a command with vault secrets injected as environment variables",
        usage=USAGE_LINE,
    )
    parser.add_argument("--version", action="version", version=f"%(prog)s {__version__}")
    parser.add_argument("--project", help="Prefer PROJECT__KEY over KEY")
    parser.add_argument("--dotenv", type=Path, help="Also write secrets to this .env file (deleted afterwards)")
    parser.add_argument("--no-mask", dest="mask", action="store_false",
                        help="Do not redact secret values in output (debugging only)")
    parser.add_argument("--all", action="store_true", help="Inject every key in .rv.json")
    parser.add_argument("keys", nargs="*", metavar="KEY[=ALIAS]", help="Secrets to inject")
    return parser


def main(argv: Optional[list[str]] = None) -> int:
    """Main entry point."""
    argv = sys.argv[1:] if argv is None else argv

    if "--" not in argv:
        if any(a in ("-h", "--help", "--version") for a in argv):
            build_parser().parse_args(argv)
        err_console.print(USAGE, markup=False, soft_wrap=True)
        return USAGE_EXIT_CODE

    sep = argv.index("--")
    command = argv[sep + 1:]
    args = build_parser().parse_args(argv[:sep])

    if not command:
        err_console.print("[red]Error:[/red] No command specified")
        err_console.print(USAGE, markup=False, soft_wrap=True)
        return USAGE_EXIT_CODE

    key_specs = list(args.keys)
    project = args.project
    dotenv = args.dotenv.expanduser() if args.dotenv else None

    with dotenv_scope(dotenv):
        return _run(args, key_specs, project, dotenv, command)


def _run(args, key_specs, project, dotenv, command) -> int:
    try:
        if args.all:
            manifest_specs, manifest_project = manifest_key_specs(Path.cwd())
            key_specs = manifest_specs + [k for k in key_specs if k not in manifest_specs]
            project = project or manifest_project
        elif not key_specs:
            err_console.print("[red]Error:[/red] No keys specified (pass KEY names or --all)")
            return USAGE_EXIT_CODE

        return execute(key_specs, command, project, dotenv, args.mask)

    except ValueError as e:
        err_console.print(f"[red]Error:[/red] {escape(str(e))}")
        return USAGE_EXIT_CODE
    except ConfigValidationError as e:
        err_console.print(f"[red]Error:[/red] invalid .rv.json: {escape(str(e))}")
        return 1
    except NotUnlockedError as e:
        err_console.print(f"[red]Error:[/red] {escape(str(e))}")
        err_console.print("[dim]Run: rv init[/dim]")
        return 1
    except VaultError as e:
        err_console.print(f"[red]Error:[/red] {escape(str(e))}")
        err_console.print("[dim]Run: rv init[/dim]")
        return 1
    except AuthenticationError as e:
        err_console.print(f"[red]Error:[/red] secret unavailable: {escape(str(e))}")
        err_console.print("[dim]Check the master key, or re-set the secret with: rv set KEY[/dim]")
        return 1
    except SpawnError as e:
        err_console.print(f"[red]Error:[/red] {escape(str(e))}")
        return SPAWN_FAILURE_EXIT_CODE
    except OSError as e:
        err_console.print(f"[red]Error:[/red] {escape(str(e))}")
        err_console.print("[dim]Check that the path exists and is accessible (--dotenv, master key, vault)[/dim]")
        return 1


if __name__ == "__main__":
    sys.exit(main())
