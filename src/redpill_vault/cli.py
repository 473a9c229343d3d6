"""CLI for redpill-vault - credential manager for AI coding agents."""

import argparse
import getpass
import os
import secrets as token_source
import sys
from pathlib import Path
from typing import Optional

from rich.console import Console
from rich.markup import escape
from rich.table import Table

from . import __version__
from .approval import ApprovalStore
from .config import CONFIG_FILENAME, get_config_dir, get_master_key_path, get_vault_path
from .doctor import check_keys, run_checks
from .errors import ConfigValidationError, RedpillError, VaultError
from .manifest import (
    ProjectConfig,
    SecretEntry,
    build_scoped_key,
    find_config,
    get_project_name,
    is_env_name,
    parse_env_file,
    read_config,
    save_config,
)
from .resolver import resolve_keys
from .vault import Vault, open_vault, resolve_passphrase

console = Console()


class ProjectContext:
    """The .rv.json in the current directory, if any."""

    def __init__(self, cwd: Path):
        self.cwd = cwd
        self.config_path = find_config(cwd)
        self.config: Optional[ProjectConfig] = None
        if self.config_path is not None:
            self.config = read_config(self.config_path)

    @property
    def root(self) -> Path:
        return self.config_path.parent if self.config_path else self.cwd

    @property
    def project_name(self) -> Optional[str]:
        return get_project_name(self.config, self.root)

    def vault_key(self, key: str, global_: bool) -> str:
        if global_ or not self.project_name:
            return key
        return build_scoped_key(self.project_name, key)

    def register(self, key: str) -> bool:
        """Add key to .rv.json if it is not declared yet."""
        if self.config is None or key in self.config.secrets or not is_env_name(key):
            return False
        self.config.secrets[key] = SecretEntry()
        save_config(self.config_path, self.config)
        return True


def _not_in_project() -> int:
    console.print(f"[red]Error:[/red] Not in a project (no {CONFIG_FILENAME})")
    console.print("[dim]Use -g for global, or run: rv init[/dim]")
    return 1


def _open_vault() -> Optional[Vault]:
    try:
        return open_vault(get_vault_path())
    except RedpillError as e:
        console.print(f"[red]Error:[/red] Failed to open vault: {escape(str(e))}")
        console.print("[dim]Run: rv init[/dim]")
        return None


def cmd_init(args):
    """Create master key, vault and .rv.json (each only if missing)."""
    get_config_dir().mkdir(parents=True, exist_ok=True)
    master_key_path = get_master_key_path()

    if master_key_path.exists():
        console.print(f"[dim]Master key already exists at {escape(str(master_key_path))}[/dim]")
    else:
        fd = os.open(str(master_key_path), os.O_WRONLY | os.O_CREAT | os.O_EXCL, 0o600)
        with os.fdopen(fd, "w") as f:
            f.write(token_source.token_hex(32) + "\n")
        os.chmod(master_key_path, 0o600)
        console.print(f"[green]Created master key:[/green] {escape(str(master_key_path))}")

    vault_path = get_vault_path()
    try:
        created = Vault.initialize(vault_path, resolve_passphrase())
    except RedpillError as e:
        console.print(f"[red]Error:[/red] Failed to initialize vault: {escape(str(e))}")
        return 1

    if created:
        console.print(f"[green]Vault initialized:[/green] {escape(str(vault_path))}")
    else:
        console.print(f"[dim]Vault already exists at {escape(str(vault_path))}[/dim]")

    rv_path = Path.cwd() / CONFIG_FILENAME
    if rv_path.exists():
        console.print(f"[dim]{CONFIG_FILENAME} already exists[/dim]")
    else:
        save_config(rv_path, ProjectConfig())
        console.print(f"[green]Created:[/green] {CONFIG_FILENAME}")

    console.print("\nSetup complete. Next steps:")
    console.print("  rv import .env              [dim]import secrets from a .env file[/dim]")
    console.print(f"  edit {CONFIG_FILENAME:<23} [dim]choose which keys to inject[/dim]")
    console.print("  rv approve                  [dim]approve this project for secret injection[/dim]")
    console.print("  rv-exec --all -- <command>  [dim]run a command with secrets[/dim]")
    return 0


def cmd_list(args):
    """List declared secrets and where they resolve (values never shown - safe for LLM)."""
    ctx = ProjectContext(Path.cwd())

    if args.globals:
        vault = _open_vault()
        if vault is None:
            return 1
        with vault:
            keys = sorted(k for k in vault.keys() if "__" not in k)
        if not keys:
            console.print("[dim]No global keys in vault.[/dim]")
            return 0
        for key in keys:
            console.print(key, markup=False)
        return 0

    if ctx.config is None:
        console.print(f"[red]Error:[/red] No {CONFIG_FILENAME} found")
        console.print("[dim]Initialize with: rv init[/dim]")
        return 1

    if not ctx.config.secrets:
        console.print(f"[dim]No secrets configured. Edit {CONFIG_FILENAME} to add keys.[/dim]")
        return 0

    vault = _open_vault()
    if vault is None:
        return 1
    with vault:
        vault_keys = vault.keys()

    table = Table(title="Project Secrets", show_header=True)
    table.add_column("Key", style="cyan")
    table.add_column("Env var")
    table.add_column("Source")
    table.add_column("Description", style="dim")
    table.add_column("Tag", style="dim")

    for key, entry in ctx.config.secrets.items():
        resolution = resolve_keys([key], vault_keys, ctx.project_name)
        if not resolution.resolved:
            source = "[red]missing[/red]"
        elif resolution.resolved[0][0] != key:
            source = "[green]project[/green]"
        else:
            source = "[green]global[/green]"
        table.add_row(
            escape(key), escape(entry.as_ or key), source,
            escape(entry.description or ""), escape(entry.tag or ""),
        )

    console.print(table)
    console.print("\n[dim]rv list -g: show all global keys in vault[/dim]")
    console.print("[dim]rv set KEY: set a secret | rv rm KEY: remove a secret[/dim]")
    return 0


def _read_value(key: str) -> Optional[str]:
    if sys.stdin.isatty():
        console.print(f"[cyan]Setting secret:[/cyan] {escape(key)}")
        value = getpass.getpass("Enter value (hidden): ")
        if value and getpass.getpass("Confirm value (hidden): ") != value:
            console.print("[red]Error:[/red] Values don't match")
            return None
    else:
        value = sys.stdin.read()
        if value.endswith("\n"):
            value = value[:-1]

    if not value:
        console.print("[red]Error:[/red] Empty value not allowed")
        return None
    return value


def cmd_set(args):
    """
    Set a secret value (safe - value read from stdin, not argv).

    Stored as PROJECT__KEY unless -g is given.
    """
    ctx = ProjectContext(Path.cwd())
    if not args.globals and not ctx.project_name:
        return _not_in_project()

    vault_key = ctx.vault_key(args.key, args.globals)
    value = _read_value(args.key)
    if value is None:
        return 1

    vault = _open_vault()
    if vault is None:
        return 1
    with vault:
        vault.set_secret(vault_key, value, args.tag)
    console.print(f"[green]Set:[/green] {escape(vault_key)}")

    if not args.globals and ctx.register(args.key):
        console.print(f"[dim]Added {escape(args.key)} to {CONFIG_FILENAME}[/dim]")
    return 0


def cmd_rm(args):
    """Remove secrets (PROJECT__KEY unless -g)."""
    ctx = ProjectContext(Path.cwd())
    if not args.globals and not ctx.project_name:
        return _not_in_project()

    vault = _open_vault()
    if vault is None:
        return 1

    failed = False
    with vault:
        for key in args.keys:
            vault_key = ctx.vault_key(key, args.globals)
            if vault.remove_secret(vault_key):
                console.print(f"[green]Removed:[/green] {escape(vault_key)}")
            else:
                console.print(f"[red]Key not found:[/red] {escape(vault_key)}")
                failed = True
    return 1 if failed else 0


def cmd_import(args):
    """Import secrets from a .env file (all entries, or only the keys given)."""
    cwd = Path.cwd()
    ctx = ProjectContext(cwd)
    env_path = cwd / Path(args.envfile).expanduser()

    if not env_path.exists():
        console.print(f"[red]Error:[/red] File not found: {escape(str(env_path))}")
        return 1

    if not args.globals and not ctx.project_name:
        return _not_in_project()

    entries = parse_env_file(env_path.read_text())
    if not entries:
        console.print(f"[red]Error:[/red] No entries found in {escape(args.envfile)}")
        return 1

    if args.keys:
        entries = {k: v for k, v in entries.items() if k in args.keys}
        if not entries:
            console.print(f"[red]Error:[/red] None of the specified keys found in {escape(args.envfile)}")
            return 1

    vault = _open_vault()
    if vault is None:
        return 1

    with vault:
        for key, value in entries.items():
            vault_key = ctx.vault_key(key, args.globals)
            vault.set_secret(vault_key, value)
            console.print(f"[green]Imported:[/green] {escape(key)} -> {escape(vault_key)}")
            if not args.globals:
                ctx.register(key)

    console.print(f"\n[dim]Imported {len(entries)} secrets.[/dim]")
    return 0


def _print_checks(checks) -> bool:
    all_ok = True
    for check in checks:
        icon = "[green]✓[/green]" if check.ok else "[red]✗[/red]"
        console.print(f"{icon} {escape(check.name)}: {escape(check.message)}")
        all_ok = all_ok and check.ok
    return all_ok


def cmd_check(args):
    """Verify all .rv.json keys exist in the vault."""
    return 0 if _print_checks(check_keys(Path.cwd(), get_vault_path())) else 1


def cmd_doctor(args):
    """Full health check."""
    if _print_checks(run_checks(Path.cwd(), ApprovalStore(), get_vault_path())):
        console.print("\n[green]All checks passed.[/green]")
        return 0
    console.print("\n[yellow]Some checks failed.[/yellow]")
    return 1


def cmd_approve(args):
    """Approve this project for secret injection (user only)."""
    store = ApprovalStore()
    root = ProjectContext(Path.cwd()).root
    if store.is_approved(root):
        console.print("[dim]Project already approved.[/dim]")
        return 0
    store.approve(root)
    console.print(f"[green]Approved:[/green] {escape(str(root))}")
    console.print("[dim]rv-exec will now inject secrets for this project.[/dim]")
    return 0


def cmd_revoke(args):
    """Revoke approval for this project (user only)."""
    store = ApprovalStore()
    root = ProjectContext(Path.cwd()).root
    if not store.revoke(root):
        console.print("[dim]Project is not approved.[/dim]")
        return 0
    console.print(f"[green]Revoked:[/green] {escape(str(root))}")
    console.print("[dim]rv-exec will no longer inject secrets for this project.[/dim]")
    return 0


def main(argv=None):
    """Main entry point."""
    parser = argparse.ArgumentParser(
        prog="rv",
        description="redpill-vault - secure credential manager for AI tools",
        formatter_class=argparse.RawDescriptionHelpFormatter,
        epilog="""
Examples:
  rv init                         # Master key, vault and .rv.json
  rv import .env                  # Import secrets scoped to this project
  rv set API_KEY < key.txt        # Set a secret from stdin
  rv list                         # Keys and where they resolve (safe for LLM)
  rv approve                      # Allow secret injection here (user only)
  rv-exec --all -- npm test       # Run with secrets injected and masked

LLM Safety:
  - 'list', 'check' and 'doctor' never print secret values
  - 'set' reads values from stdin - never in shell history
  - 'approve' and 'revoke' are blocked for agents by rv-hook

Environment:
  RV_CONFIG_DIR    Override config directory (master key, approvals)
  RV_VAULT_DIR     Override vault directory (default: ~/.rv)
  RV_PASSWORD      Vault passphrase (default: read from master key)
        """
    )
    parser.add_argument("--version", action="version", version=f"%(prog)s {__version__}")

    subparsers = parser.add_subparsers(dest="command", help="Commands")

    subparsers.add_parser("init", help="Initialize master key, vault and .rv.json")
    subparsers.add_parser("setup", help=argparse.SUPPRESS)

    list_parser = subparsers.add_parser("list", help="Show .rv.json secrets and their source")
    list_parser.add_argument("-g", "--global", dest="globals", action="store_true",
                             help="Show global keys in vault")

    set_parser = subparsers.add_parser("set", help="Set a secret (value from stdin)")
    set_parser.add_argument("key", help="Secret key")
    set_parser.add_argument("-g", "--global", dest="globals", action="store_true",
                            help="Store as global key (not project-scoped)")
    set_parser.add_argument("--tag", action="append", default=[], help="Tag (can repeat)")

    rm_parser = subparsers.add_parser("rm", help="Remove secrets")
    rm_parser.add_argument("keys", nargs="+", help="Secret keys")
    rm_parser.add_argument("-g", "--global", dest="globals", action="store_true",
                           help="Remove global keys (not project-scoped)")

    import_parser = subparsers.add_parser("import", help="Import secrets from a .env file")
    import_parser.add_argument("envfile", help=".env file")
    import_parser.add_argument("keys", nargs="*", help="Only import these keys")
    import_parser.add_argument("-g", "--global", dest="globals", action="store_true",
                               help="Import as global keys (not project-scoped)")

    subparsers.add_parser("check", help="Verify .rv.json keys exist in vault")
    subparsers.add_parser("doctor", help="Full health check")
    subparsers.add_parser("approve", help="Approve this project for secret injection (user only)")
    subparsers.add_parser("revoke", help="Revoke approval for this project (user only)")

    args = parser.parse_args(argv)

    if not args.command:
        parser.print_help()
        return 0

    try:
        if args.command in ("init", "setup"):
            return cmd_init(args)
        elif args.command == "list":
            return cmd_list(args)
        elif args.command == "set":
            return cmd_set(args)
        elif args.command == "rm":
            return cmd_rm(args)
        elif args.command == "import":
            return cmd_import(args)
        elif args.command == "check":
            return cmd_check(args)
        elif args.command == "doctor":
            return cmd_doctor(args)
        elif args.command == "approve":
            return cmd_approve(args)
        elif args.command == "revoke":
            return cmd_revoke(args)

    except ConfigValidationError as e:
        console.print(f"[red]Error:[/red] invalid {CONFIG_FILENAME}: {escape(str(e))}")
        return 1
    except VaultError as e:
        console.print(f"[red]Error:[/red] {escape(str(e))}")
        console.print("[dim]Run: rv init[/dim]")
        return 1
    except RedpillError as e:
        console.print(f"[red]Error:[/red] {escape(str(e))}")
        return 1

    return 0


if __name__ == "__main__":
    sys.exit(main())
