"""Health checks for rv check / rv doctor."""

from dataclasses import dataclass
from pathlib import Path
from typing import Optional

from .approval import ApprovalStore
from .config import CONFIG_FILENAME, get_master_key_path, get_vault_path
from .errors import ConfigValidationError, RedpillError
from .manifest import ProjectConfig, find_config, get_project_name, read_config
from .resolver import resolve_keys
from .vault import get_vault_keys, read_master_key


@dataclass
class Check:
    name: str
    ok: bool
    message: str


def _key_checks(config: ProjectConfig, project_root: Path, vault_keys: set[str]) -> list[Check]:
    project = get_project_name(config, project_root)
    checks = []
    for key in config.secrets:
        resolution = resolve_keys([key], vault_keys, project)
        if resolution.resolved:
            vault_key = resolution.resolved[0][0]
            source = "project" if vault_key != key else "global"
            checks.append(Check(key, True, f"present in vault ({source})"))
        else:
            checks.append(Check(key, False, f"MISSING, run: rv set {key}"))
    return checks


def check_keys(cwd: Path, vault_path: Optional[Path] = None) -> list[Check]:
    """Verify every manifest key resolves in the vault."""
    config_path = find_config(cwd)
    if config_path is None:
        return [Check(CONFIG_FILENAME, False, "no config found, run: rv init")]

    try:
        config = read_config(config_path)
    except ConfigValidationError as e:
        return [Check(CONFIG_FILENAME, False, str(e))]

    try:
        vault_keys = get_vault_keys(vault_path)
    except RedpillError as e:
        return [Check("vault", False, f"cannot list vault keys ({e}), run: rv init")]

    return _key_checks(config, config_path.parent, vault_keys)


def run_checks(
    cwd: Path,
    approvals: Optional[ApprovalStore] = None,
    vault_path: Optional[Path] = None,
) -> list[Check]:
    """Full health check of the local setup and the project in cwd."""
    approvals = approvals or ApprovalStore()
    checks = []

    if read_master_key(get_master_key_path()):
        checks.append(Check("master key", True, "master key found"))
    else:
        checks.append(Check("master key", False, "master key not found, run: rv init"))

    vault_keys = None
    try:
        vault_keys = get_vault_keys(vault_path or get_vault_path())
        checks.append(Check("vault", True, f"vault accessible ({len(vault_keys)} keys)"))
    except RedpillError as e:
        checks.append(Check("vault", False, f"vault not accessible ({e}), run: rv init"))

    config_path = find_config(cwd)
    config = None
    if config_path is None:
        checks.append(Check(CONFIG_FILENAME, False, f"{CONFIG_FILENAME} not found, run: rv init"))
    else:
        try:
            config = read_config(config_path)
            checks.append(Check(CONFIG_FILENAME, True, "config found"))
        except ConfigValidationError as e:
            checks.append(Check(CONFIG_FILENAME, False, str(e)))

    if approvals.is_approved(cwd):
        checks.append(Check("project approved", True, "project is approved"))
    else:
        checks.append(Check("project approved", False, "project not approved, run: rv approve"))

    if config is not None and vault_keys is not None:
        checks.extend(
            Check(f"key: {c.name}", c.ok, c.message)
            for c in _key_checks(config, config_path.parent, vault_keys)
        )

    return checks
