"""Project manifest (.rv.json) parsing and project naming."""

import json
import re
from dataclasses import dataclass, field
from pathlib import Path
from typing import Optional, Union

from .config import CONFIG_FILENAME
from .errors import ConfigValidationError

PathLike = Union[str, Path]

_ENV_NAME = re.compile(r"[A-Za-z_][A-Za-z0-9_]*")


def is_env_name(name: str) -> bool:
    """True if name can be used as an environment variable name."""
    return bool(_ENV_NAME.fullmatch(name))


@dataclass
class SecretEntry:
    description: Optional[str] = None
    as_: Optional[str] = None
    tag: Optional[str] = None

    def to_dict(self) -> dict:
        data = {}
        if self.description is not None:
            data["description"] = self.description
        if self.as_ is not None:
            data["as"] = self.as_
        if self.tag is not None:
            data["tag"] = self.tag
        return data


@dataclass
class ProjectConfig:
    """Keys a project may receive. Declaration order is kept."""
    secrets: dict[str, SecretEntry] = field(default_factory=dict)
    project: Optional[str] = None

    def to_dict(self) -> dict:
        data = {}
        if self.project is not None:
            data["project"] = self.project
        data["secrets"] = {key: entry.to_dict() for key, entry in self.secrets.items()}
        return data


def find_config(directory: PathLike) -> Optional[Path]:
    """Manifest in directory itself (no upward search)."""
    path = Path(directory) / CONFIG_FILENAME
    return path if path.is_file() else None


def find_config_upward(directory: PathLike) -> Optional[Path]:
    """Manifest in directory or the nearest parent that has one."""
    current = Path(directory).absolute()
    for candidate in (current, *current.parents):
        path = candidate / CONFIG_FILENAME
        if path.is_file():
            return path
    return None


def validate_config(raw) -> ProjectConfig:
    """Validate decoded JSON. Raises ConfigValidationError naming the bad field."""
    if not isinstance(raw, dict) or "secrets" not in raw:
        raise ConfigValidationError("secrets", f'{CONFIG_FILENAME} must have a "secrets" object')

    project = raw.get("project")
    if project is not None and not isinstance(project, str):
        raise ConfigValidationError("project", f'{CONFIG_FILENAME} "project" must be a string')

    secrets = raw["secrets"]
    if not isinstance(secrets, dict):
        raise ConfigValidationError("secrets", f'{CONFIG_FILENAME} "secrets" must be an object')

    entries = {}
    for key, value in secrets.items():
        if not is_env_name(key):
            raise ConfigValidationError(key, f'Secret "{key}" is not a valid environment variable name')
        if not isinstance(value, dict):
            raise ConfigValidationError(key, f'Secret "{key}" must be an object')
        for attr in ("description", "as", "tag"):
            if attr in value and value[attr] is not None and not isinstance(value[attr], str):
                raise ConfigValidationError(f"{key}.{attr}", f'Secret "{key}".{attr} must be a string')
        if value.get("as") is not None and not is_env_name(value["as"]):
            raise ConfigValidationError(f"{key}.as", f'Secret "{key}".as is not a valid environment variable name')
        entries[key] = SecretEntry(
            description=value.get("description"),
            as_=value.get("as"),
            tag=value.get("tag"),
        )

    return ProjectConfig(secrets=entries, project=project)


def read_config(path: PathLike) -> ProjectConfig:
    path = Path(path)
    try:
        raw = json.loads(path.read_text())
    except ValueError as e:
        raise ConfigValidationError(None, f"{CONFIG_FILENAME} is not valid JSON: {e}") from e
    return validate_config(raw)


def load_config(directory: PathLike) -> Optional[ProjectConfig]:
    """Load the manifest from directory. None if there is none."""
    path = find_config(directory)
    if path is None:
        return None
    return read_config(path)


def save_config(path: PathLike, config: ProjectConfig) -> None:
    Path(path).write_text(json.dumps(config.to_dict(), indent=2) + "\n")


def get_project_name(config: Optional[ProjectConfig], directory: PathLike) -> Optional[str]:
    """Explicit "project" field, else the directory name."""
    if config is None:
        return None
    if config.project:
        return config.project
    return Path(directory).absolute().name


def normalize_project_name(name: str) -> str:
    """MY-app.v2 -> MY_APP_V2"""
    normalized = re.sub(r"[^A-Z0-9]", "_", name.upper())
    normalized = re.sub(r"_+", "_", normalized)
    return normalized.strip("_")


def build_scoped_key(project_name: str, key: str) -> str:
    """Project-scoped vault key name: PROJECT__KEY"""
    return f"{normalize_project_name(project_name)}__{key}"


def build_key_specs(config: ProjectConfig) -> list[str]:
    """KEY or KEY=ALIAS for each declared secret, in manifest order."""
    specs = []
    for key, entry in config.secrets.items():
        specs.append(f"{key}={entry.as_}" if entry.as_ else key)
    return specs


def parse_env_file(content: str) -> dict[str, str]:
    """Parse KEY=value lines from a .env file."""
    entries = {}
    for line in content.splitlines():
        line = line.strip()
        if not line or line.startswith("#"):
            continue
        if line.startswith("export "):
            line = line[len("export "):].lstrip()
        if "=" not in line:
            continue

        key, value = line.split("=", 1)
        key = key.strip()
        value = value.strip()
        if len(value) >= 2 and value[0] == value[-1] and value[0] in ("'", '"'):
            value = value[1:-1]
        if key:
            entries[key] = value
    return entries
