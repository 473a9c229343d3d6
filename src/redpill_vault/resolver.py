"""Resolve requested keys to vault key names.

For each KEY (or KEY=ALIAS) the project-scoped entry PROJECT__KEY wins,
then the global KEY. Anything else is reported missing rather than failing.
"""

from dataclasses import dataclass, field
from typing import AbstractSet, Iterable, Optional, Tuple

from .manifest import build_scoped_key


@dataclass
class Resolution:
    # (vault key name, environment variable name)
    resolved: list[Tuple[str, str]] = field(default_factory=list)
    # environment variable names with no vault entry
    missing: list[str] = field(default_factory=list)


def parse_key_spec(spec: str) -> Tuple[str, str]:
    """'KEY' -> (KEY, KEY), 'KEY=ALIAS' -> (KEY, ALIAS)"""
    key, sep, alias = spec.partition("=")
    if not key or key.startswith("-") or (sep and not alias):
        raise ValueError(f"Invalid key spec: {spec!r} (use KEY or KEY=ALIAS)")
    return key, alias or key


def resolve_keys(
    specs: Iterable[str],
    vault_keys: AbstractSet[str],
    project_name: Optional[str] = None,
) -> Resolution:
    result = Resolution()
    for spec in specs:
        key, env_name = parse_key_spec(spec)

        if project_name:
            scoped = build_scoped_key(project_name, key)
            if scoped in vault_keys:
                result.resolved.append((scoped, env_name))
                continue

        if key in vault_keys:
            result.resolved.append((key, env_name))
        else:
            result.missing.append(env_name)
    return result
