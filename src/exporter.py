"""Export resource outputs as environment variables."""

import logging
import re
from pathlib import Path

from manifest import Manifest

logger = logging.getLogger(__name__)

_CAMEL_BOUNDARY = re.compile(r'([a-z0-9])([A-Z])')
_NON_ALNUM = re.compile(r'[^A-Za-z0-9]+')
_NEEDS_QUOTES = re.compile(r'[\s#"\'\\$`]')


def env_key(resource_name: str, output_key: str) -> str:
    """Upper snake case of '<resourceName>_<outputKey>'.

    >>> env_key('mydb', 'connectionString')
    'MYDB_CONNECTION_STRING'
    """
    raw = f"{resource_name}_{output_key}"
    raw = _CAMEL_BOUNDARY.sub(r'\1_\2', raw)
    raw = _NON_ALNUM.sub('_', raw)
    return raw.strip('_').upper()


def collect_env(provider, manifests: list[Manifest]) -> dict[str, str]:
    """Resolve every manifest's outputs into one ordered mapping.

    The first failing manifest aborts the whole export.
    """
    env: dict[str, str] = {}
    for manifest in manifests:
        outputs = provider.get_resource_outputs(manifest)
        for output in outputs:
            env[env_key(manifest.name, output.key)] = output.value
        logger.debug(f"Resolved {len(outputs)} output(s) for {manifest.name}")
    return env


def quote_env_value(value: str) -> str:
    """Quote a value that would not survive a bare KEY=value line.

    Single quotes keep the value literal; values holding a single quote or
    a newline fall back to double quotes with backslash escapes.
    """
    if not _NEEDS_QUOTES.search(value):
        return value
    if "'" not in value and '\n' not in value:
        return f"'{value}'"
    escaped = (
        value.replace('\\', '\\\\')
        .replace('"', '\\"')
        .replace('\n', '\\n')
    )
    return f'"{escaped}"'


def format_env(env: dict[str, str]) -> str:
    """Render KEY=value lines."""
    return ''.join(f"{key}={quote_env_value(value)}\n" for key, value in env.items())


def write_env_file(env: dict[str, str], path: Path) -> Path:
    """Overwrite path with KEY=value lines."""
    path = Path(path)
    path.write_text(format_env(env), encoding='utf-8')
    logger.info(f"Wrote {len(env)} variable(s) to {path}")
    return path
