"""Project configuration management.

Configuration is layered, later sources winning:
1. Built-in defaults
2. oplat.yaml in the working directory (optional project file)
3. Environment variables (OPLAT_*, AWS_REGION)
4. CLI flags (applied by the caller)

The project file may set:

    region: eu-west-1
    state_dir: .oplat
    env_file: .env
    templates:
      docker-compose: ../my-templates/template-docker-compose
"""

import os
import re
from dataclasses import dataclass, field
from pathlib import Path
from typing import Optional

import yaml

# Project file looked up in the working directory
PROJECT_FILE = 'oplat.yaml'

DEFAULT_REGION = 'us-east-1'
DEFAULT_STATE_DIR = '.oplat'
DEFAULT_ENV_FILE = '.env'
DEFAULT_PROVIDER = 'aws-cloudformation'

# Template sources consumed by the Scaffolder, keyed by provider name
DEFAULT_TEMPLATES = {
    'aws-cloudformation': 'https://github.com/openplat/template-aws-cloudformation',
    'docker-compose': 'https://github.com/openplat/template-docker-compose',
}

# Stack names: CloudFormation [a-zA-Z][-a-zA-Z0-9]*, Compose lowercase
_INVALID_STACK_CHARS = re.compile(r'[^a-z0-9-]+')
_LEADING_NON_LETTERS = re.compile(r'^[^a-z]+')


class ConfigError(Exception):
    """Configuration error."""


@dataclass
class OplatConfig:
    """Resolved configuration for one CLI invocation.

    Attributes:
        cwd: Working directory the stack belongs to
        region: AWS region for the cloud provider
        state_dir: Local state directory (compose descriptor lives here)
        env_file: Target of export-env
        templates: Template source per provider name
        stack_name: Explicit stack name override (None = derive from cwd)
    """
    cwd: Path = field(default_factory=Path.cwd)
    region: str = DEFAULT_REGION
    state_dir: Optional[Path] = None
    env_file: Optional[Path] = None
    templates: dict = field(default_factory=lambda: dict(DEFAULT_TEMPLATES))
    stack_name: Optional[str] = None

    def __post_init__(self):
        if isinstance(self.cwd, str):
            self.cwd = Path(self.cwd)
        if self.state_dir is None:
            self.state_dir = self.cwd / DEFAULT_STATE_DIR
        elif not Path(self.state_dir).is_absolute():
            self.state_dir = self.cwd / self.state_dir
        if self.env_file is None:
            self.env_file = self.cwd / DEFAULT_ENV_FILE
        elif not Path(self.env_file).is_absolute():
            self.env_file = self.cwd / self.env_file

    def get_stack_name(self) -> str:
        """Stack name bound to this invocation."""
        if self.stack_name:
            return normalize_stack_name(self.stack_name)
        return derive_stack_name(self.cwd)

    def get_template(self, provider_name: str) -> str:
        """Template source for a provider."""
        try:
            return self.templates[provider_name]
        except KeyError:
            raise ConfigError(f"No template source configured for provider '{provider_name}'") from None


def normalize_stack_name(name: str) -> str:
    """Fold a name into one valid for both CloudFormation and Compose.

    Lowercase, runs of other characters become '-', and the name starts
    with a letter: 'My_App 2' -> 'my-app-2'.

    Raises:
        ConfigError: If no letter is left to start the name
    """
    normalized = _INVALID_STACK_CHARS.sub('-', name.lower())
    normalized = _LEADING_NON_LETTERS.sub('', normalized).rstrip('-')
    if not normalized:
        raise ConfigError(f"Cannot derive a valid stack name from '{name}'")
    return normalized


def derive_stack_name(cwd: Path) -> str:
    """Derive the stack name from the working directory name."""
    name = Path(cwd).resolve().name
    if not name:
        raise ConfigError(f"Cannot derive a stack name from {cwd}")
    return normalize_stack_name(name)


def _parse_yaml(path: Path) -> dict:
    """Parse a YAML file and return contents."""
    with open(path, encoding="utf-8") as f:
        try:
            data = yaml.safe_load(f) or {}
        except yaml.YAMLError as e:
            raise ConfigError(f"Invalid YAML in {path}: {e}") from e
    if not isinstance(data, dict):
        raise ConfigError(f"{path} must contain a mapping, got {type(data).__name__}")
    return data


def _env_template_var(provider_name: str) -> str:
    """OPLAT_TEMPLATE_<PROVIDER> variable name for a provider."""
    return 'OPLAT_TEMPLATE_' + provider_name.upper().replace('-', '_')


def load_config(cwd: Optional[Path] = None) -> OplatConfig:
    """Load configuration for the given working directory.

    Raises:
        ConfigError: If the project file is malformed
    """
    cwd = Path(cwd) if cwd else Path.cwd()
    project = {}
    project_file = cwd / PROJECT_FILE
    if project_file.exists():
        project = _parse_yaml(project_file)

    templates = dict(DEFAULT_TEMPLATES)
    project_templates = project.get('templates') or {}
    if not isinstance(project_templates, dict):
        raise ConfigError(f"'templates' in {project_file} must be a mapping")
    templates.update({str(k): str(v) for k, v in project_templates.items()})

    # Environment overrides
    region = (
        os.environ.get('OPLAT_AWS_REGION')
        or os.environ.get('AWS_REGION')
        or project.get('region')
        or DEFAULT_REGION
    )
    state_dir = os.environ.get('OPLAT_STATE_DIR') or project.get('state_dir')
    for provider_name in list(templates):
        if env_source := os.environ.get(_env_template_var(provider_name)):
            templates[provider_name] = env_source

    return OplatConfig(
        cwd=cwd,
        region=str(region),
        state_dir=Path(state_dir) if state_dir else None,
        env_file=Path(project['env_file']) if project.get('env_file') else None,
        templates=templates,
    )
