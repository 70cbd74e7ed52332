"""Docker Compose provider.

Resources are rendered into <state_dir>/docker-compose.yaml and run as a
compose project named after the stack. The rendered descriptor is the only
local state and doubles as the stack output that resource entries parse.
"""

import logging
import re
from pathlib import Path
from typing import Optional

from common import command_available, run_command, stream_command
from config import OplatConfig
from manifest import Manifest
from providers.base import (
    STATUS_CREATING,
    STATUS_RUNNING,
    STATUS_STOPPED,
    STATUS_UNKNOWN,
    BackendUnavailableError,
    InfrastructureProvider,
    InfrastructureStatus,
    NotFoundError,
    UnknownBackendError,
)
from resources.postgres import ComposePostgres
from scaffold import Scaffolder, TemplateInitialized

logger = logging.getLogger(__name__)

PROVIDER_NAME = 'docker-compose'
COMPOSE_FILE = 'docker-compose.yaml'
COMPOSE_CMD = ['docker', 'compose']

# `docker compose ps` columns: NAME IMAGE COMMAND SERVICE CREATED STATUS PORTS
STATUS_COLUMN = 5
COLUMN_SEPARATOR = re.compile(r'\s{2,}')

RUNNING_MARKERS = ('(RUNNING)', '(HEALTHY)')
STOPPED_MARKERS = ('(PAUSED)', '(STOPPED)')
STARTING_MARKERS = ('(STARTING)',)

NOT_CREATED_MESSAGE = (
    "Docker Compose infrastructure not found. "
    "Run `oplat resource create -p docker-compose -m <manifest>` to create the infrastructure."
)


def parse_ps_output(output: str) -> list[list[str]]:
    """Split `docker compose ps` output into rows of columns.

    Blank lines and the header row are dropped; columns are separated by
    runs of two or more spaces.
    """
    lines = [line for line in output.split('\n') if line.strip()]
    return [COLUMN_SEPARATOR.split(line.strip()) for line in lines[1:]]


def _row_ends_with(row: list[str], markers: tuple) -> bool:
    if len(row) <= STATUS_COLUMN:
        return False
    return row[STATUS_COLUMN].upper().endswith(markers)


def status_from_rows(rows: list[list[str]]) -> InfrastructureStatus:
    """Fold per-container states into one status."""
    if not rows:
        return InfrastructureStatus(STATUS_STOPPED)
    if all(_row_ends_with(row, RUNNING_MARKERS) for row in rows):
        return InfrastructureStatus(STATUS_RUNNING)
    if all(_row_ends_with(row, STOPPED_MARKERS) for row in rows):
        return InfrastructureStatus(STATUS_STOPPED)
    if all(_row_ends_with(row, STARTING_MARKERS) for row in rows):
        return InfrastructureStatus(STATUS_CREATING)
    return InfrastructureStatus(STATUS_UNKNOWN)


class DockerComposeProvider(InfrastructureProvider):
    """Provider backed by a local docker compose project."""

    name = PROVIDER_NAME

    def __init__(
        self,
        config: Optional[OplatConfig] = None,
        stack_name: Optional[str] = None,
        scaffolder: Optional[Scaffolder] = None,
    ):
        super().__init__(config, stack_name)
        self.state_dir = Path(self.config.state_dir)
        self.scaffolder = scaffolder
        self.available_resources = (ComposePostgres(self),)

    @property
    def compose_file(self) -> Path:
        return self.state_dir / COMPOSE_FILE

    def is_compose_installed(self) -> bool:
        return command_available(COMPOSE_CMD + ['version'])

    def _require_compose(self) -> None:
        if not self.is_compose_installed():
            raise BackendUnavailableError('Docker Compose is not installed.')

    def _ensure_state_dir(self) -> Path:
        self.state_dir.mkdir(parents=True, exist_ok=True)
        return self.state_dir

    def render_compose_file(self, resources: list[Manifest]) -> Path:
        """Render manifests into the state dir's compose descriptor."""
        state_dir = self._ensure_state_dir()
        scaffolder = self.scaffolder or Scaffolder()
        source = self.config.get_template(PROVIDER_NAME)
        try:
            try:
                template_name = scaffolder.init(source, state_dir)
            except TemplateInitialized as e:
                logger.info('Template already initialized')
                template_name = e.template_name

            for manifest in resources:
                stacked = manifest.with_stack_name(self.stack_name)
                scaffolder.run_partial(template_name, stacked.kind, stacked.to_dict(), state_dir)
        finally:
            # Injected scaffolders keep their cache for reuse
            if scaffolder is not self.scaffolder:
                scaffolder.cleanup()

        return self.compose_file

    def create_infrastructure(self, resources: list[Manifest]) -> None:
        """Render the descriptor and bring the project up."""
        self._require_compose()
        file_path = self.render_compose_file(resources)
        logger.info(f"Starting {self.stack_name} from {file_path}")
        rc, output = stream_command(
            COMPOSE_CMD + ['-p', self.stack_name, '-f', str(file_path), 'up', '--detach'],
            cwd=self.state_dir,
        )
        if rc != 0:
            raise UnknownBackendError(f"docker compose up failed (exit {rc}): {_last_line(output)}")

    def destroy_infrastructure(self) -> None:
        """Bring the project down."""
        self._require_compose()
        logger.info(f"Stopping {self.stack_name}")
        rc, output = stream_command(COMPOSE_CMD + ['-p', self.stack_name, 'down'])
        if rc != 0:
            logger.error(f"Failed to stop {self.stack_name}")
            raise UnknownBackendError(f"docker compose down failed (exit {rc}): {_last_line(output)}")

    def get_infrastructure_status(self) -> InfrastructureStatus:
        """Derive status from `docker compose ps`.

        A failing `ps` reports 'unknown'; only a missing compose tool raises.
        """
        self._require_compose()
        rc, out, err = run_command(COMPOSE_CMD + ['-p', self.stack_name, 'ps'], timeout=None)
        if rc != 0:
            logger.warning(f"docker compose ps failed (exit {rc}): {err.strip()}")
            return InfrastructureStatus(STATUS_UNKNOWN)
        rows = parse_ps_output(out)
        logger.debug(f"{len(rows)} container(s) in {self.stack_name}")
        return status_from_rows(rows)

    def get_stack_output(self) -> dict[str, str]:
        """The rendered descriptor, as {'dockerComposeFile': text}."""
        if not self.state_dir.is_dir() or not self.compose_file.is_file():
            raise NotFoundError(NOT_CREATED_MESSAGE)
        return {'dockerComposeFile': self.compose_file.read_text(encoding='utf-8')}


def _last_line(output: str) -> str:
    lines = [line for line in output.split('\n') if line.strip()]
    return lines[-1] if lines else ''
