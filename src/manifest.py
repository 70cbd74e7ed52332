"""Manifest loading and validation.

A manifest declares one resource to provision:

    apiVersion: oplat/v1
    kind: Postgres
    metadata:
      name: mydb
      annotations: {}
    spec:
      version: "16"

`kind` selects the resource catalog entry and the template partial.
`metadata.name` identifies the resource within one stack. A file may hold
several manifests as separate YAML documents.
"""

import copy
import logging
from dataclasses import dataclass, field
from pathlib import Path
from typing import Any, Optional

import yaml

from config import ConfigError

logger = logging.getLogger(__name__)

REQUIRED_FIELDS = ('apiVersion', 'kind', 'metadata')


@dataclass(frozen=True)
class Manifest:
    """A user-authored resource declaration.

    Attributes:
        api_version: Manifest API version (apiVersion)
        kind: Resource kind, e.g. 'Postgres'
        name: Resource name (metadata.name)
        annotations: metadata.annotations
        spec: Free-form resource spec
        source_path: Path the manifest was loaded from (for error messages)
    """
    api_version: str
    kind: str
    name: str
    annotations: dict[str, str] = field(default_factory=dict)
    spec: dict[str, Any] = field(default_factory=dict)
    source_path: Optional[Path] = field(default=None, compare=False)

    @classmethod
    def from_dict(cls, data: dict, source_path: Optional[Path] = None) -> 'Manifest':
        """Create Manifest from a parsed document.

        Raises:
            ConfigError: If required fields are missing or mistyped
        """
        where = f" in {source_path}" if source_path else ''
        if not isinstance(data, dict):
            raise ConfigError(f"Manifest{where} must be a YAML object (dict)")

        for key in REQUIRED_FIELDS:
            if key not in data:
                raise ConfigError(f"Manifest{where} missing required field: {key}")

        metadata = data['metadata']
        if not isinstance(metadata, dict) or not metadata.get('name'):
            raise ConfigError(f"Manifest{where} missing required field: metadata.name")

        annotations = metadata.get('annotations') or {}
        if not isinstance(annotations, dict):
            raise ConfigError(f"Manifest{where}: metadata.annotations must be a mapping")

        spec = data.get('spec') or {}
        if not isinstance(spec, dict):
            raise ConfigError(f"Manifest{where}: spec must be a mapping")

        return cls(
            api_version=str(data['apiVersion']),
            kind=str(data['kind']),
            name=str(metadata['name']),
            annotations={str(k): str(v) for k, v in annotations.items()},
            spec=copy.deepcopy(spec),
            source_path=source_path,
        )

    def to_dict(self) -> dict:
        """Convert to the document shape (used as templating context)."""
        return {
            'apiVersion': self.api_version,
            'kind': self.kind,
            'metadata': {
                'name': self.name,
                'annotations': dict(self.annotations),
            },
            'spec': copy.deepcopy(self.spec),
        }

    def with_stack_name(self, stack_name: str) -> 'Manifest':
        """Return a copy with spec.stack.name defaulted to stack_name.

        Existing spec.stack keys are kept, and an existing name wins.
        """
        spec = copy.deepcopy(self.spec)
        stack = spec.get('stack')
        if not isinstance(stack, dict):
            stack = {}
        if stack.get('name') is None:
            stack['name'] = stack_name
        spec['stack'] = stack
        return Manifest(
            api_version=self.api_version,
            kind=self.kind,
            name=self.name,
            annotations=dict(self.annotations),
            spec=spec,
            source_path=self.source_path,
        )


def load_manifests(path) -> list[Manifest]:
    """Load every manifest document from a YAML file.

    Raises:
        FileNotFoundError: If the file does not exist
        ConfigError: If the file is not valid YAML or a document is invalid
    """
    path = Path(path)
    if not path.exists():
        raise FileNotFoundError(f"Manifest file not found: {path}")

    try:
        with open(path, encoding='utf-8') as f:
            documents = [d for d in yaml.safe_load_all(f) if d is not None]
    except yaml.YAMLError as e:
        raise ConfigError(f"Invalid YAML in manifest {path}: {e}") from e

    if not documents:
        raise ConfigError(f"Manifest file {path} is empty")

    manifests = [Manifest.from_dict(doc, source_path=path) for doc in documents]

    names = set()
    for manifest in manifests:
        if manifest.name in names:
            raise ConfigError(f"Duplicate resource name in {path}: '{manifest.name}'")
        names.add(manifest.name)

    logger.debug(f"Loaded {len(manifests)} manifest(s) from {path}")
    return manifests
