"""Shared pytest fixtures for oplat tests."""

import sys
from pathlib import Path
from unittest.mock import MagicMock

import pytest

# Add src to path for imports
sys.path.insert(0, str(Path(__file__).parent.parent / 'src'))

from botocore.exceptions import ClientError  # noqa: E402

from config import OplatConfig  # noqa: E402
from manifest import Manifest  # noqa: E402

TEMPLATES_DIR = Path(__file__).parent / 'fixtures' / 'templates'

POSTGRES_MANIFEST_YAML = """
apiVersion: oplat/v1
kind: Postgres
metadata:
  name: mydb
  annotations:
    owner: team-a
spec:
  version: "16"
  username: app
  password: s3cret
  dbname: appdb
  port: 15432
"""


def client_error(code: str, message: str, operation: str = 'Operation') -> ClientError:
    """Build a botocore ClientError like the AWS APIs raise."""
    return ClientError({'Error': {'Code': code, 'Message': message}}, operation)


@pytest.fixture
def templates_dir():
    """Local template sources used instead of GitHub."""
    return TEMPLATES_DIR


@pytest.fixture
def oplat_config(tmp_path):
    """Config rooted at tmp_path with local template sources."""
    return OplatConfig(
        cwd=tmp_path,
        templates={
            'aws-cloudformation': str(TEMPLATES_DIR / 'template-aws-cloudformation'),
            'docker-compose': str(TEMPLATES_DIR / 'template-docker-compose'),
        },
    )


@pytest.fixture
def postgres_manifest():
    """A Postgres manifest named 'mydb'."""
    return Manifest(
        api_version='oplat/v1',
        kind='Postgres',
        name='mydb',
        annotations={'owner': 'team-a'},
        spec={'version': '16', 'username': 'app', 'password': 's3cret', 'dbname': 'appdb', 'port': 15432},
    )


@pytest.fixture
def manifest_file(tmp_path):
    """Postgres manifest written to disk."""
    path = tmp_path / 'postgres.yaml'
    path.write_text(POSTGRES_MANIFEST_YAML)
    return path


@pytest.fixture
def cfn_client():
    """Stand-in for the boto3 CloudFormation client."""
    return MagicMock()


@pytest.fixture
def secrets_client():
    """Stand-in for the boto3 Secrets Manager client."""
    return MagicMock()
