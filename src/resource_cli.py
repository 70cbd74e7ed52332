"""CLI handlers for resource verbs and export-env.

Usage:
    oplat resource create -m <manifest> [-p <provider>]
    oplat resource delete [-p <provider>]
    oplat resource status [-p <provider>]
    oplat resource list [-p <provider>]
    oplat export-env -m <manifest> [-p <provider>] [--env-file <path>]
"""

import argparse
import logging
import sys
from pathlib import Path

from config import DEFAULT_PROVIDER, ConfigError, load_config
from exporter import collect_env, format_env, write_env_file
from manifest import load_manifests
from providers import get_provider, list_providers
from providers.base import ProviderError
from scaffold import ScaffoldError

logger = logging.getLogger(__name__)

# Errors reported as a single log line with exit code 1
FATAL_ERRORS = (ProviderError, ConfigError, ScaffoldError, FileNotFoundError, ValueError)


def _common_parser(prog: str, description: str, with_manifest: bool = False) -> argparse.ArgumentParser:
    """Build argument parser with options shared by all verbs."""
    parser = argparse.ArgumentParser(prog=f'oplat {prog}', description=description)
    if with_manifest:
        parser.add_argument(
            '--manifest', '-m',
            required=True,
            type=Path,
            help='Resource manifest file',
        )
    parser.add_argument(
        '--provider', '-p',
        default=DEFAULT_PROVIDER,
        help=f'Infrastructure provider. Available: {", ".join(list_providers())} (default: {DEFAULT_PROVIDER})',
    )
    parser.add_argument(
        '--stack-name',
        help='Stack name (default: current directory name)',
    )
    parser.add_argument(
        '--region',
        help='AWS region (aws-cloudformation only)',
    )
    parser.add_argument(
        '--verbose', '-v',
        action='store_true',
        help='Enable verbose logging',
    )
    return parser


def _setup_logging(verbose: bool) -> None:
    if verbose:
        logging.getLogger().setLevel(logging.DEBUG)


def _build_provider(args):
    """Load config and construct the requested provider."""
    config = load_config()
    if args.stack_name:
        config.stack_name = args.stack_name
    kwargs = {}
    if args.region:
        if args.provider != 'aws-cloudformation':
            raise ValueError(f"--region is not supported by provider '{args.provider}'")
        kwargs['region'] = args.region
    provider = get_provider(args.provider, config, **kwargs)
    logger.debug(f"Using provider {provider.get_provider_name()} for stack {provider.stack_name}")
    return provider, config


def _run(handler, args) -> int:
    """Run a verb handler, turning fatal errors into exit code 1."""
    try:
        handler(args)
    except FATAL_ERRORS as e:
        logger.error(str(e))
        return 1
    return 0


def _create(args) -> None:
    manifests = load_manifests(args.manifest)
    provider, _ = _build_provider(args)
    logger.info(f"Creating {len(manifests)} resource(s) in stack {provider.stack_name} ({provider.get_provider_name()})")
    provider.create_infrastructure(manifests)
    logger.info(f"Manifest {args.manifest} applied")


def _delete(args) -> None:
    provider, _ = _build_provider(args)
    logger.info(f"Deleting stack {provider.stack_name} ({provider.get_provider_name()})")
    provider.destroy_infrastructure()


def _status(args) -> None:
    provider, _ = _build_provider(args)
    status = provider.get_infrastructure_status()
    logger.info(f"Stack {provider.stack_name} is {status.status}")
    print(status.status)


def _list(args) -> None:
    provider, _ = _build_provider(args)
    for resource in provider.list_available_resources():
        print(f"{resource.kind}: {resource.description}")
        for output in resource.get_outputs():
            print(f"  {output.key:<18} {output.description}")


def _export_env(args) -> None:
    manifests = load_manifests(args.manifest)
    provider, config = _build_provider(args)
    env = collect_env(provider, manifests)
    sys.stdout.write(format_env(env))
    write_env_file(env, args.env_file or config.env_file)


def create_main(argv: list) -> int:
    """Handle 'resource create'."""
    parser = _common_parser('resource create', 'Create or update resources from a manifest', with_manifest=True)
    args = parser.parse_args(argv)
    _setup_logging(args.verbose)
    return _run(_create, args)


def delete_main(argv: list) -> int:
    """Handle 'resource delete'."""
    parser = _common_parser('resource delete', 'Delete the stack for this directory')
    args = parser.parse_args(argv)
    _setup_logging(args.verbose)
    return _run(_delete, args)


def status_main(argv: list) -> int:
    """Handle 'resource status'."""
    parser = _common_parser('resource status', 'Show the stack status')
    args = parser.parse_args(argv)
    _setup_logging(args.verbose)
    return _run(_status, args)


def list_main(argv: list) -> int:
    """Handle 'resource list'."""
    parser = _common_parser('resource list', 'List resource kinds the provider supports')
    args = parser.parse_args(argv)
    _setup_logging(args.verbose)
    return _run(_list, args)


def export_env_main(argv: list) -> int:
    """Handle 'export-env'."""
    parser = _common_parser('export-env', 'Print resource outputs and write them to an env file', with_manifest=True)
    parser.add_argument(
        '--env-file',
        type=Path,
        help='Env file to write (default: .env)',
    )
    args = parser.parse_args(argv)
    _setup_logging(args.verbose)
    return _run(_export_env, args)
