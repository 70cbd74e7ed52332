"""Infrastructure providers, selectable by name."""

from typing import Optional

from config import OplatConfig

PROVIDERS = {
    'aws-cloudformation': 'Cloud stack on AWS CloudFormation',
    'docker-compose': 'Local containers via docker compose',
}


def list_providers() -> list[str]:
    return list(PROVIDERS)


def get_provider(name: str, config: Optional[OplatConfig] = None, **kwargs):
    """Construct the provider registered under name.

    Raises:
        ValueError: If name is not a known provider
    """
    if name == 'aws-cloudformation':
        from providers.cloudformation import AwsCloudFormationProvider
        return AwsCloudFormationProvider(config=config, **kwargs)

    if name == 'docker-compose':
        from providers.compose import DockerComposeProvider
        return DockerComposeProvider(config=config, **kwargs)

    raise ValueError(f"Unknown provider '{name}'. Available: {', '.join(list_providers())}")
