"""Built-in environment template catalog."""

from __future__ import annotations

from types import MappingProxyType
from typing import Iterable, Mapping

from ..models import EnvironmentTemplate
from .validation import validate_template

_BUILTIN = (
    EnvironmentTemplate(
        id='sandbox-basic',
        name='Sandbox',
        description='Single small database for experiments, auto-expires.',
        type='sandbox',
        version='1.0.0',
        allowed_regions=('us-east-1', 'us-west-2', 'eu-west-1'),
        allowed_sizes=('small',),
        estimated_cost_hourly=0.05,
        estimated_cost_monthly=36.0,
        resources=('postgresql',),
    ),
    EnvironmentTemplate(
        id='dev-standard',
        name='Development',
        description='Database and cache sized for day-to-day team development.',
        type='development',
        version='1.2.0',
        allowed_regions=('us-east-1', 'us-west-2', 'eu-west-1', 'eu-central-1'),
        allowed_sizes=('small', 'medium'),
        estimated_cost_hourly=0.15,
        estimated_cost_monthly=108.0,
        resources=('postgresql', 'redis'),
    ),
    EnvironmentTemplate(
        id='staging-ha',
        name='Staging',
        description='Production-like topology with backups and monitoring enabled.',
        type='staging',
        version='2.0.0',
        allowed_regions=('us-east-1', 'eu-west-1', 'eu-central-1'),
        allowed_sizes=('medium', 'large', 'xlarge'),
        estimated_cost_hourly=0.60,
        estimated_cost_monthly=432.0,
        resources=('postgresql', 'redis', 'load-balancer'),
    ),
)


def build_catalog(
    templates: Iterable[EnvironmentTemplate],
) -> Mapping[str, EnvironmentTemplate]:
    """Validate and index templates by id."""
    catalog: dict[str, EnvironmentTemplate] = {}
    for template in templates:
        validate_template(template)
        if template.id in catalog:
            raise ValueError(f'duplicate template id {template.id!r}')
        catalog[template.id] = template
    return MappingProxyType(catalog)


DEFAULT_TEMPLATES = build_catalog(_BUILTIN)
