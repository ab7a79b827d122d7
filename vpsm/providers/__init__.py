"""Server providers: registry, retry wrapper and the dry-run simulator."""

from vpsm.providers import registry
from vpsm.providers.dryrun import PROVIDER_NAME as DRY_RUN, SimulatedProvider
from vpsm.providers.registry import get, names, register, reset
from vpsm.providers.retrying import RetryingProvider, with_retry

if DRY_RUN not in registry.names():
    register(DRY_RUN, SimulatedProvider)

__all__ = [
    "DRY_RUN",
    "RetryingProvider",
    "SimulatedProvider",
    "get",
    "names",
    "register",
    "reset",
    "with_retry",
]
