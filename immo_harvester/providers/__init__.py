"""Immo Harvester — Provider Registry.

The set of sources is fixed at build time. Adding a source means adding
a Provider subclass and listing it in PROVIDER_TYPES.
"""

from __future__ import annotations

from immo_harvester.errors import UnknownProviderError
from immo_harvester.providers.base import (
    ActiveStatus,
    Provider,
    ProviderMeta,
    ProviderSettings,
    RetrievalContext,
)
from immo_harvester.providers.immoscout import ImmoscoutProvider
from immo_harvester.providers.immowelt import ImmoweltProvider
from immo_harvester.providers.kleinanzeigen import KleinanzeigenProvider

PROVIDER_TYPES: dict[str, type[Provider]] = {
    provider.meta.id: provider
    for provider in (ImmoscoutProvider, ImmoweltProvider, KleinanzeigenProvider)
}


def get_provider_type(provider_id: str) -> type[Provider]:
    """Look up a provider class by id.

    Raises:
        UnknownProviderError: If the id is not registered.
    """
    try:
        return PROVIDER_TYPES[provider_id]
    except KeyError:
        raise UnknownProviderError(provider_id) from None


def build_providers(context: RetrievalContext) -> dict[str, Provider]:
    """Instantiate every registered provider against shared retrievers."""
    return {provider_id: cls(context) for provider_id, cls in PROVIDER_TYPES.items()}


__all__ = [
    "ActiveStatus",
    "PROVIDER_TYPES",
    "Provider",
    "ProviderMeta",
    "ProviderSettings",
    "RetrievalContext",
    "build_providers",
    "get_provider_type",
]
