"""Dependency injection container for the application."""

from dependency_injector import containers, providers

from core.config import Settings
from core.cache import CacheStore
from core.usage import UsageLedger
from core.quota import QuotaGate
from services.places import PlacesService
from services.llm import LLMService


class Container(containers.DeclarativeContainer):
    """Application dependency injection container."""

    # Settings
    settings = providers.Singleton(
        Settings,
    )

    # Redis-backed response cache (connected in the app lifespan)
    cache = providers.Singleton(
        CacheStore,
        settings=settings
    )

    # Usage ledger and the quota gate reading it
    usage_ledger = providers.Singleton(
        UsageLedger,
        settings=settings
    )

    quota_gate = providers.Singleton(
        QuotaGate,
        ledger=usage_ledger,
        settings=settings
    )

    # Services
    places_service = providers.Factory(
        PlacesService,
        cache=cache,
        quota=quota_gate,
        ledger=usage_ledger,
        settings=settings
    )

    llm_service = providers.Factory(
        LLMService,
        places=places_service,
        settings=settings
    )


# Global container instance
container = Container()
