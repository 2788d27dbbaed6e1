# src/batch/container.py — v1
"""Assembles the long-lived components of a running instance."""

from __future__ import annotations

from dataclasses import dataclass

from callbatch.analysis.base_analyzer import BaseAnalyzer
from callbatch.analysis.http_analyzer import HttpAnalyzer
from callbatch.batch.configuration import BatchConfigurationService
from callbatch.batch.dispatcher import NotificationDispatcher
from callbatch.batch.service import BatchProcessingService
from callbatch.batch.status_channel import StatusChannel
from callbatch.config.settings import Settings
from callbatch.providers.factory import ProviderFactory
from callbatch.providers.registry import ProviderRegistry
from callbatch.tracking.base_status_store import BaseStatusStore
from callbatch.tracking.store_factory import create_status_store


@dataclass
class Container:
    settings: Settings
    store: BaseStatusStore
    registry: ProviderRegistry
    factory: ProviderFactory
    channel: StatusChannel
    dispatcher: NotificationDispatcher
    service: BatchProcessingService
    configuration: BatchConfigurationService

    async def close(self) -> None:
        await self.service.shutdown()
        self.store.close()


def build_container(
    settings: Settings,
    store: BaseStatusStore | None = None,
    analyzer: BaseAnalyzer | None = None,
    factory: ProviderFactory | None = None,
) -> Container:
    """Wire store, providers, dispatcher and services together.

    Args:
        settings: Global settings.
        store: Status store. Built from settings if None.
        analyzer: Analysis collaborator. HTTP adapter if None.
        factory: Provider factory. Default provider set if None.
    """
    store = store or create_status_store(settings)
    registry = factory.registry if factory else ProviderRegistry()
    factory = factory or ProviderFactory(registry)
    analyzer = analyzer or HttpAnalyzer(
        settings.analysis_endpoint,
        api_key=settings.analysis_api_key,
        timeout_s=settings.analysis_timeout_s,
    )
    channel = StatusChannel()
    dispatcher = NotificationDispatcher(store, factory, settings)
    service = BatchProcessingService(
        store, registry, factory, analyzer, settings, channel=channel, dispatcher=dispatcher
    )
    configuration = BatchConfigurationService(
        store, factory, settings, dispatcher, service=service
    )
    return Container(
        settings=settings,
        store=store,
        registry=registry,
        factory=factory,
        channel=channel,
        dispatcher=dispatcher,
        service=service,
        configuration=configuration,
    )
