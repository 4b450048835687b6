"""Composition of subscriber, scheduler, and per-build processors."""

from __future__ import annotations

import typing as typ

from buildwatch.common.time import NOW_MARKER
from buildwatch.export.client import BuildExportClient, BuildExportConfig
from buildwatch.handlers.builtin import log_metric, resolve_variants
from buildwatch.handlers.factory import HandlerFactory
from buildwatch.handlers.registry import CapabilityRegistry

from .observability import DispatchEventLogger
from .processor import BuildStreamProcessor, ProcessorConfig
from .scheduler import DEFAULT_MAX_REMEMBERED, AdmissionScheduler, OverflowPolicy
from .subscriber import BuildFeedSubscriber, SubscriberConfig

if typ.TYPE_CHECKING:
    import collections.abc as cabc
    import datetime as dt

    from buildwatch.export.client import BuildExportSource
    from buildwatch.export.models import Build
    from buildwatch.handlers.builtin import MetricSink
    from buildwatch.handlers.variant import HandlerVariant

    from .config import DispatcherConfig
    from .outcome import StreamOutcome


class BuildDispatchService:
    """Follow the build feed and run every announced build through handlers."""

    def __init__(  # noqa: PLR0913
        self,
        source: BuildExportSource,
        variants: cabc.Iterable[HandlerVariant[typ.Any]],
        *,
        max_concurrent: int,
        max_pending: int | None = None,
        overflow_policy: OverflowPolicy = OverflowPolicy.REJECT_NEW,
        max_remembered: int = DEFAULT_MAX_REMEMBERED,
        processor_config: ProcessorConfig | None = None,
        subscriber_config: SubscriberConfig | None = None,
        event_logger: DispatchEventLogger | None = None,
    ) -> None:
        """Assemble the dispatcher around an export source and handler variants."""
        self._source = source
        self._event_logger = event_logger or DispatchEventLogger()
        self._processor_config = processor_config or ProcessorConfig()
        self.registry = CapabilityRegistry(variants)
        self.factory = HandlerFactory(self.registry)
        self.scheduler = AdmissionScheduler(
            self.process_build,
            max_concurrent=max_concurrent,
            max_pending=max_pending,
            overflow_policy=overflow_policy,
            max_remembered=max_remembered,
            event_logger=self._event_logger,
        )
        self.subscriber = BuildFeedSubscriber(
            source,
            self.scheduler,
            config=subscriber_config,
            event_logger=self._event_logger,
        )

    @classmethod
    def from_config(
        cls,
        config: DispatcherConfig,
        *,
        source: BuildExportSource | None = None,
        sink: MetricSink = log_metric,
    ) -> BuildDispatchService:
        """Build a service from dispatcher configuration.

        When ``source`` is omitted an httpx-backed :class:`BuildExportClient`
        pointing at ``config.server_url`` is created.
        """
        resolved_source = source or BuildExportClient(
            BuildExportConfig(server_url=config.server_url)
        )
        return cls(
            resolved_source,
            resolve_variants(config.handlers, sink=sink),
            max_concurrent=config.max_concurrent_builds,
            max_pending=config.max_pending_builds,
            overflow_policy=config.overflow_policy,
            max_remembered=config.max_remembered_builds,
            processor_config=ProcessorConfig(idle_timeout_s=config.idle_timeout_s),
            subscriber_config=SubscriberConfig(
                reconnect_delay_s=config.reconnect_delay_s,
                reconnect_max_delay_s=config.reconnect_max_delay_s,
            ),
        )

    async def process_build(self, build: Build) -> StreamOutcome:
        """Run one admitted build's event stream through fresh handlers."""
        processor = BuildStreamProcessor(
            build,
            self._source,
            self.factory,
            config=self._processor_config,
            event_logger=self._event_logger,
        )
        return await processor.run()

    async def run(self, since: str | int | dt.datetime = NOW_MARKER) -> None:
        """Follow the announcement feed until cancelled, then shut down."""
        try:
            await self.subscriber.start(since)
        finally:
            self.subscriber.stop()
            await self.aclose()

    async def aclose(self) -> None:
        """Cancel in-flight builds and close an owned export client."""
        await self.scheduler.aclose()
        if isinstance(self._source, BuildExportClient):
            await self._source.aclose()
