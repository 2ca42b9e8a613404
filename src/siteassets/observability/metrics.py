"""Metrics hook protocol and no-op default implementation.

siteassets emits counters and timings at key points (ingestion, security
rejections, transcoding, store calls, lifecycle steps).  By default a
:class:`NoopMetricsHook` is used so there is zero overhead.  Supply any
object satisfying :class:`MetricsHook` via ``SiteAssetsConfig.metrics`` to
route them to a real backend.

Emitted metric names:

* ``siteassets.ingest_total``              -- counter (``source``, ``outcome``)
* ``siteassets.ingest_duration_ms``        -- timing
* ``siteassets.security_rejections_total`` -- counter (``reason``)
* ``siteassets.transcode_attempts_total``  -- counter
* ``siteassets.budget_exceeded_total``     -- counter
* ``siteassets.store_requests_total``      -- counter (``op``, ``status``)
* ``siteassets.store_duration_ms``         -- timing
* ``siteassets.lifecycle_objects_total``   -- counter (``op``, ``outcome``)
* ``siteassets.gc_deleted_total``          -- counter (``op``)
"""

from __future__ import annotations

from typing import Any, Protocol, runtime_checkable


@runtime_checkable
class MetricsHook(Protocol):
    """Protocol that any metrics backend must satisfy.

    All methods accept an optional *tags* dict of string keys and values.
    """

    def increment(
        self,
        name: str,
        value: int = 1,
        tags: dict[str, str] | None = None,
    ) -> None:
        """Increment a counter metric."""
        ...

    def timing(
        self,
        name: str,
        ms: float,
        tags: dict[str, str] | None = None,
    ) -> None:
        """Record a duration in milliseconds."""
        ...

    def gauge(
        self,
        name: str,
        value: float,
        tags: dict[str, str] | None = None,
    ) -> None:
        """Set a gauge metric to an absolute value."""
        ...


class NoopMetricsHook:
    """Default metrics implementation that discards all data points."""

    __slots__ = ()

    def increment(
        self,
        name: str,
        value: int = 1,
        tags: dict[str, str] | None = None,
    ) -> None:
        pass

    def timing(
        self,
        name: str,
        ms: float,
        tags: dict[str, str] | None = None,
    ) -> None:
        pass

    def gauge(
        self,
        name: str,
        value: float,
        tags: dict[str, str] | None = None,
    ) -> None:
        pass


def resolve_metrics(metrics: Any | None) -> MetricsHook:
    """Return *metrics*, or a :class:`NoopMetricsHook` when it is ``None``."""
    return metrics if metrics is not None else NoopMetricsHook()
