"""Alternative-data collectors and the registry that fuses their output."""

from altsignal.collectors.base import Collector, DataCollector, FeedAdapter
from altsignal.collectors.registry import CollectorRegistry, build_collectors
from altsignal.collectors.types import CollectedBatch, CollectorConfig, DataPoint

__all__ = [
    "CollectedBatch",
    "Collector",
    "CollectorConfig",
    "CollectorRegistry",
    "DataCollector",
    "DataPoint",
    "FeedAdapter",
    "build_collectors",
]
