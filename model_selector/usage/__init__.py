"""Provider usage probes and aggregation."""

from model_selector.usage.aggregator import ADAPTER_TYPES, UsageAggregator, build_adapters, build_candidates
from model_selector.usage.base import CommandUnavailable, UsageAdapter, run_command
from model_selector.usage.models import UsageCandidate, UsageReport, UsageWindow

__all__ = [
    "ADAPTER_TYPES",
    "CommandUnavailable",
    "UsageAdapter",
    "UsageAggregator",
    "UsageCandidate",
    "UsageReport",
    "UsageWindow",
    "build_adapters",
    "build_candidates",
    "run_command",
]
