"""Topology discovery and caching for the replication vault."""

from .cache import InfrastructureCache
from .resolver import TopologyResolver
from .strategies import ResolutionContext, Strategy, first_match

__all__ = [
    "InfrastructureCache",
    "TopologyResolver",
    "ResolutionContext",
    "Strategy",
    "first_match",
]
