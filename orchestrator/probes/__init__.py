"""
Provider reachability probes with a unified interface.
"""
from orchestrator.probes.base import BaseProbe
from orchestrator.probes.factory import ProbeFactory

__all__ = [
    "BaseProbe",
    "ProbeFactory",
]
