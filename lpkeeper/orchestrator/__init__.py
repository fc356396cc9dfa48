"""
Orchestrator package: process lifecycle and component wiring.
"""

from lpkeeper.orchestrator.supervisor import LifecycleState, StartupError, Supervisor

__all__ = [
    "LifecycleState",
    "StartupError",
    "Supervisor",
]
