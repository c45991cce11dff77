"""Process lifecycle supervision.

- ``liveness``: detect that the launching host is gone (parent, stdin, grandparent)
- ``bridge``: map OS signals and uncaught faults to shutdown requests
- ``coordinator``: run the shutdown sequence exactly once, bounded in time
"""

from __future__ import annotations

from .bridge import EVENT_TABLE, LifecycleEvent, SignalBridge
from .coordinator import CleanupOutcome, LifecycleState, ShutdownCoordinator, ShutdownRequest
from .faults import FaultClassifier
from .liveness import PARENT_EXITED, PARENT_ORPHANED, STDIN_DISCONNECTED, LivenessDetector
from .manager import ProcessLifecycleManager, setup_process_lifecycle
from .probe import HostProbe, ProcessLookupFailed, ProcessProbe
from .scheduler import AsyncioScheduler, CompositeHandle, PeriodicHandle, Scheduler

__all__ = [
    "AsyncioScheduler",
    "CleanupOutcome",
    "CompositeHandle",
    "EVENT_TABLE",
    "FaultClassifier",
    "HostProbe",
    "LifecycleEvent",
    "LifecycleState",
    "LivenessDetector",
    "PARENT_EXITED",
    "PARENT_ORPHANED",
    "PeriodicHandle",
    "ProcessLifecycleManager",
    "ProcessLookupFailed",
    "ProcessProbe",
    "STDIN_DISCONNECTED",
    "Scheduler",
    "ShutdownCoordinator",
    "ShutdownRequest",
    "SignalBridge",
    "setup_process_lifecycle",
]
