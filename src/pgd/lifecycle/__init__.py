"""Port allocation, drift detection and the instance state machine."""

from pgd.lifecycle.controller import (
    ConnectionInfo,
    LifecycleController,
    LifecycleState,
    StatusResult,
    TransitionResult,
)
from pgd.lifecycle.ports import PortAllocator, PortLease
from pgd.lifecycle.reconciler import DriftFinding, DriftKind, DriftReport, StateReconciler

__all__ = [
    "ConnectionInfo",
    "DriftFinding",
    "DriftKind",
    "DriftReport",
    "LifecycleController",
    "LifecycleState",
    "PortAllocator",
    "PortLease",
    "StateReconciler",
    "StatusResult",
    "TransitionResult",
]
