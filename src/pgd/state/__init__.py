"""Persisted observed state."""

from pgd.state.store import InstanceState, StateStore

__all__ = ["InstanceState", "StateStore"]
