"""Rollback planning and convergence."""

from lifecycle_engine.rollback.coordinator import RollbackCoordinator, convergence_targets

__all__ = ["RollbackCoordinator", "convergence_targets"]
