"""Snapshot, drift, rollback, and automation engine for IaC deployments."""

__version__ = "0.1.0"
