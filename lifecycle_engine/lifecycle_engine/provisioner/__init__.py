"""Provisioning-tool backends."""

from lifecycle_engine.provisioner.base import ProvisionerInterface, ProvisioningResult
from lifecycle_engine.provisioner.retry import RetryConfig, compute_delay, retry_with_backoff
from lifecycle_engine.provisioner.tofu_client import StateLockError, TofuClient

__all__ = [
    "ProvisionerInterface",
    "ProvisioningResult",
    "RetryConfig",
    "StateLockError",
    "TofuClient",
    "compute_delay",
    "retry_with_backoff",
]
