"""Namespace provisioning service.

The workflow creates tenant namespaces, the scheduler expires them and the
deletion coordinator removes them on request or expiry.
"""

from .deletion import DeletionCoordinator
from .scheduler import ExpiryScheduler
from .workflow import ProvisioningWorkflow

__all__ = ["DeletionCoordinator", "ExpiryScheduler", "ProvisioningWorkflow"]
