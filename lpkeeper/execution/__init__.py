"""
Execution layer.

- SeenRegistry: at-most-once bookkeeping for document paths
- ProvisioningDispatcher: bounded fan-out of the provisioning action
"""

from lpkeeper.execution.dedup import SeenRegistry
from lpkeeper.execution.dispatcher import DEFAULT_MAX_CONCURRENT, ProvisioningDispatcher

__all__ = [
    "DEFAULT_MAX_CONCURRENT",
    "ProvisioningDispatcher",
    "SeenRegistry",
]
