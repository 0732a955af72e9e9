"""Watch subscriptions and pipeline orchestration.

Submodules:
    informer -- SharedInformer/InformerFactory over the kubernetes dynamic client.
    pipeline -- Watcher: binds informers to relay queues and manages lifecycle.
"""

from kuberelay.watcher.informer import (
    InformerFactory,
    ResourceEventHandler,
    SharedInformer,
    WatchSetupError,
)
from kuberelay.watcher.pipeline import Watcher

__all__ = [
    "InformerFactory",
    "ResourceEventHandler",
    "SharedInformer",
    "WatchSetupError",
    "Watcher",
]
