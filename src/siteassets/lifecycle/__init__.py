"""Asset lifecycle: claim, duplicate, orphan and expiry collection.

Exports
-------
LifecycleManager
    Move, copy and garbage-collect stored assets.
AssetStateMachine
    Enforce one-way lifecycle transitions for a single object.
"""

from .manager import LifecycleManager
from .state import AssetStateMachine

__all__ = [
    "AssetStateMachine",
    "LifecycleManager",
]
