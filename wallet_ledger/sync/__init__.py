from .options import SyncOptions, SyncResult, SweepResult
from .coordinator import SyncCoordinator

__all__ = [
    "SyncOptions",
    "SyncResult",
    "SweepResult",
    "SyncCoordinator",
]
