"""
Explicit option and result structures for sync runs.
"""

from dataclasses import dataclass, asdict
from typing import Any, Dict, Optional, Union

Checkpoint = Union[int, str, None]


@dataclass
class SyncOptions:
    """Options for one coordinator run.

    Checkpoints accept decimal ints, hex strings ('0x...') or decimal strings.
    ``to_checkpoint`` also accepts 'latest'. Both bounds are inclusive.
    """
    from_checkpoint: Checkpoint = None
    to_checkpoint: Checkpoint = None
    force_full_resync: bool = False


@dataclass
class SyncResult:
    """Outcome of one coordinator run. ``skipped_run`` is set when another run held the pair."""
    synced: int = 0
    skipped: int = 0
    total_fetched: int = 0
    skipped_run: bool = False

    def to_dict(self) -> Dict[str, Any]:
        return asdict(self)


@dataclass
class SweepResult:
    """Outcome of one paginated sweep in a single direction."""
    synced: int = 0
    skipped: int = 0
    fetched: int = 0
    pages: int = 0
    max_block: Optional[int] = None
    hit_page_ceiling: bool = False
