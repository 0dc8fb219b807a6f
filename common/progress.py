"""
tqdm wrappers shared by the extraction phases.

Every bar is labelled "[<phase>] <action>" so the read, decode and
attachment-scan stages are distinguishable when they run back to back.
Bars are off unless progress display is enabled in ExtractionConfig.
"""

from concurrent.futures import Future, as_completed
from typing import Iterable, List, Mapping, Optional, TypeVar

from tqdm import tqdm

PHASE_READ = "Read"
PHASE_DECODE = "Decode"
PHASE_SCAN = "Scan"

T = TypeVar("T")


def _label(phase: str, action: str) -> str:
    return f"[{phase}] {action}"


def progress_bar(
    iterable: Iterable[T],
    phase: str,
    action: str,
    total: Optional[int] = None,
    unit: str = "row",
    disable: bool = False,
) -> tqdm:
    """Wrap a sequential loop, e.g. the per-table reads."""
    return tqdm(iterable, desc=_label(phase, action), total=total, unit=unit, disable=disable)


def futures_progress(
    futures: Mapping[Future, object],
    phase: str,
    action: str,
    unit: str = "item",
    disable: bool = False,
) -> tqdm:
    """Yield futures as they finish, advancing one tick per future.

    Args:
        futures: Submitted futures mapped to whatever identifies their work
            (a batch index for decoding, an attachment id for the scan)
        phase: One of the PHASE_* labels
        action: What the pool is doing, shown after the phase label
        unit: Unit shown in the rate column
        disable: Suppress the bar
    """
    return tqdm(
        as_completed(futures),
        total=len(futures),
        desc=_label(phase, action),
        unit=unit,
        disable=disable,
    )


def chunked(items: List[T], chunk_size: int) -> List[List[T]]:
    """Split rows into decode batches of at most chunk_size.

    >>> chunked([1, 2, 3, 4, 5], 2)
    [[1, 2], [3, 4], [5]]
    """
    return [items[i : i + chunk_size] for i in range(0, len(items), chunk_size)]
