from __future__ import annotations

from typing import Any, Dict, Iterable, List, Tuple

MAX_BATCH_SIZE = 500

PatchEntry = Tuple[Any, Dict[str, Any]]
Batch = List[PatchEntry]


def accumulate(entries: Iterable[PatchEntry], batch_size: int = MAX_BATCH_SIZE) -> List[Batch]:
    """Group ``(document_id, patch)`` pairs into commit batches.

    Empty patches are dropped. Order is preserved and only the last batch may
    be short.
    """
    if batch_size < 1 or batch_size > MAX_BATCH_SIZE:
        raise ValueError(f"batch_size must be between 1 and {MAX_BATCH_SIZE}, got {batch_size}")

    batches: List[Batch] = []
    current: Batch = []
    for document_id, patch in entries:
        if not patch:
            continue
        current.append((document_id, patch))
        if len(current) >= batch_size:
            batches.append(current)
            current = []

    if current:
        batches.append(current)
    return batches
