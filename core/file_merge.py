# core/file_merge.py - Reconciles AI-generated files into an existing file set

import logging
from typing import Iterable, List, Sequence

from .state_models import FileEntry

logger = logging.getLogger(__name__)


def merge_files(existing: Sequence[FileEntry], incoming: Iterable[FileEntry]) -> List[FileEntry]:
    """
    Merge ``incoming`` into ``existing`` and return a new list.

    Incoming entries replace existing ones with the same path in place; unknown
    paths are appended. Existing files the AI did not return are kept untouched.
    Neither input is mutated.
    """
    merged = list(existing)
    positions = {entry.path: i for i, entry in enumerate(merged)}

    for entry in incoming:
        if entry.path in positions:
            merged[positions[entry.path]] = entry
        else:
            positions[entry.path] = len(merged)
            merged.append(entry)

    return merged
