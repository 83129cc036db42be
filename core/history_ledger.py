# core/history_ledger.py - Append-only snapshot log with branch tracking

import logging
from datetime import datetime
from typing import List, Tuple

from .errors import IndexOutOfRange
from .state_models import BranchPoint, FileEntry, HistorySnapshot, Project


class HistoryLedger:
    """
    Keeps the per-project history of file-tree snapshots.

    History is append-only: rolling back reads a snapshot and records a
    BranchPoint on the project, it never removes or rewrites entries. The index
    of a snapshot is therefore stable for the lifetime of the project.
    """

    def __init__(self):
        self.logger = logging.getLogger(__name__)

    def record_snapshot(self, project: Project) -> Tuple[int, Tuple[HistorySnapshot, ...]]:
        """
        Snapshot the project's current (pre-generation) files.

        Returns the index of the new snapshot and the extended history. The
        project itself is not modified; the caller commits the new history.
        """
        if not project.files:
            raise ValueError("Nothing to snapshot: the project has no files yet.")

        snapshot = HistorySnapshot(
            files=tuple(project.files),
            name=project.name,
            description=project.description,
            saved_at=datetime.now(),
        )
        index = len(project.history)
        new_history = project.history + (snapshot,)
        self.logger.debug(f"Recorded snapshot #{index + 1} for project {project.id} ({len(snapshot.files)} files)")
        return index, new_history

    def rollback_label(self, project: Project, new_history_length: int) -> str:
        """Display label for the model message produced by the next generation."""
        branch = project.branched_from
        if branch is None:
            return f"(#{new_history_length})"

        self._check_branch_consistency(project, branch)
        return f"({branch.index + 1}/{new_history_length})"

    def restore(self, project: Project, index: int) -> List[FileEntry]:
        """
        Return the files of snapshot ``index`` and mark the project as branched.

        Raises IndexOutOfRange if no snapshot exists at ``index``.
        """
        history_length = len(project.history)
        if index < 0 or index >= history_length:
            raise IndexOutOfRange(index, history_length)

        snapshot = project.history[index]
        project.branched_from = BranchPoint(index=index, total_history_length_at_branch=history_length)
        self.logger.info(f"Project {project.id} restored to the state before change #{index + 1}")
        return list(snapshot.files)

    def _check_branch_consistency(self, project: Project, branch: BranchPoint):
        history_length = len(project.history)
        if branch.index < 0 or branch.index >= history_length:
            raise IndexOutOfRange(
                branch.index, history_length,
                reason=f"Branch point #{branch.index + 1} does not exist in a history of {history_length} entries.")
        if branch.total_history_length_at_branch > history_length:
            raise IndexOutOfRange(
                branch.index, history_length,
                reason=(f"Branch point was recorded with {branch.total_history_length_at_branch} history entries "
                        f"but only {history_length} exist."))
