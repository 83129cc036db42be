# core/project_state_manager.py

import logging
import re
import uuid
import zipfile
from dataclasses import asdict, fields, replace
from datetime import datetime
from pathlib import Path
from typing import Any, Dict, Iterable, List, Optional, Sequence, Tuple

from .history_ledger import HistoryLedger
from .preview_builder import build_preview_document
from .state_models import (CREDENTIAL_TYPES, Attachment, BranchPoint, ChatMessage, FileEntry,
                           GenerationState, HistorySnapshot, IntegrationCredentials, IntegrationKind,
                           MessageRole, Project)


class ProjectStateManager:
    """
    Owns one Project aggregate and exposes the mutations the orchestrator needs.

    Generation results are committed by swapping in a new Project value in one
    step, so readers never observe a half-applied generation.
    """

    def __init__(self, project: Project, ledger: Optional[HistoryLedger] = None):
        self.project = project
        self.ledger = ledger or HistoryLedger()
        self.generation_state = GenerationState.IDLE
        self.logger = logging.getLogger(__name__)

    @classmethod
    def create(cls, name: str, description: str = "", project_id: Optional[str] = None) -> "ProjectStateManager":
        """Start a new, empty project."""
        project = Project(id=project_id or str(uuid.uuid4()), name=name, description=description)
        logging.getLogger(__name__).info(f"Started new project: \"{name}\"")
        return cls(project)

    @property
    def project_id(self) -> str:
        return self.project.id

    def append_messages(self, *messages: ChatMessage):
        self.project.chat_history = self.project.chat_history + list(messages)

    def record_failure(self, prompt: str, attachment: Optional[Attachment], error_message: str):
        """Make a failed generation visible in the transcript without touching files or history."""
        self.append_messages(ChatMessage.user(prompt, attachment), ChatMessage.error(error_message))
        self.generation_state = GenerationState.ERROR

    def commit_generation(self, files: Sequence[FileEntry], history: Tuple[HistorySnapshot, ...],
                          messages: Iterable[ChatMessage]) -> Project:
        """Replace files, history and transcript of the project in a single swap."""
        if len(history) < len(self.project.history):
            raise ValueError("History can only grow.")

        files = list(files)
        self.project = replace(
            self.project,
            files=files,
            history=tuple(history),
            chat_history=self.project.chat_history + list(messages),
            free_prompt_used=True,
            branched_from=None,
            preview_document=build_preview_document(files),
            saved_at=datetime.now(),
        )
        self.generation_state = GenerationState.SUCCESS
        self.logger.info(f"Committed generation for project {self.project.id}: "
                         f"{len(files)} files, {len(self.project.history)} history entries")
        return self.project

    def rollback(self, index: int) -> List[FileEntry]:
        """Restore the files captured before change ``index`` + 1. History is left intact."""
        files = self.ledger.restore(self.project, index)
        self.project.files = files
        self.project.preview_document = build_preview_document(files)
        self.append_messages(ChatMessage.system(
            f"Project restored to the version before change #{index + 1}. "
            f"Your next change will create a new branch in history."))
        return files

    def rename(self, new_name: str):
        self.project.name = new_name
        self.logger.info(f"Project name updated to \"{new_name}\".")

    def connect_integration(self, credentials: IntegrationCredentials):
        self.project.integrations = {**self.project.integrations, credentials.kind: credentials}
        label = credentials.kind.value.replace("_", " ").title()
        self.append_messages(ChatMessage.system(f"Project \"{self.project.name}\" connected to {label}."))

    def history_summary(self) -> List[str]:
        """One line per snapshot, numbered the way rollback labels count changes."""
        lines = []
        for i, snapshot in enumerate(self.project.history):
            marker = " <- branched here" if self.project.branched_from and self.project.branched_from.index == i else ""
            lines.append(f"#{i + 1}  {snapshot.saved_at:%Y-%m-%d %H:%M:%S}  {len(snapshot.files)} files{marker}")
        return lines

    # --- Download ---

    @property
    def archive_name(self) -> str:
        """Download file name: the project name with anything but ASCII letters and digits turned into '_'."""
        stem = re.sub(r"[^a-z0-9]", "_", self.project.name, flags=re.IGNORECASE).lower()
        return f"{stem or 'website'}.zip"

    def export_zip(self, destination: Path) -> Path:
        """
        Write every project file into a zip archive.

        ``destination`` may be a directory, in which case the archive is named
        after the project. Raises ValueError when there are no files yet.
        """
        if not self.project.files:
            raise ValueError("There are no files to download.")

        destination = Path(destination)
        archive_path = destination / self.archive_name if destination.is_dir() else destination
        archive_path.parent.mkdir(parents=True, exist_ok=True)
        with zipfile.ZipFile(archive_path, "w", compression=zipfile.ZIP_DEFLATED) as zf:
            for entry in self.project.files:
                zf.writestr(entry.path, entry.content)

        self.logger.info(f"Project \"{self.project.name}\" downloaded to {archive_path} "
                         f"({len(self.project.files)} files)")
        return archive_path

    # --- Serialization ---

    def to_dict(self) -> Dict[str, Any]:
        p = self.project
        return {
            "id": p.id,
            "name": p.name,
            "description": p.description,
            "files": [entry.to_dict() for entry in p.files],
            "history": [
                {
                    "files": [entry.to_dict() for entry in snapshot.files],
                    "name": snapshot.name,
                    "description": snapshot.description,
                    "saved_at": snapshot.saved_at.isoformat(),
                }
                for snapshot in p.history
            ],
            "chat_history": [_message_to_dict(m) for m in p.chat_history],
            "free_prompt_used": p.free_prompt_used,
            "branched_from": asdict(p.branched_from) if p.branched_from else None,
            "saved_at": p.saved_at.isoformat(),
            "integrations": {
                kind.value: {k: v for k, v in asdict(creds).items() if k != "kind"}
                for kind, creds in p.integrations.items()
            },
        }

    @classmethod
    def from_dict(cls, data: Dict[str, Any]) -> "ProjectStateManager":
        files = [FileEntry(**entry) for entry in data.get("files", [])]
        history = tuple(
            HistorySnapshot(
                files=tuple(FileEntry(**entry) for entry in item.get("files", [])),
                name=item.get("name", ""),
                description=item.get("description", ""),
                saved_at=_parse_datetime(item.get("saved_at")),
            )
            for item in data.get("history", [])
        )
        branched = data.get("branched_from")
        integrations = {}
        for kind_value, values in (data.get("integrations") or {}).items():
            kind = IntegrationKind(kind_value)
            integrations[kind] = CREDENTIAL_TYPES[kind](**values)

        project = Project(
            id=data["id"],
            name=data.get("name", ""),
            description=data.get("description", ""),
            files=files,
            history=history,
            chat_history=[_message_from_dict(m) for m in data.get("chat_history", [])],
            free_prompt_used=bool(data.get("free_prompt_used", False)),
            branched_from=BranchPoint(**branched) if branched else None,
            saved_at=_parse_datetime(data.get("saved_at")),
            preview_document=build_preview_document(files),
            integrations=integrations,
        )
        return cls(project)


def _parse_datetime(value: Optional[str]) -> datetime:
    return datetime.fromisoformat(value) if value else datetime.now()


def _message_to_dict(message: ChatMessage) -> Dict[str, Any]:
    data = asdict(message)
    data["role"] = message.role.value
    data["created_at"] = message.created_at.isoformat()
    return data


def _message_from_dict(data: Dict[str, Any]) -> ChatMessage:
    known = {f.name for f in fields(ChatMessage)}
    values = {k: v for k, v in data.items() if k in known}
    values["role"] = MessageRole(values["role"])
    values["created_at"] = _parse_datetime(values.get("created_at"))
    if values.get("attachment"):
        values["attachment"] = Attachment(**values["attachment"])
    return ChatMessage(**values)
