# core/state_models.py

import uuid
from dataclasses import dataclass, field
from datetime import datetime
from enum import Enum
from typing import Dict, List, Optional, Tuple, Union


@dataclass(frozen=True)
class FileEntry:
    """A single generated source file. Frozen so snapshots can share entries safely."""
    path: str
    content: str

    def to_dict(self) -> Dict[str, str]:
        return {"path": self.path, "content": self.content}


@dataclass(frozen=True)
class Attachment:
    """A file the user attached to a prompt, carried as a data URL."""
    name: str
    mime_type: str
    data_url: str

    @property
    def base64_data(self) -> str:
        """Payload after the comma of a ``data:<mime>;base64,<payload>`` URL, or ''."""
        _, _, payload = self.data_url.partition(",")
        return payload


class MessageRole(Enum):
    USER = "user"
    MODEL = "model"
    SYSTEM = "system"


def _new_id() -> str:
    return uuid.uuid4().hex


@dataclass
class ChatMessage:
    """
    One entry of a project's chat transcript. The role decides which of the
    optional fields are meaningful; use the role constructors below.
    """
    role: MessageRole
    content: str
    id: str = field(default_factory=_new_id)
    created_at: datetime = field(default_factory=datetime.now)
    # user
    attachment: Optional[Attachment] = None
    # model
    ai_summary: Optional[str] = None
    commit_message: Optional[str] = None
    edits_made: Optional[int] = None
    thought_duration: Optional[float] = None
    generated_files: List[str] = field(default_factory=list)
    rollback_state_index: Optional[int] = None
    rollback_label: Optional[str] = None
    is_error: bool = False

    @classmethod
    def user(cls, prompt: str, attachment: Optional[Attachment] = None) -> "ChatMessage":
        return cls(role=MessageRole.USER, content=prompt, attachment=attachment)

    @classmethod
    def model(cls, summary: str, ai_summary: str, commit_message: str, edits_made: int,
              generated_files: List[str] = None, thought_duration: float = None,
              rollback_state_index: int = None, rollback_label: str = None) -> "ChatMessage":
        return cls(
            role=MessageRole.MODEL,
            content=summary,
            ai_summary=ai_summary,
            commit_message=commit_message,
            edits_made=edits_made,
            generated_files=list(generated_files or []),
            thought_duration=thought_duration,
            rollback_state_index=rollback_state_index,
            rollback_label=rollback_label,
        )

    @classmethod
    def system(cls, text: str) -> "ChatMessage":
        return cls(role=MessageRole.SYSTEM, content=text)

    @classmethod
    def error(cls, error_message: str) -> "ChatMessage":
        return cls(
            role=MessageRole.MODEL,
            content=f"I encountered an error: {error_message}\n\nPlease try again or modify your prompt.",
            is_error=True,
        )


@dataclass(frozen=True)
class BranchPoint:
    """The history index a project was rolled back to, and the history length at that moment."""
    index: int
    total_history_length_at_branch: int


@dataclass(frozen=True)
class HistorySnapshot:
    """Immutable copy of a project's file set captured before a modifying generation."""
    files: Tuple[FileEntry, ...]
    name: str = ""
    description: str = ""
    saved_at: datetime = field(default_factory=datetime.now)
    created_implicitly_before_generation: bool = True


# --- Per-project integrations: one credentials type per service ---

class IntegrationKind(Enum):
    SUPABASE = "supabase"
    GITHUB = "github"
    GOOGLE_SHEETS = "google_sheets"


@dataclass(frozen=True)
class SupabaseCredentials:
    url: str
    anon_key: str
    kind: IntegrationKind = field(default=IntegrationKind.SUPABASE, init=False)


@dataclass(frozen=True)
class GitHubCredentials:
    repo_url: str
    token: str
    branch: str = "main"
    kind: IntegrationKind = field(default=IntegrationKind.GITHUB, init=False)


@dataclass(frozen=True)
class GoogleSheetsCredentials:
    private_key_id: str
    client_email: str
    client_id: str
    project_id: str
    kind: IntegrationKind = field(default=IntegrationKind.GOOGLE_SHEETS, init=False)


IntegrationCredentials = Union[SupabaseCredentials, GitHubCredentials, GoogleSheetsCredentials]

CREDENTIAL_TYPES = {
    IntegrationKind.SUPABASE: SupabaseCredentials,
    IntegrationKind.GITHUB: GitHubCredentials,
    IntegrationKind.GOOGLE_SHEETS: GoogleSheetsCredentials,
}


@dataclass
class Project:
    """Aggregate root: files, chat transcript, history and metadata of one website workspace."""
    id: str
    name: str
    description: str = ""
    files: List[FileEntry] = field(default_factory=list)
    history: Tuple[HistorySnapshot, ...] = ()
    chat_history: List[ChatMessage] = field(default_factory=list)
    free_prompt_used: bool = False
    branched_from: Optional[BranchPoint] = None
    saved_at: datetime = field(default_factory=datetime.now)
    preview_document: str = ""
    integrations: Dict[IntegrationKind, IntegrationCredentials] = field(default_factory=dict)


class GenerationState(Enum):
    IDLE = "idle"
    GENERATING = "generating"
    SUCCESS = "success"
    ERROR = "error"


# --- Metering ---

class PlanName(Enum):
    FREE = "free"
    ONE_MONTH = "1-month"
    SIX_MONTH = "6-month"
    TWELVE_MONTH = "12-month"
    NONE = "none"


class SubscriptionStatus(Enum):
    ACTIVE = "active"
    INACTIVE = "inactive"


@dataclass
class UsageAccount:
    """Coin balance and subscription of one user."""
    account_id: str
    coins: int = 0
    plan: PlanName = PlanName.FREE
    subscription_status: SubscriptionStatus = SubscriptionStatus.INACTIVE
    plan_expiry_date: Optional[datetime] = None


@dataclass(frozen=True)
class CoinRate:
    plan: PlanName
    coins: int
    price: float
    duration_months: int


DEFAULT_COIN_RATES: Tuple[CoinRate, ...] = (
    CoinRate(PlanName.FREE, 100, 0, 0),
    CoinRate(PlanName.ONE_MONTH, 1000, 10, 1),
    CoinRate(PlanName.SIX_MONTH, 6000, 60, 6),
    CoinRate(PlanName.TWELVE_MONTH, 12000, 120, 12),
)


@dataclass
class Learning:
    """A design principle from the knowledge base, injected into system instructions."""
    content: str
    id: str = field(default_factory=_new_id)
    created_at: datetime = field(default_factory=datetime.now)
