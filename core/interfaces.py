# core/interfaces.py - Capabilities the generation engine consumes

from abc import ABC, abstractmethod
from typing import Any, Dict, List, Mapping, Sequence, Union

from .state_models import Learning, Project, UsageAccount


class AiCollaborator(ABC):
    """Produces a structured site-generation response for a prompt."""

    @abstractmethod
    async def generate(self, system_instruction: str, prompt_parts: Sequence[Dict[str, Any]],
                       response_schema: Dict[str, Any]) -> Union[str, Mapping[str, Any]]:
        """
        Return the raw JSON text (or an already-decoded object) with the keys
        ``aiSummary``, ``commitMessage``, ``summary`` and ``files``.

        Implementations raise AiRateLimitError, AiTransportError or AiParseError.
        """


class LearningStore(ABC):
    """Read access to the knowledge base of design learnings."""

    @abstractmethod
    async def list_learnings(self) -> List[Learning]:
        pass


class IntegrationSync(ABC):
    """Pushes a committed project to an external storage or version-control service."""

    @abstractmethod
    async def notify(self, project: Project) -> None:
        pass


class AccountStore(ABC):
    """Holds usage accounts. Debits never take a balance below zero."""

    @abstractmethod
    def get(self, account_id: str) -> UsageAccount:
        pass

    @abstractmethod
    def debit(self, account_id: str, amount: int) -> UsageAccount:
        pass

    @abstractmethod
    def credit(self, account_id: str, amount: int) -> UsageAccount:
        pass
