# services/learning_store.py

import asyncio
import json
import logging
from datetime import datetime
from pathlib import Path
from typing import List, Optional

from core.interfaces import LearningStore
from core.state_models import Learning

logger = logging.getLogger(__name__)

DEFAULT_LEARNINGS = (
    "When building a portfolio for a photographer, always include a prominent gallery section with "
    "high-resolution image placeholders and a clean, minimalist layout to emphasize the visuals.",
    "For e-commerce sites, the 'Add to Cart' button should be the most vibrant and eye-catching element "
    "on a product page to guide the user's action.",
)


class InMemoryLearningStore(LearningStore):
    """
    Knowledge base of design learnings, optionally persisted to a JSON file.
    Seeded with the default learnings when nothing has been stored yet.
    """

    def __init__(self, storage_file: Optional[Path] = None, seed_defaults: bool = True):
        self.storage_file = Path(storage_file) if storage_file else None
        self._lock = asyncio.Lock()
        self._learnings: List[Learning] = self._load()
        if not self._learnings and seed_defaults:
            self._learnings = [Learning(content=text) for text in DEFAULT_LEARNINGS]
            self._save()

    def _load(self) -> List[Learning]:
        if not self.storage_file or not self.storage_file.exists():
            return []
        try:
            with open(self.storage_file, "r", encoding="utf-8") as f:
                raw = json.load(f)
            return [Learning(content=item["content"], id=item["id"],
                             created_at=datetime.fromisoformat(item["created_at"])) for item in raw]
        except (json.JSONDecodeError, KeyError, ValueError) as e:
            logger.error(f"Failed to load learnings from {self.storage_file}: {e}")
            return []

    def _save(self):
        if not self.storage_file:
            return
        try:
            self.storage_file.parent.mkdir(parents=True, exist_ok=True)
            with open(self.storage_file, "w", encoding="utf-8") as f:
                json.dump([{"id": l.id, "content": l.content, "created_at": l.created_at.isoformat()}
                           for l in self._learnings], f, indent=2)
        except OSError as e:
            logger.error(f"Failed to save learnings to {self.storage_file}: {e}")

    async def list_learnings(self) -> List[Learning]:
        async with self._lock:
            return list(self._learnings)

    async def save_learning(self, content: str) -> Learning:
        learning = Learning(content=content)
        async with self._lock:
            self._learnings.append(learning)
            self._save()
        return learning

    async def update_learning(self, learning_id: str, content: str) -> Optional[Learning]:
        async with self._lock:
            for learning in self._learnings:
                if learning.id == learning_id:
                    learning.content = content
                    self._save()
                    return learning
        return None

    async def delete_learning(self, learning_id: str) -> bool:
        async with self._lock:
            before = len(self._learnings)
            self._learnings = [l for l in self._learnings if l.id != learning_id]
            if len(self._learnings) < before:
                self._save()
                return True
        return False
