# services/account_store.py

import logging
import threading
from dataclasses import replace
from typing import Dict, Iterable

from core.errors import InsufficientBalance
from core.interfaces import AccountStore
from core.state_models import UsageAccount

logger = logging.getLogger(__name__)


class InMemoryAccountStore(AccountStore):
    """Process-local usage accounts. Returned accounts are copies; the store owns the balances."""

    def __init__(self, accounts: Iterable[UsageAccount] = ()):
        self._lock = threading.Lock()
        self._accounts: Dict[str, UsageAccount] = {a.account_id: replace(a) for a in accounts}

    def add(self, account: UsageAccount):
        if account.coins < 0:
            raise ValueError("Account balance cannot be negative.")
        with self._lock:
            self._accounts[account.account_id] = replace(account)

    def get(self, account_id: str) -> UsageAccount:
        with self._lock:
            if account_id not in self._accounts:
                raise KeyError(f"Unknown account: {account_id}")
            return replace(self._accounts[account_id])

    def debit(self, account_id: str, amount: int) -> UsageAccount:
        if amount < 0:
            raise ValueError("Debit amount must not be negative.")
        with self._lock:
            account = self._accounts[account_id]
            if account.coins < amount:
                raise InsufficientBalance(amount, account.coins)
            account.coins -= amount
            return replace(account)

    def credit(self, account_id: str, amount: int) -> UsageAccount:
        """Add coins, e.g. after an approved plan purchase."""
        if amount < 0:
            raise ValueError("Credit amount must not be negative.")
        with self._lock:
            account = self._accounts[account_id]
            account.coins += amount
            logger.info(f"Credited {amount} coins to {account_id}. New balance: {account.coins}.")
            return replace(account)
