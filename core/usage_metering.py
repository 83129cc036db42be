# core/usage_metering.py - Free-first-prompt and coin-balance gating

import logging
from dataclasses import dataclass
from typing import Optional, Sequence

from .errors import InsufficientBalance
from .state_models import DEFAULT_COIN_RATES, CoinRate, PlanName, Project, UsageAccount

logger = logging.getLogger(__name__)

DEFAULT_PROMPT_COST = 10


@dataclass(frozen=True)
class AuthorizationDecision:
    allowed: bool
    chargeable: bool
    reason: Optional[InsufficientBalance] = None


class UsageMeter:
    """Decides whether a generation may run and debits coins once it has succeeded."""

    def __init__(self, prompt_cost: int = DEFAULT_PROMPT_COST, coin_rates: Sequence[CoinRate] = DEFAULT_COIN_RATES):
        if prompt_cost < 0:
            raise ValueError("prompt_cost must not be negative")
        self.prompt_cost = prompt_cost
        self.coin_rates = tuple(coin_rates)

    def needs_account(self, project: Project) -> bool:
        """The free first prompt of a project is authorized without looking at any account."""
        return project.free_prompt_used

    def authorize(self, project: Project, account: Optional[UsageAccount]) -> AuthorizationDecision:
        # The first generation of every project is free, whatever the balance.
        if not project.free_prompt_used:
            return AuthorizationDecision(allowed=True, chargeable=False)
        if account is None:
            raise ValueError("An account is required once the free prompt is used.")

        if account.coins >= self.prompt_cost:
            return AuthorizationDecision(allowed=True, chargeable=True)

        logger.info(f"Denied generation for account {account.account_id}: "
                    f"{account.coins} coins, {self.prompt_cost} required")
        return AuthorizationDecision(
            allowed=False,
            chargeable=True,
            reason=InsufficientBalance(self.prompt_cost, account.coins),
        )

    def charge(self, account_store, account_id: str, amount: Optional[int] = None) -> UsageAccount:
        """Debit ``amount`` (default: the prompt cost) through the account store."""
        amount = self.prompt_cost if amount is None else amount
        account = account_store.debit(account_id, amount)
        logger.info(f"Deducted {amount} coins from {account_id}. New balance: {account.coins}.")
        return account

    def coin_rate_for(self, plan: PlanName) -> Optional[CoinRate]:
        return next((rate for rate in self.coin_rates if rate.plan == plan), None)
