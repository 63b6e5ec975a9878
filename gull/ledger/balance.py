"""
Balance Ledger

One spendable balance per user, persisted through the ledger repository.

Privileged users (admins) have unlimited balance: sufficiency checks always
pass for them and apply_net never touches their stored balance.

Concurrency: debits re-check sufficiency under a per-user asyncio.Lock, so
two concurrent debits can never both pass against the same balance.
"""

import asyncio
from collections import defaultdict
from decimal import Decimal
from typing import Iterable, Optional
from uuid import UUID

import structlog

from gull.audit import AuditLogger
from gull.config import LedgerSettings, get_settings
from gull.exceptions import InsufficientBalance, InvalidAmount
from gull.models.entry import BalanceAccount, BalanceChange, BalanceChangeKind
from gull.services.storage import LedgerRepository


logger = structlog.get_logger("gull.balance")


class BalanceLedger:
    """Debit/credit operations over per-user balances."""

    def __init__(
        self,
        repository: LedgerRepository,
        privileged_users: Optional[Iterable[str]] = None,
        settings: Optional[LedgerSettings] = None,
        audit_logger: Optional[AuditLogger] = None,
    ):
        self._repository = repository
        self._settings = settings or get_settings().ledger
        self._privileged = (
            set(privileged_users) if privileged_users is not None
            else self._settings.privileged_users
        )
        self._audit = audit_logger
        self._locks: defaultdict[str, asyncio.Lock] = defaultdict(asyncio.Lock)

    def is_privileged(self, user_id: str) -> bool:
        return user_id in self._privileged

    async def get_balance(self, user_id: str) -> Decimal:
        """Stored balance, or the configured default when none exists."""
        balance = await self._repository.load_balance(user_id)
        if balance is None:
            return Decimal(self._settings.default_balance)
        return Decimal(balance)

    async def account(self, user_id: str) -> BalanceAccount:
        return BalanceAccount(
            user_id=user_id,
            balance=await self.get_balance(user_id),
            privileged=self.is_privileged(user_id),
        )

    async def has_sufficient_balance(self, user_id: str, amount: Decimal) -> bool:
        if self.is_privileged(user_id):
            return True
        return await self.get_balance(user_id) >= amount

    async def debit(
        self,
        user_id: str,
        amount: Decimal,
        correlation_id: Optional[UUID] = None,
    ) -> Decimal:
        """
        Take `amount` from the user's balance.

        Sufficiency is checked again here, under the user's lock.

        Raises:
            InsufficientBalance: the balance is lower than `amount`
            StorageError: the new balance could not be saved
        """
        async with self._locks[user_id]:
            available = await self.get_balance(user_id)
            if available < amount:
                raise InsufficientBalance(user_id, amount, available)
            new_balance = available - amount
            await self._repository.save_balance(user_id, new_balance)

        logger.debug("balance_debited", user_id=user_id, amount=str(amount))
        if self._audit:
            await self._audit.log_balance_change(
                user_id, "debit", amount, new_balance, correlation_id
            )
        return new_balance

    async def credit(
        self,
        user_id: str,
        amount: Decimal,
        correlation_id: Optional[UUID] = None,
    ) -> Decimal:
        """Add `amount` to the user's balance."""
        async with self._locks[user_id]:
            new_balance = await self.get_balance(user_id) + amount
            await self._repository.save_balance(user_id, new_balance)

        logger.debug("balance_credited", user_id=user_id, amount=str(amount))
        if self._audit:
            await self._audit.log_balance_change(
                user_id, "credit", amount, new_balance, correlation_id
            )
        return new_balance

    async def apply_net(
        self,
        user_id: str,
        net: Decimal,
        correlation_id: Optional[UUID] = None,
    ) -> BalanceChange:
        """
        Apply the balance effect of an entry mutation.

        A positive net is a cost (debit), a negative net a refund (credit).
        Zero nets and privileged users leave the balance alone.
        """
        if net == 0 or self.is_privileged(user_id):
            return BalanceChange(user_id=user_id)
        if net > 0:
            balance = await self.debit(user_id, net, correlation_id)
            return BalanceChange(
                user_id=user_id, kind=BalanceChangeKind.DEBIT,
                amount=net, balance=balance,
            )
        balance = await self.credit(user_id, -net, correlation_id)
        return BalanceChange(
            user_id=user_id, kind=BalanceChangeKind.CREDIT,
            amount=-net, balance=balance,
        )

    async def revert(
        self,
        change: BalanceChange,
        correlation_id: Optional[UUID] = None,
    ) -> None:
        """Undo a change returned by apply_net."""
        if change.kind == BalanceChangeKind.DEBIT:
            await self.credit(change.user_id, change.amount, correlation_id)
        elif change.kind == BalanceChangeKind.CREDIT:
            # Takes back a credit; no sufficiency check.
            async with self._locks[change.user_id]:
                new_balance = await self.get_balance(change.user_id) - change.amount
                await self._repository.save_balance(change.user_id, new_balance)

    async def top_up(
        self,
        user_id: str,
        amount: Decimal,
        correlation_id: Optional[UUID] = None,
    ) -> Decimal:
        """
        Admin top-up of a user's balance.

        Raises:
            InvalidAmount: outside the configured top-up range
        """
        amount = Decimal(amount)
        low = Decimal(self._settings.min_topup_amount)
        high = Decimal(self._settings.max_topup_amount)
        if not amount.is_finite() or amount < low or amount > high:
            raise InvalidAmount(
                f"Top-up must be between PKR {low:,} and PKR {high:,}"
            )

        async with self._locks[user_id]:
            new_balance = await self.get_balance(user_id) + amount
            await self._repository.save_balance(user_id, new_balance)

        logger.info("balance_topped_up", user_id=user_id, amount=str(amount))
        if self._audit:
            await self._audit.log_balance_change(
                user_id, "top_up", amount, new_balance, correlation_id
            )
        return new_balance
