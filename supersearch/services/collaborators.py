"""Interfaces to the systems a run consults before starting and after finishing.

Credit accounting and saved-list storage belong to the host application; the
pipeline only needs a yes/no quota decision and a place to hand results to.
"""

from __future__ import annotations

import asyncio
from dataclasses import dataclass
from typing import Protocol

from loguru import logger

from supersearch.models.query import normalize_key
from supersearch.models.records import CompanyRecord, ContactRecord
from supersearch.models.results import ResultSet

SUPER_SEARCH_CREDIT_COST = 250


@dataclass
class QuotaDecision:
    allowed: bool
    balance: int | None
    required: int = SUPER_SEARCH_CREDIT_COST


@dataclass
class SaveSummary:
    companies_saved: int = 0
    contacts_saved: int = 0


class QuotaGate(Protocol):
    async def check(self, user_id: str | None) -> QuotaDecision: ...


class ResultSink(Protocol):
    async def save(self, user_id: str | None, list_id: int | None, result_set: ResultSet) -> SaveSummary: ...


class UnlimitedQuota:
    """Never vetoes. Used when no credit system is wired in."""

    async def check(self, user_id: str | None) -> QuotaDecision:
        return QuotaDecision(allowed=True, balance=None)


class CreditBalanceQuota:
    """Allows a run when the user's balance covers the fixed run cost."""

    def __init__(self, balances: dict[str, int] | None = None, *, default_balance: int = 0):
        self.balances = dict(balances or {})
        self.default_balance = default_balance

    async def check(self, user_id: str | None) -> QuotaDecision:
        balance = self.balances.get(user_id or "", self.default_balance)
        return QuotaDecision(allowed=balance >= SUPER_SEARCH_CREDIT_COST, balance=balance)


def save_summary(result_set: ResultSet) -> SaveSummary:
    """Counts a sink reports for `result_set`, without storing anything.

    Contacts whose company is not among the results (and carries no saved
    company id) add one company per distinct company name.
    """
    summary = SaveSummary()
    company_keys: set[str] = set()
    for record in result_set.records:
        if isinstance(record, CompanyRecord):
            company_keys.add(normalize_key(record.name))
            summary.companies_saved += 1
            continue
        company_key = normalize_key(record.company)
        if record.company_id is None and company_key and company_key not in company_keys:
            company_keys.add(company_key)
            summary.companies_saved += 1
        summary.contacts_saved += 1
    return summary


class CountingResultSink:
    """Reports what would be saved and keeps nothing. The default sink."""

    async def save(
        self,
        user_id: str | None,
        list_id: int | None,
        result_set: ResultSet,
    ) -> SaveSummary:
        return save_summary(result_set)


@dataclass
class SavedCompany:
    id: int
    user_id: str | None
    list_id: int | None
    name: str
    website: str | None = None
    record: CompanyRecord | None = None


@dataclass
class SavedContact:
    id: int
    user_id: str | None
    list_id: int | None
    company_id: int | None
    record: ContactRecord


class InMemoryResultSink:
    """Saved-list storage kept in process memory.

    Contacts are attached to a saved company of the same name. When the
    company itself was not among the results, a bare company row is created
    for it once and counted as saved.
    """

    def __init__(self) -> None:
        self._lock = asyncio.Lock()
        self._next_id = 1
        self.companies: list[SavedCompany] = []
        self.contacts: list[SavedContact] = []

    def _new_id(self) -> int:
        value = self._next_id
        self._next_id += 1
        return value

    async def save(
        self,
        user_id: str | None,
        list_id: int | None,
        result_set: ResultSet,
    ) -> SaveSummary:
        summary = SaveSummary()
        company_ids: dict[str, int] = {}

        async with self._lock:
            for record in result_set.records:
                if isinstance(record, CompanyRecord):
                    company = SavedCompany(
                        id=self._new_id(),
                        user_id=user_id,
                        list_id=list_id,
                        name=record.name or "",
                        website=record.website,
                        record=record,
                    )
                    self.companies.append(company)
                    company_ids[normalize_key(company.name)] = company.id
                    summary.companies_saved += 1
                    continue

                company_id = record.company_id
                company_key = normalize_key(record.company)
                if company_id is None and company_key:
                    company_id = company_ids.get(company_key)
                    if company_id is None:
                        company = SavedCompany(
                            id=self._new_id(),
                            user_id=user_id,
                            list_id=list_id,
                            name=record.company or "",
                            website=record.company_website,
                        )
                        self.companies.append(company)
                        company_ids[company_key] = company.id
                        company_id = company.id
                        summary.companies_saved += 1

                self.contacts.append(
                    SavedContact(
                        id=self._new_id(),
                        user_id=user_id,
                        list_id=list_id,
                        company_id=company_id,
                        record=record,
                    )
                )
                summary.contacts_saved += 1

        logger.info(
            f"Saved {summary.companies_saved} companies and "
            f"{summary.contacts_saved} contacts for user {user_id} (list {list_id})"
        )
        return summary
