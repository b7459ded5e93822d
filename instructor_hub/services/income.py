"""Revenue entries and the summaries built from them."""

from __future__ import annotations

import logging
import math
import sqlite3
from collections import defaultdict
from dataclasses import dataclass, field
from datetime import date
from typing import Any, Dict, Iterable, List, Optional, Tuple

from .storage import MetadataStoreError, SQLiteRepository, utc_timestamp

LOGGER = logging.getLogger(__name__)

_INCOME_COLUMNS = "id, amount, organization, date, notes, created_at, created_by"


class IncomeValidationError(ValueError):
    """Raised when an income entry is incomplete or malformed."""


@dataclass
class IncomeRecord:
    id: int
    amount: float
    organization: str
    date: str
    notes: Optional[str]
    created_at: str
    created_by: str


@dataclass
class IncomeSummary:
    total: float = 0.0
    average: float = 0.0
    count: int = 0
    top_organizations: List[Tuple[str, float]] = field(default_factory=list)
    monthly: List[Tuple[str, float]] = field(default_factory=list)

    def to_dict(self) -> Dict[str, Any]:
        return {
            "total": self.total,
            "average": self.average,
            "count": self.count,
            "top_organizations": [
                {"name": name, "total": total} for name, total in self.top_organizations
            ],
            "monthly": [{"month": month, "amount": amount} for month, amount in self.monthly],
        }


def validate_income(amount: Any, organization: str, entry_date: Any) -> Tuple[float, str, date]:
    """Return the cleaned ``(amount, organization, date)`` triple."""

    try:
        amount_value = float(amount)
    except (TypeError, ValueError):
        raise IncomeValidationError("Please enter a valid amount.") from None
    if not math.isfinite(amount_value) or amount_value <= 0:
        raise IncomeValidationError("Please enter a valid amount.")

    cleaned_org = (organization or "").strip()
    if not cleaned_org:
        raise IncomeValidationError("Please enter an organization name.")

    if isinstance(entry_date, date):
        date_value = entry_date
    else:
        try:
            date_value = date.fromisoformat(str(entry_date or "").strip())
        except ValueError:
            raise IncomeValidationError("Please enter a valid date.") from None

    return amount_value, cleaned_org, date_value


class IncomeRepository(SQLiteRepository):
    """CRUD helpers for the ``income`` table."""

    def add_income(
        self,
        amount: Any,
        organization: str,
        entry_date: Any,
        *,
        notes: Optional[str] = None,
        created_by: Optional[str] = None,
    ) -> int:
        amount_value, cleaned_org, date_value = validate_income(amount, organization, entry_date)
        cleaned_notes = (notes or "").strip() or None
        with self._track_db_event("add_income", table="income", organization=cleaned_org) as event:
            try:
                with self._connect() as connection:
                    cursor = self._execute(
                        connection,
                        "INSERT INTO income(amount, organization, date, notes, created_at, created_by) "
                        "VALUES (?, ?, ?, ?, ?, ?)",
                        (
                            amount_value,
                            cleaned_org,
                            date_value.isoformat(),
                            cleaned_notes,
                            utc_timestamp(),
                            created_by or "unknown",
                        ),
                        action="income.insert",
                        table="income",
                    )
                    income_id = int(cursor.lastrowid)
            except sqlite3.Error as error:
                raise MetadataStoreError(f"Failed to save income data: {error}") from error
            event["income_id"] = income_id
            LOGGER.debug("Income entry %s recorded for '%s'", income_id, cleaned_org)
            return income_id

    def get_income(self, income_id: int) -> Optional[IncomeRecord]:
        with self._track_db_event("get_income", table="income", income_id=income_id):
            with self._connect() as connection:
                cursor = self._execute(
                    connection,
                    f"SELECT {_INCOME_COLUMNS} FROM income WHERE id = ?",
                    (income_id,),
                    action="income.get",
                    table="income",
                )
                row = cursor.fetchone()
                return IncomeRecord(**row) if row else None

    def list_income(
        self,
        *,
        month: Optional[str] = None,
        organization: Optional[str] = None,
    ) -> List[IncomeRecord]:
        """Return entries newest first; ``month`` is ``YYYY-MM``."""

        clauses: List[str] = []
        params: List[Any] = []
        if month:
            clauses.append("substr(date, 1, 7) = ?")
            params.append(month)
        if organization:
            clauses.append("organization = ?")
            params.append(organization)
        where = f" WHERE {' AND '.join(clauses)}" if clauses else ""
        with self._track_db_event("list_income", table="income", month=month) as event:
            with self._connect() as connection:
                cursor = self._execute(
                    connection,
                    f"SELECT {_INCOME_COLUMNS} FROM income{where} ORDER BY date DESC, id DESC",
                    params,
                    action="income.list",
                    table="income",
                )
                rows = cursor.fetchall()
            event["rowcount"] = len(rows)
            return [IncomeRecord(**row) for row in rows]

    def organizations(self) -> List[str]:
        with self._track_db_event("income_organizations", table="income"):
            with self._connect() as connection:
                cursor = self._execute(
                    connection,
                    "SELECT DISTINCT organization FROM income ORDER BY organization",
                    action="income.organizations",
                    table="income",
                )
                return [row[0] for row in cursor.fetchall()]

    def remove_income(self, income_id: int) -> bool:
        with self._track_db_event("remove_income", table="income", income_id=income_id):
            with self._connect() as connection:
                cursor = self._execute(
                    connection,
                    "DELETE FROM income WHERE id = ?",
                    (income_id,),
                    action="income.delete",
                    table="income",
                )
                return cursor.rowcount > 0


def _recent_months(today: date, months: int) -> List[str]:
    keys: List[str] = []
    year, month = today.year, today.month
    for _ in range(months):
        keys.append(f"{year:04d}-{month:02d}")
        month -= 1
        if month == 0:
            month = 12
            year -= 1
    return list(reversed(keys))


def summarize_income(
    records: Iterable[IncomeRecord],
    *,
    today: Optional[date] = None,
    months: int = 6,
    top: int = 5,
) -> IncomeSummary:
    """Aggregate totals per organization and per month for the dashboard."""

    entries = list(records)
    today = today or date.today()
    if not entries:
        return IncomeSummary(monthly=[(key, 0.0) for key in _recent_months(today, months)])

    total = sum(entry.amount for entry in entries)

    by_organization: Dict[str, float] = defaultdict(float)
    for entry in entries:
        by_organization[entry.organization] += entry.amount
    ranked = sorted(by_organization.items(), key=lambda item: (-item[1], item[0]))

    month_keys = _recent_months(today, months)
    monthly: Dict[str, float] = {key: 0.0 for key in month_keys}
    for entry in entries:
        key = entry.date[:7]
        if key in monthly:
            monthly[key] += entry.amount

    return IncomeSummary(
        total=total,
        average=total / len(entries),
        count=len(entries),
        top_organizations=ranked[:top],
        monthly=[(key, monthly[key]) for key in month_keys],
    )


__all__ = [
    "IncomeRecord",
    "IncomeRepository",
    "IncomeSummary",
    "IncomeValidationError",
    "summarize_income",
    "validate_income",
]
