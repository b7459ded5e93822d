from datetime import date

import pytest

from instructor_hub.services.income import IncomeRecord, summarize_income


def _entry(entry_id: int, amount: float, organization: str, entry_date: str) -> IncomeRecord:
    return IncomeRecord(
        id=entry_id,
        amount=amount,
        organization=organization,
        date=entry_date,
        notes=None,
        created_at=f"{entry_date}T00:00:00+00:00",
        created_by="admin",
    )


def test_summary_of_no_entries_has_empty_months() -> None:
    summary = summarize_income([], today=date(2024, 2, 15))

    assert summary.total == 0
    assert summary.count == 0
    assert [month for month, _ in summary.monthly] == [
        "2023-09",
        "2023-10",
        "2023-11",
        "2023-12",
        "2024-01",
        "2024-02",
    ]


def test_summary_totals_ranks_and_buckets() -> None:
    entries = [
        _entry(1, 100.0, "Acme", "2024-02-01"),
        _entry(2, 50.0, "Beta", "2024-01-20"),
        _entry(3, 25.0, "Acme", "2023-06-30"),
        _entry(4, 300.0, "Gamma", "2024-02-10"),
    ]

    summary = summarize_income(entries, today=date(2024, 2, 15), months=3, top=2)

    assert summary.total == pytest.approx(475.0)
    assert summary.average == pytest.approx(118.75)
    assert summary.count == 4
    assert summary.top_organizations == [("Gamma", 300.0), ("Acme", 125.0)]
    assert summary.monthly == [("2023-12", 0.0), ("2024-01", 50.0), ("2024-02", 400.0)]

    payload = summary.to_dict()
    assert payload["top_organizations"][0] == {"name": "Gamma", "total": 300.0}
    assert payload["monthly"][-1] == {"month": "2024-02", "amount": 400.0}
