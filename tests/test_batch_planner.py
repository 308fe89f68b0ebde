import pytest

from packages.domain.ai_categorization.batch_planner import BatchPlanner
from packages.domain.ai_categorization.merchant_keys import extract_merchant_key
from packages.domain.ai_categorization.schemas import TransactionForClassification
from tests.fakes import make_transaction


def _payloads(descriptions):
    return [TransactionForClassification.from_record(make_transaction(d)) for d in descriptions]


def test_groups_merchants_into_batches():
    transactions = _payloads(["UBER *TRIP"] * 30 + ["NETFLIX.COM"] * 15)

    plan = BatchPlanner(batch_size=40, max_batches=50).plan(transactions)

    assert [len(b) for b in plan] == [40, 5]
    assert plan.planned_count == 45
    assert plan.dropped_count == 0

    first = [extract_merchant_key(tx.description) for tx in plan.batches[0]]
    assert first == ["NETFLIX"] * 15 + ["UBER"] * 25
    assert all(extract_merchant_key(tx.description) == "UBER" for tx in plan.batches[1])


def test_sort_is_stable_within_a_merchant():
    transactions = _payloads(["UBER *TRIP A", "NETFLIX.COM", "UBER *TRIP B", "UBER *TRIP C"])

    ordered = BatchPlanner().sort_by_merchant(transactions)

    assert [tx.description for tx in ordered] == [
        "NETFLIX.COM", "UBER *TRIP A", "UBER *TRIP B", "UBER *TRIP C",
    ]


def test_plan_is_deterministic():
    transactions = _payloads(["SPOTIFY", "AMAZON", "UBER *X", "AMAZON PRIME", "PADARIA"])
    planner = BatchPlanner(batch_size=2)

    first = [[tx.id for tx in b] for b in planner.plan(transactions)]
    second = [[tx.id for tx in b] for b in planner.plan(transactions)]

    assert first == second


def test_caps_number_of_batches():
    transactions = _payloads([f"LOJA {i}" for i in range(11)])

    plan = BatchPlanner(batch_size=2, max_batches=3).plan(transactions)

    assert len(plan) == 3
    assert plan.planned_count == 6
    assert plan.dropped_count == 5
    assert sum(len(b) for b in plan) == 6


def test_batches_never_exceed_batch_size():
    transactions = _payloads([f"MERCHANT{i % 7} X" for i in range(97)])

    plan = BatchPlanner(batch_size=10, max_batches=50).plan(transactions)

    assert all(1 <= len(b) <= 10 for b in plan)
    assert len(plan) == 10


def test_empty_input_yields_no_batches():
    plan = BatchPlanner().plan([])

    assert len(plan) == 0
    assert plan.planned_count == 0


@pytest.mark.parametrize("kwargs", [{"batch_size": 0}, {"max_batches": 0}])
def test_rejects_non_positive_limits(kwargs):
    with pytest.raises(ValueError):
        BatchPlanner(**kwargs)
