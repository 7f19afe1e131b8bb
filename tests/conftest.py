import os
from datetime import datetime, timedelta, timezone
from decimal import Decimal
from pathlib import Path

import pytest

os.environ.setdefault("ORDER_SYNC_LOG", "")

from order_sync.aggregator import line_total  # noqa: E402
from order_sync.controller import SyncController  # noqa: E402
from order_sync.schemas import Order, SortKey  # noqa: E402
from order_sync.store import RecordStore  # noqa: E402

BASE_TIME = datetime(2026, 3, 15, 12, 0, tzinfo=timezone.utc)
PAGE_SIZE = 20
TTL = timedelta(minutes=5)

_CASE_RESULTS: list[dict[str, str]] = []


class FakeClock:
    def __init__(self, now: datetime = BASE_TIME) -> None:
        self.now = now

    def __call__(self) -> datetime:
        return self.now

    def advance(self, **kwargs) -> None:
        self.now += timedelta(**kwargs)


class FakeOrderSource:
    """In-memory page fetcher that records every call."""

    def __init__(self) -> None:
        self.orders: list[Order] = []
        self.calls: list[tuple[str, int, int, SortKey]] = []
        self.fail_with: Exception | None = None
        self.on_fetch = None

    def __call__(self, identity: str, offset: int, limit: int, sort_key: SortKey) -> list[Order]:
        self.calls.append((identity, offset, limit, SortKey(sort_key)))
        if self.on_fetch is not None:
            self.on_fetch()
        if self.fail_with is not None:
            raise self.fail_with
        owned = [order for order in self.orders if order.user_id == identity]
        if SortKey(sort_key) is SortKey.DATE:
            owned.sort(key=lambda order: (order.created_at, order.id), reverse=True)
        else:
            owned.sort(key=lambda order: (line_total(order), order.id), reverse=True)
        return owned[offset : offset + limit]


def build_order(
    index: int,
    *,
    user_id: str = "user-1",
    created_at: datetime | None = None,
    unit_price: str = "10.00",
    quantity: int = 1,
    status: str = "completed",
    store: str = "Corner Bakery",
) -> Order:
    return Order(
        id=f"order-{index:03d}",
        user_id=user_id,
        store=store,
        unit_price=Decimal(unit_price),
        quantity=quantity,
        status=status,
        created_at=created_at or BASE_TIME - timedelta(minutes=index),
    )


@pytest.fixture
def make_order():
    return build_order


@pytest.fixture
def clock() -> FakeClock:
    return FakeClock()


@pytest.fixture
def source() -> FakeOrderSource:
    return FakeOrderSource()


@pytest.fixture
def store() -> RecordStore:
    return RecordStore()


@pytest.fixture
def controller(store: RecordStore, source: FakeOrderSource, clock: FakeClock) -> SyncController:
    return SyncController(store, source, page_size=PAGE_SIZE, ttl=TTL, clock=clock)


def pytest_configure(config: pytest.Config) -> None:
    config.addinivalue_line(
        "markers",
        "case(point, keyword='N/A'): annotate testcase with test point and identity keyword",
    )
    config.addinivalue_line("markers", "integration: needs a live MySQL server")


@pytest.fixture
def record_case_keyword(request: pytest.FixtureRequest):
    def _record(keyword: str) -> None:
        request.node.user_properties.append(("case_keyword", str(keyword)))

    return _record


@pytest.hookimpl(hookwrapper=True)
def pytest_runtest_makereport(item: pytest.Item, call: pytest.CallInfo):
    outcome = yield
    report = outcome.get_result()

    if report.when != "call":
        return

    marker = item.get_closest_marker("case")
    if marker is None:
        return

    point = str(marker.kwargs.get("point", "Unlabeled test point"))
    keyword = str(marker.kwargs.get("keyword", "N/A"))
    for key, value in item.user_properties:
        if key == "case_keyword":
            keyword = str(value)

    _CASE_RESULTS.append(
        {
            "case": item.name,
            "status": report.outcome,
            "point": point,
            "keyword": keyword,
        }
    )


def pytest_sessionfinish(session: pytest.Session, exitstatus: int) -> None:
    if not _CASE_RESULTS:
        return

    report_dir = Path("tests/reports")
    report_dir.mkdir(parents=True, exist_ok=True)
    report_file = report_dir / "sync-test-execution-report.md"

    passed = sum(1 for row in _CASE_RESULTS if row["status"] == "passed")
    failed = sum(1 for row in _CASE_RESULTS if row["status"] == "failed")
    skipped = sum(1 for row in _CASE_RESULTS if row["status"] == "skipped")

    lines = [
        "# Order Sync Test Execution Report",
        "",
        f"- Total test cases: {len(_CASE_RESULTS)}",
        f"- Passed: {passed}",
        f"- Failed: {failed}",
        f"- Skipped: {skipped}",
        "",
        "## Case Details",
        "| No. | Test Case | Result | Test Point | Keyword |",
        "|---:|---|---|---|---|",
    ]

    for index, row in enumerate(_CASE_RESULTS, start=1):
        lines.append(f"| {index} | {row['case']} | {row['status']} | {row['point']} | {row['keyword']} |")

    report_file.write_text("\n".join(lines), encoding="utf-8")
