"""Summary statistics for the order list header."""

from datetime import datetime
from decimal import Decimal
from typing import Iterable

from order_sync.schemas import Order, OrderStatus, Statistics


def line_total(order: Order) -> Decimal:
    """Monetary value of one order. Shared by the statistics and the order cards."""
    return order.unit_price * order.quantity


def _local_created_at(order: Order, now: datetime) -> datetime:
    if now.tzinfo is not None:
        return order.created_at.astimezone(now.tzinfo)
    return order.created_at


def compute_statistics(records: Iterable[Order], now: datetime) -> Statistics:
    """Count today's and open orders and sum this month's sales relative to ``now``."""
    today = now.date()
    today_orders = 0
    pending_orders = 0
    pending_payment = 0
    month_sales = Decimal("0")

    for order in records:
        created_at = _local_created_at(order, now)
        if created_at.date() == today:
            today_orders += 1
        if order.status == OrderStatus.PENDING.value:
            pending_orders += 1
        elif order.status == OrderStatus.AWAITING_PAYMENT.value:
            pending_payment += 1
        if (
            created_at.year == now.year
            and created_at.month == now.month
            and order.status != OrderStatus.CANCELLED.value
        ):
            month_sales += line_total(order)

    return Statistics(
        today_orders=today_orders,
        pending_orders=pending_orders,
        pending_payment=pending_payment,
        month_sales=month_sales,
    )
