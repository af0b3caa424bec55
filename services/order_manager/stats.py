from typing import Iterable

from core.trading.order_models import Order, OrderStats, OrderStatus, TransactionType


def compute_order_stats(orders: Iterable[Order]) -> OrderStats:
    """Aggregate counts and traded value over ``orders``.

    Rates are percentages of all orders rounded to two places; the average
    order value is taken over completed orders only.
    """
    stats = OrderStats()
    for order in orders:
        stats.total_orders += 1
        if order.status == OrderStatus.COMPLETE:
            stats.completed_orders += 1
        elif order.status == OrderStatus.CANCELLED:
            stats.cancelled_orders += 1
        elif order.status == OrderStatus.REJECTED:
            stats.rejected_orders += 1

        if order.transaction_type == TransactionType.BUY:
            stats.buy_orders += 1
        else:
            stats.sell_orders += 1
        stats.total_value += order.executed_value

    if stats.total_orders:
        stats.success_rate = round(stats.completed_orders / stats.total_orders * 100, 2)
        stats.cancellation_rate = round(stats.cancelled_orders / stats.total_orders * 100, 2)
    if stats.completed_orders:
        stats.average_order_value = stats.total_value / stats.completed_orders
    return stats
