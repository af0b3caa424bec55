import uuid
from typing import Callable, List, Optional

from sqlalchemy import func, or_, select

from core.database.models import OrderRecord
from core.logging import get_trading_logger_safe
from core.trading.interfaces import OrderRepository
from core.trading.order_models import Order, OrderFilter

# Columns written from the model; computed fields are never stored
ORDER_COLUMNS = (
    "user_id", "client_order_id", "order_id", "broker_order_id", "exchange_order_id",
    "symbol", "exchange", "instrument_token", "order_type", "transaction_type",
    "product_type", "quantity", "price", "trigger_price", "status", "filled_quantity",
    "average_price", "order_time", "update_time", "validity", "variety", "squareoff",
    "stoploss", "trailing_stoploss", "rejection_reason", "source",
)


class SqlOrderRepository(OrderRepository):
    def __init__(self, session_factory: Callable):
        self.session_factory = session_factory
        self.logger = get_trading_logger_safe("order_repository")

    def _filtered(self, query, user_id: str, filters: OrderFilter):
        query = query.where(OrderRecord.user_id == user_id)
        if filters.status is not None:
            query = query.where(OrderRecord.status == filters.status.value)
        if filters.symbol:
            query = query.where(OrderRecord.symbol == filters.symbol)
        if filters.date_from is not None:
            query = query.where(OrderRecord.order_time >= filters.date_from)
        if filters.date_to is not None:
            query = query.where(OrderRecord.order_time <= filters.date_to)
        return query

    async def find(self, user_id: str, filters: OrderFilter, offset: int = 0,
                   limit: Optional[int] = None) -> List[Order]:
        query = self._filtered(select(OrderRecord), user_id, filters)
        query = query.order_by(OrderRecord.order_time.desc()).offset(offset)
        if limit is not None:
            query = query.limit(limit)
        async with self.session_factory() as session:
            result = await session.execute(query)
            rows = result.scalars().all()
        return [self._to_model(row) for row in rows]

    async def count(self, user_id: str, filters: OrderFilter) -> int:
        query = self._filtered(select(func.count(OrderRecord.id)), user_id, filters)
        async with self.session_factory() as session:
            result = await session.execute(query)
            return int(result.scalar_one())

    async def find_one(self, user_id: str, identifier: str) -> Optional[Order]:
        query = select(OrderRecord).where(
            OrderRecord.user_id == user_id,
            or_(
                OrderRecord.id == identifier,
                OrderRecord.order_id == identifier,
                OrderRecord.client_order_id == identifier,
            ),
        )
        async with self.session_factory() as session:
            result = await session.execute(query.limit(1))
            row = result.scalars().first()
        return self._to_model(row) if row else None

    async def find_by_broker_id(self, user_id: str, broker_order_id: str) -> Optional[Order]:
        query = select(OrderRecord).where(
            OrderRecord.user_id == user_id,
            or_(OrderRecord.order_id == broker_order_id, OrderRecord.broker_order_id == broker_order_id),
        )
        async with self.session_factory() as session:
            result = await session.execute(query.limit(1))
            row = result.scalars().first()
        return self._to_model(row) if row else None

    async def create(self, order: Order) -> Order:
        order = order.with_changes(id=order.id or str(uuid.uuid4()))
        async with self.session_factory() as session:
            row = OrderRecord(id=order.id)
            self._apply(row, order)
            session.add(row)
            await session.commit()
        self.logger.debug("Order created", user_id=order.user_id, client_order_id=order.client_order_id)
        return order

    async def save(self, order: Order) -> Order:
        """Update the stored order, or insert it when it has never been stored."""
        async with self.session_factory() as session:
            row = None
            if order.id:
                row = await session.get(OrderRecord, order.id)
            if row is None:
                result = await session.execute(
                    select(OrderRecord).where(OrderRecord.client_order_id == order.client_order_id)
                )
                row = result.scalar_one_or_none()
            if row is None:
                row = OrderRecord(id=order.id or str(uuid.uuid4()))
                session.add(row)
            self._apply(row, order)
            await session.commit()
            order_id = row.id
        return order if order.id == order_id else order.with_changes(id=order_id)

    @staticmethod
    def _apply(row: OrderRecord, order: Order) -> None:
        data = order.model_dump(mode="python", include=set(ORDER_COLUMNS))
        for column, value in data.items():
            if hasattr(value, "value"):
                value = value.value
            setattr(row, column, value)

    @staticmethod
    def _to_model(row: OrderRecord) -> Order:
        data = {column: getattr(row, column) for column in ORDER_COLUMNS}
        data["id"] = row.id
        return Order.model_validate(data)
