# Database models for application state
from sqlalchemy import Column, Integer, String, Float, JSON, Boolean, DateTime, Text, ForeignKey, Index
from sqlalchemy.dialects.postgresql import JSONB
from sqlalchemy.sql import func
from .connection import Base

# JSONB on PostgreSQL, plain JSON elsewhere (SQLite in tests)
JSONDocument = JSON().with_variant(JSONB(), "postgresql")


class User(Base):
    """Dashboard user account with its SmartAPI session"""
    __tablename__ = "users"

    id = Column(String(36), primary_key=True)
    client_code = Column(String(32), unique=True, index=True, nullable=False)
    name = Column(String(100), nullable=False)
    email = Column(String(255), unique=True, index=True, nullable=False)
    phone = Column(String(16), nullable=False)
    hashed_password = Column(String, nullable=False)

    broker_access_token = Column(Text, nullable=True)
    broker_refresh_token = Column(Text, nullable=True)
    broker_feed_token = Column(Text, nullable=True)
    broker_token_expiry = Column(DateTime(timezone=True), nullable=True)

    preferences = Column(JSONDocument, nullable=False, default=dict)
    is_active = Column(Boolean, default=True, nullable=False)
    is_verified = Column(Boolean, default=False, nullable=False)
    last_login = Column(DateTime(timezone=True), nullable=True)
    login_count = Column(Integer, default=0, nullable=False)
    created_at = Column(DateTime(timezone=True), server_default=func.now())
    updated_at = Column(DateTime(timezone=True), server_default=func.now(), onupdate=func.now())


class PortfolioDocument(Base):
    """One cached portfolio per user; holdings embedded as a JSON document"""
    __tablename__ = "portfolios"

    id = Column(Integer, primary_key=True, autoincrement=True)
    user_id = Column(String(36), ForeignKey("users.id", ondelete="CASCADE"), unique=True, nullable=False, index=True)
    holdings = Column(JSONDocument, nullable=False, default=list)
    total_invested_value = Column(Float, default=0.0, nullable=False)
    total_current_value = Column(Float, default=0.0, nullable=False)
    total_pnl = Column(Float, default=0.0, nullable=False)
    total_pnl_percentage = Column(Float, default=0.0, nullable=False)
    available_funds = Column(Float, default=0.0, nullable=False)
    last_sync_at = Column(DateTime(timezone=True), nullable=True)
    sync_status = Column(String(16), default="pending", nullable=False)
    created_at = Column(DateTime(timezone=True), server_default=func.now())
    updated_at = Column(DateTime(timezone=True), server_default=func.now(), onupdate=func.now())


class OrderRecord(Base):
    """Locally tracked order, placed through the dashboard or found on sync"""
    __tablename__ = "orders"

    id = Column(String(36), primary_key=True)
    user_id = Column(String(36), ForeignKey("users.id", ondelete="CASCADE"), nullable=False, index=True)
    client_order_id = Column(String(64), unique=True, nullable=False)
    order_id = Column(String(64), unique=True, nullable=True)
    broker_order_id = Column(String(64), nullable=True, index=True)
    exchange_order_id = Column(String(64), nullable=True)

    symbol = Column(String(64), nullable=False)
    exchange = Column(String(8), nullable=False)
    instrument_token = Column(String(32), nullable=False)
    order_type = Column(String(8), nullable=False)
    transaction_type = Column(String(4), nullable=False)
    product_type = Column(String(16), nullable=False)
    quantity = Column(Integer, nullable=False)
    price = Column(Float, nullable=True)
    trigger_price = Column(Float, nullable=True)

    status = Column(String(16), nullable=False, default="PENDING")
    filled_quantity = Column(Integer, nullable=False, default=0)
    average_price = Column(Float, nullable=False, default=0.0)
    order_time = Column(DateTime(timezone=True), nullable=False)
    update_time = Column(DateTime(timezone=True), nullable=False)
    validity = Column(String(8), nullable=False, default="DAY")
    variety = Column(String(16), nullable=False, default="NORMAL")
    squareoff = Column(Float, nullable=True)
    stoploss = Column(Float, nullable=True)
    trailing_stoploss = Column(Float, nullable=True)
    rejection_reason = Column(Text, nullable=True)
    source = Column(String(8), nullable=False, default="user")

    __table_args__ = (
        Index('idx_orders_user_time', 'user_id', 'order_time'),
        Index('idx_orders_user_status', 'user_id', 'status'),
        Index('idx_orders_user_symbol', 'user_id', 'symbol'),
    )
