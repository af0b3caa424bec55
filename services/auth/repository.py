from typing import Callable, Optional

from sqlalchemy import or_, select

from core.database.models import User as UserRecord
from core.trading.interfaces import UserRepository
from .models import BrokerSession, User, _utc


class SqlUserRepository(UserRepository):
    def __init__(self, session_factory: Callable):
        self.session_factory = session_factory

    async def get(self, user_id: str) -> Optional[User]:
        async with self.session_factory() as session:
            row = await session.get(UserRecord, user_id)
        return self._to_model(row) if row else None

    async def find_by_email(self, email: str) -> Optional[User]:
        async with self.session_factory() as session:
            result = await session.execute(select(UserRecord).where(UserRecord.email == email))
            row = result.scalar_one_or_none()
        return self._to_model(row) if row else None

    async def find_by_email_or_client_code(self, email: str, client_code: str) -> Optional[User]:
        query = select(UserRecord).where(
            or_(UserRecord.email == email, UserRecord.client_code == client_code)
        )
        async with self.session_factory() as session:
            result = await session.execute(query.limit(1))
            row = result.scalars().first()
        return self._to_model(row) if row else None

    async def create(self, user: User) -> User:
        async with self.session_factory() as session:
            row = UserRecord(id=user.id, created_at=user.created_at)
            self._apply(row, user)
            session.add(row)
            await session.commit()
        return user

    async def save(self, user: User) -> User:
        async with self.session_factory() as session:
            row = await session.get(UserRecord, user.id)
            if row is None:
                row = UserRecord(id=user.id, created_at=user.created_at)
                session.add(row)
            self._apply(row, user)
            await session.commit()
        return user

    @staticmethod
    def _apply(row: UserRecord, user: User) -> None:
        row.client_code = user.client_code
        row.name = user.name
        row.email = user.email
        row.phone = user.phone
        row.hashed_password = user.hashed_password
        row.broker_access_token = user.broker_session.access_token
        row.broker_refresh_token = user.broker_session.refresh_token
        row.broker_feed_token = user.broker_session.feed_token
        row.broker_token_expiry = user.broker_session.expires_at
        row.preferences = user.preferences
        row.is_active = user.is_active
        row.is_verified = user.is_verified
        row.last_login = user.last_login
        row.login_count = user.login_count
        row.updated_at = user.updated_at

    @staticmethod
    def _to_model(row: UserRecord) -> User:
        return User(
            id=row.id,
            client_code=row.client_code,
            name=row.name,
            email=row.email,
            phone=row.phone,
            hashed_password=row.hashed_password,
            broker_session=BrokerSession(
                access_token=row.broker_access_token,
                refresh_token=row.broker_refresh_token,
                feed_token=row.broker_feed_token,
                expires_at=_utc(row.broker_token_expiry),
            ),
            preferences=row.preferences or {},
            is_active=row.is_active,
            is_verified=row.is_verified,
            last_login=_utc(row.last_login),
            login_count=row.login_count or 0,
            created_at=_utc(row.created_at),
            updated_at=_utc(row.updated_at),
        )
