# async sqlalchemy models for the history store
# one row per analyzed transaction: the signals later lookups need plus
# the full analysis as json

from sqlalchemy.orm import declarative_base
from sqlalchemy import Column, String, Float, DateTime, JSON, Index
from sqlalchemy.pool import StaticPool
from sqlalchemy.ext.asyncio import AsyncSession, create_async_engine, async_sessionmaker
from datetime import datetime

Base = declarative_base()

# transaction model - analyzed transactions and their signals
class TransactionRecord(Base):
    __tablename__ = 'transactions'

    transaction_id = Column(String(40), primary_key=True)  # txn_<32 hex>
    customer_id = Column(String(128), nullable=False, index=True)
    merchant_id = Column(String(128), nullable=False, index=True)
    amount = Column(Float, nullable=False)
    currency = Column(String(3), default='USD')
    timestamp = Column(DateTime, nullable=False, index=True)  # naive local time

    # signals used by the reputation / history lookups
    latitude = Column(Float)
    longitude = Column(Float)
    location_time = Column(DateTime)
    device_hash = Column(String(64))  # sha256 of fingerprint fields
    network_signature = Column(String(32))  # effectiveType|saveData

    # outcome
    risk_score = Column(Float)
    risk_level = Column(String(10))  # LOW/MEDIUM/HIGH
    analysis = Column(JSON)  # full RiskAnalysis (camelCase json)
    created_at = Column(DateTime, default=datetime.now)

    __table_args__ = (
        Index('ix_transactions_customer_time', 'customer_id', 'timestamp'),
    )

# database connection helpers
class Database:
    """manages async database connections"""

    def __init__(self, database_url: str):
        self.database_url = database_url

        if database_url.startswith('sqlite'):
            # single shared connection so in-memory databases survive between sessions
            self.engine = create_async_engine(database_url, echo=False, poolclass=StaticPool)
        else:
            # create async engine with connection pooling
            self.engine = create_async_engine(
                database_url,
                echo=False,  # set to True to see all sql queries (useful for debugging)
                pool_size=10,  # max 10 concurrent connections
                max_overflow=20  # can create up to 20 extra connections if needed
            )
        # session factory for creating async sessions
        self.async_session = async_sessionmaker(
            self.engine,
            class_=AsyncSession,
            expire_on_commit=False
        )

    async def create_tables(self):
        """create all tables (usually done via migration, but useful for testing)"""
        async with self.engine.begin() as conn:
            await conn.run_sync(Base.metadata.create_all)

    async def close(self):
        """close database connections"""
        await self.engine.dispose()
