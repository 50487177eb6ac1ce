# sql-backed history store
# same lookups as the in-memory store, computed with async sqlalchemy queries

import logging
from datetime import datetime, timedelta
from typing import List, Optional

from sqlalchemy import func, select

from db.models import Database, TransactionRecord
from service.cache import TTLCache
from service.config import settings
from service.schemas import (
    DeviceFingerprint,
    LastLocation,
    MerchantStats,
    NetworkData,
    RiskAnalysis,
    TransactionContext,
)
from service.store import HistoryStore, fingerprint_hash, network_signature

logger = logging.getLogger(__name__)

def _naive_local(value: Optional[datetime]) -> Optional[datetime]:
    """store everything as naive local time so comparisons stay consistent"""
    if value is None or value.tzinfo is None:
        return value
    return value.astimezone().replace(tzinfo=None)

class SqlHistoryStore(HistoryStore):
    """
    history store on top of Database

    merchant averages are cached (they change slowly and every transaction
    asks for them); the entry is dropped whenever that merchant gets a new row.
    each store owns its cache so stores on different databases never share
    averages
    """

    def __init__(self, db: Database, cache: Optional[TTLCache] = None):
        self.db = db
        self.cache = cache if cache is not None else TTLCache(ttl_seconds=settings.merchant_cache_ttl)

    async def record(self, analysis: RiskAnalysis, context: TransactionContext):
        location = context.location_data
        row = TransactionRecord(
            transaction_id=analysis.transaction_id,
            customer_id=analysis.customer_id,
            merchant_id=analysis.merchant_id,
            amount=analysis.amount,
            currency=analysis.currency,
            timestamp=_naive_local(analysis.timestamp),
            device_hash=fingerprint_hash(context.device_fingerprint),
            network_signature=network_signature(context.network_data),
            risk_score=analysis.risk_score,
            risk_level=analysis.risk_level.value,
            analysis=analysis.model_dump(mode='json', by_alias=True),
        )
        if location is not None:
            row.latitude = location.latitude
            row.longitude = location.longitude
            row.location_time = _naive_local(location.timestamp or analysis.timestamp)

        async with self.db.async_session() as session:
            session.add(row)
            await session.commit()

        self.cache.invalidate(f"merchant_stats_{analysis.merchant_id}")

    async def get_analysis(self, transaction_id: str) -> Optional[RiskAnalysis]:
        async with self.db.async_session() as session:
            row = await session.get(TransactionRecord, transaction_id)
        if row is None:
            return None
        return RiskAnalysis.model_validate(row.analysis)

    async def list_analyses(self) -> List[RiskAnalysis]:
        async with self.db.async_session() as session:
            query = select(TransactionRecord.analysis).order_by(TransactionRecord.timestamp)
            rows = (await session.execute(query)).scalars().all()
        return [RiskAnalysis.model_validate(payload) for payload in rows]

    async def last_known_location(self, customer_id: str) -> Optional[LastLocation]:
        async with self.db.async_session() as session:
            query = select(TransactionRecord).where(
                TransactionRecord.customer_id == customer_id,
                TransactionRecord.latitude.is_not(None)
            ).order_by(TransactionRecord.location_time.desc()).limit(1)
            row = (await session.execute(query)).scalar()

        if row is None:
            return None
        return LastLocation(latitude=row.latitude, longitude=row.longitude, timestamp=row.location_time)

    async def _count(self, *filters) -> int:
        async with self.db.async_session() as session:
            query = select(func.count(TransactionRecord.transaction_id)).where(*filters)
            return int((await session.execute(query)).scalar() or 0)

    async def is_known_device(self, fingerprint: DeviceFingerprint, customer_id: str) -> bool:
        count = await self._count(
            TransactionRecord.customer_id == customer_id,
            TransactionRecord.device_hash == fingerprint_hash(fingerprint)
        )
        return count > 0

    async def is_known_network(self, network: NetworkData, customer_id: str) -> bool:
        signature = network_signature(network)
        if signature is None:
            return False
        count = await self._count(
            TransactionRecord.customer_id == customer_id,
            TransactionRecord.network_signature == signature
        )
        return count > 0

    async def recent_transaction_count(
        self, customer_id: str, hours: int, as_of: Optional[datetime] = None
    ) -> int:
        as_of = _naive_local(as_of) or datetime.now()
        return await self._count(
            TransactionRecord.customer_id == customer_id,
            TransactionRecord.timestamp >= as_of - timedelta(hours=hours),
            TransactionRecord.timestamp <= as_of
        )

    async def spending_history(self, customer_id: str) -> List[float]:
        async with self.db.async_session() as session:
            query = select(TransactionRecord.amount).where(
                TransactionRecord.customer_id == customer_id
            ).order_by(TransactionRecord.timestamp)
            amounts = (await session.execute(query)).scalars().all()
        return [float(a) for a in amounts]

    async def merchant_stats(self, merchant_id: str) -> Optional[MerchantStats]:
        cache_key = f"merchant_stats_{merchant_id}"
        cached = self.cache.get(cache_key)
        if cached is not None:
            return cached

        async with self.db.async_session() as session:
            query = select(
                func.count(TransactionRecord.transaction_id).label('count'),
                func.avg(TransactionRecord.amount).label('avg')
            ).where(TransactionRecord.merchant_id == merchant_id)
            result = (await session.execute(query)).one()

        if not result.count:
            return None  # not cached, the first row will show up immediately

        stats = MerchantStats(avg_amount=float(result.avg), transaction_count=int(result.count))
        self.cache.set(cache_key, stats)
        logger.debug("merchant %s stats refreshed: %s", merchant_id, stats)
        return stats
