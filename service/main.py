# fastapi application - thin http layer over the risk engine
# validates requests, runs the engine with store-backed lookups, records results

import logging
from typing import Any, Dict, List, Optional

import uvicorn
from fastapi import FastAPI, HTTPException
from pydantic import Field

from db.models import Database
from service.config import settings
from service.engine import get_engine
from service.errors import InvalidTransactionError
from service.explainer import explain_analysis, generate_risk_summary
from service.logging_config import setup_logging
from service.schemas import (
    BatchItemResult,
    CamelModel,
    Recommendation,
    RiskAnalysis,
    RiskLevel,
    TransactionContext,
)
from service.sql_store import SqlHistoryStore
from service.store import HistoryStore, InMemoryHistoryStore, store_capabilities

logger = logging.getLogger(__name__)

# pydantic models for request/response validation
class AnalyzeResponse(CamelModel):
    """response from /analyze"""
    success: bool = True
    data: RiskAnalysis
    summary: str = Field(..., description="human-readable explanation")
    top_factors: List[Dict] = Field(..., description="factors that contributed most")

class BatchRequest(CamelModel):
    """request body for /batch-analyze (items are validated one by one)"""
    transactions: List[Dict[str, Any]] = Field(default_factory=list)

class BatchResponse(CamelModel):
    success: bool = True
    data: List[BatchItemResult]

class ScoreView(CamelModel):
    """compact view returned by /score/{transaction_id}"""
    transaction_id: str
    risk_score: float
    risk_level: RiskLevel
    recommendations: List[Recommendation]
    flags: List[str]

class ScoreResponse(CamelModel):
    success: bool = True
    data: ScoreView

class AnalysisResponse(CamelModel):
    success: bool = True
    data: RiskAnalysis

# create fastapi app
app = FastAPI(
    title="Transaction Signal Risk Engine API",
    description="Real-time transaction risk scoring from device, location, behavior and network signals",
    version="1.0.0"
)

# global store instance - in-memory unless DATABASE_URL is set
store: Optional[HistoryStore] = None

def get_store() -> HistoryStore:
    """get or create the process-wide history store"""
    global store
    if store is None:
        if settings.database_url:
            store = SqlHistoryStore(Database(settings.database_url))
        else:
            store = InMemoryHistoryStore()
    return store

@app.on_event("startup")
async def startup():
    """initialize services on app startup"""
    setup_logging(settings.log_level)
    logger.info("🚀 starting transaction signal risk engine api...")

    current = get_store()
    if isinstance(current, SqlHistoryStore):
        await current.db.create_tables()
        logger.info("✅ sql history store ready")
    else:
        logger.info("✅ in-memory history store ready")

@app.on_event("shutdown")
async def shutdown():
    """cleanup on app shutdown"""
    logger.info("👋 shutting down...")
    if isinstance(store, SqlHistoryStore):
        await store.db.close()

def _invalid(e: InvalidTransactionError) -> HTTPException:
    return HTTPException(status_code=400, detail={'error': e.message, 'details': e.details})

@app.get("/", tags=["root"])
async def root():
    """api root - basic info"""
    return {
        "service": "Transaction Signal Risk Engine",
        "version": "1.0.0",
        "endpoints": {
            "analyze": "POST /analyze - score a transaction",
            "batch": "POST /batch-analyze - score up to 100 transactions",
            "score": "GET /score/{transaction_id} - compact result",
            "analysis": "GET /analysis/{transaction_id} - full result",
            "analyses": "GET /analyses - all stored results",
            "health": "/health - health check",
            "docs": "/docs - api documentation"
        }
    }

@app.get("/health", tags=["monitoring"])
async def health_check():
    """health check endpoint"""
    return {
        "status": "healthy",
        "store": type(get_store()).__name__,
        "factors": list(settings.factor_weights),
    }

@app.post("/analyze", response_model=AnalyzeResponse, tags=["risk"])
async def analyze_transaction(context: TransactionContext):
    """
    score a transaction

    - runs the six factor analyzers with store-backed lookups
    - records the result so later transactions see this one in their history
    - returns the analysis plus a short explanation

    example:
        curl -X POST http://localhost:8000/analyze \\
             -H "Content-Type: application/json" \\
             -d '{"amount": 99.99, "customerId": "c1", "merchantId": "m1"}'
    """
    current = get_store()
    try:
        analysis = await get_engine().analyze(context, store_capabilities(current))
        await current.record(analysis, context)
    except InvalidTransactionError as e:
        raise _invalid(e)
    except Exception:
        logger.exception("analysis failed for customer %s", context.customer_id)
        raise HTTPException(status_code=500, detail={'error': "analysis failed"})

    explanations = explain_analysis(analysis)
    return AnalyzeResponse(
        data=analysis,
        summary=generate_risk_summary(explanations, analysis.risk_score),
        top_factors=explanations
    )

@app.post("/batch-analyze", response_model=BatchResponse, tags=["risk"])
async def batch_analyze(request: BatchRequest):
    """score up to max_batch_size transactions; bad items come back as failed slots"""
    current = get_store()
    try:
        results = await get_engine().analyze_batch(request.transactions, store_capabilities(current))
    except InvalidTransactionError as e:
        raise _invalid(e)
    except Exception:
        logger.exception("batch analysis failed")
        raise HTTPException(status_code=500, detail={'error': "batch analysis failed"})

    # a storage failure only fails its own slot
    data = [await _record_slot(current, item, request.transactions[item.index]) for item in results]
    return BatchResponse(data=data)

async def _record_slot(current: HistoryStore, item: BatchItemResult, raw: Dict[str, Any]) -> BatchItemResult:
    if not item.success:
        return item
    try:
        await current.record(item.analysis, TransactionContext.model_validate(raw))
    except Exception:
        logger.exception("failed to record batch item %d (%s)", item.index, item.analysis.transaction_id)
        return BatchItemResult(index=item.index, success=False, error="analysis could not be stored")
    return item

async def _require_analysis(transaction_id: str) -> RiskAnalysis:
    analysis = await get_store().get_analysis(transaction_id)
    if analysis is None:
        raise HTTPException(status_code=404, detail={'error': "transaction not found"})
    return analysis

@app.get("/score/{transaction_id}", response_model=ScoreResponse, tags=["risk"])
async def get_score(transaction_id: str):
    analysis = await _require_analysis(transaction_id)
    return ScoreResponse(data=ScoreView(
        transaction_id=analysis.transaction_id,
        risk_score=analysis.risk_score,
        risk_level=analysis.risk_level,
        recommendations=analysis.recommendations,
        flags=analysis.flags
    ))

@app.get("/analysis/{transaction_id}", response_model=AnalysisResponse, tags=["risk"])
async def get_full_analysis(transaction_id: str):
    return AnalysisResponse(data=await _require_analysis(transaction_id))

@app.get("/analyses", tags=["risk"])
async def list_analyses():
    """every stored analysis keyed by transaction id"""
    analyses = await get_store().list_analyses()
    return {
        "success": True,
        "data": {
            "transactions": {
                a.transaction_id: a.model_dump(mode='json', by_alias=True) for a in analyses
            },
            "count": len(analyses)
        }
    }

if __name__ == "__main__":
    # run with: python -m service.main
    uvicorn.run(
        "service.main:app",
        host=settings.api_host,
        port=settings.api_port,
        reload=True  # auto-reload on code changes
    )
