# risk engine - turns one transaction context into a RiskAnalysis
# validates input, runs the six factor analyzers and aggregates them

import asyncio
import logging
import secrets
from datetime import datetime
from typing import Any, Dict, Iterable, List, Mapping, Optional, Union

from pydantic import ValidationError

from service.capabilities import CapabilitySet
from service.config import settings
from service.errors import BatchLimitError, InvalidTransactionError, format_validation_errors
from service.factors import (
    analyze_amount,
    analyze_behavior,
    analyze_device,
    analyze_location,
    analyze_network,
    analyze_timing,
)
from service.schemas import (
    FACTOR_NAMES,
    BatchItemResult,
    RiskAnalysis,
    RiskFactorResult,
    TransactionContext,
)
from service.scoring import (
    calculate_risk_score,
    collect_flags,
    get_recommendations,
    get_risk_level,
    scenario_factors,
)

logger = logging.getLogger(__name__)

ContextInput = Union[TransactionContext, Mapping[str, Any]]

def generate_transaction_id() -> str:
    return "txn_" + secrets.token_hex(16)

def validate_context(context: ContextInput) -> TransactionContext:
    """
    turn caller input into a validated TransactionContext

    raises:
        InvalidTransactionError: with one detail line per bad field
    """
    if isinstance(context, TransactionContext):
        return context
    if not isinstance(context, Mapping):
        raise InvalidTransactionError(
            "invalid transaction",
            [f"context: expected a mapping, got {type(context).__name__}"]
        )
    try:
        return TransactionContext.model_validate(dict(context))
    except ValidationError as e:
        raise InvalidTransactionError("invalid transaction", format_validation_errors(e.errors())) from e

class RiskEngine:
    """
    stateless scorer - safe to share between concurrent requests

    the only suspension points are capability calls, so analyze() can run
    many transactions in parallel on one event loop
    """

    def __init__(
        self,
        capabilities: Optional[CapabilitySet] = None,
        weights: Optional[Mapping[str, float]] = None
    ):
        """
        args:
            capabilities: default lookups (None = reference set with no history)
            weights: factor weights (None = settings.factor_weights)
        """
        self.capabilities = capabilities or CapabilitySet()
        self.weights = dict(weights) if weights is not None else dict(settings.factor_weights)

    async def analyze(
        self,
        context: ContextInput,
        capabilities: Optional[CapabilitySet] = None
    ) -> RiskAnalysis:
        """
        score one transaction

        args:
            context: TransactionContext or its json-shaped dict
            capabilities: lookups for this call only (default: the engine's)

        returns:
            fresh RiskAnalysis

        raises:
            InvalidTransactionError: before any analysis work is done
        """
        context = validate_context(context)
        if context.timestamp is None:
            context = context.model_copy(update={'timestamp': datetime.now()})

        if context.forced_risk_score is not None:
            if settings.allow_forced_score:
                return self._forced_analysis(context)
            logger.warning("forced risk score ignored for customer %s (disabled)", context.customer_id)

        caps = capabilities or self.capabilities
        results = await asyncio.gather(
            analyze_location(context.location_data, context.customer_id, caps, context.timestamp),
            analyze_device(context.device_fingerprint, context.customer_id, caps),
            analyze_behavior(context.behavior_data),
            analyze_network(context.network_data, context.customer_id, caps),
            analyze_timing(context, caps),
            analyze_amount(context.amount, context.customer_id, context.merchant_id, caps),
        )
        risk_factors = dict(zip(FACTOR_NAMES, results))
        risk_score = calculate_risk_score(risk_factors, self.weights)

        analysis = self._build_analysis(context, risk_factors, risk_score)
        logger.info(
            "analyzed %s: %s (score %.3f, flags=%s)",
            analysis.transaction_id, analysis.risk_level.value, analysis.risk_score,
            ",".join(analysis.flags) or "-"
        )
        return analysis

    def _forced_analysis(self, context: TransactionContext) -> RiskAnalysis:
        """skip the analyzers and use the caller's score with canned factors"""
        risk_factors = scenario_factors(context.scenario)
        analysis = self._build_analysis(context, risk_factors, context.forced_risk_score)
        logger.info(
            "forced score %.3f (scenario=%s) for %s",
            context.forced_risk_score, context.scenario or "normal", analysis.transaction_id
        )
        return analysis

    def _build_analysis(
        self,
        context: TransactionContext,
        risk_factors: Dict[str, RiskFactorResult],
        risk_score: float
    ) -> RiskAnalysis:
        return RiskAnalysis(
            transaction_id=generate_transaction_id(),
            timestamp=context.timestamp,
            merchant_id=context.merchant_id,
            customer_id=context.customer_id,
            amount=context.amount,
            currency=context.currency,
            risk_factors=risk_factors,
            risk_score=risk_score,
            risk_level=get_risk_level(risk_score),
            recommendations=get_recommendations(risk_score, risk_factors),
            flags=collect_flags(risk_factors),
        )

    async def analyze_batch(
        self,
        items: Iterable[ContextInput],
        capabilities: Optional[CapabilitySet] = None
    ) -> List[BatchItemResult]:
        """
        score up to max_batch_size transactions concurrently

        invalid items come back as failed slots instead of aborting the batch

        raises:
            BatchLimitError: empty batch or too many items
        """
        items = list(items)
        if not items:
            raise BatchLimitError("transactions array is required", ["transactions: must not be empty"])
        if len(items) > settings.max_batch_size:
            raise BatchLimitError(
                f"maximum {settings.max_batch_size} transactions per batch",
                [f"transactions: got {len(items)} items"]
            )

        return list(await asyncio.gather(
            *(self._analyze_item(index, item, capabilities) for index, item in enumerate(items))
        ))

    async def _analyze_item(
        self,
        index: int,
        item: ContextInput,
        capabilities: Optional[CapabilitySet]
    ) -> BatchItemResult:
        try:
            analysis = await self.analyze(item, capabilities)
        except InvalidTransactionError as e:
            return BatchItemResult(index=index, success=False, error=e.message, details=e.details)
        except Exception:
            logger.exception("batch item %d failed", index)
            return BatchItemResult(index=index, success=False, error="analysis failed")
        return BatchItemResult(index=index, success=True, analysis=analysis)

# global engine instance
# created lazily so settings can be changed before first use
engine = None

def get_engine() -> RiskEngine:
    """get or create global engine instance"""
    global engine
    if engine is None:
        engine = RiskEngine()
    return engine
