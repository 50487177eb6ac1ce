# analysis explainability - shows which factors drove a score
# ranks factors by weighted contribution and builds a one-line summary

from typing import Dict, List, Mapping, Optional

import numpy as np

from service.config import settings
from service.schemas import RiskAnalysis

def explain_analysis(
    analysis: RiskAnalysis,
    top_n: int = 3,
    weights: Optional[Mapping[str, float]] = None
) -> List[Dict]:
    """
    rank factors by how much they moved the weighted average

    args:
        analysis: result of RiskEngine.analyze
        top_n: how many factors to return
        weights: factor weights (default: settings.factor_weights)

    returns:
        list of dicts with factor, score, weight, contribution, reason, impact
    """
    if weights is None:
        weights = settings.factor_weights

    names = [name for name in analysis.risk_factors if name in weights]
    if not names:
        return []

    scores = np.array([analysis.risk_factors[name].score for name in names])
    factor_weights = np.array([weights[name] for name in names])
    # share of the normalized weighted average each factor accounts for
    contributions = scores * factor_weights / factor_weights.sum()

    explanations = []
    for idx in np.argsort(contributions)[::-1][:top_n]:
        name = names[idx]
        explanations.append({
            'factor': name,
            'score': float(scores[idx]),
            'weight': float(factor_weights[idx]),
            'contribution': round(float(contributions[idx]), 4),
            'reason': analysis.risk_factors[name].reason,
            'impact': _describe_impact(float(scores[idx]))
        })

    return explanations

def _describe_impact(score: float) -> str:
    """describe how risky a single factor looks"""
    if score > 0.7:
        return "very high impact"
    elif score > 0.5:
        return "high impact"
    elif score > 0.3:
        return "moderate impact"
    else:
        return "low impact"

def generate_risk_summary(explanations: List[Dict], risk_score: float) -> str:
    """
    human-readable reason for the score

    args:
        explanations: output of explain_analysis
        risk_score: overall score of the analysis
    """
    if risk_score < settings.medium_risk_threshold:
        return "Transaction appears normal with no significant risk factors"

    reasons = [
        f"{e['factor']}: {e['reason']}"
        for e in explanations
        if e['score'] > 0.3
    ]
    if reasons:
        return " + ".join(reasons)
    return f"Combined signals look risky (score: {risk_score:.2f})"
