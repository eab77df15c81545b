"""
Objective weight normalization.

Turns an ObjectivesConfig into NormalizedWeights that sum to 1.0. Disabled
objectives get zero weight; enabled ones share the total in proportion to
their raw weights. When a priority order is configured, raw weights are
derived from the order instead (reciprocal of position, with a floor so no
listed objective vanishes).
"""

import logging
from typing import Dict, List, Optional

from book_optimizer.models.schemas import NormalizedWeights, ObjectivesConfig


logger = logging.getLogger(__name__)


MIN_PRIORITY_WEIGHT = 0.05

OBJECTIVE_KEYS = ("continuity", "geography", "team_alignment")


def derive_weights_from_priorities(priority_order: List[str]) -> Dict[str, float]:
    """
    Derive raw objective weights from a priority order.

    Position p (0-based) contributes 1 / (p + 1). The combined
    "geo_and_continuity" entry splits its contribution evenly between
    geography and continuity. Objectives not in the list get the floor
    weight.

    Args:
        priority_order: Objective names, highest priority first.

    Returns:
        Dict[str, float]: Normalized weights keyed by objective name.

    Example:
        >>> derive_weights_from_priorities(["geography", "continuity", "team_alignment"])
        {'continuity': 0.2727..., 'geography': 0.5454..., 'team_alignment': 0.1818...}
    """
    raw = {key: 0.0 for key in OBJECTIVE_KEYS}

    for position, name in enumerate(priority_order):
        weight = 1.0 / (position + 1)
        if name == "geo_and_continuity":
            raw["geography"] += weight / 2
            raw["continuity"] += weight / 2
        elif name in raw:
            raw[name] += weight

    floored = {key: max(MIN_PRIORITY_WEIGHT, value) for key, value in raw.items()}
    total = sum(floored.values())
    return {key: value / total for key, value in floored.items()}


def normalize_weights(config: ObjectivesConfig) -> NormalizedWeights:
    """
    Normalize objective weights over the enabled objectives.

    Args:
        config: Objective toggles and raw weights.

    Returns:
        NormalizedWeights: Weights summing to 1.0.
    """
    if config.priority_order:
        raw = derive_weights_from_priorities(config.priority_order)
    else:
        raw = {
            "continuity": config.continuity_weight,
            "geography": config.geography_weight,
            "team_alignment": config.team_alignment_weight,
        }

    enabled = {
        "continuity": config.continuity_enabled,
        "geography": config.geography_enabled,
        "team_alignment": config.team_alignment_enabled,
    }
    active = [key for key in OBJECTIVE_KEYS if enabled[key]]

    if not active:
        logger.warning("All objectives disabled; falling back to equal weights")
        active = list(OBJECTIVE_KEYS)

    total = sum(raw[key] for key in active)

    weights: Dict[str, float] = {}
    for key in OBJECTIVE_KEYS:
        if key not in active:
            weights[key] = 0.0
        elif total <= 0:
            weights[key] = 1.0 / len(active)
        else:
            weights[key] = raw[key] / total

    return NormalizedWeights(**weights)


def format_weights(weights: Optional[NormalizedWeights]) -> str:
    if weights is None:
        return "n/a"
    return (
        f"C: {weights.continuity * 100:.0f}%, "
        f"G: {weights.geography * 100:.0f}%, "
        f"T: {weights.team_alignment * 100:.0f}%"
    )
