"""
Vial Wastage Statistics
Fold vial completions into wastage totals, per reason and overall
"""

import logging
import math
from typing import Dict, Iterable, List, Mapping

from vial_types import VialCompletion, VialCompletionType, VialWastageStats, WasteBucket

logger = logging.getLogger(__name__)


COMPLETION_TYPE_DISPLAY: Dict[VialCompletionType, str] = {
    VialCompletionType.FULLY_USED: "Fully Used",
    VialCompletionType.PARTIAL_WASTE: "Partially Used",
    VialCompletionType.EXPIRED: "Expired",
    VialCompletionType.TRANSFERRED: "Transferred",
    VialCompletionType.CONTAMINATED: "Contaminated",
    VialCompletionType.LOST: "Lost",
    VialCompletionType.DAMAGED: "Damaged",
    VialCompletionType.OTHER: "Other",
}


def completion_type_display(completion_type: VialCompletionType) -> str:
    return COMPLETION_TYPE_DISPLAY.get(completion_type, "Unknown")


def has_wastage(completion_type: VialCompletionType) -> bool:
    """Whether completing a vial this way wastes its remaining doses"""
    return completion_type not in (VialCompletionType.FULLY_USED, VialCompletionType.TRANSFERRED)


def aggregate(completions: Iterable[VialCompletion]) -> VialWastageStats:
    """
    Summarise a set of completions

    The result does not depend on the order of `completions`: float totals are
    summed with math.fsum and reasons are reported in taxonomy order. An empty
    input gives zeroed stats.
    """
    completions: List[VialCompletion] = list(completions)
    if not completions:
        return VialWastageStats()

    used_per_vial = [max(0, c.initial_amount_units - c.wasted_doses) for c in completions]
    total_used = sum(used_per_vial)
    total_wasted = sum(c.wasted_doses for c in completions)
    total_cost = math.fsum(c.cost_wasted or 0.0 for c in completions)

    denominator = total_used + total_wasted
    wastage_percentage = 100.0 * total_wasted / denominator if denominator else 0.0

    utilizations = [
        used / c.initial_amount_units
        for c, used in zip(completions, used_per_vial)
        if c.initial_amount_units > 0
    ]
    average_utilization = math.fsum(utilizations) / len(utilizations) if utilizations else 0.0

    waste_by_reason: Dict[VialCompletionType, WasteBucket] = {}
    for completion_type in VialCompletionType:
        matching = [c for c in completions if c.type is completion_type]
        if not matching:
            continue
        waste_by_reason[completion_type] = WasteBucket(
            count=len(matching),
            doses_wasted=sum(c.wasted_doses for c in matching),
            cost_wasted=math.fsum(c.cost_wasted or 0.0 for c in matching),
        )

    stats = VialWastageStats(
        total_vials=len(completions),
        total_doses_used=total_used,
        total_doses_wasted=total_wasted,
        total_cost_wasted=total_cost,
        wastage_percentage=wastage_percentage,
        average_vial_utilization=average_utilization,
        waste_by_reason=waste_by_reason,
    )
    logger.debug("Aggregated %d completions: %.2f%% wasted", stats.total_vials, wastage_percentage)
    return stats


def stats_by_peptide(completions: Mapping[str, Iterable[VialCompletion]]) -> Dict[str, VialWastageStats]:
    """Aggregate each peptide's completions separately"""
    return {peptide_id: aggregate(items) for peptide_id, items in completions.items()}


def stats_to_dict(stats: VialWastageStats) -> Dict[str, object]:
    """JSON-friendly form of the stats"""
    return {
        "totalVials": stats.total_vials,
        "totalDosesUsed": stats.total_doses_used,
        "totalDosesWasted": stats.total_doses_wasted,
        "totalCostWasted": round(stats.total_cost_wasted, 2),
        "wastagePercentage": round(stats.wastage_percentage, 2),
        "averageVialUtilization": round(stats.average_vial_utilization, 4),
        "wasteByReason": {
            completion_type.value: {
                "label": completion_type_display(completion_type),
                "count": bucket.count,
                "dosesWasted": bucket.doses_wasted,
                "costWasted": round(bucket.cost_wasted, 2),
            }
            for completion_type, bucket in stats.waste_by_reason.items()
        },
    }
