"""
Tests for wastage aggregation
"""

import itertools
from datetime import datetime

import pytest

from vial_types import VialCompletion, VialCompletionType, VialWastageStats
from wastage import aggregate, completion_type_display, has_wastage, stats_by_peptide, stats_to_dict

WHEN = datetime(2024, 3, 1)


def completion(completion_type, initial=20, wasted=0, cost=None, vial_id=None):
    return VialCompletion(
        type=completion_type,
        remaining_doses=wasted,
        wasted_doses=wasted,
        completed_at=WHEN,
        vial_id=vial_id,
        initial_amount_units=initial,
        cost_wasted=cost,
    )


def test_fully_used_and_contaminated():
    stats = aggregate([
        completion(VialCompletionType.FULLY_USED, initial=20, wasted=0),
        completion(VialCompletionType.CONTAMINATED, initial=10, wasted=10),
    ])

    assert stats.total_vials == 2
    assert stats.total_doses_used == 20
    assert stats.total_doses_wasted == 10
    assert stats.wastage_percentage == pytest.approx(33.333, abs=0.01)
    assert stats.average_vial_utilization == pytest.approx(0.5)
    assert list(stats.waste_by_reason) == [
        VialCompletionType.FULLY_USED, VialCompletionType.CONTAMINATED
    ]
    assert stats.waste_by_reason[VialCompletionType.CONTAMINATED].doses_wasted == 10


def test_empty_input_is_zeroed():
    stats = aggregate([])
    assert stats == VialWastageStats()
    assert stats.wastage_percentage == 0.0
    assert stats.waste_by_reason == {}


def test_result_does_not_depend_on_order():
    completions = [
        completion(VialCompletionType.EXPIRED, initial=16, wasted=7, cost=0.1),
        completion(VialCompletionType.FULLY_USED, initial=20),
        completion(VialCompletionType.LOST, initial=10, wasted=10, cost=0.2),
        completion(VialCompletionType.PARTIAL_WASTE, initial=13, wasted=3, cost=0.3),
    ]
    expected = aggregate(completions)
    for ordering in itertools.permutations(completions):
        assert aggregate(ordering) == expected


def test_percentage_stays_in_range():
    everything_wasted = aggregate([completion(VialCompletionType.LOST, initial=10, wasted=10)])
    nothing_wasted = aggregate([completion(VialCompletionType.FULLY_USED, initial=10)])
    assert everything_wasted.wastage_percentage == pytest.approx(100.0)
    assert nothing_wasted.wastage_percentage == 0.0


def test_zero_capacity_vials_skip_utilization():
    stats = aggregate([
        completion(VialCompletionType.OTHER, initial=0, wasted=0),
        completion(VialCompletionType.FULLY_USED, initial=10),
    ])
    assert stats.average_vial_utilization == pytest.approx(1.0)
    assert stats.wastage_percentage == 0.0


def test_cost_sums_per_reason():
    stats = aggregate([
        completion(VialCompletionType.EXPIRED, wasted=4, cost=10.0),
        completion(VialCompletionType.EXPIRED, wasted=2, cost=5.5),
        completion(VialCompletionType.DAMAGED, wasted=1),
    ])
    assert stats.total_cost_wasted == pytest.approx(15.5)
    expired = stats.waste_by_reason[VialCompletionType.EXPIRED]
    assert (expired.count, expired.doses_wasted) == (2, 6)
    assert expired.cost_wasted == pytest.approx(15.5)
    assert stats.waste_by_reason[VialCompletionType.DAMAGED].cost_wasted == 0.0


def test_stats_by_peptide():
    grouped = stats_by_peptide({
        "bpc": [completion(VialCompletionType.EXPIRED, wasted=5)],
        "tb": [],
    })
    assert grouped["bpc"].total_doses_wasted == 5
    assert grouped["tb"] == VialWastageStats()


def test_stats_to_dict():
    payload = stats_to_dict(aggregate([completion(VialCompletionType.EXPIRED, wasted=5, cost=12.25)]))
    assert payload["totalDosesWasted"] == 5
    assert payload["totalCostWasted"] == 12.25
    assert payload["wasteByReason"]["expired"]["label"] == "Expired"


def test_display_and_wastage_flags():
    assert completion_type_display(VialCompletionType.PARTIAL_WASTE) == "Partially Used"
    assert not has_wastage(VialCompletionType.FULLY_USED)
    assert not has_wastage(VialCompletionType.TRANSFERRED)
    assert has_wastage(VialCompletionType.CONTAMINATED)
