"""
Tests for vial state transitions
"""

from datetime import datetime, timedelta

import pytest

from calculator import dose_summary, used_doses
from errors import InvalidInput, InvariantViolation
from vial_lifecycle import (
    activate_from_inventory, activate_vial, best_available_vial, complete_peptide_vial,
    complete_vial, determine_active_vial_status, is_low_stock, log_dose, new_vial,
    reconstitute, record_dose, should_prompt_for_new_vial, sync_inventory_status,
    undo_dose_log, vial_state, vial_status
)
from vial_types import (
    ActiveVialStatus, DataMode, DoseLog, InventoryRecord, Peptide, Vial,
    VialCompletionType, VialState
)

OPENED = datetime(2024, 1, 1, 8, 0)


def make_inventory(**kwargs):
    defaults = dict(id="bpc", name="BPC-157", num_vials=3,
                    concentration_per_vial_mcg=5000, typical_dose_mcg=250)
    defaults.update(kwargs)
    return InventoryRecord(**defaults)


def open_vial(inventory=None, peptide=None, **kwargs):
    return activate_from_inventory(
        inventory or make_inventory(), peptide,
        reconstitution_date=kwargs.pop("reconstitution_date", OPENED),
        bac_water_ml=kwargs.pop("bac_water_ml", 2),
        **kwargs
    )


def log_doses(peptide, count, start=OPENED):
    for i in range(count):
        peptide = record_dose(peptide, 250, date=start + timedelta(days=i + 1)).peptide
    return peptide


def in_use_vial(vial_id="v1", remaining=10, initial=20, cost=None):
    return Vial(id=vial_id, initial_amount_units=initial, remaining_amount_units=remaining,
                is_current=True, is_reconstituted=True, cost=cost)


class TestReconstitute:

    def test_fixes_capacity_and_expiry(self):
        vial = new_vial("v1", total_peptide_in_vial_mcg=5000, date_added=OPENED)
        result = reconstitute(vial, bac_water_ml=2, typical_dose_mcg=250, reconstitution_date=OPENED)

        assert result.completion is None
        assert vial_state(result.vial) is VialState.RECONSTITUTED
        assert result.vial.initial_amount_units == 20
        assert result.vial.remaining_amount_units == 20
        assert result.vial.expiration_date == OPENED + timedelta(days=35)

    def test_rejects_zero_water(self):
        with pytest.raises(InvalidInput):
            reconstitute(new_vial("v1", total_peptide_in_vial_mcg=5000), 0, 250)

    def test_only_from_none(self):
        vial = in_use_vial()
        with pytest.raises(InvariantViolation):
            reconstitute(vial, 2, 250)


class TestActivateFromInventory:

    def test_opens_a_sealed_vial(self):
        transition = open_vial()
        vial = transition.peptide.vials[0]

        assert vial_state(vial) is VialState.IN_USE
        assert vial.is_current and vial.is_active
        assert vial.initial_amount_units == 20
        assert transition.completions == ()
        assert transition.inventory.num_vials == 2
        assert transition.inventory.active_vial_status is ActiveVialStatus.IN_USE
        assert transition.inventory.active_vial_expiry_date == vial.expiration_date
        assert "Stock before activation: 3 vials" in vial.notes

    def test_default_bac_water(self):
        transition = activate_from_inventory(make_inventory(), reconstitution_date=OPENED)
        assert transition.inventory.bac_water_volume_added == 2.0

    def test_no_sealed_vials_left(self):
        with pytest.raises(InvariantViolation):
            open_vial(make_inventory(num_vials=0))

    def test_zero_capacity_is_rejected(self):
        with pytest.raises(InvalidInput):
            open_vial(make_inventory(typical_dose_mcg=None))

    def test_second_vial_needs_retirement(self):
        peptide = open_vial().peptide
        with pytest.raises(InvariantViolation):
            open_vial(make_inventory(num_vials=2), peptide)

    def test_second_vial_retires_the_first(self):
        peptide = log_doses(open_vial().peptide, 5)
        later = OPENED + timedelta(days=10)
        transition = open_vial(make_inventory(num_vials=2), peptide,
                               retire_as=VialCompletionType.EXPIRED, reconstitution_date=later)

        first, second = transition.peptide.vials
        assert vial_state(first) is VialState.EXPIRED
        assert vial_state(second) is VialState.IN_USE
        assert transition.completion.wasted_doses == 15
        assert transition.completion.vial_id == first.id


class TestLogDose:

    def test_five_doses_from_a_fresh_vial(self):
        peptide = log_doses(open_vial().peptide, 5)
        vial = peptide.vials[0]

        assert vial.remaining_amount_units == 15
        assert used_doses(peptide) == 5
        summary = dose_summary(peptide, make_inventory())
        assert summary.is_detailed
        assert summary.used + summary.remaining == summary.total

    def test_last_dose_finishes_the_vial(self):
        peptide = log_doses(open_vial().peptide, 19)
        transition = record_dose(peptide, 250, date=OPENED + timedelta(days=25))
        vial = transition.peptide.vials[0]

        assert vial_state(vial) is VialState.FINISHED
        assert not vial.is_current
        assert vial.remaining_amount_units == 0
        assert "Depleted on" in vial.notes
        assert transition.completion.type is VialCompletionType.FULLY_USED
        assert transition.completion.wasted_doses == 0
        assert determine_active_vial_status(transition.peptide) is ActiveVialStatus.FINISHED

        summary = dose_summary(transition.peptide, make_inventory())
        assert (summary.used, summary.used_mode) == (20, DataMode.DETAILED)
        assert summary.remaining_mode is DataMode.COARSE

    @pytest.mark.parametrize("dosages", [
        [250] * 3,
        [500, 250, 750],
        [250, 1000, 2500, 2500],
        [5000],
        [600, 10],
    ])
    def test_remaining_tracks_logged_units(self, dosages):
        vial = in_use_vial(remaining=20, initial=20)
        consumed = 0
        for i, dosage in enumerate(dosages):
            result = log_dose(vial, DoseLog(id=f"d{i}", vial_id="v1", dosage=dosage,
                                            date=OPENED + timedelta(days=i)), 250)
            vial = result.vial
            consumed += -(-dosage // 250)
            assert vial.remaining_amount_units == max(0, 20 - consumed)
            if vial.remaining_amount_units == 0:
                assert result.completion.type is VialCompletionType.FULLY_USED
                assert result.completion.wasted_doses == 0
                break
            assert result.completion is None

    def test_large_dose_is_clamped_at_zero(self):
        vial = in_use_vial(remaining=1)
        log = DoseLog(id="d1", vial_id="v1", dosage=750, date=OPENED)
        result = log_dose(vial, log, typical_dose=250)
        assert result.vial.remaining_amount_units == 0
        assert result.completion.type is VialCompletionType.FULLY_USED

    def test_double_dose_uses_two_units(self):
        vial = in_use_vial(remaining=10)
        result = log_dose(vial, DoseLog(id="d1", vial_id="v1", dosage=500, date=OPENED), 250)
        assert result.vial.remaining_amount_units == 8

    def test_rejects_non_positive_dosage(self):
        with pytest.raises(InvalidInput):
            log_dose(in_use_vial(), DoseLog(id="d1", vial_id="v1", dosage=0, date=OPENED), 250)

    def test_rejects_sealed_vial(self):
        sealed = new_vial("s1", total_peptide_in_vial_mcg=5000)
        with pytest.raises(InvariantViolation):
            log_dose(sealed, DoseLog(id="d1", vial_id="s1", dosage=250, date=OPENED), 250)

    def test_rejects_reconstituted_vial_that_is_not_current(self):
        spare = reconstitute(new_vial("s1", total_peptide_in_vial_mcg=5000), 2, 250).vial
        with pytest.raises(InvariantViolation) as exc:
            log_dose(spare, DoseLog(id="d1", vial_id="s1", dosage=250, date=OPENED), 250)
        assert exc.value.vial_id == "s1"
        assert spare.remaining_amount_units == 20

    def test_rejects_log_for_another_vial(self):
        with pytest.raises(InvariantViolation):
            log_dose(in_use_vial(), DoseLog(id="d1", vial_id="v2", dosage=250, date=OPENED), 250)

    def test_needs_a_current_vial(self):
        peptide = Peptide(id="bpc", name="BPC-157")
        with pytest.raises(InvariantViolation):
            record_dose(peptide, 250)

    def test_rejects_dose_before_vial_was_added(self):
        peptide = open_vial().peptide
        with pytest.raises(InvariantViolation):
            record_dose(peptide, 250, date=OPENED - timedelta(days=1))


class TestCompleteVial:

    def test_expired_wastes_remaining(self):
        result = complete_vial(in_use_vial(remaining=7), VialCompletionType.EXPIRED, completed_at=OPENED)

        assert vial_state(result.vial) is VialState.EXPIRED
        assert result.completion.remaining_doses == 7
        assert result.completion.wasted_doses == 7
        assert result.vial.discard_reason == "expired"
        assert result.vial.discarded_at == OPENED

    def test_cost_wasted_uses_unit_cost(self):
        result = complete_vial(in_use_vial(remaining=5, initial=20, cost=100.0),
                               VialCompletionType.CONTAMINATED)
        assert result.completion.cost_wasted == pytest.approx(25.0)

    def test_fully_used_with_doses_left_wastes_nothing(self):
        result = complete_vial(in_use_vial(remaining=3), VialCompletionType.FULLY_USED)
        assert result.completion.wasted_doses == 0
        assert result.vial.discard_reason is None

    def test_sealed_vial_cannot_be_completed(self):
        sealed = new_vial("s1", total_peptide_in_vial_mcg=5000)
        for completion_type in (VialCompletionType.EXPIRED, VialCompletionType.FULLY_USED):
            with pytest.raises(InvariantViolation):
                complete_vial(sealed, completion_type)

    def test_reconstituted_spare_can_be_completed(self):
        spare = reconstitute(new_vial("s1", total_peptide_in_vial_mcg=5000), 2, 250).vial
        result = complete_vial(spare, VialCompletionType.DAMAGED)
        assert vial_state(result.vial) is VialState.DAMAGED
        assert result.completion.wasted_doses == 20

    def test_terminal_vial_cannot_complete_again(self):
        done = complete_vial(in_use_vial(), VialCompletionType.LOST).vial
        with pytest.raises(InvariantViolation) as exc:
            complete_vial(done, VialCompletionType.FULLY_USED)
        assert exc.value.vial_id == "v1"

    def test_transfer_then_logging_on_source_fails(self):
        source = in_use_vial("v1", remaining=7)
        target = Vial(id="v2", initial_amount_units=20, remaining_amount_units=20, is_reconstituted=True)
        peptide = Peptide(id="bpc", name="BPC-157", typical_dosage_units=250, vials=(source, target))

        transition = complete_peptide_vial(
            peptide, "v1", VialCompletionType.TRANSFERRED, transferred_to_vial_id="v2"
        )
        assert transition.completion.wasted_doses == 0
        assert transition.completion.transferred_to_vial_id == "v2"
        assert vial_state(transition.peptide.get_vial("v1")) is VialState.TRANSFERRED
        # remaining on the target is untouched
        assert transition.peptide.get_vial("v2").remaining_amount_units == 20

        with pytest.raises(InvariantViolation):
            log_dose(transition.peptide.get_vial("v1"),
                     DoseLog(id="d1", vial_id="v1", dosage=250, date=OPENED), 250)

    def test_transfer_needs_a_valid_target(self):
        vial = in_use_vial()
        with pytest.raises(InvariantViolation):
            complete_vial(vial, VialCompletionType.TRANSFERRED)
        with pytest.raises(InvariantViolation):
            complete_vial(vial, VialCompletionType.TRANSFERRED, transfer_target=vial)
        finished = complete_vial(in_use_vial("v2"), VialCompletionType.FULLY_USED).vial
        with pytest.raises(InvariantViolation):
            complete_vial(vial, VialCompletionType.TRANSFERRED, transfer_target=finished)

    def test_unknown_vial(self):
        with pytest.raises(InvariantViolation):
            complete_peptide_vial(Peptide(id="p", name="P"), "missing", VialCompletionType.LOST)


class TestActivateVial:

    def test_already_in_use_is_unchanged(self):
        peptide = Peptide(id="p", name="P", vials=(in_use_vial(),))
        transition = activate_vial(peptide, "v1")
        assert transition.peptide is peptide
        assert transition.completions == ()

    def test_sealed_vial_cannot_be_activated(self):
        peptide = Peptide(id="p", name="P", vials=(Vial(id="v1"),))
        with pytest.raises(InvariantViolation):
            activate_vial(peptide, "v1")

    def test_retire_as_transfer_targets_new_vial(self):
        spare = Vial(id="v2", initial_amount_units=20, remaining_amount_units=20, is_reconstituted=True)
        peptide = Peptide(id="p", name="P", vials=(in_use_vial(), spare))
        transition = activate_vial(peptide, "v2", retire_as=VialCompletionType.TRANSFERRED)

        assert transition.completion.transferred_to_vial_id == "v2"
        assert [v.id for v in transition.peptide.vials if v.is_current] == ["v2"]


class TestUndoDoseLog:

    def test_restores_units(self):
        peptide = log_doses(open_vial().peptide, 3)
        log_id = peptide.dose_logs[-1].id
        transition = undo_dose_log(peptide, log_id)

        assert transition.peptide.vials[0].remaining_amount_units == 18
        assert len(transition.peptide.dose_logs) == 2
        assert transition.dose_log.id == log_id

    def test_unknown_log(self):
        with pytest.raises(InvariantViolation):
            undo_dose_log(open_vial().peptide, "nope")

    def test_closed_vial_rejects_undo(self):
        peptide = log_doses(open_vial().peptide, 20)
        with pytest.raises(InvariantViolation):
            undo_dose_log(peptide, peptide.dose_logs[0].id)


class TestStatus:

    def test_vial_status(self):
        vial = Vial(id="v1", initial_amount_units=20, remaining_amount_units=4, is_current=True,
                    is_reconstituted=True, expiration_date=OPENED + timedelta(days=10))
        status = vial_status(vial, now=OPENED)
        assert status.can_use
        assert status.days_until_expiry == 10

        expired = vial_status(vial, now=OPENED + timedelta(days=11))
        assert expired.is_expired
        assert not expired.can_use

    def test_best_available_vial(self):
        empty_current = in_use_vial("v1", remaining=0)
        older = Vial(id="v2", remaining_amount_units=5, is_reconstituted=True,
                     date_added=OPENED)
        newer = Vial(id="v3", remaining_amount_units=5, is_reconstituted=True,
                     date_added=OPENED + timedelta(days=1))
        assert best_available_vial([empty_current, older, newer], now=OPENED).id == "v3"
        assert best_available_vial([empty_current], now=OPENED) is None

    def test_should_prompt_for_new_vial(self):
        assert should_prompt_for_new_vial(Peptide(id="p", name="P"))
        peptide = Peptide(id="p", name="P", vials=(in_use_vial(remaining=2),))
        assert should_prompt_for_new_vial(peptide, make_inventory(), now=OPENED, low_threshold=3)
        assert not should_prompt_for_new_vial(peptide, make_inventory(num_vials=0),
                                              now=OPENED, low_threshold=3)

    def test_determine_active_vial_status(self):
        assert determine_active_vial_status(None) is ActiveVialStatus.NONE
        assert determine_active_vial_status(
            Peptide(id="p", name="P", vials=(in_use_vial(),))) is ActiveVialStatus.IN_USE

        discarded = complete_vial(in_use_vial(), VialCompletionType.DAMAGED, completed_at=OPENED).vial
        assert determine_active_vial_status(
            Peptide(id="p", name="P", vials=(discarded,))) is ActiveVialStatus.DISCARDED

    def test_sync_inventory_status(self):
        inventory = make_inventory(active_vial_status=ActiveVialStatus.IN_USE)
        assert sync_inventory_status(inventory, None).active_vial_status is ActiveVialStatus.NONE

        peptide = Peptide(id="p", name="P", vials=(in_use_vial(),))
        assert sync_inventory_status(inventory, peptide) is inventory

    def test_is_low_stock(self):
        assert is_low_stock(make_inventory(num_vials=1, low_stock_threshold=2))
        assert not is_low_stock(make_inventory(num_vials=5, low_stock_threshold=2))
        assert not is_low_stock(make_inventory())
