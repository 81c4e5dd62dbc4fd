"""
Vial Tracking API
JSON routes for dose counts, vial transitions and wastage reports
"""

from datetime import datetime
from typing import Any, Dict, Optional

from flask import current_app, jsonify, request

from calculator import format_dose_display
from database import PeptideDB
from errors import InvalidInput, InvariantViolation
from models import get_session
from vial_types import (
    DoseLog, DoseSummary, PeptideTransition, TimeOfDay, Vial, VialCompletion,
    VialCompletionType
)
from vial_lifecycle import vial_state
from wastage import completion_type_display, stats_to_dict


def _iso(value: Optional[datetime]) -> Optional[str]:
    return value.isoformat() if value else None


def _parse_datetime(value: Any) -> Optional[datetime]:
    if value in (None, ""):
        return None
    try:
        parsed = datetime.fromisoformat(str(value).replace("Z", "+00:00"))
    except ValueError:
        raise InvalidInput(f"Invalid date: {value}")
    if parsed.tzinfo is not None:
        # stored dates are naive local time
        parsed = parsed.astimezone().replace(tzinfo=None)
    return parsed


def _parse_float(value: Any, field: str) -> Optional[float]:
    if value in (None, ""):
        return None
    try:
        return float(value)
    except (TypeError, ValueError):
        raise InvalidInput(f"{field} must be a number")


def _parse_completion_type(value: Any, field: str = "type") -> Optional[VialCompletionType]:
    if value in (None, ""):
        return None
    try:
        return VialCompletionType(str(value).lower())
    except ValueError:
        raise InvalidInput(f"Unknown {field}: {value}")


def _parse_time_of_day(value: Any) -> Optional[TimeOfDay]:
    if value in (None, ""):
        return None
    try:
        return TimeOfDay(str(value).upper())
    except ValueError:
        raise InvalidInput(f"Unknown timeOfDay: {value}")


def summary_to_dict(summary: DoseSummary) -> Dict[str, Any]:
    display = format_dose_display(summary.remaining)
    return {
        "totalDoses": summary.total,
        "usedDoses": summary.used,
        "remainingDoses": summary.remaining,
        "usedMode": summary.used_mode.value,
        "remainingMode": summary.remaining_mode.value,
        "percentageRemaining": round(summary.percentage_remaining, 1),
        "display": display.text,
        "isLowStock": display.is_low_stock,
    }


def vial_to_dict(vial: Vial) -> Dict[str, Any]:
    return {
        "id": vial.id,
        "name": vial.name,
        "state": vial_state(vial).value,
        "initialAmountUnits": vial.initial_amount_units,
        "remainingAmountUnits": vial.remaining_amount_units,
        "isCurrent": vial.is_current,
        "isActive": vial.is_active,
        "isReconstituted": vial.is_reconstituted,
        "reconstitutionDate": _iso(vial.reconstitution_date),
        "expirationDate": _iso(vial.expiration_date),
        "discardedAt": _iso(vial.discarded_at),
        "discardReason": vial.discard_reason,
    }


def completion_to_dict(completion: VialCompletion) -> Dict[str, Any]:
    return {
        "vialId": completion.vial_id,
        "type": completion.type.value,
        "label": completion_type_display(completion.type),
        "remainingDoses": completion.remaining_doses,
        "wastedDoses": completion.wasted_doses,
        "reason": completion.reason,
        "transferredToVialId": completion.transferred_to_vial_id,
        "costWasted": completion.cost_wasted,
        "completedAt": _iso(completion.completed_at),
    }


def dose_log_to_dict(log: DoseLog) -> Dict[str, Any]:
    return {
        "id": log.id,
        "vialId": log.vial_id,
        "dosage": log.dosage,
        "unit": log.unit,
        "date": _iso(log.date),
        "timeOfDay": log.time_of_day.value if log.time_of_day else None,
    }


def transition_to_dict(transition: PeptideTransition) -> Dict[str, Any]:
    payload = {
        "success": True,
        "vials": [vial_to_dict(v) for v in transition.peptide.vials],
        "completions": [completion_to_dict(c) for c in transition.completions],
    }
    if transition.dose_log is not None:
        payload["doseLog"] = dose_log_to_dict(transition.dose_log)
    if transition.inventory is not None:
        payload["numVials"] = transition.inventory.num_vials
    return payload


def _not_found(what: str):
    return jsonify({"success": False, "error": f"{what} not found"}), 404


def register_vial_routes(app):
    """
    Register vial tracking API routes with Flask app

    Usage:
        from vial_api import register_vial_routes
        register_vial_routes(app)
    """

    def open_db() -> PeptideDB:
        return PeptideDB(get_session(current_app.config["DATABASE_URL"]))

    @app.errorhandler(InvariantViolation)
    def handle_invariant_violation(e):
        app.logger.warning("Rejected vial transition: %s", e)
        return jsonify({"success": False, "error": str(e), "vialId": e.vial_id}), 409

    @app.errorhandler(InvalidInput)
    def handle_invalid_input(e):
        return jsonify({"success": False, "error": str(e)}), 400

    @app.route('/api/inventory', methods=['GET'])
    def api_list_inventory():
        pdb = open_db()
        try:
            items = []
            for record in pdb.list_inventory():
                items.append({
                    "id": record.id,
                    "name": record.name,
                    "numVials": record.num_vials,
                    "activeVialStatus": record.active_vial_status.value,
                    "doses": summary_to_dict(pdb.dose_summary(record.id)),
                })
            return jsonify({"success": True, "inventory": items})
        finally:
            pdb.session.close()

    @app.route('/api/peptides/<peptide_id>/doses', methods=['GET'])
    def api_dose_summary(peptide_id):
        pdb = open_db()
        try:
            summary = pdb.dose_summary(peptide_id)
            if summary is None:
                return _not_found(f"Peptide {peptide_id}")
            return jsonify({"success": True, **summary_to_dict(summary)})
        finally:
            pdb.session.close()

    @app.route('/api/peptides/<peptide_id>/doses', methods=['POST'])
    def api_log_dose(peptide_id):
        data = request.get_json(silent=True) or {}
        dosage = _parse_float(data.get("dosage"), "dosage")
        if dosage is None:
            raise InvalidInput("dosage is required")

        pdb = open_db()
        try:
            transition = pdb.log_dose(
                peptide_id,
                dosage,
                date=_parse_datetime(data.get("date")),
                time_of_day=_parse_time_of_day(data.get("timeOfDay")),
                unit=data.get("unit"),
                volume_drawn_ml=_parse_float(data.get("volumeDrawnMl"), "volumeDrawnMl"),
            )
            if transition is None:
                return _not_found(f"Peptide {peptide_id}")
            return jsonify(transition_to_dict(transition)), 201
        finally:
            pdb.session.close()

    @app.route('/api/peptides/<peptide_id>/doses/<log_id>', methods=['DELETE'])
    def api_undo_dose(peptide_id, log_id):
        pdb = open_db()
        try:
            transition = pdb.undo_dose_log(peptide_id, log_id)
            if transition is None:
                return _not_found(f"Dose log {log_id} of peptide {peptide_id}")
            return jsonify(transition_to_dict(transition))
        finally:
            pdb.session.close()

    @app.route('/api/peptides/<peptide_id>/vials/activate', methods=['POST'])
    def api_activate_vial(peptide_id):
        data = request.get_json(silent=True) or {}
        pdb = open_db()
        try:
            transition = pdb.activate_vial_from_inventory(
                peptide_id,
                reconstitution_date=_parse_datetime(data.get("reconstitutionDate")),
                bac_water_ml=_parse_float(data.get("bacWaterMl"), "bacWaterMl"),
                retire_as=_parse_completion_type(data.get("retireAs"), "retireAs"),
                reason=data.get("reason"),
                cost=_parse_float(data.get("cost"), "cost"),
            )
            if transition is None:
                return _not_found(f"Peptide {peptide_id}")
            return jsonify(transition_to_dict(transition)), 201
        finally:
            pdb.session.close()

    @app.route('/api/peptides/<peptide_id>/vials/<vial_id>/current', methods=['POST'])
    def api_set_current_vial(peptide_id, vial_id):
        data = request.get_json(silent=True) or {}
        pdb = open_db()
        try:
            transition = pdb.set_current_vial(
                peptide_id,
                vial_id,
                retire_as=_parse_completion_type(data.get("retireAs"), "retireAs"),
                reason=data.get("reason"),
            )
            if transition is None:
                return _not_found(f"Vial {vial_id} of peptide {peptide_id}")
            return jsonify(transition_to_dict(transition))
        finally:
            pdb.session.close()

    @app.route('/api/peptides/<peptide_id>/vials/<vial_id>/complete', methods=['POST'])
    def api_complete_vial(peptide_id, vial_id):
        data = request.get_json(silent=True) or {}
        completion_type = _parse_completion_type(data.get("type"))
        if completion_type is None:
            raise InvalidInput("type is required")

        pdb = open_db()
        try:
            transition = pdb.complete_vial(
                peptide_id,
                vial_id,
                completion_type,
                reason=data.get("reason"),
                transferred_to_vial_id=data.get("transferredToVialId"),
            )
            if transition is None:
                return _not_found(f"Vial {vial_id} of peptide {peptide_id}")
            return jsonify(transition_to_dict(transition))
        finally:
            pdb.session.close()

    @app.route('/api/wastage', methods=['GET'])
    def api_wastage():
        pdb = open_db()
        try:
            stats = pdb.wastage_stats(request.args.get("peptideId") or None)
            return jsonify({"success": True, **stats_to_dict(stats)})
        finally:
            pdb.session.close()
