# Overview: Flask API routes for card batches; parses input and returns JSON responses.

from flask import Blueprint, current_app, jsonify, request

from ..services import batch_service
from ..services.errors import CardError
from ..validation import coerce_int, coerce_str, require_fields, require_payload


batches_bp = Blueprint("batches", __name__, url_prefix="/api/batches")


@batches_bp.post("")
def generate_batch_route():
    """
    Mint a batch of cards.

    Body: {"requested_by": str, "count": int, "prefix"?: str}
    The response carries the incomplete passcodes so the cards can be printed.
    """
    try:
        data = require_payload(request.get_json(silent=True))
        require_fields(data, "requested_by", "count")
        batch, cards = batch_service.generate_batch(
            coerce_str(data.get("requested_by"), "requested_by", max_length=128),
            coerce_int(data.get("count"), "count", minimum=1),
            prefix=coerce_str(data.get("prefix"), "prefix"),
        )
        return jsonify({
            "batch": batch.to_dict(),
            "cards": [c.to_dict(include_secrets=True) for c in cards],
        }), 201
    except CardError as e:
        return jsonify(e.to_dict()), e.http_status
    except Exception:
        current_app.logger.exception("Failed to generate batch")
        return jsonify({"error": "Internal server error"}), 500


@batches_bp.get("")
def list_batches_route():
    try:
        limit = coerce_int(request.args.get("limit", "50"), "limit", minimum=1, maximum=500)
        batches = batch_service.list_batches(limit=limit)
        return jsonify({"items": [b.to_dict() for b in batches], "count": len(batches)}), 200
    except CardError as e:
        return jsonify(e.to_dict()), e.http_status
    except Exception:
        current_app.logger.exception("Failed to list batches")
        return jsonify({"error": "Internal server error"}), 500


@batches_bp.get("/<int:batch_id>")
def get_batch_route(batch_id: int):
    try:
        batch = batch_service.get_batch(batch_id)
        payload = batch.to_dict()
        if request.args.get("include_cards") in ("1", "true"):
            payload["cards"] = [c.to_dict() for c in batch_service.list_batch_cards(batch_id)]
        return jsonify({"batch": payload}), 200
    except CardError as e:
        return jsonify(e.to_dict()), e.http_status
    except Exception:
        current_app.logger.exception("Failed to load batch")
        return jsonify({"error": "Internal server error"}), 500


@batches_bp.post("/<int:batch_id>/distribute")
def distribute_route(batch_id: int):
    """
    Hand unassigned cards of a batch to a clinic.

    Body: {"clinic_id": int, "count": int, "performed_by": str}
    """
    try:
        data = require_payload(request.get_json(silent=True))
        require_fields(data, "clinic_id", "count", "performed_by")
        cards = batch_service.distribute_cards(
            batch_id,
            coerce_int(data.get("clinic_id"), "clinic_id", minimum=1),
            coerce_int(data.get("count"), "count", minimum=1),
            performed_by=coerce_str(data.get("performed_by"), "performed_by", max_length=128),
        )
        return jsonify({"cards": [c.to_dict() for c in cards], "count": len(cards)}), 200
    except CardError as e:
        return jsonify(e.to_dict()), e.http_status
    except Exception:
        current_app.logger.exception("Failed to distribute cards")
        return jsonify({"error": "Internal server error"}), 500
