# Overview: Flask API routes for read-only card lookup and history.

from flask import Blueprint, current_app, jsonify, request

from ..services import lookup_service
from ..services.errors import CardError


cards_bp = Blueprint("cards", __name__, url_prefix="/api/cards")


@cards_bp.get("/lookup")
def lookup_route():
    """GET /api/cards/lookup?control_number=MOC-... (never returns passcodes)"""
    try:
        return jsonify({"card": lookup_service.lookup_card(request.args.get("control_number"))}), 200
    except CardError as e:
        return jsonify(e.to_dict()), e.http_status
    except Exception:
        current_app.logger.exception("Card lookup failed")
        return jsonify({"error": "Internal server error"}), 500


@cards_bp.get("/<int:card_id>/transactions")
def transactions_route(card_id: int):
    try:
        entries = lookup_service.card_history(card_id)
        return jsonify({"items": [t.to_dict() for t in entries], "count": len(entries)}), 200
    except CardError as e:
        return jsonify(e.to_dict()), e.http_status
    except Exception:
        current_app.logger.exception("Failed to load card history")
        return jsonify({"error": "Internal server error"}), 500
