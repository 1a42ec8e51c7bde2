# Overview: Flask API routes for clinic operations; onboarding, location, activation and redemption.

"""
Clinic routes.

Authentication and sessions live outside this service; callers are trusted
to pass the clinic id they act for.
"""

from flask import Blueprint, current_app, jsonify, request

from ..records import CustomerInfo
from ..services import activation_service, clinic_service, location_service, lookup_service, perk_service
from ..services.errors import CardError, ValidationError
from ..validation import (
    coerce_cents,
    coerce_datetime,
    coerce_int,
    coerce_str,
    require_fields,
    require_payload,
)


clinics_bp = Blueprint("clinics", __name__, url_prefix="/api/clinics")


@clinics_bp.post("")
def create_clinic_route():
    """
    Register a clinic. The temporary password is returned once, here.
    """
    try:
        data = require_payload(request.get_json(silent=True))
        require_fields(data, "clinic_name")
        clinic, credentials = clinic_service.create_clinic(
            coerce_str(data.get("clinic_name"), "clinic_name", max_length=255),
            subscription_plan=coerce_str(data.get("subscription_plan"), "subscription_plan") or "basic",
            owner_name=coerce_str(data.get("owner_name"), "owner_name", max_length=255),
            contact_email=coerce_str(data.get("contact_email"), "contact_email", max_length=255),
            contact_phone=coerce_str(data.get("contact_phone"), "contact_phone", max_length=32),
            address=coerce_str(data.get("address"), "address"),
        )
        return jsonify({"clinic": clinic.to_dict(), "credentials": credentials.to_dict()}), 201
    except CardError as e:
        return jsonify(e.to_dict()), e.http_status
    except Exception:
        current_app.logger.exception("Failed to create clinic")
        return jsonify({"error": "Internal server error"}), 500


@clinics_bp.get("")
def list_clinics_route():
    clinics = clinic_service.list_clinics()
    return jsonify({"items": [c.to_dict() for c in clinics], "count": len(clinics)}), 200


@clinics_bp.post("/verify")
def verify_credentials_route():
    try:
        data = require_payload(request.get_json(silent=True))
        require_fields(data, "clinic_code", "password")
        clinic = clinic_service.verify_clinic_credentials(data.get("clinic_code"), data.get("password"))
        if clinic is None:
            return jsonify({"error": "Invalid clinic code or password"}), 401
        return jsonify({"clinic": clinic.to_dict()}), 200
    except CardError as e:
        return jsonify(e.to_dict()), e.http_status
    except Exception:
        current_app.logger.exception("Failed to verify clinic credentials")
        return jsonify({"error": "Internal server error"}), 500


@clinics_bp.get("/<int:clinic_id>")
def get_clinic_route(clinic_id: int):
    try:
        return jsonify({"clinic": clinic_service.get_clinic(clinic_id).to_dict()}), 200
    except CardError as e:
        return jsonify(e.to_dict()), e.http_status


@clinics_bp.put("/<int:clinic_id>/active")
def set_active_route(clinic_id: int):
    try:
        data = require_payload(request.get_json(silent=True))
        if not isinstance(data.get("is_active"), bool):
            raise ValidationError("is_active must be a boolean")
        clinic = clinic_service.set_clinic_active(clinic_id, data["is_active"])
        return jsonify({"clinic": clinic.to_dict()}), 200
    except CardError as e:
        return jsonify(e.to_dict()), e.http_status
    except Exception:
        current_app.logger.exception("Failed to update clinic")
        return jsonify({"error": "Internal server error"}), 500


@clinics_bp.get("/<int:clinic_id>/dashboard")
def dashboard_route(clinic_id: int):
    try:
        return jsonify(clinic_service.get_clinic_dashboard(clinic_id)), 200
    except CardError as e:
        return jsonify(e.to_dict()), e.http_status
    except Exception:
        current_app.logger.exception("Failed to build clinic dashboard")
        return jsonify({"error": "Internal server error"}), 500


@clinics_bp.get("/<int:clinic_id>/sales")
def sales_route(clinic_id: int):
    try:
        clinic_service.get_clinic(clinic_id)
        sales = lookup_service.clinic_sales(
            clinic_id,
            since=coerce_datetime(request.args.get("since"), "since"),
            limit=coerce_int(request.args.get("limit"), "limit", minimum=1),
        )
        return jsonify({"items": [s.to_dict() for s in sales], "count": len(sales)}), 200
    except CardError as e:
        return jsonify(e.to_dict()), e.http_status
    except Exception:
        current_app.logger.exception("Failed to list clinic sales")
        return jsonify({"error": "Internal server error"}), 500


@clinics_bp.get("/<int:clinic_id>/redemptions")
def redemptions_route(clinic_id: int):
    try:
        clinic_service.get_clinic(clinic_id)
        redemptions = lookup_service.clinic_redemptions(
            clinic_id,
            since=coerce_datetime(request.args.get("since"), "since"),
            limit=coerce_int(request.args.get("limit"), "limit", minimum=1),
        )
        return jsonify({"items": [r.to_dict() for r in redemptions], "count": len(redemptions)}), 200
    except CardError as e:
        return jsonify(e.to_dict()), e.http_status
    except Exception:
        current_app.logger.exception("Failed to list clinic redemptions")
        return jsonify({"error": "Internal server error"}), 500


@clinics_bp.post("/<int:clinic_id>/cards/<int:card_id>/location")
def assign_location_route(clinic_id: int, card_id: int):
    """
    Complete a card's passcode. Body: {"location_code": "CAV"}
    """
    try:
        data = require_payload(request.get_json(silent=True))
        card, passcode = location_service.assign_location(clinic_id, card_id, data.get("location_code"))
        return jsonify({"card": card.to_dict(), "passcode": passcode}), 200
    except CardError as e:
        return jsonify(e.to_dict()), e.http_status
    except Exception:
        current_app.logger.exception("Failed to assign location")
        return jsonify({"error": "Internal server error"}), 500


@clinics_bp.post("/<int:clinic_id>/activations")
def activate_route(clinic_id: int):
    """
    Activate a card for a customer.

    Body: {"control_number", "passcode", "customer_name"?, "customer_phone"?,
           "customer_email"?, "sale_amount_cents"?, "payment_method"?}
    """
    try:
        data = require_payload(request.get_json(silent=True))
        require_fields(data, "control_number", "passcode")
        card, sale = activation_service.activate_card(
            clinic_id,
            data.get("control_number"),
            data.get("passcode"),
            customer=CustomerInfo.from_dict({
                "customer_name": coerce_str(data.get("customer_name"), "customer_name", max_length=255),
                "customer_phone": coerce_str(data.get("customer_phone"), "customer_phone", max_length=32),
                "customer_email": coerce_str(data.get("customer_email"), "customer_email", max_length=255),
            }),
            sale_amount_cents=coerce_cents(data.get("sale_amount_cents"), "sale_amount_cents"),
            payment_method=coerce_str(data.get("payment_method"), "payment_method"),
        )
        return jsonify({"card": card.to_dict(), "sale": sale.to_dict() if sale else None}), 200
    except CardError as e:
        return jsonify(e.to_dict()), e.http_status
    except Exception:
        current_app.logger.exception("Failed to activate card")
        return jsonify({"error": "Internal server error"}), 500


@clinics_bp.post("/<int:clinic_id>/cards/<int:card_id>/redemptions")
def redeem_route(clinic_id: int, card_id: int):
    """
    Redeem one perk.

    Body: {"perk_id" | "perk_type", "service_provided"?, "service_value_cents"?, "notes"?}
    """
    try:
        data = require_payload(request.get_json(silent=True))
        perk_id = coerce_int(data.get("perk_id"), "perk_id", minimum=1)
        if perk_id is None:
            require_fields(data, "perk_type")
            perk_id = perk_service.resolve_perk(card_id, data.get("perk_type")).id

        perk, redemption = perk_service.redeem_perk(
            clinic_id,
            card_id,
            perk_id,
            service_provided=coerce_str(data.get("service_provided"), "service_provided", max_length=255),
            service_value_cents=coerce_cents(data.get("service_value_cents"), "service_value_cents"),
            notes=coerce_str(data.get("notes"), "notes"),
        )
        return jsonify({"perk": perk.to_dict(), "redemption": redemption.to_dict()}), 200
    except CardError as e:
        return jsonify(e.to_dict()), e.http_status
    except Exception:
        current_app.logger.exception("Failed to redeem perk")
        return jsonify({"error": "Internal server error"}), 500
