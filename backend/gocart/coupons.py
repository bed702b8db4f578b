from datetime import datetime

from flask import jsonify, request

from .access import ADMIN
from .errors import CollaboratorError, error_response
from .scheduler import COUPON_EXPIRED_EVENT
from .serializers import parse_amount, parse_iso_datetime, serialize_coupon


def parse_flag(value) -> bool:
    if isinstance(value, str):
        return value.strip().lower() in {"1", "true", "yes", "on"}
    return bool(value)


def register_coupon_routes(app, services):
    db = services.db
    access = services.access
    scheduler = services.scheduler

    @app.route("/api/admin/coupon", methods=["POST"])
    @access.requires(ADMIN)
    def create_coupon(caller):
        payload = request.get_json(silent=True) or {}
        coupon = payload.get("coupon")
        if not isinstance(coupon, dict):
            return error_response(400, "Missing coupon details")

        code = str(coupon.get("code") or "").strip().upper()
        if not code:
            return error_response(400, "Coupon code is required")

        discount = parse_amount(coupon.get("discount"))
        if discount is None or discount <= 0 or discount > 100:
            return error_response(400, "Discount must be a percentage between 0 and 100")

        expires_at = parse_iso_datetime(coupon.get("expiresAt"))
        if expires_at is None:
            return error_response(400, "expiresAt must be an ISO-8601 timestamp")

        if db.coupons.find_one({"code": code}):
            return error_response(409, "Coupon code already exists")

        coupon_document = {
            "code": code,
            "description": str(coupon.get("description") or "").strip(),
            "discount": discount,
            "for_new_user": parse_flag(coupon.get("forNewUser")),
            "for_member": parse_flag(coupon.get("forMember")),
            "is_public": parse_flag(coupon.get("isPublic")),
            "expires_at": expires_at,
            "created_at": datetime.utcnow(),
        }
        result = db.coupons.insert_one(coupon_document)

        try:
            scheduler.send(COUPON_EXPIRED_EVENT, {"code": code, "expires_at": expires_at})
        except CollaboratorError:
            db.coupons.delete_one({"_id": result.inserted_id})
            raise

        app.logger.info("Coupon %s created by %s, expires %s", code, caller.user_id, expires_at)
        return jsonify({"message": "Coupon added successfully"}), 201

    @app.route("/api/admin/coupon", methods=["DELETE"])
    @access.requires(ADMIN)
    def delete_coupon(caller):
        code = str(request.args.get("code") or "").strip().upper()
        if not code:
            return error_response(400, "Coupon code is required")

        result = db.coupons.delete_one({"code": code})
        if result.deleted_count == 0:
            return error_response(404, "Coupon not found")

        app.logger.info("Coupon %s deleted by %s", code, caller.user_id)
        return jsonify({"message": "Coupon deleted successfully"})

    @app.route("/api/admin/coupon", methods=["GET"])
    @access.requires(ADMIN)
    def list_coupons(caller):
        coupon_documents = db.coupons.find().sort("created_at", -1)
        return jsonify({"coupons": [serialize_coupon(doc) for doc in coupon_documents]})
