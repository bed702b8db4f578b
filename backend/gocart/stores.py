from datetime import datetime
from typing import Dict, List

from flask import jsonify, request
from pymongo.errors import DuplicateKeyError

from .access import ADMIN, AUTHENTICATED, SELLER
from .errors import error_response
from .media import LOGO_TRANSFORMATION, allowed_image_extension
from .serializers import (
    parse_object_id,
    serialize_product,
    serialize_rating,
    serialize_store,
)

STORE_STATUSES = ("pending", "approved", "rejected")
REVIEW_STATUSES = ("approved", "rejected")
STORE_FORM_FIELDS = ("name", "username", "description", "contact", "address")


def register_store_routes(app, services):
    db = services.db
    access = services.access
    media = services.media

    def load_owners(store_documents) -> Dict:
        user_ids = list({doc.get("user_id") for doc in store_documents if doc.get("user_id")})
        if not user_ids:
            return {}
        return {user["_id"]: user for user in db.users.find({"_id": {"$in": user_ids}})}

    def list_stores_by_status(statuses) -> List[Dict]:
        store_documents = list(
            db.stores.find({"status": {"$in": list(statuses)}}).sort("created_at", -1)
        )
        owners = load_owners(store_documents)
        return [
            serialize_store(doc, user_document=owners.get(doc.get("user_id"), {}))
            for doc in store_documents
        ]

    def load_products_with_ratings(store_id: str) -> List[Dict]:
        product_documents = list(db.products.find({"store_id": store_id}).sort("created_at", -1))
        product_ids = [str(doc["_id"]) for doc in product_documents]
        ratings_by_product: Dict[str, List[Dict]] = {product_id: [] for product_id in product_ids}
        if product_ids:
            for rating in db.ratings.find({"product_id": {"$in": product_ids}}):
                ratings_by_product.setdefault(str(rating.get("product_id")), []).append(
                    serialize_rating(rating)
                )
        return [
            serialize_product(doc, ratings=ratings_by_product.get(str(doc["_id"]), []))
            for doc in product_documents
        ]

    def already_registered(store_document):
        return (
            jsonify(
                {
                    "message": "Store already registered",
                    "status": store_document.get("status"),
                }
            ),
            200,
        )

    # --- Seller onboarding ---

    @app.route("/api/store/create", methods=["POST"])
    @access.requires(AUTHENTICATED)
    def create_store(caller):
        form = request.form
        fields = {field: str(form.get(field, "")).strip() for field in STORE_FORM_FIELDS}
        email = str(form.get("email", "")).strip().lower()
        image = request.files.get("image")

        if not all(fields.values()) or not image or not image.filename:
            return error_response(400, "Missing store information")

        existing_store = db.stores.find_one({"user_id": caller.user_id})
        if existing_store:
            return already_registered(existing_store)

        username = fields["username"].lower()
        if db.stores.find_one({"username": username}):
            return error_response(409, "Username is already taken")

        if not allowed_image_extension(image.filename, app.config["ALLOWED_IMAGE_EXTENSIONS"]):
            return error_response(
                400,
                "Invalid image file",
                "Upload PNG, JPG, JPEG, GIF, or WEBP files.",
            )

        logo_path = media.upload(image.read(), image.filename, "logos")
        logo_url = media.url(logo_path, LOGO_TRANSFORMATION)

        now = datetime.utcnow()
        store_document = {
            "user_id": caller.user_id,
            "name": fields["name"],
            "username": username,
            "description": fields["description"],
            "email": email,
            "contact": fields["contact"],
            "address": fields["address"],
            "logo": logo_url,
            "status": "pending",
            "is_active": False,
            "created_at": now,
            "updated_at": now,
        }
        try:
            result = db.stores.insert_one(store_document)
        except DuplicateKeyError:
            # A concurrent request from the same owner won the unique user_id index.
            existing_store = db.stores.find_one({"user_id": caller.user_id})
            if not existing_store:
                raise
            return already_registered(existing_store)

        try:
            db.users.update_one(
                {"_id": caller.user_id},
                {"$set": {"store_id": str(result.inserted_id)}},
                upsert=True,
            )
        except Exception:
            db.stores.delete_one({"_id": result.inserted_id})
            app.logger.error(
                "Could not link store %s to user %s; store removed.",
                result.inserted_id,
                caller.user_id,
            )
            raise

        app.logger.info("Store %s submitted for approval by %s", username, caller.user_id)
        return (
            jsonify({"message": "Store application submitted. Waiting for approval."}),
            201,
        )

    @app.route("/api/store/create", methods=["GET"])
    @access.requires(AUTHENTICATED)
    def get_store_status(caller):
        store_document = db.stores.find_one({"user_id": caller.user_id})
        if store_document:
            return jsonify(
                {"message": "Store registered", "status": store_document.get("status")}
            )
        return jsonify({"message": "Store not registered", "status": "not_registered"})

    @app.route("/api/store/is-seller", methods=["GET"])
    @access.requires(SELLER)
    def is_seller(caller):
        store_document = db.stores.find_one({"_id": parse_object_id(caller.store_id)})
        return jsonify({"isSeller": True, "storeInfo": serialize_store(store_document)})

    @app.route("/api/store/data", methods=["GET"])
    def get_public_store():
        username = str(request.args.get("username") or "").strip().lower()
        if not username:
            return error_response(400, "Missing required query parameter: username")

        store_document = db.stores.find_one({"username": username, "is_active": True})
        if not store_document:
            return error_response(404, "Store not found or is inactive")

        # Out-of-stock products are included; the storefront decides what to show.
        products = load_products_with_ratings(str(store_document["_id"]))
        return jsonify({"store": serialize_store(store_document, products=products)})

    # --- Admin review ---

    @app.route("/api/admin/approve-store", methods=["POST"])
    @access.requires(ADMIN)
    def review_store(caller):
        payload = request.get_json(silent=True) or {}
        status = str(payload.get("status") or "").strip()
        store_id = payload.get("storeId")

        if status not in REVIEW_STATUSES:
            return error_response(
                400, "Invalid or missing 'status'. Must be 'approved' or 'rejected'"
            )
        if not store_id:
            return error_response(400, "Missing storeId")

        store_object_id = parse_object_id(store_id)
        result = None
        if store_object_id is not None:
            result = db.stores.update_one(
                {"_id": store_object_id},
                {
                    "$set": {
                        "status": status,
                        "is_active": status == "approved",
                        "updated_at": datetime.utcnow(),
                    }
                },
            )
        if result is None or result.matched_count == 0:
            return error_response(
                404, "Store not found", "No store matches the provided storeId"
            )

        app.logger.info("Store %s %s by %s", store_id, status, caller.user_id)
        return jsonify({"message": f"Store {status} successfully"})

    @app.route("/api/admin/approve-store", methods=["GET"])
    @access.requires(ADMIN)
    def list_stores_awaiting_review(caller):
        return jsonify({"stores": list_stores_by_status(("pending", "rejected"))})

    @app.route("/api/admin/stores", methods=["GET"])
    @access.requires(ADMIN)
    def list_stores(caller):
        raw_state = str(request.args.get("state") or "approved")
        statuses = [value.strip().lower() for value in raw_state.split(",") if value.strip()]
        invalid = [value for value in statuses if value not in STORE_STATUSES]
        if invalid or not statuses:
            return error_response(
                400,
                "Invalid 'state'",
                "State must be one or more of: pending, approved, rejected",
            )
        return jsonify({"stores": list_stores_by_status(statuses)})

    @app.route("/api/admin/toggle-store", methods=["POST"])
    @access.requires(ADMIN)
    def toggle_store(caller):
        payload = request.get_json(silent=True) or {}
        store_id = payload.get("storeId")
        if not store_id:
            return error_response(400, "Missing storeId")

        store_object_id = parse_object_id(store_id)
        store_document = (
            db.stores.find_one({"_id": store_object_id}) if store_object_id else None
        )
        if not store_document:
            return error_response(404, "Store not found")

        is_active = not bool(store_document.get("is_active"))
        db.stores.update_one(
            {"_id": store_object_id},
            {"$set": {"is_active": is_active, "updated_at": datetime.utcnow()}},
        )
        app.logger.info(
            "Store %s %s by %s",
            store_id,
            "activated" if is_active else "deactivated",
            caller.user_id,
        )
        return jsonify({"message": "Store updated successfully", "isActive": is_active})
