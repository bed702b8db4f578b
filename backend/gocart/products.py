from concurrent.futures import ThreadPoolExecutor
from datetime import datetime
from typing import List, Tuple

from flask import jsonify, request
from werkzeug.datastructures import FileStorage

from .access import SELLER
from .errors import error_response
from .media import PRODUCT_TRANSFORMATION, allowed_image_extension
from .serializers import parse_amount, parse_object_id, serialize_product


def register_product_routes(app, services):
    db = services.db
    access = services.access
    media = services.media

    def collect_images() -> Tuple[List[FileStorage], bool]:
        """Return uploaded images and whether every ``images`` entry is a real file."""
        files = request.files.getlist("images")
        stray_values = [value for value in request.form.getlist("images") if value]
        valid = not stray_values and all(
            isinstance(image, FileStorage)
            and image.filename
            and allowed_image_extension(image.filename, app.config["ALLOWED_IMAGE_EXTENSIONS"])
            for image in files
        )
        return files + stray_values, valid

    def upload_images(images: List[FileStorage]) -> List[str]:
        payloads = [(image.read(), image.filename) for image in images]

        def upload_one(item):
            data, file_name = item
            return media.upload(data, file_name, "products")

        workers = max(1, min(len(payloads), app.config["UPLOAD_WORKERS"]))
        with ThreadPoolExecutor(max_workers=workers) as executor:
            paths = list(executor.map(upload_one, payloads))
        return [media.url(path, PRODUCT_TRANSFORMATION) for path in paths]

    @app.route("/api/store/product", methods=["POST"])
    @access.requires(SELLER)
    def create_product(caller):
        form = request.form
        name = str(form.get("name", "")).strip()
        description = str(form.get("description", "")).strip()
        category = str(form.get("category", "")).strip()
        mrp = parse_amount(form.get("mrp"))
        price = parse_amount(form.get("price"))
        images, images_valid = collect_images()

        if not name or not description or not category or not mrp or not price or not images:
            return error_response(400, "Missing product details")

        if not images_valid:
            return error_response(400, "Invalid image file(s)")

        if mrp <= 0 or price <= 0:
            return error_response(400, "Prices must be greater than zero")

        if price > mrp:
            return error_response(400, "Price cannot be higher than the MRP")

        image_urls = upload_images(images)

        now = datetime.utcnow()
        result = db.products.insert_one(
            {
                "store_id": caller.store_id,
                "name": name,
                "description": description,
                "mrp": mrp,
                "price": price,
                "category": category,
                "images": image_urls,
                "in_stock": True,
                "created_at": now,
                "updated_at": now,
            }
        )
        app.logger.info("Product %s added to store %s", result.inserted_id, caller.store_id)
        return jsonify({"message": "Product added successfully"}), 201

    @app.route("/api/store/product", methods=["GET"])
    @access.requires(SELLER)
    def list_store_products(caller):
        product_documents = db.products.find({"store_id": caller.store_id}).sort("created_at", -1)
        return jsonify({"products": [serialize_product(doc) for doc in product_documents]})

    @app.route("/api/store/stock-toggle", methods=["POST"])
    @access.requires(SELLER)
    def toggle_stock(caller):
        payload = request.get_json(silent=True) or {}
        product_id = payload.get("productId")
        if not product_id:
            return error_response(400, "Missing required field: productId")

        product_object_id = parse_object_id(product_id)
        product_document = None
        if product_object_id is not None:
            product_document = db.products.find_one(
                {"_id": product_object_id, "store_id": caller.store_id}
            )
        if not product_document:
            return error_response(404, "Product not found")

        in_stock = not bool(product_document.get("in_stock", True))
        db.products.update_one(
            {"_id": product_object_id, "store_id": caller.store_id},
            {"$set": {"in_stock": in_stock, "updated_at": datetime.utcnow()}},
        )
        return jsonify({"message": "Product stock updated successfully", "inStock": in_stock})
