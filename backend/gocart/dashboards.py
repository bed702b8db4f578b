import math
from concurrent.futures import ThreadPoolExecutor

from flask import jsonify

from .access import ADMIN, SELLER
from .serializers import serialize_rating


def sum_order_totals(collection, query=None) -> float:
    pipeline = [
        {"$match": query or {}},
        {"$group": {"_id": None, "total": {"$sum": "$total"}}},
    ]
    result = list(collection.aggregate(pipeline))
    if not result:
        return 0.0
    return float(result[0].get("total") or 0)


def round_half_up(value: float) -> int:
    return int(math.floor(value + 0.5))


def register_dashboard_routes(app, services):
    db = services.db
    access = services.access

    @app.route("/api/admin/dashboard", methods=["GET"])
    @access.requires(ADMIN)
    def admin_dashboard(caller):
        with ThreadPoolExecutor(max_workers=4) as executor:
            orders = executor.submit(db.orders.count_documents, {})
            stores = executor.submit(db.stores.count_documents, {})
            products = executor.submit(db.products.count_documents, {})
            revenue = executor.submit(sum_order_totals, db.orders)

            dashboard_data = {
                "orders": orders.result(),
                "stores": stores.result(),
                "products": products.result(),
                "revenue": round(revenue.result(), 2),
            }

        return jsonify({"dashboardData": dashboard_data})

    @app.route("/api/store/dashboard", methods=["GET"])
    @access.requires(SELLER)
    def seller_dashboard(caller):
        orders = list(db.orders.find({"store_id": caller.store_id}, {"total": 1}))
        products = list(db.products.find({"store_id": caller.store_id}))
        products_by_id = {str(product["_id"]): product for product in products}

        rating_documents = []
        if products_by_id:
            rating_documents = list(
                db.ratings.find({"product_id": {"$in": list(products_by_id)}}).sort("created_at", -1)
            )

        user_ids = list({rating.get("user_id") for rating in rating_documents if rating.get("user_id")})
        users = (
            {user["_id"]: user for user in db.users.find({"_id": {"$in": user_ids}})}
            if user_ids
            else {}
        )

        ratings = [
            serialize_rating(
                rating,
                user_document=users.get(rating.get("user_id"), {}),
                product_document=products_by_id.get(str(rating.get("product_id"))),
            )
            for rating in rating_documents
        ]

        total_earnings = sum(float(order.get("total") or 0) for order in orders)
        dashboard_data = {
            "ratings": ratings,
            "totalOrders": len(orders),
            "totalEarnings": round_half_up(total_earnings),
            "totalProducts": len(products),
        }
        return jsonify({"dashboardData": dashboard_data})
