import math
import re
from datetime import datetime, timezone
from typing import Dict, List, Optional

from bson import ObjectId
from bson.errors import InvalidId


def isoformat(value) -> Optional[str]:
    return value.isoformat() + "Z" if isinstance(value, datetime) else None


def parse_iso_datetime(value) -> Optional[datetime]:
    """Parse an ISO-8601 timestamp into a naive UTC datetime."""
    if isinstance(value, datetime):
        parsed = value
    else:
        candidate = str(value or "").strip()
        if not candidate:
            return None
        normalized = candidate.replace("Z", "+00:00")
        if re.fullmatch(r"\d{4}-\d{2}-\d{2}", candidate):
            normalized = f"{candidate}T00:00:00"
        try:
            parsed = datetime.fromisoformat(normalized)
        except ValueError:
            return None
    if parsed.tzinfo is not None:
        parsed = parsed.astimezone(timezone.utc).replace(tzinfo=None)
    return parsed


def parse_amount(value) -> Optional[float]:
    try:
        amount = float(str(value).strip())
    except (TypeError, ValueError):
        return None
    if not math.isfinite(amount):
        return None
    return amount


def parse_object_id(value) -> Optional[ObjectId]:
    try:
        return ObjectId(str(value))
    except (InvalidId, TypeError):
        return None


def serialize_user(user_document) -> Optional[Dict]:
    if not user_document:
        return None
    return {
        "id": str(user_document.get("_id")),
        "name": user_document.get("name", "") or "",
        "email": user_document.get("email", "") or "",
        "image": user_document.get("image", "") or "",
    }


def serialize_store(store_document, user_document=None, products=None) -> Dict:
    if not store_document:
        return {}
    serialized = {
        "id": str(store_document.get("_id")),
        "userId": store_document.get("user_id"),
        "name": store_document.get("name", ""),
        "username": store_document.get("username", ""),
        "description": store_document.get("description", ""),
        "email": store_document.get("email", "") or "",
        "contact": store_document.get("contact", ""),
        "address": store_document.get("address", ""),
        "logo": store_document.get("logo", ""),
        "status": store_document.get("status", "pending"),
        "isActive": bool(store_document.get("is_active")),
        "createdAt": isoformat(store_document.get("created_at")),
        "updatedAt": isoformat(store_document.get("updated_at")),
    }
    if user_document is not None:
        serialized["user"] = serialize_user(user_document)
    if products is not None:
        serialized["products"] = products
    return serialized


def serialize_rating(rating_document, user_document=None, product_document=None) -> Dict:
    serialized = {
        "id": str(rating_document.get("_id")),
        "productId": str(rating_document.get("product_id")),
        "userId": rating_document.get("user_id"),
        "rating": rating_document.get("rating"),
        "review": rating_document.get("review", "") or "",
        "createdAt": isoformat(rating_document.get("created_at")),
    }
    if user_document is not None:
        serialized["user"] = serialize_user(user_document)
    if product_document is not None:
        serialized["product"] = serialize_product(product_document)
    return serialized


def serialize_product(product_document, ratings: Optional[List[Dict]] = None) -> Dict:
    serialized = {
        "id": str(product_document.get("_id")),
        "storeId": str(product_document.get("store_id")),
        "name": product_document.get("name", ""),
        "description": product_document.get("description", ""),
        "mrp": product_document.get("mrp"),
        "price": product_document.get("price"),
        "category": product_document.get("category", ""),
        "images": list(product_document.get("images") or []),
        "inStock": bool(product_document.get("in_stock", True)),
        "createdAt": isoformat(product_document.get("created_at")),
        "updatedAt": isoformat(product_document.get("updated_at")),
    }
    if ratings is not None:
        serialized["rating"] = ratings
    return serialized


def serialize_coupon(coupon_document) -> Dict:
    return {
        "code": coupon_document.get("code", ""),
        "description": coupon_document.get("description", "") or "",
        "discount": coupon_document.get("discount"),
        "forNewUser": bool(coupon_document.get("for_new_user")),
        "forMember": bool(coupon_document.get("for_member")),
        "isPublic": bool(coupon_document.get("is_public")),
        "expiresAt": isoformat(coupon_document.get("expires_at")),
        "createdAt": isoformat(coupon_document.get("created_at")),
    }
