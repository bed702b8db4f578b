"""Caller identification and role checks shared by every route module.

The identity provider issues the bearer tokens; this module only reads the
verified identity out of them and decides what the caller may do.
"""

from collections import namedtuple
from functools import wraps
from typing import Iterable, Optional, Tuple

from flask_jwt_extended import get_jwt_identity, verify_jwt_in_request

from .errors import error_response

AUTHENTICATED = "authenticated"
ADMIN = "admin"
SELLER = "seller"

CallerContext = namedtuple("CallerContext", ["user_id", "store_id"])


def normalize_email(value: Optional[str]) -> str:
    return str(value or "").strip().lower()


def parse_csv_setting(value) -> set:
    if not value:
        return set()
    if isinstance(value, (list, tuple, set)):
        items = value
    else:
        items = str(value).split(",")
    return {str(item).strip() for item in items if str(item).strip()}


class AccessControl:
    def __init__(self, db, admin_user_ids: Iterable[str] = (), admin_emails: Iterable[str] = ()):
        self.db = db
        self.admin_user_ids = {str(user_id) for user_id in admin_user_ids}
        self.admin_emails = {normalize_email(email) for email in admin_emails}

    def is_admin(self, caller_id: str) -> bool:
        if not caller_id:
            return False
        if str(caller_id) in self.admin_user_ids:
            return True

        user_document = self.db.users.find_one({"_id": caller_id})
        if not user_document:
            return False
        if normalize_email(user_document.get("email")) in self.admin_emails:
            return True
        return str(user_document.get("role", "")).strip().lower() == "admin"

    def resolve_seller_store(self, caller_id: str, require_approved: bool = True) -> Optional[str]:
        if not caller_id:
            return None
        store_document = self.db.stores.find_one({"user_id": caller_id})
        if not store_document:
            return None
        if require_approved and store_document.get("status") != "approved":
            return None
        return str(store_document["_id"])

    def authorize(self, role: str) -> Tuple[Optional[CallerContext], Optional[tuple]]:
        verify_jwt_in_request(optional=True)
        caller_id = get_jwt_identity()
        if not caller_id:
            return None, error_response(401, "Unauthorized", "User is not authenticated")

        caller_id = str(caller_id)
        if role == ADMIN and not self.is_admin(caller_id):
            return None, error_response(
                403, "User is not authorized to access this resource"
            )

        store_id = None
        if role == SELLER:
            store_id = self.resolve_seller_store(caller_id)
            if not store_id:
                return None, error_response(403, "Not authorized")

        return CallerContext(caller_id, store_id), None

    def requires(self, role: str):
        """Run the role check before the view and hand it the caller context."""

        def decorator(view):
            @wraps(view)
            def guarded(*args, **kwargs):
                caller, denied = self.authorize(role)
                if denied:
                    return denied
                return view(caller, *args, **kwargs)

            return guarded

        return decorator
