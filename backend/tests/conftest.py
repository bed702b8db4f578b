import threading
import time
from datetime import datetime

import mongomock
import pytest
from flask_jwt_extended import create_access_token

from gocart import create_app
from gocart.media import build_transformation_string
from gocart.scheduler import SchedulerError

ADMIN_ID = "user_admin"
SELLER_ID = "user_seller"
BUYER_ID = "user_buyer"


class FakeMedia:
    """Records uploads; files named ``slow*`` take longer to finish."""

    def __init__(self):
        self.uploads = []
        self._lock = threading.Lock()

    def upload(self, data, file_name, folder):
        if file_name.startswith("slow"):
            time.sleep(0.05)
        with self._lock:
            self.uploads.append((folder, file_name, data))
        return f"/{folder}/{file_name}"

    def url(self, path, transformation=None):
        return f"https://cdn.test{path}?tr={build_transformation_string(transformation)}"


class FakeScheduler:
    def __init__(self):
        self.events = []
        self.fail = False

    def send(self, name, data):
        if self.fail:
            raise SchedulerError("scheduler offline")
        self.events.append((name, data))
        return str(len(self.events))


@pytest.fixture
def db():
    return mongomock.MongoClient().gocart


@pytest.fixture
def media():
    return FakeMedia()


@pytest.fixture
def scheduler():
    return FakeScheduler()


@pytest.fixture
def test_config(tmp_path):
    return {
        "TESTING": True,
        "JWT_SECRET_KEY": "test-secret-key-with-enough-length-1234",
        "ADMIN_USER_IDS": {ADMIN_ID},
        "ADMIN_EMAILS": set(),
        "INNGEST_EVENT_KEY": "",
        "UPLOAD_FOLDER": str(tmp_path / "uploads"),
        "ALLOWED_IMAGE_EXTENSIONS": {"png", "jpg", "jpeg", "gif", "webp"},
        "UPLOAD_WORKERS": 4,
    }


@pytest.fixture
def app(test_config, db, media, scheduler):
    return create_app(test_config, db=db, media=media, scheduler=scheduler)


@pytest.fixture
def client(app):
    return app.test_client()


@pytest.fixture
def auth_headers(app):
    def build(user_id):
        with app.app_context():
            token = create_access_token(identity=user_id)
        return {"Authorization": f"Bearer {token}"}

    return build


@pytest.fixture
def make_store(db):
    def build(user_id=SELLER_ID, username="acme", status="approved", is_active=True, **extra):
        document = {
            "user_id": user_id,
            "name": username.title(),
            "username": username,
            "description": "A test store",
            "email": f"{username}@example.com",
            "contact": "555-0100",
            "address": "1 Market Street",
            "logo": "https://cdn.test/logos/logo.png",
            "status": status,
            "is_active": is_active,
            "created_at": datetime.utcnow(),
            "updated_at": datetime.utcnow(),
        }
        document.update(extra)
        return str(db.stores.insert_one(document).inserted_id)

    return build


@pytest.fixture
def make_product(db):
    def build(store_id, name="Widget", in_stock=True, price=80.0, mrp=100.0):
        return str(
            db.products.insert_one(
                {
                    "store_id": store_id,
                    "name": name,
                    "description": f"{name} description",
                    "mrp": mrp,
                    "price": price,
                    "category": "Gadgets",
                    "images": [f"https://cdn.test/products/{name}.png"],
                    "in_stock": in_stock,
                    "created_at": datetime.utcnow(),
                    "updated_at": datetime.utcnow(),
                }
            ).inserted_id
        )

    return build
