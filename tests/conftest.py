import uuid
from unittest.mock import MagicMock

import pytest
from sqlalchemy import create_engine
from sqlalchemy.pool import StaticPool

from app_context import build_context
from auth.utils import hash_password
from config import Settings
from db import build_session_factory
from models import Base, Store, Vehicle, VehicleImage, User, UserRole, ImageType
from services.blob_service import BlobStorage

from helpers import BLOB_BASE, JWT_SECRET, bearer

@pytest.fixture
def session_factory():
    engine = create_engine(
        "sqlite://",
        connect_args={"check_same_thread": False},
        poolclass=StaticPool,
    )
    Base.metadata.create_all(engine)
    yield build_session_factory(engine)
    engine.dispose()

@pytest.fixture
def container():
    return MagicMock()

@pytest.fixture
def storage(container):
    return BlobStorage(container, BLOB_BASE)

@pytest.fixture
def http():
    return MagicMock()

@pytest.fixture
def settings():
    return Settings(
        database_url="sqlite://",
        blob_conn_string="UseDevelopmentStorage=true",
        ai_api_key="test-key",
        ai_api_endpoint="https://ai.test/composite",
        jwt_secret=JWT_SECRET,
    )

@pytest.fixture
def ctx(settings, session_factory, storage, http):
    return build_context(settings, session_factory=session_factory, storage=storage, http=http)

@pytest.fixture
def store(session_factory):
    with session_factory() as db:
        s = Store(name="Downtown Motors", address="1 Main St", brand_logos=["acme"])
        db.add(s)
        db.commit()
        return s

@pytest.fixture
def vehicle(session_factory, store):
    with session_factory() as db:
        v = Vehicle(store_id=store.id, stock_number="STK-1001", vin="1HGCM82633A004352")
        db.add(v)
        db.commit()
        return v

@pytest.fixture
def add_image(session_factory):
    def _add(vehicle_id, image_type: ImageType, sort_order: int = 0, **fields) -> VehicleImage:
        fields.setdefault("original_url", f"{BLOB_BASE}/raw/{uuid.uuid4()}.jpg")
        with session_factory() as db:
            img = VehicleImage(vehicle_id=vehicle_id, image_type=image_type, sort_order=sort_order, **fields)
            db.add(img)
            db.commit()
            return img
    return _add

@pytest.fixture
def make_user(session_factory):
    def _make(role: UserRole = UserRole.PHOTOGRAPHER, email: str = "photo@example.com",
              password: str = "Secret123!") -> User:
        with session_factory() as db:
            u = User(email=email, name="Pat", password_hash=hash_password(password), role=role)
            db.add(u)
            db.commit()
            return u
    return _make

@pytest.fixture
def auth_header(make_user):
    return bearer(make_user())
