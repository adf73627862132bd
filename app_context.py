# app_context.py
from dataclasses import dataclass
from typing import Optional

import requests
from sqlalchemy.orm import sessionmaker

from auth.deps import current_user_from_request
from config import Settings
from db import build_engine, build_session_factory
from models import User
from services.background_template_service import BackgroundTemplateConfig, BackgroundTemplateService
from services.blob_service import BlobStorage
from services.image_processor_service import AIProcessorConfig, ImageProcessorService
from services.inventory_feed_service import InventoryFeedService
from services.store_service import StoreService
from services.vehicle_image_service import VehicleImageService
from services.vehicle_service import VehicleService


@dataclass
class AppContext:
    """Services built once at start-up and handed to every blueprint."""
    settings: Settings
    session_factory: sessionmaker
    storage: BlobStorage
    templates: BackgroundTemplateService
    vehicles: VehicleService
    images: VehicleImageService
    stores: StoreService
    processor: ImageProcessorService
    feed: InventoryFeedService

    def current_user(self, req) -> Optional[User]:
        return current_user_from_request(req, self.session_factory, self.settings.jwt_secret)


def build_context(
    settings: Settings,
    session_factory: Optional[sessionmaker] = None,
    storage: Optional[BlobStorage] = None,
    http: Optional[requests.Session] = None,
) -> AppContext:
    if session_factory is None:
        engine = build_engine(settings.database_url, settings.db_pool_size, settings.db_max_overflow)
        session_factory = build_session_factory(engine)
    if storage is None:
        storage = BlobStorage.from_connection_string(
            settings.blob_conn_string, settings.blob_container, settings.cdn_domain
        )

    templates = BackgroundTemplateService(
        BackgroundTemplateConfig.for_container(settings.background_base_url or storage.base_url)
    )
    vehicles = VehicleService(session_factory, storage)
    images = VehicleImageService(session_factory, storage, settings.max_upload_bytes)
    stores = StoreService(session_factory, storage, settings.max_upload_bytes)
    processor = ImageProcessorService(
        session_factory,
        storage,
        templates,
        AIProcessorConfig(settings.ai_api_key, settings.ai_api_endpoint, settings.ai_timeout),
        vehicles,
        http=http,
    )
    return AppContext(
        settings=settings,
        session_factory=session_factory,
        storage=storage,
        templates=templates,
        vehicles=vehicles,
        images=images,
        stores=stores,
        processor=processor,
        feed=InventoryFeedService(session_factory),
    )
