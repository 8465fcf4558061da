"""Composition root: build a ScheduleSyncEngine from configuration."""

from src.schedule_sync.config import SyncConfig, get_config
from src.schedule_sync.engine import ScheduleSyncEngine
from src.schedule_sync.identity import FirebaseIdentityProvider, StaticIdentityProvider
from src.schedule_sync.logging import get_logger, setup_logging
from src.schedule_sync.stores import (
    FirestoreRestStore,
    InMemoryDocumentStore,
    JsonFileDocumentStore,
)
from src.schedule_sync.template import ScheduleTemplate

logger = get_logger(__name__)


def create_engine(
    config: SyncConfig | None = None,
    *,
    template: ScheduleTemplate | None = None,
) -> ScheduleSyncEngine:
    """Wire the identity provider and store selected by ``config.store_backend``.

    Raises:
        ValueError: If the firestore backend is selected without a project id.
    """
    config = config or get_config()
    setup_logging(json_output=config.log_json, log_level=config.log_level)

    if config.store_backend == "firestore":
        identity = FirebaseIdentityProvider(
            config.firebase_api_key,
            config.firebase_auth_token or None,
            timeout=config.request_timeout_seconds,
        )
        store = FirestoreRestStore(
            config.firebase_project_id,
            identity.current_token,
            poll_interval=config.poll_interval_seconds,
            timeout=config.request_timeout_seconds,
        )
    elif config.store_backend == "json":
        identity = StaticIdentityProvider(config.subject_id)
        store = JsonFileDocumentStore(config.data_file)
    else:
        identity = StaticIdentityProvider(config.subject_id)
        store = InMemoryDocumentStore()

    logger.info("engine_created", backend=config.store_backend, app_id=config.app_id)
    return ScheduleSyncEngine(store, identity, config=config, template=template)
