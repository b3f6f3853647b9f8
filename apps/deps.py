"""
Dependencies for the application.

Builds the process-wide container (store, persistence, remote store, sync
orchestrator, report pipeline) owned by the application root, and exposes it
to FastAPI handlers.
"""

import logging
from dataclasses import dataclass
from typing import Any, Optional

from fastapi import Request

from apps.report.pipeline import ReportPipeline
from apps.report.usecases.analyze import AnalyzeReportUsecase
from apps.report.usecases.chat import ChatAboutReportUsecase
from apps.report.usecases.probe import check_connection
from apps.session.errors import ErrorBanner
from apps.session.persistence import LocalPersistence
from apps.session.store import SessionStore
from apps.session.sync import SyncOrchestrator
from apps.settings import BackendSettings
from libs.remote_store.postgrest_client import PostgrestRemoteStore, RemoteStoreConfig
from libs.storage_lib import LocalSlotStorage

logger = logging.getLogger(__name__)


@dataclass
class AppContainer:
    settings: BackendSettings
    store: SessionStore
    errors: ErrorBanner
    persistence: LocalPersistence
    sync: SyncOrchestrator
    pipeline: ReportPipeline


def build_remote_store(settings: BackendSettings) -> Optional[PostgrestRemoteStore]:
    remote = PostgrestRemoteStore(
        RemoteStoreConfig(
            url=settings.supabase_url,
            api_key=settings.supabase_key,
            timeout_seconds=settings.remote_timeout_seconds,
        )
    )
    if not remote.is_enabled():
        logger.warning("SUPABASE_URL / SUPABASE_KEY not set, running without cloud sync")
        return None
    return remote


def build_container(
    settings: BackendSettings,
    remote: Any = None,
    analyzer: Any = None,
    chatter: Any = None,
    connection_probe: Any = None,
) -> AppContainer:
    """
    组装应用根对象。

    remote / analyzer / chatter / connection_probe 可注入替身（测试用），
    未传入时按 settings 构建真实实现。
    """
    store = SessionStore()
    errors = ErrorBanner()

    persistence = LocalPersistence(
        LocalSlotStorage(settings.local_storage_dir, settings.local_storage_quota_bytes)
    )
    persistence.purge_superseded()
    persistence.restore_into(store)
    persistence.attach(store)

    if remote is None:
        remote = build_remote_store(settings)
    sync = SyncOrchestrator(store=store, remote=remote, errors=errors, persistence=persistence)
    sync.attach()

    if analyzer is None:
        analyzer = AnalyzeReportUsecase(
            gemini_model_name=settings.gemini_model_name,
            image_model_name=settings.gemini_image_model_name,
        )
    if chatter is None:
        chatter = ChatAboutReportUsecase(gemini_model_name=settings.gemini_model_name)
    if connection_probe is None:
        probe_client = chatter.client

        async def connection_probe() -> bool:
            return await check_connection(probe_client)

    pipeline = ReportPipeline(
        store=store,
        sync=sync,
        analyzer=analyzer,
        chatter=chatter,
        errors=errors,
        connection_probe=connection_probe,
    )
    return AppContainer(
        settings=settings,
        store=store,
        errors=errors,
        persistence=persistence,
        sync=sync,
        pipeline=pipeline,
    )


def get_container(request: Request) -> AppContainer:
    return request.app.state.container
