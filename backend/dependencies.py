"""
Dependency injection providers for FastAPI.

The engine's collaborators are plain objects built once per process by
build_services(). Routes receive them through the small getter functions
below, so a test can swap the whole set with
app.dependency_overrides[get_services].
"""

from dataclasses import dataclass
from functools import lru_cache
from typing import Callable, List, Optional

from fastapi import Header, HTTPException
from sqlalchemy.orm import Session

from config.engine_config import EngineConfig, get_engine_config
from constants import HTTPStatus
from database import SessionLocal
from repositories.cache_mount_repository import CacheMountRepository
from services.artifact_server import ActiveStreamRegistry, ArtifactServer, ProxyEvictor
from services.cache_locator import CacheLocator
from services.clip_exporter import ClipExporter
from services.directory_watcher import DirectoryWatcher
from services.file_store import LocalFileStore
from services.generation_service import GenerationService
from services.interfaces import IFileStore, INotificationSink, IProcessRunner
from services.job_queue import DatabaseJobQueue
from services.notification_service import DatabaseNotificationSink
from services.progress_tracker import ProgressStore, ProgressTracker
from services.transcode_executor import TranscodeExecutor
from utils.keyed_lock import KeyedLocks
from workers.ffmpeg_runner import FFmpegRunner


@dataclass
class EngineServices:
    """Everything a request handler or worker needs, wired together"""

    config: EngineConfig
    session_factory: Callable[[], Session]
    file_store: IFileStore
    runner: IProcessRunner
    progress_store: ProgressStore
    tracker: ProgressTracker
    locator: CacheLocator
    stream_registry: ActiveStreamRegistry
    artifact_server: ArtifactServer
    evictor: ProxyEvictor
    queue: DatabaseJobQueue
    notifier: INotificationSink
    executor: TranscodeExecutor
    generation: GenerationService
    watcher: DirectoryWatcher
    clips: ClipExporter


def mount_provider(session_factory: Callable[[], Session]) -> Callable[[str], List[str]]:
    """Cache mounts of an owner, read fresh from the database on every probe"""
    def provider(owner: str) -> List[str]:
        db = session_factory()
        try:
            return CacheMountRepository(db).get_paths(owner)
        finally:
            db.close()
    return provider


def build_services(
    config: EngineConfig,
    session_factory: Callable[[], Session] = SessionLocal,
    runner: Optional[IProcessRunner] = None,
    file_store: Optional[IFileStore] = None,
) -> EngineServices:
    """
    Wire the engine's collaborators.

    Args:
        config: Engine configuration
        session_factory: Session factory for the queue, watcher and notifications
        runner: Process runner (default FFmpegRunner)
        file_store: File store (default LocalFileStore on config.storage_root)

    Returns:
        EngineServices
    """
    file_store = file_store or LocalFileStore(config.storage_root)
    runner = runner or FFmpegRunner()
    progress_store = ProgressStore(config.progress_dir)
    locator = CacheLocator(file_store, config.proxy_dir, mount_provider(session_factory))
    registry = ActiveStreamRegistry()
    evictor = ProxyEvictor(config.proxy_dir, config.proxy_retention_seconds, registry)
    queue = DatabaseJobQueue(session_factory)
    notifier = DatabaseNotificationSink(session_factory)

    executor = TranscodeExecutor(
        config, file_store, locator, progress_store, runner,
        notifier=notifier, evictor=evictor, key_locks=KeyedLocks(),
    )
    generation = GenerationService(file_store, queue, progress_store)
    watcher = DirectoryWatcher(
        session_factory, file_store, locator, queue, generation,
        config.supported_mime_types, notifier=notifier,
    )

    return EngineServices(
        config=config,
        session_factory=session_factory,
        file_store=file_store,
        runner=runner,
        progress_store=progress_store,
        tracker=ProgressTracker(progress_store),
        locator=locator,
        stream_registry=registry,
        artifact_server=ArtifactServer(registry),
        evictor=evictor,
        queue=queue,
        notifier=notifier,
        executor=executor,
        generation=generation,
        watcher=watcher,
        clips=ClipExporter(config, file_store, runner),
    )


@lru_cache(maxsize=1)
def get_services() -> EngineServices:
    """Process-wide services"""
    return build_services(get_engine_config())


def get_current_owner(x_user_id: Optional[str] = Header(default=None)) -> str:
    """
    Owner of the request, taken from the X-User-Id header.

    Authentication happens in front of the engine; the header names the user
    whose files the request works on.
    """
    if not x_user_id or not x_user_id.strip():
        raise HTTPException(status_code=HTTPStatus.UNAUTHORIZED, detail="Missing X-User-Id header")
    owner = x_user_id.strip()
    if '/' in owner or owner in ('.', '..'):
        raise HTTPException(status_code=HTTPStatus.BAD_REQUEST, detail="Invalid user id")
    return owner
