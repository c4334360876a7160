import os
import sys
import tempfile
import threading
import time
from pathlib import Path

# database.py reads the engine configuration at import time
os.environ["HLS_ENGINE_DATA_DIR"] = tempfile.mkdtemp(prefix="hls-engine-test-")

# Add backend directory to Python path FIRST
backend_dir = Path(__file__).parent.parent
sys.path.insert(0, str(backend_dir))

# Now import after path is set
import pytest
from sqlalchemy import create_engine
from sqlalchemy.orm import sessionmaker
from sqlalchemy.pool import StaticPool
from models import Base

from config.engine_config import EngineConfig
from dependencies import build_services
from init_db import init_database
from services.file_store import LocalFileStore
from services.interfaces import IProcessRunner, RunResult

OWNER = "alice"

SUCCESS_LOG = (
    "Input #0, mov,mp4,m4a,3gp,3g2,mj2, from 'input.mp4':\n"
    "  Duration: 00:01:40.00, start: 0.000000, bitrate: 1205 kb/s\n"
    "frame=  750 fps=150 q=28.0 size=N/A time=00:00:25.00 bitrate=N/A speed=5.0x\r"
    "frame= 3000 fps=150 q=-1.0 Lsize=N/A time=00:01:40.00 bitrate=N/A speed=5.0x\n"
    "video:9000kB audio:1500kB subtitle:0kB other streams:0kB global headers:0kB muxing overhead: unknown\n"
)

MP4_BYTES = b"\x00\x00\x00\x18ftypisom\x00\x00\x02\x00isomiso2" + b"\x00" * 4096


class FakeRunner(IProcessRunner):
    """
    Stands in for ffmpeg.

    run_to_log writes log_text to the log and output_content to the command's
    output (the partial manifest or clip); run_to_file writes file_content to
    the destination.
    """

    def __init__(self):
        self.calls = []
        self.returncode = 0
        self.log_text = SUCCESS_LOG
        self.output_content = b"#EXTM3U\n#EXT-X-ENDLIST\n"
        self.write_output = True
        self.file_content = MP4_BYTES
        self.stderr_tail = "muxing overhead: 0.1%"
        self.delay = 0.0
        self._lock = threading.Lock()

    @property
    def spawn_count(self) -> int:
        with self._lock:
            return len(self.calls)

    @staticmethod
    def _output_path(cmd) -> Path:
        if "-master_pl_name" in cmd:
            return Path(cmd[-1]).parent / cmd[cmd.index("-master_pl_name") + 1]
        return Path(cmd[-1])

    def run_to_log(self, cmd, log_path, timeout):
        with self._lock:
            self.calls.append(("log", list(cmd)))
        log_path = Path(log_path)
        log_path.parent.mkdir(parents=True, exist_ok=True)
        with open(log_path, "a", encoding="utf-8") as f:
            f.write(self.log_text)
        if self.write_output:
            self._output_path(cmd).write_bytes(self.output_content)
        return self.returncode

    def run_to_file(self, cmd, dest, log_path, timeout):
        with self._lock:
            self.calls.append(("file", list(cmd)))
        if self.delay:
            time.sleep(self.delay)
        Path(dest).write_bytes(self.file_content)
        return RunResult(self.returncode, len(self.file_content), self.stderr_tail)

    def active_processes(self):
        return []

    @property
    def active_count(self) -> int:
        return 0


@pytest.fixture
def db_session():
    """Create in-memory database for testing"""
    engine = create_engine('sqlite:///:memory:')
    Base.metadata.create_all(engine)
    SessionLocal = sessionmaker(bind=engine)
    session = SessionLocal()
    yield session
    session.close()


@pytest.fixture
def session_factory():
    """In-memory database shared by every session (queue, watcher, API)"""
    engine = create_engine(
        'sqlite://',
        connect_args={'check_same_thread': False},
        poolclass=StaticPool,
    )
    factory = sessionmaker(bind=engine)
    init_database(bind=engine, session_factory=factory)
    yield factory
    engine.dispose()


@pytest.fixture
def config(tmp_path):
    config = EngineConfig(data_dir=tmp_path / "data")
    config.ensure_directories()
    return config


@pytest.fixture
def file_store(config):
    return LocalFileStore(config.storage_root)


@pytest.fixture
def write_video(file_store):
    """Create a file in an owner's store: write_video(path, content=..., mtime=..., owner=...)"""
    def _write(path, content=b"fake video data", mtime=None, owner=OWNER):
        local = file_store.local_path(owner, path)
        local.parent.mkdir(parents=True, exist_ok=True)
        local.write_bytes(content)
        if mtime is not None:
            os.utime(local, (mtime, mtime))
        return file_store.stat(owner, path)
    return _write


@pytest.fixture
def runner():
    return FakeRunner()


@pytest.fixture
def services(config, session_factory, runner, file_store):
    return build_services(config, session_factory, runner=runner, file_store=file_store)


@pytest.fixture
def client(services, session_factory):
    """API client wired to the test services; lifespan (worker pool) does not run"""
    from fastapi.testclient import TestClient
    import main
    from database import get_db
    from dependencies import get_services

    def override_get_db():
        db = session_factory()
        try:
            yield db
        finally:
            db.close()

    main.app.dependency_overrides[get_services] = lambda: services
    main.app.dependency_overrides[get_db] = override_get_db
    yield TestClient(main.app, headers={"X-User-Id": OWNER})
    main.app.dependency_overrides.clear()
