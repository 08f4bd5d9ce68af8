import threading
import pytest
import yaml
from pathlib import Path
from sqlalchemy import create_engine, text
from videoconverter.config.models import DatabaseConfig
from videoconverter.domain.errors import CatalogError, TranscodeError, TransferError
from videoconverter.domain.models import Quality, QualityPropertyMap, Slot, VideoRecord
from videoconverter.infrastructure.event_bus import EventBus

# ============================================================================
# Configuration Fixtures
# ============================================================================

@pytest.fixture
def config_yaml_path(tmp_path):
    """Creates a temporary YAML config file."""
    conf_dir = tmp_path / "conf"
    conf_dir.mkdir()
    conf_file = conf_dir / "videoconverter.yaml"

    content = {
        'general': {
            'temp_dir': str(tmp_path / "tmp"),
            'log_dir': str(tmp_path / "logs"),
            'timeout_hours': 2,
            'remove_original': True,
            'skip_not_full': True,
        },
        'transcode': {
            'threads': 1,
            'preview_duration': '00:01:00',
        },
        'cloud': {
            'login': 'user',
            'password': 'secret',
        },
        'database': {
            'url': 'sqlite://',
            'property_codes': {
                '1080p': 'LINK_1080',
                'preview': 'LINK_PREVIEW',
            },
        },
    }

    with open(conf_file, 'w') as f:
        yaml.dump(content, f)

    return conf_file

# ============================================================================
# EventBus Fixtures
# ============================================================================

@pytest.fixture
def event_bus():
    """Returns a fresh EventBus instance."""
    return EventBus()

# ============================================================================
# Domain helpers
# ============================================================================

ORIGINAL_URL = "https://cache.example.com/synergy/lessons/2021/intro lesson.mp4"


def make_video(video_id=1, present=(), original_url=ORIGINAL_URL, with_property_ids=False):
    """Builds a VideoRecord whose `present` qualities already have links."""
    slots = {}
    for q in Quality.ordered():
        url = f"https://cache.example.com/synergy/v-{q.tag}-{video_id}.mp4" if q in present else None
        property_id = 1000 + video_id * 10 + Quality.ordered().index(q) if (with_property_ids or url) else None
        slots[q] = Slot(property_id=property_id, url=url)
    return VideoRecord(
        id=video_id,
        original=Slot(property_id=500 + video_id, url=original_url),
        slots=slots,
    )


@pytest.fixture
def quality_map():
    return QualityPropertyMap(id_1080=11, id_720=12, id_480=13, id_360=14, id_preview=15)

# ============================================================================
# In-memory collaborators
# ============================================================================

class FakeCatalog:
    """Thread-safe in-memory catalog recording every write."""

    def __init__(self, videos=None, quality_map=None):
        self.videos = list(videos or [])
        self.qmap = quality_map or QualityPropertyMap(id_1080=11, id_720=12, id_480=13, id_360=14, id_preview=15)
        self.updates = []
        self.inserts = []
        self.fail_writes = False
        self._lock = threading.Lock()

    def list_videos(self):
        return [v.model_copy(deep=True) for v in self.videos]

    def update_property(self, property_id, value):
        if self.fail_writes:
            raise CatalogError("write refused")
        with self._lock:
            self.updates.append((property_id, value))

    def insert_property(self, element_id, property_id, value):
        if self.fail_writes:
            raise CatalogError("write refused")
        with self._lock:
            self.inserts.append((element_id, property_id, value))

    def quality_property_map(self):
        return self.qmap


class FakeRemoteStore:
    """In-memory store; uploads of an existing path resolve to the cache URL."""

    cache_prefix = "https://cache.example.com/synergy/"

    def __init__(self, existing=(), fail_download=False, fail_upload=(), fail_delete=False):
        self.objects = {path: b"" for path in existing}
        self.fail_download = fail_download
        self.fail_upload = set(fail_upload)
        self.fail_delete = fail_delete
        self.downloads = []
        self.uploads = []
        self.deleted = []
        self._lock = threading.Lock()

    def download(self, url, fh):
        with self._lock:
            self.downloads.append(url)
        if self.fail_download:
            raise TransferError("GET", url, 404)
        fh.write(b"original video bytes")

    def upload(self, remote_path, fh):
        data = fh.read()
        with self._lock:
            self.uploads.append(remote_path)
            if any(tag in remote_path for tag in self.fail_upload):
                raise TransferError("POST", remote_path, 500)
            if remote_path in self.objects:
                return self.cache_prefix + remote_path
            self.objects[remote_path] = data
        return f"https://files.example.com/download/{remote_path}?token=abc"

    def delete(self, remote_path):
        if self.fail_delete:
            raise TransferError("DELETE", remote_path, 500)
        with self._lock:
            self.deleted.append(remote_path)


class FakeTranscoder:
    """Writes a small file instead of running ffmpeg."""

    def __init__(self, fail=()):
        self.fail = set(fail)
        self.calls = []
        self._lock = threading.Lock()

    def _produce(self, temp_dir, source_path, quality):
        with self._lock:
            self.calls.append(quality)
        if quality in self.fail:
            raise TranscodeError(f"ffmpeg exited with code 1 for {quality.tag}", returncode=1)
        out = Path(temp_dir) / f"v-{quality.tag}-{Path(source_path).name}"
        out.write_bytes(b"derivative " + quality.tag.encode())
        return out

    def convert(self, temp_dir, source_path, quality):
        return self._produce(temp_dir, source_path, quality)

    def make_preview(self, temp_dir, source_path):
        return self._produce(temp_dir, source_path, Quality.PREVIEW)


# ============================================================================
# SQLite catalog (Bitrix iblock schema subset)
# ============================================================================

PROPERTY_CODES = {
    "VIDEO_LINK": 10,
    "VIDEO_LINK_1080p": 11,
    "VIDEO_LINK_720p": 12,
    "VIDEO_LINK_480p": 13,
    "VIDEO_LINK_360p": 14,
    "VIDEO_LINK_PREVIEW": 15,
}


@pytest.fixture
def catalog_engine(tmp_path):
    """SQLite database with one lessons iblock and its link properties."""
    engine = create_engine(f"sqlite:///{tmp_path / 'catalog.db'}")
    with engine.begin() as conn:
        conn.execute(text("CREATE TABLE b_iblock (ID INTEGER PRIMARY KEY, CODE TEXT, IBLOCK_TYPE_ID TEXT)"))
        conn.execute(text("CREATE TABLE b_iblock_property (ID INTEGER PRIMARY KEY, IBLOCK_ID INTEGER, CODE TEXT)"))
        conn.execute(text(
            "CREATE TABLE b_iblock_element_property ("
            "ID INTEGER PRIMARY KEY, IBLOCK_PROPERTY_ID INTEGER, IBLOCK_ELEMENT_ID INTEGER, VALUE TEXT)"
        ))
        conn.execute(text("INSERT INTO b_iblock VALUES (1, 'lessons', 'content'), (2, 'news', 'content')"))
        for code, prop_id in PROPERTY_CODES.items():
            conn.execute(
                text("INSERT INTO b_iblock_property VALUES (:id, 1, :code)"),
                {"id": prop_id, "code": code},
            )
        # Same codes on another iblock must not leak into results
        conn.execute(text("INSERT INTO b_iblock_property VALUES (90, 2, 'VIDEO_LINK')"))
    yield engine
    engine.dispose()


@pytest.fixture
def database_config(tmp_path):
    return DatabaseConfig(url=f"sqlite:///{tmp_path / 'catalog.db'}")


def pytest_configure(config):
    """Register custom markers."""
    config.addinivalue_line(
        "markers", "integration: marks tests as integration tests"
    )
    config.addinivalue_line(
        "markers", "unit: marks tests as unit tests"
    )
