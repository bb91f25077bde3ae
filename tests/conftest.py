import pytest
import yaml
from pathlib import Path
from typing import List, Optional
from medorg.config.models import AppConfig
from medorg.domain.models import EncodeJob
from medorg.infrastructure.cancellation import CancellationToken
from medorg.infrastructure.event_bus import EventBus

# ============================================================================
# Configuration Fixtures
# ============================================================================

@pytest.fixture
def sample_config():
    """Returns a sample AppConfig object for testing."""
    return AppConfig(
        general={
            "debug": False,
            "video_extensions": [".mp4", ".mkv", ".mov"],
        },
        encoder={
            "cpu_threshold": 95.0,
            "poll_interval_s": 0.01,
        },
        contact_sheet={
            "columns": 3,
            "rows": 2,
            "tile_width": 32,
            "tile_height": 18,
        },
    )

@pytest.fixture
def config_yaml_path(tmp_path):
    """Creates a temporary YAML config file."""
    conf_dir = tmp_path / "conf"
    conf_dir.mkdir()
    conf_file = conf_dir / "medorg.yaml"

    content = {
        'general': {
            'debug': True,
            'video_extensions': ['mp4', 'MOV'],
        },
        'encoder': {
            'cpu_threshold': 80,
            'crf': 20,
            'post_encode_action': 'move_source',
        },
        'contact_sheet': {
            'columns': 4,
            'rows': 3,
        },
        'categories': {
            'mp4': 'clips',
            '.JPG': 'photos',
        },
    }

    with open(conf_file, 'w') as f:
        yaml.dump(content, f)

    return conf_file

# ============================================================================
# EventBus / cancellation Fixtures
# ============================================================================

@pytest.fixture
def event_bus():
    """Returns a fresh EventBus instance."""
    return EventBus()

@pytest.fixture
def token():
    return CancellationToken()

# ============================================================================
# Scheduler fakes
# ============================================================================

class FakeSampler:
    """LoadSampler returning a fixed (or scripted) load."""

    def __init__(self, load: float = 0.0, script: Optional[List[float]] = None):
        self.value = load
        self.script = list(script or [])
        self.calls = 0

    def load(self) -> float:
        self.calls += 1
        if self.script:
            return self.script.pop(0)
        return self.value


class FakeProcess:
    """Stands in for EncodeProcess; finishes after ``polls`` poll() calls."""

    _next_pid = 1000

    def __init__(self, job: EncodeJob, returncode: int = 0, polls: int = 1, write_output: bool = True, stderr: str = ""):
        FakeProcess._next_pid += 1
        self.pid = FakeProcess._next_pid
        self.job = job
        self.returncode = returncode
        self.remaining = polls
        self.write_output = write_output
        self.stderr = stderr
        self.terminated = False
        job.temp_path.write_bytes(b"partial")

    def poll(self):
        if self.terminated:
            return -15
        if self.remaining > 0:
            self.remaining -= 1
            return None
        if self.returncode == 0 and self.write_output:
            self.job.temp_path.write_bytes(b"encoded")
        elif self.returncode == 0:
            self.job.temp_path.unlink(missing_ok=True)
        return self.returncode

    def terminate(self, grace: float = 3.0):
        self.terminated = True

    def error_tail(self) -> str:
        return self.stderr


class FakeRunner:
    """Records launches and tracks the peak number of concurrently running encodes."""

    def __init__(self, returncodes=None, polls: int = 1, launch_error: Optional[Exception] = None, stderr: str = ""):
        self.returncodes = dict(returncodes or {})
        self.polls = polls
        self.launch_error = launch_error
        self.stderr = stderr
        self.started: List[EncodeJob] = []
        self.processes: List[FakeProcess] = []
        self.peak = 0

    def start_encode(self, job: EncodeJob) -> FakeProcess:
        if self.launch_error is not None:
            raise self.launch_error
        self.started.append(job)
        self.peak = max(self.peak, self.running + 1)
        process = FakeProcess(
            job,
            returncode=self.returncodes.get(job.source_path.name, 0),
            polls=self.polls,
            stderr=self.stderr,
        )
        self.processes.append(process)
        return process

    @property
    def running(self) -> int:
        return sum(1 for p in self.processes if p.remaining > 0 and not p.terminated)


@pytest.fixture
def fake_sampler():
    return FakeSampler()

@pytest.fixture
def fake_runner():
    return FakeRunner()

@pytest.fixture
def sampler_factory():
    return FakeSampler

@pytest.fixture
def runner_factory():
    return FakeRunner

@pytest.fixture
def process_factory():
    return FakeProcess

# ============================================================================
# File System Fixtures
# ============================================================================

@pytest.fixture
def media_dir(tmp_path):
    """Creates an empty directory to run workflows on."""
    media = tmp_path / "media"
    media.mkdir()
    return media

@pytest.fixture
def dummy_video_files(media_dir):
    """Creates dummy video files of distinct sizes."""
    files = []
    for i in range(3):
        f = media_dir / f"video{i}.mp4"
        f.write_bytes(b"v" * (100 * (3 - i)))
        files.append(f)

    subdir = media_dir / "subdir"
    subdir.mkdir()
    f = subdir / "subvideo.mkv"
    f.write_bytes(b"s" * 50)
    files.append(f)

    return files


def make_jpeg(path: Path, size=(32, 18), color=(200, 40, 40)) -> Path:
    """Writes a real JPEG with Pillow."""
    from PIL import Image

    path.parent.mkdir(parents=True, exist_ok=True)
    Image.new("RGB", size, color).save(path, format="JPEG")
    return path

@pytest.fixture
def jpeg_factory():
    return make_jpeg

# ============================================================================
# Markers
# ============================================================================

def pytest_configure(config):
    """Register custom markers."""
    config.addinivalue_line(
        "markers", "slow: marks tests as slow"
    )
    config.addinivalue_line(
        "markers", "integration: marks tests as integration tests"
    )
    config.addinivalue_line(
        "markers", "unit: marks tests as unit tests"
    )
