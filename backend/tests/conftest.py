import os
import random
import tempfile

import numpy as np
import pytest

# Must be set before app/routes are imported
os.environ.setdefault("SIM_AUTOSTART", "0")
os.environ.setdefault("BRIDGE_ENABLED", "0")
os.environ.setdefault("NEONROOM_AUDIO_FILE",
                      os.path.join(os.path.dirname(__file__), "no-such-track.wav"))
os.environ.setdefault("PORTFOLIO_DB_PATH", os.path.join(tempfile.mkdtemp(), "portfolio.db"))

from services.audio_analyzer import AudioAnalyzer  # noqa: E402


class FakeSpectrumSource:
    """Stands in for WavSpectrumSource: a fixed spectrum, no file."""

    def __init__(self, spectrum=None):
        self.spectrum = np.zeros(512, dtype=np.uint8) if spectrum is None else spectrum
        self.position = 0.0
        self.opened = False

    def open(self):
        self.opened = True

    def seek(self, seconds):
        self.position = seconds

    def advance(self, delta_time):
        self.position += delta_time
        return True

    def byte_frequency_data(self):
        return self.spectrum

    def reset(self):
        pass

    def close(self):
        self.opened = False


def neon_schema(num_controllers, supplies=2):
    return [
        {"supplies": [{"id": s, "type": f"supply{s}", "canRotate": s == 0}
                      for s in range(supplies)]}
        for _ in range(num_controllers)
    ]


@pytest.fixture
def rng():
    return random.Random(1234)


@pytest.fixture
def spectrum_source():
    return FakeSpectrumSource()


@pytest.fixture
def quiet_analyzer(spectrum_source):
    return AudioAnalyzer(source=spectrum_source)


@pytest.fixture
def db_path(tmp_path, monkeypatch):
    path = str(tmp_path / "portfolio.db")
    monkeypatch.setenv("PORTFOLIO_DB_PATH", path)
    from db import init_db
    init_db()
    return path


@pytest.fixture
def client(db_path):
    from app import app
    app.config["TESTING"] = True
    with app.test_client() as client:
        yield client
