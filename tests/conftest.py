import pytest

from vision_overlay.config import Settings
from fakes import make_frame as _make_frame


@pytest.fixture
def settings():
    # fast scheduling for tests; every layer the default config enables
    return Settings(INFER_TIMEOUT_S=0.5, IDLE_YIELD_S=0.001)


@pytest.fixture
def make_frame():
    return _make_frame
