import os
import sys
from pathlib import Path

# Configure the runtime before any chirpy import reads the environment
os.environ.setdefault("TEST_MODE", "true")
os.environ.setdefault("USE_MEMORY_STORE", "true")
os.environ.setdefault("PLATFORM", "dev")
os.environ.setdefault("JWT_SECRET", "test-secret-key-for-testing-only-do-not-use-in-production")
# Cheap argon2 parameters keep the suite fast; production costs live in Settings
os.environ.setdefault("ARGON2_MEMORY_COST_KIB", "1024")
os.environ.setdefault("ARGON2_TIME_COST", "1")
os.environ.setdefault("ARGON2_PARALLELISM", "1")

import pytest  # noqa: E402

ROOT = Path(__file__).resolve().parent.parent
if str(ROOT) not in sys.path:
    sys.path.insert(0, str(ROOT))


from chirpy.service.runtime import reset_runtime_for_tests  # noqa: E402


@pytest.fixture(autouse=True)
def reset_runtime_state():
    reset_runtime_for_tests()
    yield
    reset_runtime_for_tests()


class FakeClock:
    """Controllable UTC clock for expiry tests."""

    def __init__(self, start):
        self.now = start

    def __call__(self):
        return self.now

    def advance(self, delta):
        self.now = self.now + delta


@pytest.fixture
def fake_clock():
    from datetime import datetime, timezone

    return FakeClock(datetime(2024, 1, 1, 12, 0, 0, tzinfo=timezone.utc))
