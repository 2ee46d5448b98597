import pytest

from cliniio_guard.core.facility_cache import reset_facility_cache
from cliniio_guard.core.fetch_guard import reset_fetch_guard
from cliniio_guard.core.request_sanitizer import reset_request_sanitizer
from tests.helpers import FakeClock


@pytest.fixture
def clock():
    return FakeClock()


@pytest.fixture(autouse=True)
def reset_guard_globals():
    """Every test starts with no installed guard and empty global caches."""
    yield
    reset_fetch_guard()
    reset_request_sanitizer()
    reset_facility_cache()
