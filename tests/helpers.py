"""Shared test helpers."""

REST_URL = "https://abc.supabase.co/rest/v1/tools"


class FakeClock:
    """Settable wall clock for cache freshness tests."""

    def __init__(self, now: float = 1_000_000.0):
        self.now = now

    def __call__(self) -> float:
        return self.now

    def advance(self, seconds: float):
        self.now += seconds
