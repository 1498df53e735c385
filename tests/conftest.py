import pytest

from safelink_sandbox.models import NavigationSignal, NetworkSignal, SignalResult
from safelink_sandbox.scoring import aggregate


@pytest.fixture
def make_heuristic():
    def _make(domain=0, content=0, network=0, navigation=0, url="https://example.com/"):
        return aggregate(
            url,
            domain=SignalResult(score=domain),
            content=SignalResult(score=content),
            network=NetworkSignal(score=network),
            navigation=NavigationSignal(score=navigation),
            analysis_time_ms=5,
        )

    return _make
