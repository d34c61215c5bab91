import pytest

from hlsgrab.transport import HttpTransport


@pytest.fixture
def transport():
    with HttpTransport(timeout=5) as transport:
        yield transport
