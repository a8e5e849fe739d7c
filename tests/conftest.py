import pytest


@pytest.fixture(autouse=True)
def sleeps(monkeypatch):
    """Record backoff delays instead of sleeping through them."""
    delays = []

    async def fake_sleep(delay):
        delays.append(delay)

    monkeypatch.setattr("raindropctl.api.sleep", fake_sleep)
    return delays


@pytest.fixture(autouse=True)
def no_env_token(monkeypatch):
    monkeypatch.delenv("RAINDROP_TOKEN", raising=False)
