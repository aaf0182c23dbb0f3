import pytest

from app.providers.factory import get_provider, reset_provider_cache
from app.providers.http_provider import HttpTransferProvider
from app.providers.mock import MockTransferProvider
from settings import Settings


def settings_with(**overrides) -> Settings:
    return Settings(_env_file=None, **overrides)


@pytest.fixture(autouse=True)
def _fresh_cache():
    reset_provider_cache()
    yield
    reset_provider_cache()


def test_mock_provider_is_cached():
    s = settings_with(PAYOUT_PROVIDER="mock")
    first = get_provider(s)
    assert isinstance(first, MockTransferProvider)
    assert get_provider(s) is first


def test_http_provider_from_settings():
    s = settings_with(
        PAYOUT_PROVIDER="http",
        PAYOUT_PROVIDER_BASE_URL="https://payments.test",
        PAYOUT_PROVIDER_API_KEY="sk_test_123",
    )
    assert isinstance(get_provider(s), HttpTransferProvider)


def test_reset_drops_cached_instance():
    s = settings_with(PAYOUT_PROVIDER="mock")
    first = get_provider(s)
    reset_provider_cache()
    assert get_provider(s) is not first
