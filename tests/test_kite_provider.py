from decimal import Decimal

import pytest

from circuitwatch.broker.interface import InstrumentCatalog, QuoteProvider, SessionProvider
from circuitwatch.broker.kite.auth import KiteSession
from circuitwatch.broker.kite.rate_limit import RateLimiter
from circuitwatch.broker.kite_provider import KiteProvider
from circuitwatch.config.settings import TrackerSettings
from circuitwatch.errors import AuthenticationError, CatalogError
from tests._helpers import catalog_row, kite_quote_row


class TokenException(Exception):
    pass


class FakeKite:
    def __init__(self, api_key, access_token):
        self.api_key = api_key
        self.access_token = access_token
        self.instrument_calls = []
        self.quote_error = None

    def instruments(self, segment):
        self.instrument_calls.append(segment)
        return [catalog_row(1, exchange=segment)]

    def quote(self, keys):
        if self.quote_error:
            raise self.quote_error
        return {k: kite_quote_row() for k in keys}

    def ltp(self, keys):
        return {k: {"last_price": 100.0} for k in keys}


@pytest.fixture(autouse=True)
def _no_backoff(monkeypatch):
    monkeypatch.setenv("CW_RETRY_BACKOFF", "0")


def _session(**env):
    built = []

    def factory(api_key, token):
        client = FakeKite(api_key, token)
        built.append(client)
        return client

    env = {"KITE_API_KEY": "key", "KITE_ACCESS_TOKEN": "tok", **env}
    return KiteSession.from_env(env, client_factory=factory), built


def _provider(session):
    return KiteProvider(session, quote_timeout=1.0, catalog_timeout=1.0,
                        rate_limiter=RateLimiter(qps=1000.0))


def test_session_requires_both_credentials():
    session, built = _session(KITE_ACCESS_TOKEN="  ")
    assert not session.has_credential()
    with pytest.raises(RuntimeError, match="kite_credentials_missing"):
        session.client()
    assert built == []


def test_session_builds_client_once():
    session, built = _session()
    assert session.has_credential()
    assert session.client() is session.client()
    assert len(built) == 1
    assert (built[0].api_key, built[0].access_token) == ("key", "tok")


def test_provider_satisfies_protocols():
    provider = _provider(_session()[0])
    assert isinstance(provider, InstrumentCatalog)
    assert isinstance(provider, QuoteProvider)
    assert isinstance(provider, SessionProvider)


def test_instruments_and_quotes_via_client():
    session, built = _session()
    provider = _provider(session)
    assert provider.fetch_instruments("NFO")[0]["instrument_token"] == 1
    provider.fetch_instruments("NFO")
    assert built[0].instrument_calls == ["NFO"]
    quotes = provider.fetch_quotes([5, 6])
    assert set(quotes) == {5, 6}
    assert provider.fetch_index_prices(["NIFTY"]) == {"NIFTY": Decimal("100.0")}


def test_auth_failure_disables_session_until_credentials_update():
    session, built = _session()
    provider = _provider(session)
    provider.fetch_quotes([1])
    built[0].quote_error = TokenException("Token expired")
    with pytest.raises(AuthenticationError):
        provider.fetch_quotes([1])
    assert not provider.has_credential()
    assert session.auth.last_error
    with pytest.raises(AuthenticationError):
        provider.fetch_quotes([1])

    assert session.reload_from_env({"KITE_ACCESS_TOKEN": "fresh"}) is True
    assert provider.has_credential()
    provider.fetch_quotes([1])
    assert built[-1].access_token == "fresh"
    assert session.reload_from_env({"KITE_ACCESS_TOKEN": "fresh"}) is False


def test_missing_credentials_is_a_catalog_error():
    provider = _provider(_session(KITE_API_KEY="")[0])
    with pytest.raises(CatalogError):
        provider.fetch_instruments("NFO")


def test_from_settings_uses_configured_timeouts():
    settings = TrackerSettings(quote_timeout=2.5, catalog_timeout=7.0, kite_qps=9.0)
    provider = KiteProvider.from_settings(settings, _session()[0])
    assert provider._quote_timeout == 2.5
    assert provider._catalog_timeout == 7.0


def test_rotated_token_in_dotenv_file_restores_the_session(tmp_path, monkeypatch):
    session, built = _session()
    provider = _provider(session)
    session.mark_auth_failed(TokenException("Token expired"))
    assert not provider.has_credential()

    monkeypatch.chdir(tmp_path)
    monkeypatch.delenv("CW_SKIP_DOTENV")
    (tmp_path / ".env").write_text("KITE_ACCESS_TOKEN=rotated\n", encoding="utf-8")
    assert provider.has_credential()
    provider.fetch_quotes([3])
    assert built[-1].access_token == "rotated"
