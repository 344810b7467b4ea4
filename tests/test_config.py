from app.core.config import DOKU_PRODUCTION_URL, DOKU_SANDBOX_URL, Settings


def make_settings(**values):
    return Settings(_env_file=None, JWT_SECRET_KEY="k", **values)


def test_gateway_url_follows_environment_flag(monkeypatch):
    monkeypatch.delenv("DOKU_BASE_URL", raising=False)
    assert make_settings().DOKU_BASE_URL == DOKU_SANDBOX_URL
    assert make_settings(DOKU_IS_PRODUCTION=True).DOKU_BASE_URL == DOKU_PRODUCTION_URL


def test_quoted_credentials_are_unwrapped():
    settings = make_settings(DOKU_CLIENT_ID='"MCH-9"', DOKU_SECRET_KEY="'SK-with\"quote'")
    assert settings.DOKU_CLIENT_ID == "MCH-9"
    assert settings.DOKU_SECRET_KEY == 'SK-with"quote'


def test_only_documented_gateway_names_are_read(monkeypatch):
    monkeypatch.delenv("DOKU_CLIENT_ID", raising=False)
    monkeypatch.delenv("DOKU_SECRET_KEY", raising=False)
    monkeypatch.setenv("DOKU_CLIENT", "MCH-LEGACY")
    monkeypatch.setenv("DOKU_SECRET", "SK-LEGACY")

    settings = make_settings()

    assert settings.DOKU_CLIENT_ID is None
    assert settings.gateway_configured is False


def test_callback_allowed_ips_list():
    settings = make_settings(DOKU_CALLBACK_ALLOWED_IPS=" 10.0.0.1, ,10.0.0.2 ")
    assert settings.callback_allowed_ips == ["10.0.0.1", "10.0.0.2"]
