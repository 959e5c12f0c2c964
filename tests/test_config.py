import pytest

from paybot.config import Settings


@pytest.fixture(autouse=True)
def clean_env(monkeypatch):
    monkeypatch.setattr("paybot.config.load_dotenv", lambda: False)
    for name in ("TELEGRAM_TOKEN", "ENCRYPTION_KEY", "PORT", "TELEGRAM_BOT_USERNAME", "WEBHOOK_URL"):
        monkeypatch.delenv(name, raising=False)


def test_missing_required_variables(monkeypatch):
    monkeypatch.setenv("TELEGRAM_TOKEN", "123:abc")

    with pytest.raises(SystemExit, match="ENCRYPTION_KEY"):
        Settings.from_env()


def test_defaults(monkeypatch):
    monkeypatch.setenv("TELEGRAM_TOKEN", "123:abc")
    monkeypatch.setenv("ENCRYPTION_KEY", "key")
    monkeypatch.setenv("TELEGRAM_BOT_USERNAME", "@my_pay_bot")

    settings = Settings.from_env()

    assert settings.bot_username == "my_pay_bot"
    assert settings.chain_id == 5042002
    assert settings.webhook_url is None
    assert settings.testnet


def test_bad_integer(monkeypatch):
    monkeypatch.setenv("TELEGRAM_TOKEN", "123:abc")
    monkeypatch.setenv("ENCRYPTION_KEY", "key")
    monkeypatch.setenv("PORT", "eighty")

    with pytest.raises(SystemExit, match="PORT"):
        Settings.from_env()
