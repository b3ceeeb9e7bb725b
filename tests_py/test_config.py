import pytest

from license_bot.config import load_config


def test_load_config_defaults(monkeypatch: pytest.MonkeyPatch) -> None:
    monkeypatch.setenv("BOT_TOKEN", "123:abc")
    for key in ("PAYMENT_POLL_INTERVAL", "PAYMENT_TTL", "INVENTORY_POLICY", "BOT_LANGUAGE", "ADMIN_TELEGRAM_ID"):
        monkeypatch.delenv(key, raising=False)

    config = load_config()

    assert config.bot_token == "123:abc"
    assert config.admin_telegram_id == 0
    assert config.payment.poll_interval == 20
    assert config.payment.ttl == 600
    assert config.payment.inventory_policy == "fail"
    assert config.language == "id"


def test_load_config_overrides(monkeypatch: pytest.MonkeyPatch) -> None:
    monkeypatch.setenv("BOT_TOKEN", "123:abc")
    monkeypatch.setenv("PAYMENT_POLL_INTERVAL", "5")
    monkeypatch.setenv("INVENTORY_POLICY", "RETRY")
    monkeypatch.setenv("BOT_LANGUAGE", "en")

    config = load_config()

    assert config.payment.poll_interval == 5
    assert config.payment.inventory_policy == "retry"
    assert config.language == "en"


def test_load_config_rejects_bad_values(monkeypatch: pytest.MonkeyPatch) -> None:
    monkeypatch.setenv("BOT_TOKEN", "123:abc")
    monkeypatch.setenv("INVENTORY_POLICY", "ignore")
    with pytest.raises(RuntimeError, match="INVENTORY_POLICY"):
        load_config()

    monkeypatch.setenv("INVENTORY_POLICY", "fail")
    monkeypatch.setenv("PAYMENT_TTL", "ten minutes")
    with pytest.raises(RuntimeError, match="PAYMENT_TTL"):
        load_config()


def test_load_config_requires_token(monkeypatch: pytest.MonkeyPatch) -> None:
    monkeypatch.setenv("BOT_TOKEN", "")
    with pytest.raises(RuntimeError, match="BOT_TOKEN"):
        load_config()
