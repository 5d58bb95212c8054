import logging

from order_tracker.config import load_settings
from order_tracker.logging import LogBuffer, get_logger


def test_log_buffer_drops_oldest_entries():
    buf = LogBuffer(capacity=3)
    logger = logging.getLogger("order_tracker.test-buffer")
    logger.addHandler(buf)
    logger.setLevel(logging.INFO)
    logger.propagate = False
    try:
        for n in range(5):
            logger.info(f"line {n}")
    finally:
        logger.removeHandler(buf)
    entries = buf.snapshot()
    assert [e["message"] for e in entries] == ["line 2", "line 3", "line 4"]
    assert entries[0]["level"] == "INFO"
    assert len(entries[0]["time"]) == len("12:00:00.000")


def test_get_logger_is_configured_once():
    first = get_logger("once")
    handlers = list(first.handlers)
    assert get_logger("once") is first
    assert first.handlers == handlers


def test_settings_prefer_environment_over_dotenv(tmp_path):
    (tmp_path / ".env").write_text(
        "SHOPIFY_URL=https://from-dotenv.test\nETSY_SHOP_ID='77'\nHTTP_TIMEOUT=abc\n",
        encoding="utf-8",
    )
    settings = load_settings(str(tmp_path), environ={"SHOPIFY_URL": "https://from-env.test"})
    assert settings.shopify_url == "https://from-env.test"
    assert settings.etsy_shop_id == "77"
    assert settings.http_timeout == 30.0
    assert settings.missing_etsy() == ["ETSY_KEYSTRING"]
    assert settings.etsy_token_url == "https://api.etsy.com/v3/public/oauth/token"
    assert settings.catalog_path == str(tmp_path / "var" / "catalog" / "catalog.sqlite3")
