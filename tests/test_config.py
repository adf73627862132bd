import pytest

from config import DEFAULT_CONTAINER, Settings
from services.errors import ConfigurationError

ENV = {
    "AZURE_BLOB_CONN_STRING": "UseDevelopmentStorage=true",
    "AI_API_KEY": "key",
    "AI_API_ENDPOINT": "https://ai.test/composite",
    "JWT_SECRET_KEY": "secret",
}


def test_from_env_defaults():
    settings = Settings.from_env(ENV)
    assert settings.blob_container == DEFAULT_CONTAINER
    assert settings.ai_timeout is None
    assert settings.cdn_domain is None
    assert settings.database_url.startswith("postgresql+psycopg2://")
    assert settings.feed_api_key is None


def test_from_env_falls_back_to_gemini_names():
    env = {k: v for k, v in ENV.items() if not k.startswith("AI_")}
    env.update(GEMINI_API_KEY="g-key", GEMINI_API_URL="https://gemini.test")
    settings = Settings.from_env(env)
    assert settings.ai_api_key == "g-key"
    assert settings.ai_api_endpoint == "https://gemini.test"


def test_from_env_reads_optional_values():
    settings = Settings.from_env({**ENV, "AI_TIMEOUT_SECONDS": "30", "STORAGE_CDN_DOMAIN": "cdn.test",
                                  "MAX_UPLOAD_BYTES": "1024"})
    assert settings.ai_timeout == 30.0
    assert settings.cdn_domain == "cdn.test"
    assert settings.max_upload_bytes == 1024


@pytest.mark.parametrize("missing", sorted(ENV))
def test_missing_required_setting(missing):
    env = {k: v for k, v in ENV.items() if k != missing}
    with pytest.raises(ConfigurationError):
        Settings.from_env(env)


def test_bad_number_is_a_configuration_error():
    with pytest.raises(ConfigurationError, match="Invalid numeric setting"):
        Settings.from_env({**ENV, "DB_POOL_SIZE": "lots"})


def test_feed_api_key_names():
    assert Settings.from_env({**ENV, "CDK_API_KEY": "cdk"}).feed_api_key == "cdk"
    env = {**ENV, "CDK_API_KEY": "cdk", "INVENTORY_FEED_API_KEY": "feed"}
    assert Settings.from_env(env).feed_api_key == "feed"
