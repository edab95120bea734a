from pydantic_settings import BaseSettings, SettingsConfigDict


class Settings(BaseSettings):
    model_config = SettingsConfigDict(env_file=".env", env_file_encoding="utf-8", extra="ignore")

    PORT: int = 3003
    DB_PATH: str = "/data/yinyang.db"
    LOG_LEVEL: str = "info"

    BLOB_DIR: str = "/data/blobs"
    STORAGE_BASE_URL: str = "http://localhost:3003/blobs/"
    ALLOWED_ORIGINS: list[str] = ["http://localhost:5173"]

    OPENAI_API_KEY: str = ""
    OPENAI_BASE_URL: str | None = None
    BUILTIN_KEY_ALIASES: list[str] = []

    CLASSIFIER_BASE_URL: str = "https://api.cloudflare.com/client/v4/accounts/ACCOUNT_ID/ai/run"
    CLASSIFIER_API_TOKEN: str = ""

    HTTP_TIMEOUT_SECONDS: float = 10.0
    PIPELINE_TIMEOUT_SECONDS: float = 180.0
    VISION_MAX_ATTEMPTS: int = 3
    VISION_MAX_TOKENS: int = 4096

    # Fallbacks for names missing from the config table
    DEFAULT_PROMPT: str = (
        "Describe this image in detail, one observation per sentence, "
        "covering both its pleasant and unpleasant aspects."
    )
    DEFAULT_DETAIL: str = "low"
    DEFAULT_GOOD_THRESHOLD: float = 0.0
    DEFAULT_VISION_MODEL: str = "gpt-4o"
    DEFAULT_CLASSIFIER_MODEL: str = "@cf/huggingface/distilbert-sst-2-int8"
    DEFAULT_REQUEST_ID_LENGTH: int = 12


settings = Settings()
