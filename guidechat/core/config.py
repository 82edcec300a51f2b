import logging

from pydantic_settings import BaseSettings
from pydantic import ConfigDict
from typing import List, Optional

class Settings(BaseSettings):
    # Environment
    ENV: str = "development"
    CONFIG_STRICT: bool = False

    # Database
    DATABASE_URL: Optional[str] = None
    TEST_DATABASE_URL: Optional[str] = None

    # Auth (bearer tokens are only verified when a secret is configured)
    AUTH_JWT_SECRET: Optional[str] = None

    # HackClub (llama, osslarge, title generation)
    HACKCLUB_API_KEY: Optional[str] = None
    HACKCLUB_BASE_URL: str = "https://ai.hackclub.com"
    HACKCLUB_DEFAULT_MODEL: str = "meta-llama/llama-4-maverick"
    OSSLARGE_DEFAULT_MODEL: str = "openai/gpt-oss-120b"

    # Gemini (gemini, nanobanana)
    GEMINI_API_KEY: Optional[str] = None
    GEMINI_BASE_URL: str = "https://generativelanguage.googleapis.com/v1beta"
    GEMINI_TEXT_MODEL: str = "gemini-2.5-flash"
    GEMINI_IMAGE_MODEL: str = "gemini-2.5-flash-image-preview"

    # DeepSeek
    DEEPSEEK_API_KEY: Optional[str] = None
    DEEPSEEK_BASE_URL: str = "https://api.deepseek.com"
    DEEPSEEK_MODEL: str = "deepseek-chat"

    # Azure OpenAI (gpt41, gpt41mini, o3mini)
    AZURE_OPENAI_ENDPOINT: Optional[str] = None
    AZURE_OPENAI_API_KEY: Optional[str] = None
    AZURE_OPENAI_API_VERSION: str = "2024-12-01-preview"
    AZURE_GPT41_DEPLOYMENT: str = "gpt-4.1"
    AZURE_GPT41MINI_DEPLOYMENT: str = "gpt-4.1-mini"
    AZURE_O3MINI_DEPLOYMENT: str = "o3-mini"

    # Provider calls routinely take tens of seconds
    PROVIDER_TIMEOUT_SECONDS: float = 120.0
    PROVIDER_RETRY_AFTER_DEFAULT_SECONDS: int = 10

    # Metering
    GUEST_GUIDE_LIMIT: int = 3
    MAX_PROMPT_CHARS: int = 10000
    MAX_CHAT_IMAGES: int = 6
    CHAT_HISTORY_WINDOW: int = 20
    TITLE_MODEL: str = "openai/gpt-oss-20b"
    PROPLUS_EMAILS: str = ""  # comma-separated

    model_config = ConfigDict(
        env_file=".env",
        env_file_encoding="utf-8",
        extra="ignore",
    )

    def proplus_emails(self) -> List[str]:
        return [e.strip().lower() for e in self.PROPLUS_EMAILS.split(",") if e.strip()]


settings = Settings()


def validate_config(strict: Optional[bool] = None, settings_obj: Optional[Settings] = None, logger: Optional[logging.Logger] = None) -> bool:
    """Validate provider configuration.

    In strict mode raise RuntimeError; otherwise emit warnings only.
    Secrets are not logged, only missing keys.
    """
    cfg = settings_obj or settings
    log = logger or logging.getLogger("guidechat")
    strict_mode = strict if strict is not None else getattr(cfg, "CONFIG_STRICT", False)

    required_keys = [
        "DATABASE_URL",
        "HACKCLUB_API_KEY",
        "GEMINI_API_KEY",
        "DEEPSEEK_API_KEY",
        "AZURE_OPENAI_ENDPOINT",
        "AZURE_OPENAI_API_KEY",
    ]

    missing = [key for key in required_keys if not getattr(cfg, key, None)]
    if missing:
        message = f"Missing required configuration: {', '.join(missing)}"
        if strict_mode:
            raise RuntimeError(message)
        log.warning(message)

    return True
