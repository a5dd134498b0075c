import os
import logging
from typing import List


class Settings:
    # GitHub App config
    app_id: str
    app_private_key: str  # PEM contents (loaded from file path or env)

    # Server config
    log_level: str = os.getenv("LOG_LEVEL", "INFO")

    # General
    github_api_url: str
    service_version: str
    http_timeout_seconds: float

    # Repository paths tried, in order, for the policy document
    config_paths: List[str]

    def __init__(self) -> None:
        self.app_id = os.getenv("APP_ID", "").strip()
        # APP_PRIVATE_KEY is a filesystem path to the PEM file; a PEM string is accepted as-is.
        apk_env = os.getenv("APP_PRIVATE_KEY", "").strip()
        pem_contents = apk_env
        if apk_env and os.path.isfile(apk_env):
            with open(apk_env, "r", encoding="utf-8") as f:
                pem_contents = f.read().strip()
        self.app_private_key = pem_contents

        self.github_api_url = os.getenv("GITHUB_API_URL", "https://api.github.com").rstrip("/")
        self.service_version = os.getenv("SERVICE_VERSION", "dev")
        self.http_timeout_seconds = float(os.getenv("HTTP_TIMEOUT_SECONDS", "30"))

        raw_paths = os.getenv("CONFIG_PATHS", ".github/bulldozer.yml,.bulldozer.v1.yml")
        self.config_paths = [p.strip() for p in raw_paths.split(",") if p.strip()]


SETTINGS = Settings()


def configure_logging(level: str = "") -> None:
    logging.basicConfig(
        level=(level or SETTINGS.log_level).upper(),
        format="%(asctime)s %(levelname)s %(name)s: %(message)s",
    )
