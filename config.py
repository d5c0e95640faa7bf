import os
from dataclasses import dataclass
from dotenv import load_dotenv

load_dotenv()

@dataclass
class Settings:
    # Lending API
    api_url: str = os.getenv("LIBRARY_API_URL", "http://localhost:5000")
    http_timeout: float = float(os.getenv("HTTP_TIMEOUT", "10"))
    session_cookie: str = os.getenv("SESSION_COOKIE", "token")

    # Catalog view
    books_per_page: int = int(os.getenv("BOOKS_PER_PAGE", "10"))
    loans_per_page: int = int(os.getenv("LOANS_PER_PAGE", "10"))
    search_debounce_ms: int = int(os.getenv("SEARCH_DEBOUNCE_MS", "500"))

    # Sandbox API (main.py serve)
    api_host: str = os.getenv("API_HOST", "127.0.0.1")
    api_port: int = int(os.getenv("API_PORT", "5000"))

    # Application
    app_name: str = os.getenv("APP_NAME", "Library Console")
    app_version: str = os.getenv("APP_VERSION", "1.0.0")
    log_level: str = os.getenv("LOG_LEVEL", "WARNING")
    debug: bool = os.getenv("DEBUG", "False").lower() in ("true", "1", "yes")

    @property
    def search_debounce_seconds(self) -> float:
        return self.search_debounce_ms / 1000.0


settings = Settings()
