from pydantic import BaseModel
from dotenv import load_dotenv
import os

load_dotenv()


class Settings(BaseModel):
    api_host: str = os.getenv("CARTSAVER_HOST", "http://localhost:3000")
    host: str = os.getenv("BACKEND_HOST", "0.0.0.0")
    port: int = int(os.getenv("BACKEND_PORT", "8000"))
    cors_origins: list[str] = ["*"]
    log_level: str = os.getenv("CARTSAVER_LOG_LEVEL", "DEBUG")

    # Collaborator API
    http_timeout_seconds: float = float(os.getenv("CARTSAVER_HTTP_TIMEOUT", "5.0"))
    coupon_timeout_seconds: float = float(os.getenv("CARTSAVER_COUPON_TIMEOUT", "3.0"))
    stylesheet_url: str | None = os.getenv("CARTSAVER_STYLESHEET_URL")

    # Trigger timings
    activity_debounce_seconds: float = 1.0
    scroll_debounce_seconds: float = 2.0
    exit_animation_seconds: float = 0.35
    exit_intent_threshold_px: int = 10
    cart_path: str = "/cart"

    @property
    def stylesheet(self) -> str:
        return self.stylesheet_url or f"{self.api_host.rstrip('/')}/storefront/cartsaver.css"


settings = Settings()
