import os
from pathlib import Path
from dotenv import load_dotenv

# Load biến môi trường trong .env
BASE_DIR = Path(__file__).resolve().parent
load_dotenv(BASE_DIR / ".env")


def _csv(value: str) -> list[str]:
    return [v.strip() for v in value.split(",") if v.strip()]


class Settings:
    COMFYUI_URL: str = os.getenv("COMFYUI_URL", "http://127.0.0.1:8188")
    COMFYUI_CHECKPOINT: str = os.getenv("COMFYUI_CHECKPOINT", "v1-5-pruned-emaonly.ckpt")
    # Thư mục lưu workflow đã build để debug (bỏ trống = tắt)
    WORKFLOW_DEBUG_DIR: str | None = os.getenv("WORKFLOW_DEBUG_DIR") or None

    STABILITY_API_BASE: str = os.getenv("STABILITY_API_BASE", "https://api.stability.ai")
    OPENAI_API_BASE: str = os.getenv("OPENAI_API_BASE", "https://api.openai.com/v1")
    TRIPO_API_BASE: str = os.getenv("TRIPO_API_BASE", "https://api.tripo3d.ai/v2/openapi")
    MESHY_API_BASE: str = os.getenv("MESHY_API_BASE", "https://api.meshy.ai/openapi/v2")

    # Empty -> jobs are kept in process memory
    REDIS_URL: str | None = os.getenv("REDIS_URL") or None
    JOB_TTL_SECONDS: int = int(os.getenv("JOB_TTL_SECONDS", "0"))

    HTTP_TIMEOUT: float = float(os.getenv("HTTP_TIMEOUT", "300"))

    LOG_LEVEL: str = os.getenv("LOG_LEVEL", "INFO").upper()
    CORS_ORIGINS: list[str] = _csv(os.getenv("CORS_ORIGINS", "*"))

    BACKEND_URL: str = os.getenv("BACKEND_URL", "http://127.0.0.1:8000")
    POLL_INTERVAL: float = float(os.getenv("POLL_INTERVAL", "2.0"))  # giây


settings = Settings()
