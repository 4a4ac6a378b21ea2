# docpipeline/app/config.py

from typing import List

from pydantic import BaseModel, Field
import os
from dotenv import load_dotenv

load_dotenv()


def _env_bool(name: str, default: str) -> bool:
    return os.getenv(name, default).strip().lower() in {"1", "true", "yes", "on"}


class Settings(BaseModel):
    # LLM config
    LLM_PROVIDER: str = Field(default=os.getenv("LLM_PROVIDER", "anthropic"))
    LLM_API_KEY: str = Field(default=os.getenv("LLM_API_KEY", ""))
    LLM_BASE_URL: str = Field(default=os.getenv("LLM_BASE_URL", ""))
    LLM_MODEL_NAME: str = Field(default=os.getenv("LLM_MODEL_NAME", "claude-sonnet-4-20250514"))
    LLM_TEMPERATURE: float = Field(default=float(os.getenv("LLM_TEMPERATURE", "0.0")))
    LLM_MAX_TOKENS: int = Field(default=int(os.getenv("LLM_MAX_TOKENS", "8192")))
    # Per-call deadline in seconds; vision/PDF extraction can be slow
    LLM_REQUEST_TIMEOUT: int = Field(default=int(os.getenv("LLM_REQUEST_TIMEOUT", "300")))
    LLM_MAX_ATTEMPTS: int = Field(default=int(os.getenv("LLM_MAX_ATTEMPTS", "3")))
    LLM_RETRY_BASE_DELAY: float = Field(default=float(os.getenv("LLM_RETRY_BASE_DELAY", "0.5")))
    LLM_RETRY_MAX_DELAY: float = Field(default=float(os.getenv("LLM_RETRY_MAX_DELAY", "30")))
    # Consecutive failed calls (after in-call retries) before a model is skipped for the recovery timeout
    LLM_CIRCUIT_FAILURE_THRESHOLD: int = Field(default=int(os.getenv("LLM_CIRCUIT_FAILURE_THRESHOLD", "5")))
    LLM_CIRCUIT_RECOVERY_TIMEOUT: float = Field(default=float(os.getenv("LLM_CIRCUIT_RECOVERY_TIMEOUT", "60")))
    # Comma-separated LiteLLM model ids tried in order when the primary model is unavailable
    LLM_FALLBACK_MODELS: str = Field(default=os.getenv("LLM_FALLBACK_MODELS", ""))

    # Extraction
    LOCAL_PDF_EXTRACTION: bool = Field(default=_env_bool("LOCAL_PDF_EXTRACTION", "true"))
    MAX_DOCUMENT_BYTES: int = Field(default=int(os.getenv("MAX_DOCUMENT_BYTES", str(20 * 1024 * 1024))))

    # Object storage (S3 / MinIO)
    STORAGE_ENDPOINT_URL: str = Field(default=os.getenv("STORAGE_ENDPOINT_URL", "http://minio:9000"))
    STORAGE_ACCESS_KEY: str = Field(default=os.getenv("STORAGE_ACCESS_KEY", "minioadmin"))
    STORAGE_SECRET_KEY: str = Field(default=os.getenv("STORAGE_SECRET_KEY", "minioadmin"))
    STORAGE_BUCKET: str = Field(default=os.getenv("STORAGE_BUCKET", "documents"))
    STORAGE_REGION: str = Field(default=os.getenv("STORAGE_REGION", "us-east-1"))

    # Database
    DATABASE_URL: str = Field(default=os.getenv("DATABASE_URL", "sqlite:///docpipeline.db"))

    # Celery/Redis
    REDIS_URL: str = Field(default=os.getenv("REDIS_URL", "redis://localhost:6379/0"))
    QUEUE_MAX_WORKERS: int = Field(default=int(os.getenv("QUEUE_MAX_WORKERS", "10")))
    # Attempts per job including the first delivery
    QUEUE_MAX_ATTEMPTS: int = Field(default=int(os.getenv("QUEUE_MAX_ATTEMPTS", "2")))
    QUEUE_RETRY_BACKOFF: int = Field(default=int(os.getenv("QUEUE_RETRY_BACKOFF", "30")))
    QUEUE_RETRY_BACKOFF_MAX: int = Field(default=int(os.getenv("QUEUE_RETRY_BACKOFF_MAX", "600")))
    CELERY_SOFT_TIME_LIMIT: int = Field(default=int(os.getenv("CELERY_SOFT_TIME_LIMIT", "600")))  # 10 min
    CELERY_HARD_TIME_LIMIT: int = Field(default=int(os.getenv("CELERY_HARD_TIME_LIMIT", "660")))  # soft + buffer

    def full_model_id(self) -> str:
        """
        Return provider-prefixed model id for LiteLLM, e.g.:
        - 'anthropic/claude-sonnet-4-20250514'
        - 'openai/gpt-4o-mini'
        - 'ollama/llama3.2'
        """
        provider = self.LLM_PROVIDER.strip().lower()
        # If already prefixed, keep as is
        if "/" in self.LLM_MODEL_NAME:
            return self.LLM_MODEL_NAME
        return f"{provider}/{self.LLM_MODEL_NAME}"

    def fallback_models(self) -> List[str]:
        return [m.strip() for m in self.LLM_FALLBACK_MODELS.split(",") if m.strip()]


settings = Settings()
