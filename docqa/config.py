"""
Application Configuration
Loads environment variables and provides typed configuration.
"""
from enum import Enum
from functools import lru_cache
from typing import Optional

from pydantic import Field
from pydantic_settings import BaseSettings, SettingsConfigDict


class ProviderName(str, Enum):
    """Supported embedding/chat model backends."""

    OLLAMA = "ollama"
    FASTCHAT = "fastchat"
    OPENAI = "openai"
    VLLM = "vllm"
    TOGETHER = "together"
    GOOGLE = "google"


class Settings(BaseSettings):
    """Application settings loaded from environment variables."""

    model_config = SettingsConfigDict(
        env_file=".env",
        env_file_encoding="utf-8",
        case_sensitive=False,
        extra="ignore",
        protected_namespaces=(),
    )

    # Pinecone
    pinecone_api_key: str = ""
    pinecone_index_name: str = "document-qa-index"
    pinecone_namespace: str = ""
    pinecone_dimension: Optional[int] = None

    # Provider selection: explicit enum first, legacy USE_* flags second
    model_provider: Optional[ProviderName] = None
    embedding_provider: Optional[ProviderName] = None
    use_ollama: bool = False
    use_fastchat: bool = False
    use_openai: bool = False
    use_vllm: bool = False
    use_together: bool = False

    # Google Gemini (default hosted provider)
    google_api_key: str = ""
    google_api_base: str = "https://generativelanguage.googleapis.com/v1beta"
    google_embedding_model: str = "text-embedding-004"
    google_chat_model: str = "gemini-1.5-pro"

    # Ollama
    ollama_host: str = "http://localhost:11434"
    ollama_embedding_model: str = "nomic-embed-text:latest"
    ollama_chat_model: str = "llama3:latest"

    # FastChat (OpenAI-compatible)
    fastchat_host: str = "http://localhost:8001"
    fastchat_embedding_model: str = "all-MiniLM-L6-v2"
    fastchat_chat_model: str = "vicuna-7b-v1.5"

    # OpenAI
    openai_api_key: str = ""
    openai_embedding_model: str = "text-embedding-3-small"
    openai_chat_model: str = "gpt-3.5-turbo"

    # vLLM (OpenAI-compatible)
    vllm_host: str = "http://localhost:8000"
    vllm_embedding_model: str = "BAAI/bge-small-en-v1.5"
    vllm_chat_model: str = "microsoft/DialoGPT-medium"

    # Together AI (OpenAI-compatible)
    together_api_key: str = ""
    together_base_url: str = "https://api.together.xyz/v1"
    together_embedding_model: str = "BAAI/bge-base-en-v1.5"
    together_chat_model: str = "mistralai/Mixtral-8x7B-Instruct-v0.1"

    # Generation
    chat_temperature: float = 0.7
    chat_max_tokens: int = 2000
    request_timeout: float = 120.0

    # Google Drive
    drive_api_base: str = "https://www.googleapis.com/drive/v3"

    # App Settings
    environment: str = "development"
    log_level: str = "INFO"
    chunk_size: int = Field(default=1000, ge=1)
    chunk_overlap: int = Field(default=200, ge=0)

    # Text extraction
    ocr_enabled: bool = True
    ocr_min_text_length: int = 100

    def resolve_provider(self) -> ProviderName:
        """Pick the active chat provider; the first matching flag wins."""
        if self.model_provider is not None:
            return self.model_provider
        if self.use_ollama:
            return ProviderName.OLLAMA
        if self.use_fastchat:
            return ProviderName.FASTCHAT
        if self.use_openai:
            return ProviderName.OPENAI
        if self.use_vllm:
            return ProviderName.VLLM
        if self.use_together:
            return ProviderName.TOGETHER
        return ProviderName.GOOGLE

    def resolve_embedding_provider(self) -> ProviderName:
        """Embedding backend; defaults to the chat provider."""
        return self.embedding_provider or self.resolve_provider()


@lru_cache()
def get_settings() -> Settings:
    """Get cached settings instance."""
    return Settings()
