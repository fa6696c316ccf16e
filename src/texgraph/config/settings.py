"""
texgraph - Configuration Management
"""
from typing import Optional

from pydantic import Field
from pydantic_settings import BaseSettings, SettingsConfigDict


class Settings(BaseSettings):
    """Application settings loaded from environment variables."""

    model_config = SettingsConfigDict(
        env_file=".env",
        env_file_encoding="utf-8",
        extra="ignore",
    )

    # ===========================================
    # Extraction Oracle (OpenAI-compatible API)
    # ===========================================
    llm_api_key: Optional[str] = Field(default=None)
    llm_base_url: str = Field(default="https://openrouter.ai/api/v1")
    llm_model: str = Field(default="qwen/qwen-2.5-72b-instruct")
    llm_temperature: float = Field(default=0.2)
    llm_top_p: float = Field(default=0.9)
    llm_max_tokens: int = Field(default=8192)
    llm_timeout: float = Field(default=300.0)
    llm_max_retries: int = Field(default=2)
    llm_parallelism: int = Field(default=4)

    # ===========================================
    # Segmentation
    # ===========================================
    chunk_granularity: str = Field(default="section")
    chunk_max_tokens: Optional[int] = Field(default=6000)

    # ===========================================
    # Pipeline
    # ===========================================
    snapshot_every: int = Field(default=10)
    commit_poll_interval: float = Field(default=0.06)
    align_concepts: bool = Field(default=False)
    user_notes: str = Field(default="")

    # ===========================================
    # MongoDB (snapshot store)
    # ===========================================
    mongodb_uri: str = Field(default="mongodb://localhost:27017/")
    mongodb_database: str = Field(default="texgraph")
    snapshot_collection: str = Field(default="snapshots")

    # ===========================================
    # Neo4j (graph export)
    # ===========================================
    neo4j_uri: str = Field(default="bolt://localhost:7687")
    neo4j_user: str = Field(default="neo4j")
    neo4j_password: str = Field(default="texgraph_password")

    # ===========================================
    # Application Settings
    # ===========================================
    log_level: str = Field(default="INFO")

    @property
    def use_oracle(self) -> bool:
        """Use the extraction oracle only when an API key is configured."""
        return self.llm_api_key is not None and self.llm_api_key.strip() != ""


# Global settings instance
settings = Settings()


def get_settings() -> Settings:
    """Get the global settings instance."""
    return settings
