"""Shared configuration loaded from environment / .env file."""

from __future__ import annotations

from typing import Literal

from pydantic import Field, field_validator
from pydantic_settings import BaseSettings


class Settings(BaseSettings):
    """Application-wide settings, populated from env vars or .env file."""

    # Relational store
    database_url: str = Field(
        default="sqlite:///nutrition.db",
        description="SQLAlchemy URL of the relational store (SQLite or PostgreSQL)",
    )
    referential_policy: Literal["lax", "strict"] = Field(
        default="lax",
        description=(
            "'lax' keeps foreign keys out of the schema and drops associations "
            "pointing at unknown foods/nutrients; 'strict' declares foreign keys "
            "and lets the database reject violations."
        ),
    )

    # Vector store
    chroma_host: str = "localhost"
    chroma_port: int = 8000
    chroma_persist_directory: str = Field(
        default="",
        description="When set, use an embedded persistent Chroma client at this path",
    )
    vector_collection: str = "FoodEmbedding"

    # Embedding
    embedding_provider: Literal["huggingface", "ollama"] = "huggingface"
    embedding_model: str = "sentence-transformers/all-MiniLM-L6-v2"
    ollama_base_url: str = "http://localhost:11434"
    embedding_dimension: int = 384
    embedding_max_retries: int = Field(default=3, ge=1)
    embedding_backoff_seconds: float = Field(default=1.0, ge=0)

    # Batching
    embedding_batch_size: int = Field(default=32, ge=1)
    association_batch_size: int = Field(default=10_000, ge=1)

    # Dataset
    dataset_root: str = "data/FoodData_Central_sr_legacy_food_csv_2018-04"

    model_config = {"env_file": ".env", "env_file_encoding": "utf-8"}

    @field_validator("embedding_dimension")
    @classmethod
    def validate_embedding_dimension(cls, v: int) -> int:
        if v not in (384, 768):
            raise ValueError("embedding_dimension must be 384 or 768")
        return v


# Singleton — import `settings` wherever needed.
settings = Settings()
