from typing import Dict, List, Optional
from functools import lru_cache
from pydantic import BaseModel, Field
from pydantic_settings import BaseSettings, SettingsConfigDict

SQL_IDENTIFIER = r"^[A-Za-z_][A-Za-z0-9_]*$"

class DatabaseSettings(BaseModel):
    """Target data store the generated SQL runs against"""
    url: Optional[str] = None  # takes precedence over the discrete fields
    host: str = "localhost"
    port: int = 5432
    name: str = "analytics"
    user: str = "postgres"
    password: str = ""
    pool_size: int = 10
    max_overflow: int = 5
    echo_sql: bool = False
    statement_timeout_ms: int = 15_000
    max_rows: int = 500
    # Date column whose MIN/MAX anchors relative dates; unset table disables the lookup
    date_range_table: Optional[str] = Field(default="orders", pattern=SQL_IDENTIFIER)
    date_range_column: str = Field(default="created_at", pattern=SQL_IDENTIFIER)

    @property
    def database_url(self) -> str:
        """Construct database URL from settings"""
        if self.url:
            return self.url
        return f"postgresql+psycopg2://{self.user}:{self.password}@{self.host}:{self.port}/{self.name}"

class APISettings(BaseModel):
    """API related configuration"""
    title: str = "Text-to-SQL Chat API"
    version: str = "1.0.0"
    description: str = "Ask questions about your data, get SQL, results and charts back."
    cors_origins: List[str] = ["*"]

class AISettings(BaseModel):
    """AI Provider configuration"""
    groq_api_key: str = ""
    default_model: str = "gpt-oss-20b"
    # Public model id -> Groq model name
    models: Dict[str, str] = Field(
        default_factory=lambda: {
            "gpt-oss-20b": "openai/gpt-oss-20b",
            "gpt-oss-120b": "openai/gpt-oss-120b",
            "llama-3.3-70b": "llama-3.3-70b-versatile",
        }
    )
    # Candidate i samples at candidate_temperatures[i % len]
    candidate_temperatures: List[float] = Field(default_factory=lambda: [0.0, 0.3, 0.5])
    max_tokens: int = 1000
    max_retries: int = 2
    narrate_results: bool = True

class PipelineSettings(BaseModel):
    """Timeouts and knobs for the message processing pipeline (seconds)"""
    linking_timeout: float = 30.0
    generation_timeout: float = 45.0
    execution_timeout: float = 20.0
    job_deadline: float = 120.0
    refine_failed_sql: bool = False
    vote_float_precision: Optional[int] = None

class ChartSettings(BaseModel):
    """Chart inference configuration"""
    max_categories: int = 20

class AppSettings(BaseSettings):
    """Main application settings"""
    # Environment
    environment: str = "development"
    log_level: str = "INFO"

    # Nested configurations
    database: DatabaseSettings = Field(default_factory=DatabaseSettings)
    api: APISettings = Field(default_factory=APISettings)
    ai: AISettings = Field(default_factory=AISettings)
    pipeline: PipelineSettings = Field(default_factory=PipelineSettings)
    charts: ChartSettings = Field(default_factory=ChartSettings)

    # Pydantic settings configuration
    model_config = SettingsConfigDict(
        env_file=".env",
        env_file_encoding="utf-8",
        env_nested_delimiter="__",
        case_sensitive=False,
        extra="ignore"
    )

    @property
    def is_production(self) -> bool:
        return self.environment == "production"

@lru_cache()
def get_settings() -> AppSettings:
    """
    Get cached settings instance.
    Using lru_cache ensures settings are loaded only once.
    """
    return AppSettings()
