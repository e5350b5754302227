from pydantic import Field
from pydantic_settings import BaseSettings, SettingsConfigDict


class Settings(BaseSettings):
    app_name: str = Field(default="Grammar Quiz", validation_alias="APP_NAME")
    database_url: str = Field(default="sqlite:///./grammar_quiz.db", validation_alias="DATABASE_URL")

    openai_api_key: str | None = Field(default=None, validation_alias="OPENAI_API_KEY")
    openai_model: str = Field(default="gpt-4o-mini", validation_alias="OPENAI_MODEL")
    generation_temperature: float = Field(default=0.7, validation_alias="GENERATION_TEMPERATURE")
    generation_max_output_tokens: int = Field(default=2048, validation_alias="GENERATION_MAX_OUTPUT_TOKENS")

    # Session tokens are minted by the external auth service with this shared secret
    auth_secret_key: str = Field(default="change-me", validation_alias="AUTH_SECRET_KEY")
    auth_algorithm: str = Field(default="HS256", validation_alias="AUTH_ALGORITHM")
    session_cookie_name: str = Field(default="session", validation_alias="SESSION_COOKIE_NAME")

    log_level: str = Field(default="INFO", validation_alias="LOG_LEVEL")

    model_config = SettingsConfigDict(env_file=".env", extra="ignore")


settings = Settings()
