from pydantic_settings import BaseSettings, SettingsConfigDict
from pydantic import Field

class Settings(BaseSettings):
	# AI provider (OpenAI-compatible REST API)
	ai_api_key: str | None = Field(default=None, validation_alias="AI_API_KEY")
	ai_base_url: str = Field(default="https://api.openai.com/v1", validation_alias="AI_BASE_URL")
	ai_chat_model: str = Field(default="gpt-4o", validation_alias="AI_CHAT_MODEL")
	ai_transcribe_model: str = Field(default="whisper-1", validation_alias="AI_TRANSCRIBE_MODEL")
	ai_tts_model: str = Field(default="tts-1", validation_alias="AI_TTS_MODEL")
	ai_tts_voice: str = Field(default="nova", validation_alias="AI_TTS_VOICE")
	ai_timeout_seconds: float = Field(default=30, validation_alias="AI_TIMEOUT_SECONDS")

	# Auth configuration
	jwt_secret_key: str = Field(default="change-me", validation_alias="JWT_SECRET_KEY")
	jwt_algorithm: str = Field(default="HS256", validation_alias="JWT_ALGORITHM")
	access_token_expire_minutes: int = Field(default=120, validation_alias="ACCESS_TOKEN_EXPIRE_MINUTES")
	# Bootstrap admin, created at startup when both are set
	seed_admin_username: str | None = Field(default=None, validation_alias="SEED_ADMIN_USERNAME")
	seed_admin_password: str | None = Field(default=None, validation_alias="SEED_ADMIN_PASSWORD")

	# Calendar days, streaks and timing quests are evaluated in this timezone
	school_timezone: str = Field(default="UTC", validation_alias="SCHOOL_TIMEZONE")

	# Scoring policy
	score_clamp_out_of_range: bool = Field(default=True, validation_alias="SCORE_CLAMP_OUT_OF_RANGE")
	# Unset means a missing grammar/sentence/vocabulary score is an error
	missing_subscore_fallback: int | None = Field(default=None, ge=0, le=100, validation_alias="MISSING_SUBSCORE_FALLBACK")
	weak_category_threshold: int = Field(default=70, validation_alias="WEAK_CATEGORY_THRESHOLD")

	log_level: str = Field(default="INFO", validation_alias="LOG_LEVEL")

	# Database
	database_url: str | None = Field(default=None, validation_alias="DATABASE_URL")

	# pydantic-settings v2 style config
	model_config = SettingsConfigDict(env_file=".env", extra="ignore")

settings = Settings()
