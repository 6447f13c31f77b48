from pydantic_settings import BaseSettings


class Settings(BaseSettings):
    # Provider credentials (explicit user keys take precedence)
    api_key: str = ""  # generic fallback shared by every remote provider
    gemini_api_key: str = ""
    mistral_api_key: str = ""
    openrouter_api_key: str = ""
    grok_api_key: str = ""
    groq_api_key: str = ""

    # Provider endpoints
    mistral_base_url: str = "https://api.mistral.ai/v1"
    openrouter_base_url: str = "https://openrouter.ai/api/v1"
    grok_base_url: str = "https://api.x.ai/v1"
    groq_base_url: str = "https://api.groq.com/openai/v1"
    ollama_base_url: str = "http://localhost:11434/v1"
    openrouter_referer: str = "http://localhost"
    openrouter_app_title: str = "Proactive Co-Creator"

    # Defaults
    default_provider: str = "gemini"
    default_model: str = "gemini-3-flash-preview"
    image_model: str = "gemini-2.5-flash-image"
    video_model: str = "veo-3.1-fast-generate-preview"
    request_timeout_s: float = 60.0
    video_poll_interval_s: float = 10.0

    # Retry policies
    analysis_retry_attempts: int = 5
    analysis_retry_delay_ms: int = 2000
    refine_retry_attempts: int = 3
    refine_retry_delay_ms: int = 1000
    image_retry_attempts: int = 3
    image_retry_delay_ms: int = 2000
    story_retry_attempts: int = 3
    story_retry_delay_ms: int = 1000

    # Image fan-out
    images_per_request: int = 4
    image_rounds: int = 2

    # App
    app_log_level: str = "INFO"
    noisy_log_level: str = "WARNING"
    log_dir: str = "logs"

    model_config = {
        "env_file": ".env",
        "env_file_encoding": "utf-8",
        "extra": "ignore",
    }


settings = Settings()
