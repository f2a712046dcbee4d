from pydantic_settings import BaseSettings


class Settings(BaseSettings):
    # Backend gateway (OpenAI-compatible chat completions)
    backend_base_url: str = "http://localhost:8080/v1"
    backend_api_key: str = ""
    backend_timeout_seconds: float = 120.0  # 0 disables the per-call timeout

    # Chat orchestration
    default_temperature: float = 0.7
    fallback_temperature: float = 0.9
    max_tokens: int = 2048
    auto_switch: bool = True
    history_window: int = 10
    memory_context_limit: int = 5

    # Evolution loop
    evolution_max_cycles: int = 5
    evolution_confidence_threshold: float = 0.9
    evolution_confidence_step: float = 0.2
    evolution_confidence_ceiling: float = 0.99
    verification_confidence_gate: float = 0.8

    # Memory
    memory_capacity: int = 10000

    # Prompts (empty uses the bundled catalog)
    prompts_path: str = ""

    # App
    max_chat_sessions: int = 100
    cors_origins: str = "http://localhost:3000"
    app_log_level: str = "INFO"
    noisy_log_level: str = "WARNING"

    model_config = {
        "env_file": ".env",
        "env_file_encoding": "utf-8",
        "env_prefix": "KAJIG_",
        "extra": "ignore",
    }

    @property
    def cors_origin_list(self) -> list[str]:
        return [o.strip() for o in self.cors_origins.split(",")]

    @property
    def backend_timeout(self) -> float | None:
        return self.backend_timeout_seconds if self.backend_timeout_seconds > 0 else None


settings = Settings()
