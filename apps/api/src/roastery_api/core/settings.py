from functools import lru_cache
from typing import Literal

from pydantic import Field, model_validator
from pydantic_settings import BaseSettings, SettingsConfigDict


class Settings(BaseSettings):
    model_config = SettingsConfigDict(env_file=".env", env_file_encoding="utf-8", extra="allow")

    environment: Literal["development", "staging", "production"] = "development"
    database_url: str = "sqlite+aiosqlite:///./roastery.db"
    database_echo: bool = False
    tracing_enabled: bool = True

    # Internal API security (back-office gateway)
    internal_api_key: str = ""

    # Membership grades
    grade_gold_threshold: int = 100_000
    grade_vip_threshold: int = 300_000
    grade_reconcile_max_attempts: int = Field(default=2, ge=1)

    # Points
    purchase_reward_rate_percent: int = Field(default=1, ge=0)
    purchase_reward_reason_template: str = "주문 #{order_id} 구매확정 적립"
    point_history_default_limit: int = 10
    point_history_max_limit: int = 100

    # Order listing / bulk operations
    order_list_max_limit: int = 100
    bulk_operation_max_items: int = 500

    # Grade sweep worker
    grade_sweep_worker_enabled: bool = False
    grade_sweep_interval_seconds: int = 60 * 60
    grade_sweep_batch_size: int = 200

    # Back-office dashboard
    sales_summary_timezone: str = "Asia/Seoul"
    sales_summary_weeks: int = Field(default=8, ge=1, le=52)

    @model_validator(mode="after")
    def _check_grade_thresholds(self) -> "Settings":
        if self.grade_gold_threshold < 0 or self.grade_vip_threshold < self.grade_gold_threshold:
            raise ValueError("grade thresholds must satisfy 0 <= gold <= vip")
        return self


@lru_cache
def get_settings() -> Settings:
    return Settings()  # type: ignore[arg-type]


settings = get_settings()
