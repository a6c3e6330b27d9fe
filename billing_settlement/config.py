"""Configuration management using Pydantic Settings"""

from pydantic_settings import BaseSettings, SettingsConfigDict

from billing_settlement.domain.models import GroupPolicy


class Settings(BaseSettings):
    """Settlement configuration loaded from environment variables"""

    model_config = SettingsConfigDict(env_file=".env", env_file_encoding="utf-8", extra="ignore")

    # Service
    service_name: str = "billing-settlement"
    log_level: str = "INFO"

    # Allocation
    group_allocation_policy: GroupPolicy = GroupPolicy.PER_BILL
    credit_source: str = "unifiedPayment"
    module_type: str = "hoa"  # hoa | water | propane, used in notes and split lines

    # Penalties
    penalty_month_days: int = 30  # length of one penalty month past grace

    # Arithmetic guard: largest integer a double-precision store holds exactly
    max_amount_cents: int = 2**53 - 1

    # Ledger
    history_view_limit: int = 50
    fiscal_year_start_month: int = 7  # July


settings = Settings()
