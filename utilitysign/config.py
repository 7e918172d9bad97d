from pydantic_settings import BaseSettings


class Settings(BaseSettings):
    # Application
    environment: str = "staging"
    debug: bool = False
    log_level: str = "INFO"

    # Remote API (WordPress REST proxy in front of the UtilitySign backend)
    api_base_url: str = "http://localhost/wp-json/utilitysign/v1"
    rest_nonce: str = ""
    client_id: str = "utilitysign-wordpress-plugin"
    request_timeout_seconds: float = 15.0
    retry_attempts: int = 3
    retry_delay_seconds: float = 1.0
    retry_max_delay_seconds: float = 30.0
    document_cache_ttl_seconds: float = 300.0

    # BankID
    bankid_poll_interval_seconds: float = 2.0
    bankid_window_check_interval_seconds: float = 1.0
    bankid_poll_timeout_seconds: float = 300.0
    bankid_window_name: str = "bankid-auth"
    bankid_window_width: int = 600
    bankid_window_height: int = 700

    # Signing status
    status_refresh_interval_seconds: float = 5.0

    # Products
    business_product_ids: list[str] = ["bef7a77c-8770-4c1f-9906-714a4b762d26"]
    sports_team_product_id: str = "36757e7a-3289-4922-92d7-ffccefb261a0"

    # Uploads
    upload_max_size_mb: int = 10
    upload_accepted_types: list[str] = [".pdf", ".doc", ".docx"]

    model_config = {"env_file": ".env", "env_prefix": "UTILITYSIGN_", "case_sensitive": False, "extra": "ignore"}


settings = Settings()
