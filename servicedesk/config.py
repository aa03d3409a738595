from pydantic_settings import BaseSettings


class Settings(BaseSettings):
    # Database
    database_url: str
    database_echo: bool = False

    # Auth
    jwt_secret: str = "change-me-in-production"
    jwt_algorithm: str = "HS256"
    access_token_expire_minutes: int = 15

    # Default Admin
    default_admin_username: str = "admin"
    default_admin_password: str = "admin"
    default_admin_email: str = "admin@servicedesk.local"

    # CORS
    allowed_origins: list[str] = ["https://localhost:8889"]

    # SLA evaluation
    sla_risk_window_ratio: float = 0.10
    sla_sweep_enabled: bool = True
    sla_check_interval_seconds: int = 60
    sla_sweep_batch_size: int = 200

    # Delay detection
    delay_percentage_cap: float = 999.99

    # SLA Defaults used by the seed script (minutes)
    sla_incident_target: int = 240
    sla_demande_target: int = 1440
    sla_changement_target: int = 2880
    sla_developpement_target: int = 7200
    sla_incident_critical_target: int = 60

    model_config = {"env_file": ".env", "extra": "ignore"}


settings = Settings()
