from pydantic_settings import BaseSettings, SettingsConfigDict


class Settings(BaseSettings):
    model_config = SettingsConfigDict(
        env_file=".env",
        case_sensitive=False,
        extra="ignore",
    )

    # Database
    database_url: str = "sqlite:///./fleetguard.db"

    # Logging
    log_level: str = "INFO"
    log_json: bool = True

    # External service API keys (empty means the service is skipped)
    virustotal_api_key: str = ""
    wpscan_api_key: str = ""
    google_safe_browsing_api_key: str = ""

    # DNS blacklist zones queried by the blacklist probe
    dnsbl_zones: list[str] = ["multi.surbl.org", "black.uribl.com", "dbl.spamhaus.org"]

    # Per-probe budgets (seconds)
    malware_probe_timeout: float = 15.0
    blacklist_probe_timeout: float = 10.0
    blacklist_service_timeout: float = 5.0
    vulnerability_probe_timeout: float = 15.0
    security_headers_probe_timeout: float = 8.0
    web_trust_probe_timeout: float = 10.0
    hardening_probe_timeout: float = 10.0
    scan_deadline_overhead: float = 2.0

    # Scan coordination
    scan_retry_interval_seconds: int = 30
    stale_scan_minutes: int = 3

    # Outbound rate limiting, per external client
    external_max_requests: int = 30
    external_time_window_seconds: int = 60
    external_burst_capacity: int = 10

    # Scoring weights
    score_malware_infected: int = 30
    score_malware_suspicious: int = 15
    score_blacklisted: int = 25
    score_per_vulnerability: int = 2
    score_vulnerability_cap: int = 25
    score_no_ssl: int = 8
    score_wp_version_exposed: int = 2
    score_login_unlimited: int = 1
    score_file_permissions: int = 2
    score_admin_insecure: int = 2
    score_header_factor: float = 0.1

    # CORS
    backend_cors_origins: list[str] = ["http://localhost:3000"]

    # Environment
    environment: str = "development"


settings = Settings()
