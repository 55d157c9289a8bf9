from pydantic_settings import BaseSettings

# Google rejects assertions whose exp - iat exceeds one hour.
MAX_ASSERTION_LIFETIME = 3600


class Settings(BaseSettings):
    # Service account
    service_account_email: str = ""
    service_account_key: str = ""

    # Identity provider
    gcp_aud: str = "https://oauth2.googleapis.com/token"
    grant_type: str = "urn:ietf:params:oauth:grant-type:jwt-bearer"
    assertion_lifetime_seconds: int = MAX_ASSERTION_LIFETIME
    token_single_flight: bool = True

    # BigQuery
    gcp_project: str = "trends-dev-p001"
    bigquery_dataset: str = "google_trends"
    bigquery_table: str = "top_rising_terms"
    bigquery_scope: str = "https://www.googleapis.com/auth/bigquery"
    bigquery_location: str = "US"
    bigquery_api_base: str = "https://bigquery.googleapis.com/bigquery/v2"
    urlencoded_column: str = "update"

    # App
    http_timeout_seconds: float = 30.0
    allowed_origins: str = "http://localhost:3000"
    rate_limit_per_hour: int = 600
    log_level: str = "INFO"

    @property
    def bigquery_full_table(self) -> str:
        return f"{self.gcp_project}.{self.bigquery_dataset}.{self.bigquery_table}"

    @property
    def bigquery_queries_url(self) -> str:
        return f"{self.bigquery_api_base}/projects/{self.gcp_project}/queries"

    @property
    def assertion_lifetime(self) -> int:
        return min(self.assertion_lifetime_seconds, MAX_ASSERTION_LIFETIME)

    @property
    def origins_list(self) -> list[str]:
        return [o.strip() for o in self.allowed_origins.split(",")]

    class Config:
        env_file = ".env"


settings = Settings()
