"""Runtime configuration for the query analytics reporter."""

from pydantic import Field
from pydantic_settings import BaseSettings


class QanSettings(BaseSettings):
    """Main configuration, read from ``QAN_*`` environment variables."""

    # Metric store
    dsn: str = Field(
        default="postgresql://localhost:5432/qan",
        description="PostgreSQL DSN of the query metrics database",
    )
    pool_min_size: int = Field(default=1, ge=1, description="Minimum pooled connections")
    pool_max_size: int = Field(
        default=10,
        ge=1,
        description="Maximum pooled connections; one profile fans out up to limit + 1 queries",
    )

    # Requests
    request_timeout_sec: float = Field(
        default=30.0, gt=0, description="Timeout for one profile or series request"
    )
    default_limit: int = Field(default=10, ge=1, description="Ranked classes per page")
    max_limit: int = Field(default=100, ge=1, description="Largest page a caller may request")
    concurrent_series: bool = Field(
        default=True, description="Fetch the sparklines of one profile concurrently"
    )

    log_level: str = Field(default="INFO", description="Root log level for entry points")

    model_config = {"env_prefix": "QAN_"}

    def page_size(self, limit: int | None) -> int:
        """Resolve a requested page size against the configured default and maximum."""
        page = limit if limit is not None else self.default_limit
        if page > self.max_limit:
            msg = f"limit exceeds maximum of {self.max_limit}"
            raise ValueError(msg)
        return page
