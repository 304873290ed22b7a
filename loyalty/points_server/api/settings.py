"""
HTTP settings for the Points Server.

Uses pydantic-settings for environment variable loading.
"""

from pydantic import Field
from pydantic_settings import BaseSettings


class HttpSettings(BaseSettings):
    """HTTP surface configuration loaded from environment."""

    host: str = Field(default="0.0.0.0", description="HTTP bind host")
    port: int = Field(default=8080, description="HTTP bind port")

    # CORS settings
    cors_origins: list[str] = Field(
        default=["http://localhost:3000", "http://localhost:5173"],
        description="Allowed CORS origins",
    )

    # Identity is established upstream; these headers carry the result
    account_header: str = Field(default="X-Account", description="Caller public id header")
    role_header: str = Field(default="X-Role", description="Caller role header")
    admin_role: str = Field(default="admin", description="Role allowed to issue tokens")

    model_config = {"env_prefix": "POINTS_HTTP_"}

    @property
    def bind_address(self) -> str:
        return f"{self.host}:{self.port}"
