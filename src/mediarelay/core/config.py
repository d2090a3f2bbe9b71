"""Configuration management for Mediarelay.

This module provides centralized configuration management using Pydantic Settings.
All configuration is loaded from environment variables with the MEDIARELAY_ prefix,
allowing easy customization without code changes.

Environment Variable Loading
-----------------------------
Configuration values are loaded in the following priority order:
1. Environment variables (MEDIARELAY_* prefix)
2. .env file in the project root
3. Default values defined in RelayConfig

Example .env file:
    MEDIARELAY_LUMAAI_API_KEY=luma-...
    MEDIARELAY_GROQ_API_KEY=gsk_...
    MEDIARELAY_IMGUR_CLIENT_ID=abc123
    MEDIARELAY_SERVER_PORT=5007

Global Configuration Instance
------------------------------
A global `config` instance is created automatically at module import time.
The FastAPI application factory falls back to it when no explicit
configuration is passed in.

Directory Management
--------------------
The configuration automatically creates required directories on initialization:
- data_dir: Holds the generation record file (``videos.json``)
- static_dir / images: Holds saved images served under ``images_url_prefix``

Credentials
-----------
Each remote service is optional at startup.  A missing credential disables the
matching adapter and requests that need it fail with ``UninitializedClient``
instead of crashing the process.
"""

from pathlib import Path
from typing import Literal

from pydantic import Field
from pydantic_settings import BaseSettings, SettingsConfigDict


class RelayConfig(BaseSettings):
    """Main configuration for Mediarelay.

    Attributes
    ----------
    Credentials:
        lumaai_api_key : str | None
            Bearer token for the generation API (video and image jobs)
        groq_api_key : str | None
            Bearer token for the vision-description API
        imgur_client_id : str | None
            Client ID for the image host

    Remote Services:
        generation_base_url : str
            Base URL of the generation API
        vision_base_url : str
            Base URL of the OpenAI-compatible vision API
        vision_model : str
            Model name used for image descriptions
        imgur_upload_url : str
            Upload endpoint of the image host
        description_timeout : float
            Seconds before a description call is abandoned

    Paths:
        data_dir : Path
            Directory holding the record file
        records_file : str
            Name of the JSON record file inside ``data_dir``
        static_dir : Path
            Public directory; saved images live in ``static_dir / "images"``
        images_url_prefix : str
            URL prefix the images directory is served under

    Server:
        server_host : str
            Bind address
        server_port : int
            Primary port
        fallback_port : int | None
            Port tried when the primary port is already bound
        log_level : Literal[...]
            Root log level configured by ``main()``
    """

    model_config = SettingsConfigDict(
        env_file=".env",
        env_file_encoding="utf-8",
        env_prefix="MEDIARELAY_",
        case_sensitive=False,
    )

    # Credentials
    lumaai_api_key: str | None = Field(
        default=None,
        description="API key for the generation service",
    )
    groq_api_key: str | None = Field(
        default=None,
        description="API key for the vision-description service",
    )
    imgur_client_id: str | None = Field(
        default=None,
        description="Client ID for the image host",
    )

    # Remote services
    generation_base_url: str = Field(
        default="https://api.lumalabs.ai/dream-machine/v1",
        description="Base URL of the generation API",
    )
    vision_base_url: str = Field(
        default="https://api.groq.com/openai/v1",
        description="Base URL of the vision-description API",
    )
    vision_model: str = Field(
        default="llama-3.2-11b-vision-preview",
        description="Vision model used to describe images",
    )
    imgur_upload_url: str = Field(
        default="https://api.imgur.com/3/image",
        description="Image host upload endpoint",
    )
    description_timeout: float = Field(
        default=30.0,
        description="Timeout in seconds for a single description call",
        gt=0,
    )

    # Paths
    data_dir: Path = Field(
        default=Path("data"),
        description="Directory holding the generation record file",
    )
    records_file: str = Field(
        default="videos.json",
        description="File name of the JSON record list",
    )
    static_dir: Path = Field(
        default=Path("public"),
        description="Public directory served as static files",
    )
    images_url_prefix: str = Field(
        default="/images",
        description="URL prefix for saved images",
    )

    # Server settings
    server_host: str = Field(
        default="0.0.0.0",
        description="Server bind address (0.0.0.0 for local network)",
    )
    server_port: int = Field(
        default=5007,
        description="Primary server port",
        ge=1024,
        le=65535,
    )
    fallback_port: int | None = Field(
        default=5008,
        description="Port tried when the primary port is in use",
        ge=1024,
        le=65535,
    )
    log_level: Literal["DEBUG", "INFO", "WARNING", "ERROR"] = Field(
        default="INFO",
        description="Log level for the server process",
    )

    def __init__(self, **kwargs):
        """Initialize configuration and create required directories.

        Args:
            **kwargs: Configuration overrides (typically from environment variables)
        """
        super().__init__(**kwargs)

        self.data_dir.mkdir(parents=True, exist_ok=True)
        self.images_dir.mkdir(parents=True, exist_ok=True)

    @property
    def records_path(self) -> Path:
        """Path of the JSON file mirroring the record store."""
        return self.data_dir / self.records_file

    @property
    def images_dir(self) -> Path:
        """Directory saved images are written to."""
        return self.static_dir / "images"

    @property
    def candidate_ports(self) -> list[int]:
        """Ports to try in order when starting the server."""
        ports = [self.server_port]
        if self.fallback_port and self.fallback_port != self.server_port:
            ports.append(self.fallback_port)
        return ports


# Global configuration instance
config = RelayConfig()
