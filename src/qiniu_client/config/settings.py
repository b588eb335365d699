"""Configuration settings for the Qiniu HTTP client.

This module defines the configuration settings used when the client
creates its own transport: the application name reported in the
User-Agent, httpx timeouts, redirect handling and log level. Settings
are loaded from ``QINIU_`` prefixed environment variables and .env files.
"""

import re
from typing import Literal, Optional

import httpx
from pydantic import Field, field_validator
from pydantic_settings import BaseSettings, SettingsConfigDict

APP_NAME_PATTERN = re.compile(r"^[A-Za-z0-9_ \-.]*$")


class Settings(BaseSettings):
    """Application settings loaded from environment variables.

    :param app_name: Application name embedded in the default User-Agent
    :type app_name: str
    :param log_level: Logging level for the application
    :type log_level: Literal["DEBUG", "INFO", "WARNING", "ERROR", "CRITICAL"]
    :param connect_timeout: Connection timeout in seconds
    :type connect_timeout: float
    :param read_timeout: Read timeout in seconds
    :type read_timeout: float
    :param write_timeout: Write timeout in seconds
    :type write_timeout: float
    :param pool_timeout: Pool acquisition timeout in seconds
    :type pool_timeout: float
    :param follow_redirects: Follow HTTP redirects
    :type follow_redirects: bool
    """

    model_config = SettingsConfigDict(
        env_prefix="QINIU_",
        env_file=".env",
        env_file_encoding="utf-8",
        case_sensitive=False,
        extra="ignore",  # Ignore extra fields in .env file
    )

    app_name: str = Field("", description="Application name for the User-Agent")

    # Logging
    log_level: Literal["DEBUG", "INFO", "WARNING", "ERROR", "CRITICAL"] = Field(
        "INFO", description="Logging level"
    )

    # Transport configuration. Retries and pooling stay with httpx.
    connect_timeout: float = Field(5.0, description="Connect timeout in seconds")
    read_timeout: Optional[float] = Field(
        None, description="Read timeout in seconds (None waits forever)"
    )
    write_timeout: Optional[float] = Field(
        None, description="Write timeout in seconds (None waits forever)"
    )
    pool_timeout: float = Field(5.0, description="Pool timeout in seconds")
    follow_redirects: bool = Field(True, description="Follow HTTP redirects")

    @field_validator("app_name")
    @classmethod
    def validate_app_name(cls, v: str) -> str:
        """Reject application names outside ``[A-Za-z0-9_ -.]``.

        :param v: The configured application name
        :type v: str
        :return: The unchanged application name
        :rtype: str
        :raises ValueError: If the name contains other characters
        """
        if not APP_NAME_PATTERN.match(v):
            raise ValueError(
                "app_name may only contain letters, digits, '_', ' ', '-' and '.'"
            )
        return v

    def create_timeout(self) -> httpx.Timeout:
        """Build the httpx timeout configured by these settings.

        :return: Configured timeout object
        :rtype: httpx.Timeout
        """
        return create_timeout(
            connect=self.connect_timeout,
            read=self.read_timeout,
            write=self.write_timeout,
            pool=self.pool_timeout,
        )


def create_timeout(
    connect: Optional[float] = 5.0,
    read: Optional[float] = None,
    write: Optional[float] = None,
    pool: Optional[float] = 5.0,
) -> httpx.Timeout:
    """Create a timeout configuration object.

    Read and write default to no timeout: long uploads and downloads are
    bounded by the call context deadline instead.

    :param connect: Connection timeout in seconds
    :type connect: Optional[float]
    :param read: Read timeout in seconds
    :type read: Optional[float]
    :param write: Write timeout in seconds
    :type write: Optional[float]
    :param pool: Pool timeout in seconds
    :type pool: Optional[float]
    :return: Configured timeout object
    :rtype: httpx.Timeout
    """
    return httpx.Timeout(connect=connect, read=read, write=write, pool=pool)


settings = Settings()
"""Global settings instance for the Qiniu HTTP client.

This instance is created once and used by the default caller.
"""
