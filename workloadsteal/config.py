"""
Configuration management for the workload steal agent using Pydantic.
"""

import os
from pathlib import Path
from typing import Annotated, List

from pydantic import AliasChoices, Field, field_validator, model_validator
from pydantic_settings import (
    BaseSettings,
    JsonConfigSettingsSource,
    NoDecode,
    PydanticBaseSettingsSource,
    SettingsConfigDict,
)


DEFAULT_CONFIG_FILE = "/etc/workload-steal-agent/config.json"
DEFAULT_TLS_CERT_PATH = Path("/etc/certs/tls.crt")
DEFAULT_TLS_KEY_PATH = Path("/etc/certs/tls.key")


class AgentSettings(BaseSettings):
    """Base settings: init kwargs, then environment, then .env, then the JSON config file."""

    model_config = SettingsConfigDict(
        env_file=".env",
        env_file_encoding="utf-8",
        case_sensitive=False,
        populate_by_name=True,
        extra="ignore",
    )

    @classmethod
    def settings_customise_sources(
        cls,
        settings_cls: type[BaseSettings],
        init_settings: PydanticBaseSettingsSource,
        env_settings: PydanticBaseSettingsSource,
        dotenv_settings: PydanticBaseSettingsSource,
        file_secret_settings: PydanticBaseSettingsSource,
    ) -> tuple[PydanticBaseSettingsSource, ...]:
        config_file = Path(os.environ.get("CONFIG_FILE", DEFAULT_CONFIG_FILE))
        return (
            init_settings,
            env_settings,
            dotenv_settings,
            JsonConfigSettingsSource(settings_cls, json_file=config_file),
            file_secret_settings,
        )

    def export_json(self) -> str:
        """Export configuration as JSON."""
        return self.model_dump_json(indent=2)

    def export_dict(self) -> dict:
        """Export configuration as dictionary."""
        return self.model_dump()


class ServerConfig(AgentSettings):
    """Settings shared by the HTTPS listeners."""

    bind_address: str = Field(default="0.0.0.0")

    tls_cert_path: Path = Field(default=DEFAULT_TLS_CERT_PATH)
    tls_key_path: Path = Field(default=DEFAULT_TLS_KEY_PATH)
    # Serve plain HTTP instead of refusing to start without certificates. Local runs only.
    insecure: bool = Field(default=False)

    debug: bool = Field(default=False)
    log_json: bool = Field(default=False)

    @field_validator("tls_cert_path", "tls_key_path")
    @classmethod
    def validate_paths(cls, v):
        """Validate that paths exist if specified."""
        if v is not None and not v.exists():
            raise ValueError(f"Path does not exist: {v}")
        return v

    @model_validator(mode="after")
    def require_tls(self):
        if self.insecure:
            return self
        missing = [str(path) for path in (self.tls_cert_path, self.tls_key_path) if not path.exists()]
        if missing:
            raise ValueError(
                f"TLS certificate or key not found: {', '.join(missing)}; "
                "provide them or set insecure to serve plain HTTP"
            )
        return self


class NatsConfig(AgentSettings):
    """Message bus settings."""

    nats_url: str
    nats_subject: str
    nats_connect_timeout: float = Field(default=2.0, gt=0)


class AdmissionConfig(ServerConfig, NatsConfig):
    """Main configuration for the admission webhooks and the pod watcher."""

    mutate_port: int = Field(default=8443, ge=1, le=65535)
    validate_port: int = Field(default=8444, ge=1, le=65535)

    # Label that opts a workload out of stealing.
    opt_out_label: str = Field(
        min_length=1,
        validation_alias=AliasChoices("opt_out_label", "NO_WORK_LOAD_STEAL_LABLE"),
    )
    ignore_namespaces: Annotated[List[str], NoDecode] = Field(default_factory=list)

    watch_enabled: bool = Field(default=True)
    # Server-side watch timeout; 0 keeps the API server default.
    watch_timeout_seconds: int = Field(default=0, ge=0)
    # Reconnects after a watch stream error. A clean stream close never reconnects.
    # The new watch resumes from the last seen resourceVersion; if the API server
    # has compacted past it (410 Gone) the watch ends.
    watch_reconnect_attempts: int = Field(default=0, ge=0, le=1)
    # Events buffered between the watch thread and the publisher. A full buffer
    # blocks the watch thread until the publisher catches up.
    watch_queue_size: int = Field(default=100, ge=1)

    @field_validator("ignore_namespaces", mode="before")
    @classmethod
    def parse_namespaces(cls, v):
        """Parse comma-separated namespace list from environment."""
        if isinstance(v, str):
            v = v.split(",")
        if isinstance(v, (list, tuple, set)):
            return [ns.strip() for ns in v if isinstance(ns, str) and ns.strip()]
        return v


def load_config(**kwargs) -> AdmissionConfig:
    """Load configuration with environment variables and optional overrides."""
    return AdmissionConfig(**kwargs)
