"""Pydantic models for Tandem configuration."""

from __future__ import annotations

from pydantic import BaseModel, ConfigDict, Field


class _Frozen(BaseModel):
    model_config = ConfigDict(frozen=True)


class TandemIdentity(_Frozen):
    """Top-level Tandem identity metadata."""

    name: str = "Tandem"
    version: str = "0.1.0"


class PathsConfig(_Frozen):
    """Filesystem locations read and written by Tandem."""

    services_dir: str = "/etc/tandem/services"
    hosts_file: str = "/etc/hosts"
    certificate: str = "/etc/tandem/ssl/tandem.pem"
    master_config: str = "/var/lib/tandem/master.cfg"
    slave_config: str = "/var/lib/tandem/slave.cfg"
    dispatcher_config: str = "/var/lib/tandem/dispatcher.cfg"
    instance_header: str | None = None  # None = built-in header
    dispatcher_header: str | None = None


class InstancesConfig(_Frozen):
    """Listen addresses of the master/slave pair."""

    bind_address: str = "127.0.0.1"
    master_port: int = Field(8001, ge=1, le=65535)
    slave_port: int = Field(8002, ge=1, le=65535)


class DispatcherConfig(_Frozen):
    """Public-facing dispatcher listener settings."""

    bind_address: str = "*"
    http_port: int = Field(80, ge=1, le=65535)
    https_port: int = Field(443, ge=1, le=65535)
    force_https: bool = False
    https_exclusions: list[str] = Field(default_factory=list)


class EngineConfig(_Frozen):
    """How the proxy engine executable is run and supervised."""

    binary: str = "haproxy"
    debug: bool = False
    settle_seconds: float = Field(2.0, ge=0)
    start_grace_seconds: float = Field(0.5, ge=0)
    stop_timeout_seconds: float = Field(30.0, gt=0)


class WatchConfig(_Frozen):
    """Change watcher settings."""

    debounce_seconds: float = Field(0.5, ge=0)  # 0 = one cycle per raw event


class ApiConfig(_Frozen):
    """Embedded status API settings."""

    enabled: bool = False
    host: str = "127.0.0.1"
    port: int = Field(8500, ge=1, le=65535)


class AuthConfig(_Frozen):
    """Authentication configuration."""

    api_key: str = ""  # empty = auth disabled


class WebhookConfig(_Frozen):
    """Configuration for a single webhook endpoint."""

    url: str
    events: list[str] = Field(default_factory=lambda: ["reload.completed"])  # "*" or "family.*" allowed
    secret: str = ""  # HMAC signing key, supports ${ENV_VAR}
    attempts: int = Field(3, ge=1)
    timeout_seconds: float = Field(10.0, gt=0)


class TandemConfig(_Frozen):
    """Root configuration model for .tandem.yaml."""

    tandem: TandemIdentity = Field(default_factory=TandemIdentity)
    paths: PathsConfig = Field(default_factory=PathsConfig)
    instances: InstancesConfig = Field(default_factory=InstancesConfig)
    dispatcher: DispatcherConfig = Field(default_factory=DispatcherConfig)
    engine: EngineConfig = Field(default_factory=EngineConfig)
    watch: WatchConfig = Field(default_factory=WatchConfig)
    api: ApiConfig = Field(default_factory=ApiConfig)
    auth: AuthConfig = Field(default_factory=AuthConfig)
    webhooks: list[WebhookConfig] = Field(default_factory=list)
    event_log_size: int = 100
    history_max_records: int = 50  # 0 = unlimited
