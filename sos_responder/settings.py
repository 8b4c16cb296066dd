# sos_responder/settings.py
from __future__ import annotations
from pydantic import BaseModel, Field

class ChannelConfig(BaseModel):
    transport: str = "socketio"               # socketio | mqtt
    url: str = "http://localhost:5000"
    socketio_path: str = "socket.io"
    send_token: bool = True                   # Authorization 헤더로 세션 토큰 전달
    backoff_initial_sec: float = 1.0
    backoff_max_sec: float = 30.0

class MqttChannelConfig(BaseModel):
    host: str = "localhost"
    port: int = 1883
    username: str | None = None
    password: str | None = None
    tls: bool = False
    client_id: str | None = None
    keepalive: int = 30
    topic_prefix: str = "sos"
    qos: int = 1

class ApiConfig(BaseModel):
    base_url: str = "http://localhost:5000"
    timeout_sec: int = 10
    max_retries: int = 3

class AuthConfig(BaseModel):
    email: str | None = None
    password: str | None = None

class HAConfig(BaseModel):
    base_url: str = "http://supervisor/core/api"
    token: str = ""
    timeout_sec: int = 5
    device_tracker: str = "device_tracker.responder_phone"
    notify_service: str = ""                  # 예: mobile_app_pixel_8 (비우면 로그 알림)

class LocationConfig(BaseModel):
    provider: str = "homeassistant"           # homeassistant | static
    fix_timeout_sec: float = 8.0
    poll_interval_sec: float = 5.0
    static_lat: float | None = None
    static_lng: float | None = None

class Observability(BaseModel):
    http_port: int = 8099
    metrics_enabled: bool = True
    service_name: str = "SOS-Responder"
    build_version: str = "0.1.0"
    build_date: str = "2026-10-01"
    log_level: str = "INFO"
    json_logs: bool = False

class Reliability(BaseModel):
    session_db_path: str = "/data/session.db"
    tombstone_ttl_sec: float = 3600.0
    tombstone_limit: int = 10000

class Settings(BaseModel):
    # 상위 플래그(옵션)
    auto_online: bool = True                  # 시작 시 자동으로 온라인 전환

    # 하위 섹션 (기본값/팩토리로 누락 방지)
    channel: ChannelConfig = Field(default_factory=ChannelConfig)
    mqtt_channel: MqttChannelConfig = Field(default_factory=MqttChannelConfig)
    api: ApiConfig = Field(default_factory=ApiConfig)
    auth: AuthConfig = Field(default_factory=AuthConfig)
    ha: HAConfig = Field(default_factory=HAConfig)
    location: LocationConfig = Field(default_factory=LocationConfig)
    observability: Observability = Field(default_factory=Observability)
    reliability: Reliability = Field(default_factory=Reliability)
