# sos_responder/main.py
import os, asyncio, signal
from contextlib import AsyncExitStack
from typing import Optional
import uvicorn
from sos_responder.settings import Settings
from sos_responder.core.errors import AlertApiError, NotAuthenticated
from sos_responder.core.reconciler import AlertReconciler
from sos_responder.observability.health import create_app
from sos_responder.observability.logging_setup import setup_logger, get_logger
from sos_responder.adapters.socketio_channel.channel import SocketIOPresenceChannel
from sos_responder.adapters.mqtt_channel.channel import MqttPresenceChannel
from sos_responder.adapters.http_api.alerts_client import AlertsApiClient
from sos_responder.adapters.http_api.auth_client import AuthSession
from sos_responder.adapters.homeassistant.client import HAClient
from sos_responder.adapters.homeassistant.location import HALocationTracker
from sos_responder.adapters.location.static import StaticLocationTracker
from sos_responder.adapters.notify.notifiers import HANotifier, LogNotifier
from sos_responder.adapters.storage.sqlite_kv import SQLiteKVStore
from sos_responder.orchestrators.session import PresenceController
from sos_responder.orchestrators.responder import ResponderOrchestrator
from sos_responder.orchestrators.reporter import AlertReporter

def _b(name, default=False): return os.getenv(name, str(default)).lower() in ("1","true","yes","on")

def _f(name, default: Optional[float]) -> Optional[float]:
    raw = os.getenv(name)
    return float(raw) if raw not in (None, "") else default

def build_settings() -> Settings:
    s = Settings()
    # 플래그
    s.auto_online = _b("AUTO_ONLINE", s.auto_online)

    # 서버 (채널과 API가 같은 서버를 바라보는 것이 기본)
    server_url = os.getenv("SOS_SERVER_URL")
    if server_url:
        s.channel.url = server_url
        s.api.base_url = server_url

    # 채널
    s.channel.transport = os.getenv("CHANNEL_TRANSPORT", s.channel.transport)
    s.channel.url = os.getenv("CHANNEL_URL", s.channel.url)
    s.channel.socketio_path = os.getenv("SOCKETIO_PATH", s.channel.socketio_path)
    s.channel.send_token = _b("CHANNEL_SEND_TOKEN", s.channel.send_token)
    s.channel.backoff_initial_sec = float(os.getenv("CHANNEL_BACKOFF_INITIAL_SEC", s.channel.backoff_initial_sec))
    s.channel.backoff_max_sec = float(os.getenv("CHANNEL_BACKOFF_MAX_SEC", s.channel.backoff_max_sec))

    # MQTT 채널
    s.mqtt_channel.host = os.getenv("MQTT_HOST", s.mqtt_channel.host)
    s.mqtt_channel.port = int(os.getenv("MQTT_PORT", s.mqtt_channel.port))
    s.mqtt_channel.username = os.getenv("MQTT_USERNAME", s.mqtt_channel.username)
    s.mqtt_channel.password = os.getenv("MQTT_PASSWORD", s.mqtt_channel.password)
    s.mqtt_channel.client_id = os.getenv("MQTT_CLIENT_ID", s.mqtt_channel.client_id)
    s.mqtt_channel.keepalive = int(os.getenv("MQTT_KEEPALIVE", s.mqtt_channel.keepalive))
    s.mqtt_channel.tls = _b("MQTT_TLS", s.mqtt_channel.tls)
    s.mqtt_channel.topic_prefix = os.getenv("MQTT_TOPIC_PREFIX", s.mqtt_channel.topic_prefix)

    # API / 인증
    s.api.base_url = os.getenv("API_BASE_URL", s.api.base_url)
    s.api.timeout_sec = int(os.getenv("API_TIMEOUT_SEC", s.api.timeout_sec))
    s.api.max_retries = int(os.getenv("API_MAX_RETRIES", s.api.max_retries))
    s.auth.email = os.getenv("SOS_EMAIL", s.auth.email)
    s.auth.password = os.getenv("SOS_PASSWORD", s.auth.password)

    # HA (애드온에서는 SUPERVISOR_TOKEN 사용)
    s.ha.base_url = os.getenv("HA_BASE_URL", s.ha.base_url)
    s.ha.token = os.getenv("HA_TOKEN", os.getenv("SUPERVISOR_TOKEN", s.ha.token))
    s.ha.device_tracker = os.getenv("HA_DEVICE_TRACKER", s.ha.device_tracker)
    s.ha.notify_service = os.getenv("HA_NOTIFY_SERVICE", s.ha.notify_service)

    # 위치
    s.location.provider = os.getenv("LOCATION_PROVIDER", s.location.provider)
    s.location.fix_timeout_sec = float(os.getenv("LOCATION_FIX_TIMEOUT_SEC", s.location.fix_timeout_sec))
    s.location.poll_interval_sec = float(os.getenv("LOCATION_POLL_INTERVAL_SEC", s.location.poll_interval_sec))
    s.location.static_lat = _f("STATIC_LAT", s.location.static_lat)
    s.location.static_lng = _f("STATIC_LNG", s.location.static_lng)

    # 관측성
    s.observability.metrics_enabled = _b("METRICS_ENABLED", s.observability.metrics_enabled)
    s.observability.http_port = int(os.getenv("METRICS_PORT", s.observability.http_port))
    s.observability.log_level = os.getenv("LOG_LEVEL", s.observability.log_level)
    s.observability.json_logs = _b("JSON_LOGS", s.observability.json_logs)

    # 신뢰성
    s.reliability.session_db_path = os.getenv("SESSION_DB_PATH", s.reliability.session_db_path)
    s.reliability.tombstone_ttl_sec = float(os.getenv("TOMBSTONE_TTL_SEC", s.reliability.tombstone_ttl_sec))
    s.reliability.tombstone_limit = int(os.getenv("TOMBSTONE_LIMIT", s.reliability.tombstone_limit))

    return s

def build_channel(s: Settings, auth: AuthSession):
    if s.channel.transport == "mqtt":
        return MqttPresenceChannel(
            s.mqtt_channel.host,
            s.mqtt_channel.port,
            topic_prefix=s.mqtt_channel.topic_prefix,
            username=s.mqtt_channel.username,
            password=s.mqtt_channel.password,
            tls=s.mqtt_channel.tls,
            client_id=s.mqtt_channel.client_id,
            keepalive=s.mqtt_channel.keepalive,
            qos=s.mqtt_channel.qos,
        )
    return SocketIOPresenceChannel(
        s.channel.url,
        socketio_path=s.channel.socketio_path,
        token_provider=auth.token if s.channel.send_token else None,
        backoff_initial=s.channel.backoff_initial_sec,
        backoff_max=s.channel.backoff_max_sec,
    )

def build_tracker(s: Settings, ha: Optional[HAClient]):
    if s.location.provider == "homeassistant" and ha is not None:
        return HALocationTracker(ha, s.ha.device_tracker, poll_interval_sec=s.location.poll_interval_sec)
    return StaticLocationTracker(s.location.static_lat, s.location.static_lng)

async def sign_in(s: Settings, auth: AuthSession) -> None:
    log = get_logger("sos.main")
    await auth.restore()
    try:
        if not auth.token() and s.auth.email and s.auth.password:
            await auth.login(s.auth.email, s.auth.password)
        else:
            await auth.ensure_user_loaded()
    except (NotAuthenticated, AlertApiError) as e:
        log.error("로그인 실패", error=e.message)
        return
    if auth.current_user and not auth.is_responder():
        log.warning("대응자 계정이 아닙니다. 경보 수락이 거부될 수 있습니다", role=auth.current_user.role)

async def start_http(settings: Settings, orch: ResponderOrchestrator, reporter: AlertReporter) -> Optional[asyncio.Task]:
    if not settings.observability.metrics_enabled: return None
    app = create_app(settings, orch, reporter)
    return asyncio.create_task(uvicorn.Server(
        uvicorn.Config(app, host="0.0.0.0", port=settings.observability.http_port, log_level="info")
    ).serve())

async def main():
    s = build_settings()
    setup_logger(level=s.observability.log_level, json_logs=s.observability.json_logs)
    log = get_logger("sos.main")
    log.info("설정 로드 완료", transport=s.channel.transport, location=s.location.provider)

    store = SQLiteKVStore(s.reliability.session_db_path); await store.init(); await store.gc()
    auth = AuthSession(s.api.base_url, store, timeout=s.api.timeout_sec)
    await sign_in(s, auth)

    async with AsyncExitStack() as stack:
        ha: Optional[HAClient] = None
        if s.ha.token and (s.location.provider == "homeassistant" or s.ha.notify_service):
            ha = await stack.enter_async_context(HAClient(s.ha.base_url, s.ha.token, s.ha.timeout_sec))
        elif s.location.provider == "homeassistant":
            log.warning("HA 토큰이 없어 고정 위치로 폴백")

        api = await stack.enter_async_context(
            AlertsApiClient(s.api.base_url, identity=auth, timeout=s.api.timeout_sec, max_retries=s.api.max_retries)
        )
        channel = build_channel(s, auth)
        tracker = build_tracker(s, ha)
        notifier = HANotifier(ha, s.ha.notify_service) if ha and s.ha.notify_service else LogNotifier()

        reconciler = AlertReconciler(
            tombstone_ttl_sec=s.reliability.tombstone_ttl_sec,
            tombstone_limit=s.reliability.tombstone_limit,
        )
        session = PresenceController(channel, tracker, auth, fix_timeout_sec=s.location.fix_timeout_sec)
        orch = ResponderOrchestrator(
            channel, api, session, reconciler, notifier,
            on_auth_lost=auth.logout,
            auto_online=s.auto_online and auth.is_authenticated(),
        )
        reporter = AlertReporter(api, tracker, notifier, fix_timeout_sec=s.location.fix_timeout_sec)
        log.info("오케스트레이터 생성 완료")

        http_task = await start_http(s, orch, reporter)
        if http_task:
            log.info("HTTP 서버 시작됨")

        stop = asyncio.Future()
        try:
            loop = asyncio.get_running_loop()
            for sig in (signal.SIGTERM, signal.SIGINT):
                try: loop.add_signal_handler(sig, lambda: (not stop.done()) and stop.set_result(True))
                except NotImplementedError: pass
        except RuntimeError: pass

        try:
            await orch.start()
            await stop
        finally:
            # 오프라인 알림 -> 감시 해제 -> 연결 종료
            await orch.stop()
            if http_task: http_task.cancel()
            log.info("종료 완료")

def run():
    asyncio.run(main())

if __name__ == "__main__":
    run()
