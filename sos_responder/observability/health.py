"""
HTTP endpoints for SOS Responder.

This module implements health, readiness, metrics and info endpoints
plus the map surface (markers and bounds) and the responder commands
(online/offline, refresh, accept, report).
"""

from typing import Optional
from fastapi import FastAPI, HTTPException
from fastapi.responses import Response, JSONResponse
from prometheus_client import generate_latest, CONTENT_TYPE_LATEST
from pydantic import BaseModel, Field
import time
from sos_responder.settings import Settings
from sos_responder.core.errors import AlertApiError, LocationUnavailable, NotAuthenticated
from sos_responder.observability.logging_setup import get_logger
from sos_responder.orchestrators.responder import ResponderOrchestrator
from sos_responder.orchestrators.reporter import AlertReporter

log = get_logger("sos.http")

class ReportRequest(BaseModel):
    """경보 신고 요청 본문"""
    description: str
    category: str = Field(alias="type")
    injured_count: Optional[int] = Field(default=None, alias="numInjured", ge=0)
    lat: Optional[float] = Field(default=None, ge=-90, le=90)
    lng: Optional[float] = Field(default=None, ge=-180, le=180)

    model_config = {"populate_by_name": True}

def create_app(settings: Settings,
               orchestrator: ResponderOrchestrator,
               reporter: Optional[AlertReporter] = None) -> FastAPI:
    """FastAPI 애플리케이션을 생성합니다."""
    app = FastAPI(
        title=settings.observability.service_name,
        version=settings.observability.build_version,
        description="SOS Responder alert synchronization service"
    )

    start_time = time.time()

    @app.get("/health")
    async def health():
        """헬스 체크 엔드포인트"""
        return JSONResponse({
            "status": "ok",
            "service": settings.observability.service_name,
            "timestamp": time.time()
        })

    @app.get("/ready")
    async def ready():
        """레디니스 체크 엔드포인트 (채널 연결 여부)"""
        connected = orchestrator.channel.connected
        return JSONResponse({
            "status": "ready" if connected else "not_ready",
            "service": settings.observability.service_name,
            "channel_connected": connected,
            "timestamp": time.time()
        }, status_code=200 if connected else 503)

    @app.get("/metrics")
    async def metrics():
        """Prometheus 메트릭 엔드포인트"""
        if not settings.observability.metrics_enabled:
            raise HTTPException(status_code=503, detail="Metrics disabled")

        try:
            return Response(
                generate_latest(),
                media_type=CONTENT_TYPE_LATEST
            )
        except Exception as e:
            log.error(f"메트릭 생성 오류: {e}")
            raise HTTPException(status_code=500, detail="Metrics generation failed")

    @app.get("/info")
    async def info():
        """서비스 정보 엔드포인트"""
        uptime = time.time() - start_time
        return JSONResponse({
            "service": settings.observability.service_name,
            "version": settings.observability.build_version,
            "build_date": settings.observability.build_date,
            "uptime_seconds": int(uptime),
            "transport": settings.channel.transport,
            "location_provider": settings.location.provider,
            "metrics_enabled": settings.observability.metrics_enabled,
            "log_level": settings.observability.log_level
        })

    @app.get("/markers")
    async def markers():
        """지도 마커와 경계 상자"""
        items = orchestrator.markers()
        bounds = orchestrator.bounds()
        return {
            "count": len(items),
            "markers": [m.model_dump(mode="json") for m in items],
            "bounds": bounds.model_dump() if bounds else None,
        }

    @app.get("/presence")
    async def presence():
        """대응자 접속 상태"""
        return orchestrator.session.snapshot()

    @app.post("/presence/online")
    async def presence_online():
        """온라인 전환"""
        online = await orchestrator.go_online()
        if not online:
            raise HTTPException(status_code=409, detail="Could not go online")
        return orchestrator.session.snapshot()

    @app.post("/presence/offline")
    async def presence_offline():
        """오프라인 전환"""
        await orchestrator.go_offline()
        return orchestrator.session.snapshot()

    @app.post("/alerts/refresh")
    async def alerts_refresh():
        """대기 중 경보 목록 새로고침"""
        try:
            count = await orchestrator.refresh()
        except NotAuthenticated as e:
            raise HTTPException(status_code=401, detail=e.message)
        except AlertApiError as e:
            raise HTTPException(status_code=502, detail=e.message)
        return {"ok": True, "count": count}

    @app.post("/alerts/{alert_id}/accept")
    async def alerts_accept(alert_id: str):
        """경보 수락"""
        if not orchestrator.session.online:
            await orchestrator.accept_alert(alert_id)
            raise HTTPException(status_code=409, detail="Responder is offline")

        result = await orchestrator.accept_alert(alert_id)
        if result is None:
            raise HTTPException(status_code=409, detail="Alert is not pending or already being accepted")
        if not result.accepted:
            raise HTTPException(status_code=409, detail=result.reason or "Accept failed")
        log.info(f"경보 수락 요청 처리 완료 alert_id:{alert_id}")
        return {"ok": True, "alert_id": alert_id, "accepted": True}

    @app.post("/alerts", status_code=201)
    async def alerts_report(body: ReportRequest):
        """경보 신고"""
        if reporter is None:
            raise HTTPException(status_code=404, detail="Reporting disabled")
        try:
            result = await reporter.report(
                body.description,
                body.category,
                injured_count=body.injured_count,
                lat=body.lat,
                lng=body.lng,
            )
        except LocationUnavailable as e:
            raise HTTPException(status_code=422, detail=e.message)
        except NotAuthenticated as e:
            raise HTTPException(status_code=401, detail=e.message)
        except AlertApiError as e:
            raise HTTPException(status_code=502, detail=e.detail or e.message)
        return {
            "ok": True,
            "alert": result.alert.model_dump(mode="json"),
            "nearby_responders": result.nearby_responders,
        }

    @app.get("/notifications")
    async def notifications():
        """최근 사용자 알림"""
        recent = getattr(orchestrator.notifier, "recent", None)
        return {"notifications": recent() if callable(recent) else []}

    @app.get("/")
    async def root():
        """루트 엔드포인트"""
        return JSONResponse({
            "service": settings.observability.service_name,
            "version": settings.observability.build_version,
            "endpoints": {
                "health": "/health",
                "ready": "/ready",
                "metrics": "/metrics",
                "info": "/info",
                "markers": "/markers",
                "presence": "/presence",
                "notifications": "/notifications",
            }
        })

    return app
