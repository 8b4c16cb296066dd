"""
Normalization functions for SOS Responder.

This module contains pure functions for converting raw push payloads and
REST documents into internal domain models.
"""

from typing import Any, Dict, Optional
from pydantic import ValidationError
from .models import ALERT_STATUSES, Alert, AlertEvent, Position
from sos_responder.observability.logging_setup import get_logger

log = get_logger("sos.normalize")

def _first(raw: Dict[str, Any], *keys: str) -> Any:
    """여러 후보 키 중 처음으로 존재하는 값을 반환합니다."""
    for key in keys:
        if key in raw and raw[key] is not None:
            return raw[key]
    return None

def parse_position(raw: Dict[str, Any]) -> Optional[Position]:
    """
    페이로드에서 좌표를 추출합니다.

    GeoJSON({"location": {"coordinates": [lng, lat]}}), 중첩 객체
    ({"location": {"lat": .., "lng": ..}}), 평탄화된 lat/lng 필드를 모두 지원합니다.

    Args:
        raw: 원시 딕셔너리

    Returns:
        Position 또는 None
    """
    lat: Any = None
    lng: Any = None

    location = raw.get("location")
    if isinstance(location, dict):
        coords = location.get("coordinates")
        if isinstance(coords, (list, tuple)) and len(coords) >= 2:
            # GeoJSON은 (경도, 위도) 순서
            lng, lat = coords[0], coords[1]
        else:
            lat = _first(location, "lat", "latitude")
            lng = _first(location, "lng", "lon", "longitude")
    elif isinstance(raw.get("coordinates"), (list, tuple)) and len(raw["coordinates"]) >= 2:
        lng, lat = raw["coordinates"][0], raw["coordinates"][1]
    else:
        lat = _first(raw, "lat", "latitude")
        lng = _first(raw, "lng", "lon", "longitude")

    if lat is None or lng is None:
        return None

    try:
        return Position(lat=float(lat), lng=float(lng))
    except (ValueError, TypeError, ValidationError) as e:
        log.warning(f"좌표 변환 실패: lat={lat}, lng={lng}, error={e}")
        return None

def _accepted_by(value: Any) -> Optional[str]:
    # 서버가 populate한 경우 사용자 문서가 들어옴
    if isinstance(value, dict):
        ident = value.get("_id") or value.get("id")
        return str(ident) if ident else None
    return str(value) if value else None

def to_event(raw: Any) -> AlertEvent:
    """
    원시 푸시 페이로드를 AlertEvent로 변환합니다.

    Args:
        raw: 소켓/MQTT에서 수신한 원시 페이로드

    Returns:
        정규화된 AlertEvent

    Raises:
        ValueError: id 또는 status가 없거나 잘못된 경우
    """
    if not isinstance(raw, dict):
        raise ValueError(f"Unsupported payload type: {type(raw).__name__}")

    # {"alert": {...}} 형태로 감싸진 응답 처리
    if not _first(raw, "_id", "id", "alertId") and isinstance(raw.get("alert"), dict):
        raw = raw["alert"]

    alert_id = _first(raw, "_id", "id", "alertId")
    if not alert_id:
        raise ValueError("Alert payload has no id")

    status = str(raw.get("status") or "").lower()
    if status not in ALERT_STATUSES:
        raise ValueError(f"Alert {alert_id} has invalid status: {raw.get('status')!r}")

    fields: Dict[str, Any] = {"id": str(alert_id), "status": status}

    position = parse_position(raw)
    if position is not None:
        fields["location"] = position

    description = raw.get("description")
    if description is not None:
        fields["description"] = str(description)

    category = _first(raw, "category", "type")
    if category is not None:
        fields["category"] = str(category)

    injured = _first(raw, "injuredCount", "numInjured", "injured_count")
    if injured is not None:
        try:
            fields["injured_count"] = int(injured)
        except (ValueError, TypeError):
            log.warning(f"부상자 수 변환 실패: alert_id={alert_id}, value={injured!r}")

    photo_url = _first(raw, "photoUrl", "photo_url")
    if photo_url is not None:
        fields["photo_url"] = str(photo_url)

    if "acceptedBy" in raw or "accepted_by" in raw:
        fields["accepted_by"] = _accepted_by(_first(raw, "acceptedBy", "accepted_by"))

    created_at = _first(raw, "createdAt", "created_at")
    if created_at is not None:
        fields["created_at"] = str(created_at)

    updated_at = _first(raw, "updatedAt", "updated_at")
    if updated_at is not None:
        fields["updated_at"] = str(updated_at)

    return AlertEvent(**fields)

def to_alert(raw: Any) -> Alert:
    """
    REST 응답 문서를 Alert로 변환합니다.

    Raises:
        ValueError: 필수 필드나 위치가 없는 경우
    """
    event = to_event(raw)
    alert = event.to_alert()
    if alert is None:
        raise ValueError(f"Alert {event.id} has no usable location")
    return alert
