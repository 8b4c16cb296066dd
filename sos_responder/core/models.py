"""
Core domain models for SOS Responder.

This module defines the core domain models using Pydantic v2
for type safety and validation.
"""

from enum import Enum
from typing import Any, Dict, Literal, Optional
from pydantic import BaseModel, ConfigDict, Field

# 경보 상태 타입 정의
AlertStatus = Literal["pending", "accepted", "resolved"]

ALERT_STATUSES = ("pending", "accepted", "resolved")

class Position(BaseModel):
    """위도/경도 좌표 모델"""
    model_config = ConfigDict(frozen=True)

    lat: float = Field(ge=-90, le=90)
    lng: float = Field(ge=-180, le=180)

    def to_coordinates(self) -> list:
        """서버 규약([경도, 위도]) 순서의 좌표를 반환합니다."""
        return [self.lng, self.lat]

class Alert(BaseModel):
    """신고된 단일 사고 모델"""
    model_config = ConfigDict(frozen=True)

    id: str
    status: AlertStatus = "pending"
    location: Position
    description: str = ""
    category: str = ""
    injured_count: Optional[int] = None
    photo_url: Optional[str] = None
    accepted_by: Optional[str] = None
    created_at: Optional[str] = None
    updated_at: Optional[str] = None

class AlertEvent(BaseModel):
    """
    정규화된 푸시 이벤트 모델

    상태 변경 이벤트는 id와 status만 가질 수 있으므로 나머지 필드는 모두 선택입니다.
    """
    model_config = ConfigDict(frozen=True)

    id: str
    status: AlertStatus
    location: Optional[Position] = None
    description: Optional[str] = None
    category: Optional[str] = None
    injured_count: Optional[int] = None
    photo_url: Optional[str] = None
    accepted_by: Optional[str] = None
    created_at: Optional[str] = None
    updated_at: Optional[str] = None

    def declared_fields(self) -> Dict[str, Any]:
        """이벤트가 실제로 선언한 필드만 반환합니다 (id 제외)."""
        return {
            name: getattr(self, name)
            for name in self.model_fields_set
            if name != "id"
        }

    def to_alert(self) -> Optional[Alert]:
        """위치가 있으면 Alert로 변환하고, 없으면 None을 반환합니다."""
        if self.location is None:
            return None
        return Alert(**self.model_dump(exclude_none=True))

class EntryState(str, Enum):
    """작업 집합 내 경보의 로컬 상태"""
    PENDING = "pending"
    ACCEPTING = "accepting"

class Marker(BaseModel):
    """지도 마커 모델"""
    model_config = ConfigDict(frozen=True)

    id: str
    lat: float
    lng: float
    display_label: str
    state: EntryState = EntryState.PENDING
    distance_km: Optional[float] = None

class MapBounds(BaseModel):
    """마커 집합을 감싸는 경계 상자"""
    south: float
    west: float
    north: float
    east: float

class ResponderPresence(BaseModel):
    """대응자 접속 상태 모델"""
    online: bool = False
    last_known_position: Optional[Position] = None
    watch_handle: Optional[Any] = None
