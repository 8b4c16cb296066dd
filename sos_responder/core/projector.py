"""
Marker projection for SOS Responder.

Pure functions deriving the map marker set from a reconciler snapshot.
"""

from typing import Iterable, List, Mapping, Optional
from .models import Alert, MapBounds, Marker, Position
from .reconciler import Entry
from sos_responder.common.geo import haversine_distance

def display_label(alert: Alert) -> str:
    """마커 팝업에 표시할 문구를 생성합니다."""
    label = f"{alert.category}: {alert.description}" if alert.category else alert.description
    if alert.injured_count is not None:
        label += f" (injured: {alert.injured_count})"
    return label

def project(snapshot: Mapping[str, Entry], origin: Optional[Position] = None) -> List[Marker]:
    """
    스냅샷에서 마커 목록을 생성합니다.

    pending/accepting 경보마다 정확히 하나의 마커를 만들며, 순서는 스냅샷 순서를 따릅니다.

    Args:
        snapshot: AlertReconciler.snapshot() 결과
        origin: 대응자 위치 (있으면 거리 계산)

    Returns:
        마커 목록
    """
    markers = []
    for alert_id, entry in snapshot.items():
        loc = entry.alert.location
        distance = None
        if origin is not None:
            distance = round(haversine_distance(origin.lat, origin.lng, loc.lat, loc.lng), 3)
        markers.append(Marker(
            id=alert_id,
            lat=loc.lat,
            lng=loc.lng,
            display_label=display_label(entry.alert),
            state=entry.state,
            distance_km=distance,
        ))
    return markers

def fit_bounds(markers: Iterable[Marker]) -> Optional[MapBounds]:
    """마커 전체를 감싸는 경계 상자를 계산합니다. 마커가 없으면 None."""
    markers = list(markers)
    if not markers:
        return None
    lats = [m.lat for m in markers]
    lngs = [m.lng for m in markers]
    return MapBounds(south=min(lats), west=min(lngs), north=max(lats), east=max(lngs))
