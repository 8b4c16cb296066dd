"""
Key-value store port interface.

This module defines the protocol for the key-value storage that
persists the auth session (token and responder profile).
"""

from typing import Optional, Protocol

class KVStorePort(Protocol):
    """키-값 저장소 포트 인터페이스"""

    async def init(self) -> None:
        """저장소를 초기화합니다 (스키마 생성 등)."""
        ...

    async def get(self, key: str) -> Optional[str]:
        """
        키로 값을 조회합니다. 만료된 값은 None으로 취급합니다.

        Args:
            key: 조회할 키

        Returns:
            값 또는 None
        """
        ...

    async def set(self, key: str, value: str, ttl_sec: Optional[int] = None) -> None:
        """
        키-값을 저장합니다 (기존 값 덮어쓰기).

        Args:
            key: 저장할 키
            value: 저장할 값
            ttl_sec: TTL (초), None이면 만료 없음
        """
        ...

    async def delete(self, key: str) -> None:
        """키를 삭제합니다. 없는 키도 안전합니다."""
        ...
