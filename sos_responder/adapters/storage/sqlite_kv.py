"""
SQLite-based key-value store for SOS Responder.

This module implements the key-value store that keeps the auth
session (token and responder profile) across restarts.
"""

import aiosqlite
import time
from typing import Optional
from sos_responder.observability.logging_setup import get_logger

log = get_logger("sos.kv")

# SQLite 스키마
SCHEMA = """
CREATE TABLE IF NOT EXISTS kv (
    k TEXT PRIMARY KEY,
    v TEXT NOT NULL,
    exp INTEGER
);
CREATE INDEX IF NOT EXISTS idx_kv_exp ON kv(exp);
"""

class SQLiteKVStore:
    """SQLite 기반 키-값 저장소"""

    def __init__(self, path: str):
        """
        초기화합니다.

        Args:
            path: SQLite 데이터베이스 파일 경로
        """
        self.path = path
        log.info(f"SQLiteKVStore 초기화: {path}")

    async def init(self) -> None:
        """데이터베이스를 초기화합니다."""
        async with aiosqlite.connect(self.path) as db:
            await db.executescript(SCHEMA)
            await db.commit()
        log.info("SQLiteKVStore 스키마 초기화 완료")

    async def get(self, key: str) -> Optional[str]:
        """
        키로 값을 조회합니다.

        Args:
            key: 조회할 키

        Returns:
            값 또는 None (없거나 만료됨)
        """
        now = int(time.time())
        async with aiosqlite.connect(self.path) as db:
            cursor = await db.execute(
                "SELECT v FROM kv WHERE k = ? AND (exp IS NULL OR exp >= ?)",
                (key, now)
            )
            row = await cursor.fetchone()
            return row[0] if row else None

    async def set(self, key: str, value: str, ttl_sec: Optional[int] = None) -> None:
        """
        키-값을 저장합니다 (기존 값 덮어쓰기).

        Args:
            key: 저장할 키
            value: 저장할 값
            ttl_sec: TTL (초), None이면 만료 없음
        """
        exp = int(time.time()) + ttl_sec if ttl_sec is not None else None
        async with aiosqlite.connect(self.path) as db:
            await db.execute(
                "INSERT OR REPLACE INTO kv (k, v, exp) VALUES (?, ?, ?)",
                (key, value, exp)
            )
            await db.commit()

    async def delete(self, key: str) -> None:
        """키를 삭제합니다."""
        async with aiosqlite.connect(self.path) as db:
            await db.execute("DELETE FROM kv WHERE k = ?", (key,))
            await db.commit()

    async def gc(self, now: Optional[int] = None) -> int:
        """
        만료된 항목들을 정리합니다.

        Args:
            now: 현재 시간 (Unix timestamp), None이면 현재 시간 사용

        Returns:
            삭제된 항목 수
        """
        if now is None:
            now = int(time.time())

        try:
            async with aiosqlite.connect(self.path) as db:
                cursor = await db.execute(
                    "DELETE FROM kv WHERE exp IS NOT NULL AND exp < ?",
                    (now,)
                )
                await db.commit()
                deleted = cursor.rowcount
                if deleted > 0:
                    log.info(f"만료된 항목 {deleted}개 정리됨")
                return deleted
        except Exception as e:
            log.error(f"SQLiteKVStore gc 오류: {e}")
            return 0

