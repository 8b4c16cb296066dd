"""
Common 모듈 단위 테스트

이 모듈은 지리 유틸리티와 재시도 로직의 기능을 테스트합니다.
"""

import pytest
import asyncio
from unittest.mock import AsyncMock, patch

from sos_responder.common.geo import haversine_distance, validate_coordinates
from sos_responder.common.retry import backoff_delay, retry_with_backoff


class TestHaversineDistance:
    """Haversine 거리 계산 테스트"""

    def test_same_point(self):
        assert haversine_distance(37.5665, 126.9780, 37.5665, 126.9780) == 0.0

    def test_seoul_to_busan(self):
        """서울에서 부산까지 약 325km"""
        distance = haversine_distance(37.5665, 126.9780, 35.1796, 129.0756)
        assert 320 <= distance <= 330

    def test_equator_one_degree(self):
        assert 110 <= haversine_distance(0, 0, 0, 1) <= 112

    def test_symmetric(self):
        a = haversine_distance(37.5, 127.0, 35.1, 129.0)
        b = haversine_distance(35.1, 129.0, 37.5, 127.0)
        assert a == pytest.approx(b)


class TestValidateCoordinates:
    """좌표 유효성 테스트"""

    @pytest.mark.parametrize("lat,lon", [(0, 0), (90, 180), (-90, -180), (37.5, 127.0)])
    def test_valid(self, lat, lon):
        assert validate_coordinates(lat, lon)

    @pytest.mark.parametrize("lat,lon", [(91, 0), (0, 181), (-90.1, 0), (float("nan"), 0)])
    def test_invalid(self, lat, lon):
        assert not validate_coordinates(lat, lon)


class TestRetry:
    """재시도 로직 테스트"""

    def test_backoff_delay_grows_and_caps(self):
        assert backoff_delay(1, 1.0, 10.0) == 1.0
        assert backoff_delay(2, 1.0, 10.0) == 2.0
        assert backoff_delay(3, 1.0, 10.0) == 4.0
        assert backoff_delay(10, 1.0, 10.0) == 10.0

    async def test_success_first_try(self):
        func = AsyncMock(return_value="ok")

        assert await retry_with_backoff(func) == "ok"
        assert func.await_count == 1

    async def test_retries_then_succeeds(self):
        func = AsyncMock(side_effect=[ConnectionError(), ConnectionError(), "ok"])

        with patch("sos_responder.common.retry.asyncio.sleep", new=AsyncMock()) as sleep:
            result = await retry_with_backoff(func, max_retries=3, jitter=False)

        assert result == "ok"
        assert [c.args[0] for c in sleep.await_args_list] == [1.0, 2.0]

    async def test_gives_up_after_max_retries(self):
        func = AsyncMock(side_effect=ConnectionError("down"))

        with patch("sos_responder.common.retry.asyncio.sleep", new=AsyncMock()):
            with pytest.raises(ConnectionError):
                await retry_with_backoff(func, max_retries=2)

        assert func.await_count == 3

    async def test_non_retryable_propagates_immediately(self):
        """retry_on에 없는 예외는 즉시 전파"""
        func = AsyncMock(side_effect=ValueError("bad"))

        with pytest.raises(ValueError):
            await retry_with_backoff(func, retry_on=(ConnectionError,))

        assert func.await_count == 1
