"""
Auth session for SOS Responder.

This module signs the responder in against the dispatch server and keeps
the session token and profile in the key-value store, so the identity
survives restarts.
"""

import asyncio
from typing import Any, Literal, Optional
import aiohttp
from pydantic import BaseModel, ConfigDict, Field, ValidationError
from sos_responder.core.errors import AlertApiError, NotAuthenticated
from sos_responder.observability.logging_setup import get_logger
from sos_responder.ports.kvstore import KVStorePort

log = get_logger("sos.auth")

TOKEN_KEY = "sos_token"
USER_KEY = "sos_user"

class UserProfile(BaseModel):
    """인증된 사용자 프로필"""
    model_config = ConfigDict(populate_by_name=True, extra="ignore")

    id: str = Field(alias="_id")
    name: str = ""
    email: str = ""
    role: Literal["user", "responder"] = "user"

class AuthSession:
    """세션 토큰과 프로필을 관리하는 신원 제공자"""

    def __init__(self, base_url: str, store: KVStorePort, *, timeout: int = 10):
        """
        초기화합니다.

        Args:
            base_url: 서버 기본 URL
            store: 세션 저장소
            timeout: 요청 타임아웃 (초)
        """
        self.base_url = base_url.rstrip('/')
        self.store = store
        self.timeout = timeout
        self._token: Optional[str] = None
        self._user: Optional[UserProfile] = None

    # IdentityPort
    def token(self) -> Optional[str]:
        return self._token

    def current_user_id(self) -> Optional[str]:
        return self._user.id if self._user else None

    @property
    def current_user(self) -> Optional[UserProfile]:
        return self._user

    def is_authenticated(self) -> bool:
        return self._token is not None and self._user is not None

    def is_responder(self) -> bool:
        return self._user is not None and self._user.role == "responder"

    async def restore(self) -> bool:
        """
        저장된 세션을 복원합니다.

        Returns:
            토큰이 복원되었는지 여부
        """
        self._token = await self.store.get(TOKEN_KEY)
        raw_user = await self.store.get(USER_KEY)
        self._user = None
        if raw_user:
            try:
                self._user = UserProfile.model_validate_json(raw_user)
            except ValidationError as e:
                # 손상된 프로필은 버리고 서버에서 다시 가져옴
                log.warning("저장된 프로필 손상, 삭제함", error=str(e))
                await self.store.delete(USER_KEY)
        log.info("세션 복원", authenticated=self.is_authenticated(), user_id=self.current_user_id())
        return self._token is not None

    async def _call(self, method: str, endpoint: str, **kwargs) -> Any:
        """
        인증 API를 호출합니다.

        Raises:
            NotAuthenticated: 4xx 응답 (자격 증명 오류, 만료된 토큰)
            AlertApiError: 5xx 응답 또는 네트워크 오류
        """
        headers = {"Authorization": f"Bearer {self._token}"} if self._token else {}
        url = f"{self.base_url}{endpoint}"
        try:
            async with aiohttp.ClientSession(timeout=aiohttp.ClientTimeout(total=self.timeout)) as session:
                async with session.request(method, url, headers=headers, **kwargs) as response:
                    body = await response.json(content_type=None)
                    status = response.status
        except (aiohttp.ClientError, asyncio.TimeoutError, ValueError) as e:
            raise AlertApiError(f"인증 서버 요청 실패: {e}") from e

        if status in (401, 403):
            raise NotAuthenticated(self._message(body) or "Please sign in again.")
        if 400 <= status < 500:
            raise NotAuthenticated(self._message(body) or f"HTTP {status}")
        if status >= 500:
            raise AlertApiError(self._message(body) or f"HTTP {status}", status=status)
        return body

    @staticmethod
    def _message(body: Any) -> Optional[str]:
        if isinstance(body, dict):
            return body.get("message") or body.get("error")
        return None

    async def _store_session(self, body: Any) -> UserProfile:
        # 응답은 프로필 필드와 token이 같은 객체에 들어 있음
        if not isinstance(body, dict) or not body.get("token"):
            raise NotAuthenticated("인증 응답 형식이 올바르지 않습니다")
        profile = body.get("user") if isinstance(body.get("user"), dict) else body
        try:
            user = UserProfile.model_validate(profile)
        except ValidationError as e:
            raise NotAuthenticated(f"사용자 프로필 형식 오류: {e}") from e

        self._token = str(body["token"])
        self._user = user
        await self.store.set(TOKEN_KEY, self._token)
        await self.store.set(USER_KEY, user.model_dump_json(by_alias=True))
        log.info("로그인됨", user_id=user.id, role=user.role)
        return user

    async def register(self, name: str, email: str, password: str, role: str = "responder") -> UserProfile:
        """계정을 등록하고 세션을 저장합니다."""
        payload = {"name": name, "email": email, "password": password, "role": role}
        body = await self._call("POST", "/api/auth/register", json=payload)
        return await self._store_session(body)

    async def login(self, email: str, password: str) -> UserProfile:
        """로그인하고 세션을 저장합니다."""
        body = await self._call("POST", "/api/auth/login", json={"email": email, "password": password})
        return await self._store_session(body)

    async def me(self) -> UserProfile:
        """
        서버에서 프로필을 다시 가져옵니다.

        Raises:
            NotAuthenticated: 토큰이 없거나 만료된 경우 (세션도 지움)
        """
        if not self._token:
            raise NotAuthenticated()
        try:
            body = await self._call("GET", "/api/auth/profile")
        except NotAuthenticated:
            await self.logout()
            raise
        try:
            user = UserProfile.model_validate(body.get("user", body) if isinstance(body, dict) else body)
        except ValidationError as e:
            raise NotAuthenticated(f"사용자 프로필 형식 오류: {e}") from e
        self._user = user
        await self.store.set(USER_KEY, user.model_dump_json(by_alias=True))
        return user

    async def ensure_user_loaded(self) -> Optional[UserProfile]:
        """토큰은 있는데 프로필이 없으면 서버에서 가져옵니다."""
        if self._user is None and self._token:
            return await self.me()
        return self._user

    async def logout(self) -> None:
        """세션을 지웁니다."""
        self._token = None
        self._user = None
        await self.store.delete(TOKEN_KEY)
        await self.store.delete(USER_KEY)
        log.info("로그아웃됨")
