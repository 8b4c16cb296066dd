"""
Responder identity port interface.

This module defines the protocol through which the core obtains the
responder's stable identity without managing credentials itself.
"""

from typing import Optional, Protocol

class IdentityPort(Protocol):
    """대응자 신원 포트 인터페이스"""

    def current_user_id(self) -> Optional[str]:
        """인증된 대응자의 id, 없으면 None"""
        ...

    def token(self) -> Optional[str]:
        """세션 토큰, 없으면 None"""
        ...
