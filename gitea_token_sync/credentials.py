"""
credentials
-----------

관리자 API 토큰/러너 등록 토큰/부트스트랩 계정 모델과 형식 검사.

형식 검사(structural check)는 길이와 문자 집합만 보는 것이며 암호학적 검증이 아니다.
실제로 쓸 수 있는 토큰인지는 Gitea 에 probe 요청을 보내서 확인한다.
"""

from __future__ import annotations

import re
from dataclasses import dataclass, field
from typing import List, Optional


ACCESS_TOKEN_LENGTH = 40
MIN_REGISTRATION_TOKEN_LENGTH = 20

_ACCESS_TOKEN_RE = re.compile(r"[0-9a-f]{%d}" % ACCESS_TOKEN_LENGTH)


def is_valid_access_token(value: Optional[str]) -> bool:
    """Gitea 개인 접근 토큰(sha1) 형식: 정확히 40자 소문자 hex."""
    if not isinstance(value, str):
        return False
    return _ACCESS_TOKEN_RE.fullmatch(value) is not None


def is_valid_registration_token(value: Optional[str]) -> bool:
    # 러너 등록 토큰은 길이가 고정되어 있지 않다.
    if not isinstance(value, str) or not value.strip():
        return False
    return len(value.strip()) >= MIN_REGISTRATION_TOKEN_LENGTH


@dataclass(frozen=True)
class Credential:
    value: str = field(repr=False)
    name: str
    owner: str
    scopes: List[str] = field(default_factory=list)
    id: Optional[int] = None


@dataclass(frozen=True)
class RemoteIdentityAccount:
    username: str
    password: str = field(repr=False)

    @property
    def basic_auth(self) -> tuple[str, str]:
        return (self.username, self.password)
