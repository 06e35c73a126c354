"""
pytest 설정:

로컬 작업 환경에 설치된 다른 버전의 gitea_token_sync 패키지가 존재할 때,
`pytest` 실행 시 site-packages 쪽이 먼저 import 되어 테스트가 깨질 수 있다.

테스트는 항상 현재 레포의 소스를 대상으로 해야 하므로, repo root 를 sys.path 최상단에 고정한다.

그 외에 Gitea API / Kubernetes Secret 을 메모리 안에서 흉내내는 fake 들을 fixture 로 제공한다.
"""

from __future__ import annotations

import os
import secrets
import sys
from typing import Dict, List, Optional, Set

import pytest


def pytest_configure() -> None:
    repo_root = os.path.abspath(os.path.join(os.path.dirname(__file__), ".."))
    if repo_root not in sys.path:
        sys.path.insert(0, repo_root)


from gitea_token_sync.credentials import (  # noqa: E402
    Credential,
    RemoteIdentityAccount,
    is_valid_access_token,
)
from gitea_token_sync.errors import AuthFailed, GiteaAPIError, IssuanceFailed  # noqa: E402


MUTATING_CALLS = {"delete_token", "create_token"}


class FakeGitea:
    """GiteaClient 와 같은 인터페이스를 가진 메모리 내 Gitea."""

    def __init__(self, username: str = "gitea_admin") -> None:
        self.account: Optional[RemoteIdentityAccount] = RemoteIdentityAccount(username, "s3cret")
        self.username = username
        self.tokens: Dict[int, str] = {}
        self.calls: List[tuple] = []
        self.alive_responses: List[bool] = []
        self.fail_delete: Set[int] = set()
        self.issue_value: Optional[str] = None
        self.reject_probe: Set[str] = set()
        self.registration_tokens: List[str] = []
        self._next_id = 1

    def add_token(self, value: Optional[str] = None) -> int:
        token_id = self._next_id
        self._next_id += 1
        self.tokens[token_id] = value or secrets.token_hex(20)
        return token_id

    def __enter__(self) -> "FakeGitea":
        return self

    def __exit__(self, *exc_info: object) -> None:
        self.calls.append(("close",))

    @property
    def mutations(self) -> List[tuple]:
        return [c for c in self.calls if c[0] in MUTATING_CALLS]

    def is_alive(self) -> bool:
        self.calls.append(("is_alive",))
        if self.alive_responses:
            return self.alive_responses.pop(0)
        return True

    def list_tokens(self, account: Optional[str] = None) -> Set[int]:
        self.calls.append(("list_tokens", account))
        return set(self.tokens)

    def delete_token(self, token_id: int, account: Optional[str] = None) -> bool:
        self.calls.append(("delete_token", token_id))
        if token_id in self.fail_delete:
            raise GiteaAPIError(f"delete {token_id} failed", status=500)
        return self.tokens.pop(token_id, None) is not None

    def create_token(self, name: str, scopes: List[str], account: Optional[str] = None) -> Credential:
        self.calls.append(("create_token", name, tuple(scopes)))
        value = self.issue_value or secrets.token_hex(20)
        token_id = self.add_token(value)
        if not is_valid_access_token(value):
            raise IssuanceFailed("bad sha1")
        return Credential(value=value, name=name, owner=self.username, scopes=list(scopes), id=token_id)

    def probe_token(self, value: str) -> bool:
        self.calls.append(("probe_token",))
        return value in self.tokens.values() and value not in self.reject_probe

    def get_registration_token(self, credential: Credential) -> str:
        self.calls.append(("get_registration_token",))
        if credential.value not in self.tokens.values():
            raise AuthFailed("registration token: HTTP 401")
        token = secrets.token_urlsafe(30)
        self.registration_tokens.append(token)
        return token


class FakeSecretStore:
    """KubernetesSecretStore 와 같은 인터페이스를 가진 메모리 내 Secret 저장소."""

    def __init__(self, namespace: str = "gitea") -> None:
        self.namespace = namespace
        self.secrets: Dict[str, Dict[str, str]] = {}
        self.writes: List[str] = []
        self.deletes: List[str] = []

    def get_secret_data(self, name: str) -> Optional[Dict[str, str]]:
        data = self.secrets.get(name)
        return dict(data) if data is not None else None

    def get_secret(self, name: str, key: str = "token") -> Optional[str]:
        return (self.secrets.get(name) or {}).get(key)

    def put_secret(self, name: str, data: Dict[str, str]) -> None:
        self.writes.append(name)
        self.secrets[name] = dict(data)

    def delete_secret(self, name: str) -> bool:
        self.deletes.append(name)
        return self.secrets.pop(name, None) is not None


@pytest.fixture
def gitea() -> FakeGitea:
    return FakeGitea()


@pytest.fixture
def store() -> FakeSecretStore:
    s = FakeSecretStore()
    s.secrets["gitea-admin-secrets"] = {"username": "gitea_admin", "password": "s3cret"}
    return s


@pytest.fixture
def no_sleep():
    slept: List[float] = []

    def _sleep(seconds: float) -> None:
        slept.append(seconds)

    _sleep.calls = slept  # type: ignore[attr-defined]
    return _sleep
