"""
gitea_api
---------

Gitea HTTP API 중 토큰 관리에 필요한 엔드포인트만 감싼 얇은 클라이언트.

- 부트스트랩 호출(토큰 목록/생성/삭제)은 관리자 계정 basic auth 로 인증한다.
- 토큰 probe, 러너 등록 토큰 발급은 발급된 토큰(Authorization: token ...)으로 인증한다.
"""

from __future__ import annotations

from typing import Any, Dict, List, Optional, Set
from urllib.parse import quote

import httpx

from .config import SyncConfig
from .credentials import (
    Credential,
    RemoteIdentityAccount,
    is_valid_access_token,
    is_valid_registration_token,
)
from .errors import AuthFailed, GiteaAPIError, IssuanceFailed, RemoteUnavailable
from .logging_utils import get_logger, mask_secret


logger = get_logger(__name__)

TOKEN_PAGE_LIMIT = 50


def _body_excerpt(resp: httpx.Response, width: int = 300) -> str:
    text = (resp.text or "").strip()
    if len(text) > width:
        text = text[:width] + "…"
    return text


class GiteaClient:
    def __init__(
        self,
        base_url: str,
        account: Optional[RemoteIdentityAccount] = None,
        *,
        timeout: float = 10.0,
        verify: bool = True,
        transport: Optional[httpx.BaseTransport] = None,
    ) -> None:
        self.base_url = base_url.rstrip("/")
        self.account = account
        self._http = httpx.Client(
            base_url=self.base_url,
            timeout=timeout,
            verify=verify,
            transport=transport,
            headers={"Accept": "application/json"},
        )

    @classmethod
    def from_config(
        cls,
        cfg: SyncConfig,
        account: Optional[RemoteIdentityAccount] = None,
        transport: Optional[httpx.BaseTransport] = None,
    ) -> "GiteaClient":
        return cls(
            cfg.api_base_url,
            account,
            timeout=cfg.http_timeout,
            verify=cfg.verify_tls,
            transport=transport,
        )

    def close(self) -> None:
        self._http.close()

    def __enter__(self) -> "GiteaClient":
        return self

    def __exit__(self, *exc_info: object) -> None:
        self.close()

    # -----------------------------
    # 내부 헬퍼
    # -----------------------------

    def _require_account(self) -> RemoteIdentityAccount:
        if self.account is None:
            raise AuthFailed("관리자 계정 정보 없이 부트스트랩 API 를 호출할 수 없습니다.")
        return self.account

    def _request(
        self,
        method: str,
        path: str,
        *,
        token: Optional[str] = None,
        basic: bool = False,
        json: Any = None,
        params: Optional[Dict[str, Any]] = None,
    ) -> httpx.Response:
        headers: Dict[str, str] = {}
        auth = None
        if token is not None:
            headers["Authorization"] = f"token {token}"
        elif basic:
            auth = self._require_account().basic_auth

        try:
            resp = self._http.request(method, path, headers=headers, auth=auth, json=json, params=params)
        except httpx.RequestError as e:
            raise RemoteUnavailable(f"{method} {path} 요청 실패: {e}") from e

        logger.debug("%s %s -> %s", method, path, resp.status_code)
        return resp

    def _raise_for_status(self, resp: httpx.Response, what: str) -> None:
        if resp.is_success:
            return
        status = resp.status_code
        if status in (401, 403):
            raise AuthFailed(f"{what}: 인증 거부 (HTTP {status})")
        if status >= 500:
            raise RemoteUnavailable(f"{what}: 서버 오류 (HTTP {status}) {_body_excerpt(resp)}")
        raise GiteaAPIError(f"{what}: 예상하지 못한 응답 (HTTP {status}) {_body_excerpt(resp)}", status=status)

    def _json(self, resp: httpx.Response, what: str) -> Any:
        try:
            return resp.json()
        except ValueError as e:
            raise GiteaAPIError(f"{what}: JSON 이 아닌 응답 {_body_excerpt(resp)}", status=resp.status_code) from e

    def _tokens_path(self, account: str) -> str:
        return f"/users/{quote(account, safe='')}/tokens"

    # -----------------------------
    # 공개 API
    # -----------------------------

    def is_alive(self) -> bool:
        """GET /version. 연결 실패나 2xx 가 아닌 응답은 모두 False."""
        try:
            resp = self._request("GET", "/version", basic=self.account is not None)
        except RemoteUnavailable as e:
            logger.debug("Gitea liveness probe 실패: %s", e)
            return False
        return resp.is_success

    def list_tokens(self, account: Optional[str] = None) -> Set[int]:
        """
        계정에 발급된 모든 접근 토큰 id 를 반환한다. (페이지네이션 처리)
        """
        owner = account or self._require_account().username
        path = self._tokens_path(owner)
        ids: Set[int] = set()
        page = 1
        while True:
            resp = self._request(
                "GET", path, basic=True, params={"page": page, "limit": TOKEN_PAGE_LIMIT}
            )
            self._raise_for_status(resp, "토큰 목록 조회")
            items = self._json(resp, "토큰 목록 조회")
            if not isinstance(items, list):
                raise GiteaAPIError("토큰 목록 조회: 목록 형식이 아닌 응답", status=resp.status_code)

            new_ids = {int(item["id"]) for item in items if isinstance(item, dict) and "id" in item}
            if not new_ids - ids:
                # 페이지네이션을 무시하는 서버는 같은 목록을 계속 돌려준다.
                break
            ids |= new_ids
            if len(items) < TOKEN_PAGE_LIMIT:
                break
            page += 1

        logger.debug("계정 %s 의 토큰 %d개 조회", owner, len(ids))
        return ids

    def delete_token(self, token_id: int, account: Optional[str] = None) -> bool:
        """
        토큰 하나를 삭제한다. 이미 없는 토큰(404)이면 False.
        """
        owner = account or self._require_account().username
        resp = self._request("DELETE", f"{self._tokens_path(owner)}/{token_id}", basic=True)
        if resp.status_code == 404:
            logger.debug("토큰 %s 는 이미 삭제되어 있습니다.", token_id)
            return False
        self._raise_for_status(resp, f"토큰 {token_id} 삭제")
        return True

    def create_token(
        self,
        name: str,
        scopes: List[str],
        account: Optional[str] = None,
    ) -> Credential:
        """
        새 접근 토큰을 발급한다. 응답의 sha1 이 40자 hex 가 아니면 IssuanceFailed.
        """
        owner = account or self._require_account().username
        resp = self._request(
            "POST",
            self._tokens_path(owner),
            basic=True,
            json={"name": name, "scopes": list(scopes)},
        )
        if resp.status_code in (400, 409, 422):
            raise IssuanceFailed(f"토큰 생성 거부 (HTTP {resp.status_code}) {_body_excerpt(resp)}")
        self._raise_for_status(resp, "토큰 생성")

        try:
            data = resp.json()
        except ValueError as e:
            raise IssuanceFailed(f"토큰 생성 응답이 JSON 이 아닙니다: {_body_excerpt(resp)}") from e

        value = data.get("sha1") if isinstance(data, dict) else None
        if not is_valid_access_token(value):
            raise IssuanceFailed(
                f"토큰 생성 응답의 sha1 형식이 올바르지 않습니다 ({mask_secret(value)})"
            )

        token_id = data.get("id")
        logger.info("새 토큰 발급: name=%s token=%s", name, mask_secret(value))
        return Credential(
            value=value,
            name=data.get("name") or name,
            owner=owner,
            scopes=list(data.get("scopes") or scopes),
            id=int(token_id) if token_id is not None else None,
        )

    def probe_token(self, value: str) -> bool:
        """
        GET /user 로 토큰이 실제로 유효한지 확인한다.
        인증 실패/전송 실패는 모두 '유효하다고 확인되지 않음' 으로 보고 False.
        """
        try:
            resp = self._request("GET", "/user", token=value)
        except RemoteUnavailable as e:
            logger.warning("토큰 검증 요청 실패 (유효하지 않은 것으로 간주): %s", e)
            return False
        if not resp.is_success:
            logger.debug("토큰 검증 실패: HTTP %s", resp.status_code)
        return resp.is_success

    def get_registration_token(self, credential: Credential) -> str:
        """
        관리자 토큰으로 러너 등록 토큰을 새로 받는다.
        """
        what = "러너 등록 토큰 발급"
        resp = self._request("GET", "/admin/runners/registration-token", token=credential.value)
        self._raise_for_status(resp, what)
        try:
            data = resp.json()
        except ValueError as e:
            raise IssuanceFailed(f"{what}: JSON 이 아닌 응답 {_body_excerpt(resp)}", phase="runner-token") from e

        token = data.get("token") if isinstance(data, dict) else None
        if not is_valid_registration_token(token):
            raise IssuanceFailed(
                f"{what}: 응답의 token 형식이 올바르지 않습니다 ({mask_secret(token)})",
                phase="runner-token",
            )
        return token.strip()
