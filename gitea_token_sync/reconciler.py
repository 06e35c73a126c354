"""
reconciler
----------

관리자 API 토큰 동기화 상태 머신.

START → CHECK_STORED → (유효: DONE)
                    → (없음/무효: LIST_REMOTE → REVOKE_ALL → ISSUE → VERIFY → PERSIST → DONE)

어느 단계든 치명적 오류가 나면 FAILED 로 끝난다. Secret 에는 검증이 끝난 값만 쓴다.
원격 쪽은 항상 '전부 삭제 후 새로 발급', Secret 쪽은 항상 '전체 덮어쓰기' 이므로
몇 번을 다시 실행해도 안전하다.
"""

from __future__ import annotations

from dataclasses import dataclass, field
from enum import Enum
from typing import List, Optional, Sequence

from .config import SyncConfig
from .credentials import Credential, RemoteIdentityAccount, is_valid_access_token
from .errors import IssuanceFailed, PartialRevokeFailure, TokenSyncError
from .gitea_api import GiteaClient
from .logging_utils import get_logger, mask_secret
from .secret_store import DEFAULT_DATA_KEY, KubernetesSecretStore


logger = get_logger(__name__)


class State(str, Enum):
    START = "start"
    CHECK_STORED = "check-stored"
    LIST_REMOTE = "list-remote"
    REVOKE_ALL = "revoke-all"
    ISSUE = "issue"
    VERIFY = "verify"
    PERSIST = "persist"
    DONE = "done"
    FAILED = "failed"


@dataclass
class ReconcileResult:
    states: List[State] = field(default_factory=list)
    mutated: bool = False
    credential: Optional[Credential] = None
    revoked: List[int] = field(default_factory=list)
    revoke_failures: List[PartialRevokeFailure] = field(default_factory=list)

    @property
    def succeeded(self) -> bool:
        return bool(self.states) and self.states[-1] == State.DONE

    @property
    def fast_path(self) -> bool:
        return self.succeeded and not self.mutated


class TokenReconciler:
    """
    저장된 관리자 토큰이 살아있으면 아무것도 하지 않고,
    아니면 원격 토큰을 모두 정리한 뒤 하나를 새로 발급/검증/저장한다.
    """

    def __init__(
        self,
        client: GiteaClient,
        store: KubernetesSecretStore,
        account: RemoteIdentityAccount,
        *,
        secret_name: str,
        token_name: str = "flux-automation",
        scopes: Sequence[str] = ("all",),
        data_key: str = DEFAULT_DATA_KEY,
    ) -> None:
        self.client = client
        self.store = store
        self.account = account
        self.secret_name = secret_name
        self.token_name = token_name
        self.scopes = list(scopes)
        self.data_key = data_key

    def reconcile(self) -> ReconcileResult:
        result = ReconcileResult(states=[State.START])
        state = State.CHECK_STORED

        try:
            result.states.append(state)
            if self._stored_token_is_live():
                result.states.append(State.DONE)
                logger.info("저장된 관리자 토큰이 유효하여 변경 없이 종료합니다.")
                return result

            state = State.LIST_REMOTE
            result.states.append(state)
            token_ids = self.client.list_tokens(self.account.username)
            logger.info("계정 %s 의 기존 토큰 %d개", self.account.username, len(token_ids))

            state = State.REVOKE_ALL
            result.states.append(state)
            self._revoke_all(token_ids, result)

            state = State.ISSUE
            result.states.append(state)
            result.mutated = True
            credential = self.client.create_token(self.token_name, self.scopes, self.account.username)
            if not is_valid_access_token(credential.value):
                raise IssuanceFailed(f"발급된 토큰 형식이 올바르지 않습니다 ({mask_secret(credential.value)})")

            state = State.VERIFY
            result.states.append(state)
            if not self.client.probe_token(credential.value):
                raise IssuanceFailed("새로 발급한 토큰이 검증(GET /user)에 실패했습니다.")
            logger.info("새 토큰 검증 성공")

            state = State.PERSIST
            result.states.append(state)
            self.store.put_secret(self.secret_name, {self.data_key: credential.value})
            result.credential = credential
        except TokenSyncError as e:
            e.phase = state.value
            result.states.append(State.FAILED)
            logger.error("관리자 토큰 동기화 실패 (%s): %s", state.value, e)
            raise

        result.states.append(State.DONE)
        logger.info("관리자 토큰을 Secret %s 에 저장했습니다: %s", self.secret_name, mask_secret(credential.value))
        return result

    def _stored_token_is_live(self) -> bool:
        stored = self.store.get_secret(self.secret_name, self.data_key)
        if stored is None:
            logger.info("저장된 관리자 토큰이 없습니다: %s", self.secret_name)
            return False
        if not is_valid_access_token(stored):
            logger.warning("저장된 관리자 토큰의 형식이 올바르지 않습니다: %s", mask_secret(stored))
            return False
        if not self.client.probe_token(stored):
            logger.warning("저장된 관리자 토큰이 더 이상 유효하지 않습니다. 새로 발급합니다.")
            return False
        return True

    def _revoke_all(self, token_ids, result: ReconcileResult) -> None:
        # 하나를 지우지 못해도 나머지는 계속 지운다.
        for token_id in sorted(token_ids):
            try:
                self.client.delete_token(token_id, self.account.username)
            except TokenSyncError as e:
                failure = PartialRevokeFailure(token_id, str(e))
                result.revoke_failures.append(failure)
                logger.warning("%s (무시하고 계속 진행)", failure)
                continue
            result.revoked.append(token_id)
            result.mutated = True


def reconcile_admin_token(
    cfg: SyncConfig,
    client: GiteaClient,
    store: KubernetesSecretStore,
    account: RemoteIdentityAccount,
) -> ReconcileResult:
    return TokenReconciler(
        client,
        store,
        account,
        secret_name=cfg.admin_token_secret_name,
        token_name=cfg.token_name,
        scopes=cfg.token_scopes,
    ).reconcile()
