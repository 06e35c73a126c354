"""
runner_token
------------

관리자 API 토큰으로 러너 등록 토큰을 새로 받아 Secret 에 다시 게시한다.

등록 토큰은 러너가 한 번 쓰고 버리는 값이므로, 기존 값이 유효한지 확인하지 않고
매번 무조건 새로 발급한다.
"""

from __future__ import annotations

from dataclasses import dataclass, field
from typing import Callable, Optional

from .config import SyncConfig
from .credentials import Credential, is_valid_access_token, is_valid_registration_token
from .errors import DependencyMissing, IssuanceFailed, RemoteUnavailable, TokenSyncError
from .gitea_api import GiteaClient
from .logging_utils import get_logger, mask_secret
from .readiness import await_ready
from .secret_store import DEFAULT_DATA_KEY, KubernetesSecretStore


logger = get_logger(__name__)


@dataclass
class IssueResult:
    token: str = field(repr=False)
    replaced_previous: bool = False


class RegistrationTokenIssuer:
    def __init__(
        self,
        client: GiteaClient,
        store: KubernetesSecretStore,
        *,
        admin_token_secret_name: str,
        runner_secret_name: str,
        data_key: str = DEFAULT_DATA_KEY,
        ready_interval: float = 5.0,
        ready_max_attempts: Optional[int] = None,
        dependency_wait_attempts: int = 0,
        dependency_wait_seconds: float = 10.0,
        wait_for_gitea: bool = True,
        sleep: Optional[Callable[[float], None]] = None,
    ) -> None:
        self.client = client
        self.store = store
        self.admin_token_secret_name = admin_token_secret_name
        self.runner_secret_name = runner_secret_name
        self.data_key = data_key
        self.ready_interval = ready_interval
        self.ready_max_attempts = ready_max_attempts
        self.dependency_wait_attempts = dependency_wait_attempts
        self.dependency_wait_seconds = dependency_wait_seconds
        self.wait_for_gitea = wait_for_gitea
        self._sleep_kwargs = {"sleep": sleep} if sleep is not None else {}

    def _load_primary(self) -> Credential:
        holder = {}

        def probe() -> bool:
            holder["value"] = self.store.get_secret(self.admin_token_secret_name, self.data_key)
            return holder["value"] is not None

        missing_msg = (
            f"관리자 API 토큰 Secret({self.admin_token_secret_name})이 없습니다. "
            "admin-token 동기화를 먼저 실행하세요."
        )

        if self.dependency_wait_attempts > 0:
            try:
                await_ready(
                    probe,
                    self.dependency_wait_seconds,
                    self.dependency_wait_attempts,
                    description=f"Secret {self.admin_token_secret_name}",
                    **self._sleep_kwargs,
                )
            except RemoteUnavailable as e:
                raise DependencyMissing(missing_msg) from e
        else:
            probe()

        value = holder.get("value")
        if value is None:
            raise DependencyMissing(missing_msg)
        if not is_valid_access_token(value):
            logger.warning("관리자 API 토큰 형식이 예상과 다릅니다: %s", mask_secret(value))

        return Credential(value=value, name=self.admin_token_secret_name, owner="")

    def issue(self) -> IssueResult:
        primary = self._load_primary()

        # 호출자가 이미 준비 상태를 확인했으면 다시 기다리지 않는다.
        if self.wait_for_gitea:
            await_ready(
                self.client.is_alive,
                self.ready_interval,
                self.ready_max_attempts,
                description="Gitea API",
                **self._sleep_kwargs,
            )

        try:
            token = self.client.get_registration_token(primary)
        except TokenSyncError as e:
            e.phase = "runner-token"
            raise
        if not is_valid_registration_token(token):
            raise IssuanceFailed(
                f"러너 등록 토큰 형식이 올바르지 않습니다 ({mask_secret(token)})", phase="runner-token"
            )
        logger.info("러너 등록 토큰 발급: %s", mask_secret(token))

        # 전파 지연 중에 옛 값과 새 값이 섞여 보이지 않도록 지우고 다시 만든다.
        replaced = self.store.delete_secret(self.runner_secret_name)
        if replaced:
            logger.info("기존 러너 등록 Secret 을 삭제했습니다: %s", self.runner_secret_name)
        self.store.put_secret(self.runner_secret_name, {self.data_key: token})
        logger.info("러너 등록 토큰을 Secret %s 에 저장했습니다.", self.runner_secret_name)

        return IssueResult(token=token, replaced_previous=replaced)


def issue_registration_token(
    cfg: SyncConfig,
    client: GiteaClient,
    store: KubernetesSecretStore,
    sleep: Optional[Callable[[float], None]] = None,
    wait_for_gitea: bool = True,
) -> IssueResult:
    return RegistrationTokenIssuer(
        client,
        store,
        admin_token_secret_name=cfg.admin_token_secret_name,
        runner_secret_name=cfg.runner_secret_name,
        ready_interval=cfg.ready_interval_seconds,
        ready_max_attempts=cfg.ready_max_attempts,
        dependency_wait_attempts=cfg.runner_dependency_wait_attempts,
        dependency_wait_seconds=cfg.runner_dependency_wait_seconds,
        wait_for_gitea=wait_for_gitea,
        sleep=sleep,
    ).issue()
