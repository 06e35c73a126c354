from __future__ import annotations

import os
from dataclasses import dataclass, field
from typing import Optional, List

from dotenv import load_dotenv

from .errors import ConfigError


ENV_FILES_DEFAULT_ORDER = [".env", ".env.gitea", ".env.secrets"]


def load_env_files(base_dir: str = ".",
                   files: Optional[List[str]] = None) -> None:
    """
    주어진 디렉토리에서 .env 계열 파일을 순서대로 로드한다.
    후순위 파일이 같은 키를 덮어쓴다.
    """
    order = files or ENV_FILES_DEFAULT_ORDER
    for name in order:
        path = os.path.join(base_dir, name)
        if os.path.exists(path):
            load_dotenv(path, override=True)


def _get_bool(name: str, default: bool = False) -> bool:
    raw = os.getenv(name)
    if raw is None:
        return default
    return raw.lower() in {"1", "true", "yes", "y"}


def _get_list(name: str, default: List[str]) -> List[str]:
    raw = os.getenv(name)
    if raw is None or not raw.strip():
        return list(default)
    return [p.strip() for p in raw.split(",") if p.strip()]


@dataclass
class SyncConfig:
    # 필수 공통
    gitea_url: str

    gitea_api_prefix: str = "/api/v1"
    namespace: str = "gitea"

    # Secret 이름들
    admin_secret_name: str = "gitea-admin-secrets"
    admin_token_secret_name: str = "gitea-admin-api-token"
    runner_secret_name: str = "runner-secret"

    # 발급할 관리자 토큰
    token_name: str = "flux-automation"
    token_scopes: List[str] = field(default_factory=lambda: ["all"])

    # HTTP
    http_timeout: float = 10.0
    verify_tls: bool = True

    # 준비 대기
    ready_interval_seconds: float = 5.0
    ready_max_attempts: Optional[int] = None  # None = 무제한
    runner_dependency_wait_attempts: int = 0
    runner_dependency_wait_seconds: float = 10.0

    # 토글
    sync_admin_token: bool = True
    sync_runner_token: bool = False

    # 선택 설정들
    kube_context: Optional[str] = None
    admin_username: Optional[str] = None
    admin_password: Optional[str] = None

    @property
    def api_base_url(self) -> str:
        return self.gitea_url.rstrip("/") + "/" + self.gitea_api_prefix.strip("/")

    @classmethod
    def from_env(cls) -> "SyncConfig":
        # 필수값
        missing: List[str] = []
        invalid: List[str] = []

        def req(name: str) -> str:
            val = os.getenv(name)
            if not val:
                missing.append(name)
            return val or ""

        def num(name: str, default: float) -> float:
            raw = os.getenv(name)
            if raw is None or raw.strip() == "":
                return default
            try:
                val = float(raw)
            except ValueError:
                invalid.append(name)
                return default
            if val < 0:
                invalid.append(name)
                return default
            return val

        ready_max = int(num("READY_MAX_ATTEMPTS", 0))

        cfg = cls(
            gitea_url=req("GITEA_URL"),
            gitea_api_prefix=os.getenv("GITEA_API_PREFIX", "/api/v1"),
            namespace=os.getenv("GITEA_NAMESPACE", "gitea"),
            admin_secret_name=os.getenv("GITEA_ADMIN_SECRET", "gitea-admin-secrets"),
            admin_token_secret_name=os.getenv("GITEA_ADMIN_TOKEN_SECRET", "gitea-admin-api-token"),
            runner_secret_name=os.getenv("GITEA_RUNNER_SECRET", "runner-secret"),
            token_name=os.getenv("GITEA_TOKEN_NAME", "flux-automation"),
            token_scopes=_get_list("GITEA_TOKEN_SCOPES", ["all"]),
            http_timeout=num("GITEA_HTTP_TIMEOUT", 10.0),
            verify_tls=_get_bool("GITEA_VERIFY_TLS", True),
            ready_interval_seconds=num("READY_INTERVAL_SECONDS", 5.0),
            ready_max_attempts=ready_max or None,
            runner_dependency_wait_attempts=int(num("RUNNER_DEPENDENCY_WAIT_ATTEMPTS", 0)),
            runner_dependency_wait_seconds=num("RUNNER_DEPENDENCY_WAIT_SECONDS", 10.0),
            sync_admin_token=_get_bool("SYNC_ADMIN_TOKEN", True),
            sync_runner_token=_get_bool("SYNC_RUNNER_TOKEN", False),
            kube_context=os.getenv("KUBE_CONTEXT") or None,
            admin_username=os.getenv("GITEA_ADMIN_USERNAME") or None,
            admin_password=os.getenv("GITEA_ADMIN_PASSWORD") or None,
        )

        if missing:
            raise ConfigError(
                "필수 환경변수가 누락되었습니다: " + ", ".join(sorted(set(missing)))
            )
        if invalid:
            raise ConfigError(
                "숫자 형식이 잘못된 환경변수가 있습니다: " + ", ".join(sorted(set(invalid)))
            )

        if not cfg.token_name.strip():
            raise ConfigError("GITEA_TOKEN_NAME 은 비워둘 수 없습니다.")

        return cfg
