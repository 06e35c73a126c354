from __future__ import annotations

from typing import Callable, Iterable, List, Optional

from .config import SyncConfig
from .credentials import is_valid_access_token
from .errors import TokenSyncError
from .gitea_api import GiteaClient
from .logging_utils import get_logger
from .readiness import await_ready
from .reconciler import reconcile_admin_token
from .runner_token import issue_registration_token
from .secret_store import KubernetesSecretStore, read_admin_account


logger = get_logger(__name__)

# CLI 등에서 사용할 수 있도록 섹션 이름을 상수로 노출 (실행 순서 = 의존 순서)
ALL_SECTIONS: List[str] = [
    "admin-token",
    "runner-token",
]


def _section_enabled(name: str, cfg: SyncConfig) -> bool:
    if name == "admin-token":
        return cfg.sync_admin_token
    if name == "runner-token":
        return cfg.sync_runner_token
    return False


def _filter_sections(cfg: SyncConfig, only_sections: Optional[Iterable[str]]) -> List[str]:
    """
    토글/only_sections 에 따라 실제 실행 대상 섹션 목록을 결정한다.
    only_sections 로 명시한 섹션은 토글과 무관하게 실행한다.
    """
    if only_sections:
        requested = {s for s in only_sections}
        return [s for s in ALL_SECTIONS if s in requested]
    return [s for s in ALL_SECTIONS if _section_enabled(s, cfg)]


def plan_all(cfg: SyncConfig) -> str:
    """
    현재 설정과 어떤 섹션이 실행될지 요약 텍스트를 리턴한다.
    Gitea/Kubernetes 호출은 하지 않으며 비밀번호/토큰은 출력하지 않는다.
    """
    lines: List[str] = []
    lines.append("# Token sync plan")
    lines.append(f"- gitea: {cfg.api_base_url}")
    lines.append(f"- namespace: {cfg.namespace}")
    lines.append("")

    lines.append("## Config summary")
    lines.append(f"- admin_secret: {cfg.admin_secret_name}")
    lines.append(f"- admin_token_secret: {cfg.admin_token_secret_name}")
    lines.append(f"- runner_secret: {cfg.runner_secret_name}")
    lines.append(f"- token_name: {cfg.token_name}")
    lines.append(f"- token_scopes: {', '.join(cfg.token_scopes)}")
    lines.append(f"- admin_account: {'env (GITEA_ADMIN_USERNAME)' if cfg.admin_username else 'secret'}")
    lines.append(f"- ready_interval_seconds: {cfg.ready_interval_seconds:g}")
    lines.append(f"- ready_max_attempts: {cfg.ready_max_attempts or 'unbounded'}")
    lines.append(f"- kube_context: {cfg.kube_context or '(in-cluster / current)'}")
    lines.append("")

    lines.append("## Sections")
    for name in ALL_SECTIONS:
        status = "ENABLED" if _section_enabled(name, cfg) else "SKIPPED"
        lines.append(f"- {name}: {status}")

    return "\n".join(lines)


def apply_all(
    cfg: SyncConfig,
    client: GiteaClient,
    store: KubernetesSecretStore,
    only_sections: Optional[Iterable[str]] = None,
    sleep: Optional[Callable[[float], None]] = None,
) -> tuple[str, Optional[TokenSyncError]]:
    """
    Gitea 가 준비될 때까지 기다린 뒤 섹션을 순서대로 실행한다.
    runner-token 은 admin-token 결과에 의존하므로, 치명적 오류가 나면 이후 섹션은 실행하지 않는다.

    Returns:
        summary: 사람이 읽기 좋은 텍스트 요약
        failure: 실행을 멈추게 한 오류 (성공 시 None)
    """
    executed: List[str] = []
    unchanged: List[str] = []
    skipped: List[str] = []
    blocked: List[str] = []
    failed: List[str] = []
    failure: Optional[TokenSyncError] = None

    sections = _filter_sections(cfg, only_sections)
    logger.info("적용 대상 섹션: %s", sections)
    sleep_kwargs = {"sleep": sleep} if sleep is not None else {}

    try:
        if "admin-token" in sections and client.account is None:
            client.account = read_admin_account(
                store, cfg.admin_secret_name, cfg.admin_username, cfg.admin_password
            )
        if sections:
            await_ready(
                client.is_alive,
                cfg.ready_interval_seconds,
                cfg.ready_max_attempts,
                description="Gitea API",
                **sleep_kwargs,
            )
    except TokenSyncError as e:
        failure = e
        logger.error("준비 단계 실패 (%s): %s", e.phase, e)

    for name in ALL_SECTIONS:
        if name not in sections:
            skipped.append(name)
            continue
        if failure is not None:
            blocked.append(name)
            continue

        logger.info("섹션 실행: %s", name)
        try:
            if name == "admin-token":
                result = reconcile_admin_token(cfg, client, store, client.account)
                if result.fast_path:
                    unchanged.append(name)
                    continue
                if result.revoke_failures:
                    logger.warning(
                        "삭제하지 못한 기존 토큰이 %d개 남아 있습니다: %s",
                        len(result.revoke_failures),
                        [f.token_id for f in result.revoke_failures],
                    )
            elif name == "runner-token":
                issue_registration_token(cfg, client, store, sleep=sleep, wait_for_gitea=False)
        except TokenSyncError as e:
            e.phase = f"{name}/{e.phase}"
            failure = e
            failed.append(name)
            logger.error("섹션 실행 실패: %s (%s)", name, e)
            continue

        executed.append(name)

    lines: List[str] = []
    lines.append("# Token sync summary")
    lines.append(f"- gitea: {cfg.api_base_url}")
    lines.append(f"- namespace: {cfg.namespace}")

    for title, items in (
        ("Updated sections", executed),
        ("Unchanged sections", unchanged),
        ("Skipped sections", skipped),
        ("Blocked sections", blocked),
        ("Failed sections", failed),
    ):
        lines.append("")
        lines.append(f"## {title}")
        if items:
            for s in items:
                lines.append(f"- {s}")
        else:
            lines.append("- (none)")

    summary = "\n".join(lines)
    return summary, failure


def check_all(
    cfg: SyncConfig,
    client: GiteaClient,
    store: KubernetesSecretStore,
    show_all: bool = False,
) -> tuple[str, bool]:
    """
    아무것도 변경하지 않고 현재 상태를 점검한다.

    Returns:
        summary: 사람이 읽기 좋은 텍스트 요약
        has_issues: 동기화가 필요한 상태이거나 점검 자체가 실패했는지 여부
    """
    ok: List[str] = []
    issues: List[str] = []

    alive = client.is_alive()
    (ok if alive else issues).append(
        f"Gitea API: {'응답함' if alive else '응답 없음'} ({cfg.api_base_url})"
    )

    try:
        admin_data = store.get_secret_data(cfg.admin_secret_name)
        if admin_data and admin_data.get("username") and admin_data.get("password"):
            ok.append(f"관리자 계정 Secret: 존재함 ({cfg.admin_secret_name})")
        elif cfg.admin_username and cfg.admin_password:
            ok.append("관리자 계정: 환경변수 사용")
        else:
            issues.append(f"관리자 계정 Secret: 없음 또는 불완전 ({cfg.admin_secret_name})")

        stored = store.get_secret(cfg.admin_token_secret_name)
        if stored is None:
            issues.append(f"관리자 API 토큰: 없음 (발급 필요) ({cfg.admin_token_secret_name})")
        elif not is_valid_access_token(stored):
            issues.append(f"관리자 API 토큰: 형식 오류 (재발급 필요) ({cfg.admin_token_secret_name})")
        elif alive and not client.probe_token(stored):
            issues.append(f"관리자 API 토큰: 만료/무효 (재발급 필요) ({cfg.admin_token_secret_name})")
        elif alive:
            ok.append(f"관리자 API 토큰: 유효함 ({cfg.admin_token_secret_name})")
        else:
            issues.append(f"관리자 API 토큰: Gitea 응답이 없어 검증 불가 ({cfg.admin_token_secret_name})")

        if cfg.sync_runner_token:
            if store.get_secret(cfg.runner_secret_name) is None:
                issues.append(f"러너 등록 토큰: 없음 ({cfg.runner_secret_name})")
            else:
                ok.append(f"러너 등록 토큰: 존재함 ({cfg.runner_secret_name})")
    except TokenSyncError as e:
        issues.append(f"Secret 점검 중 오류: {e}")

    lines: List[str] = []
    lines.append("# Token sync pre-check")
    lines.append(f"- gitea: {cfg.api_base_url}")
    lines.append(f"- namespace: {cfg.namespace}")
    lines.append("")

    if show_all:
        lines.append("## OK")
        for r in ok or ["(none)"]:
            lines.append(f"- {r}")
        lines.append("")

    lines.append("## Issues")
    for r in issues or ["(none)"]:
        lines.append(f"- {r}")
    lines.append("")

    lines.append("## Summary")
    if issues:
        lines.append("- 상태: 동기화가 필요하거나 확인이 필요한 항목이 있습니다.")
    else:
        lines.append("- 상태: 주요 이슈 없음")

    if not show_all:
        lines.append("")
        lines.append("자세한 상태를 보려면 `gitea-token-sync check -a` 를 실행하세요.")

    return "\n".join(lines), bool(issues)
