import sys
from typing import Optional

import click

from .config import load_env_files, SyncConfig
from .errors import ConfigError, TokenSyncError
from .gitea_api import GiteaClient
from .logging_utils import setup_logging, get_logger, mask_secret
from .orchestrator import ALL_SECTIONS, apply_all, plan_all, check_all
from .readiness import await_ready
from .reconciler import reconcile_admin_token
from .runner_token import issue_registration_token
from .secret_store import KubernetesSecretStore, load_core_api, read_admin_account


logger = get_logger(__name__)


@click.group()
@click.option(
    "-C",
    "--chdir",
    "chdir",
    type=click.Path(file_okay=False, dir_okay=True, exists=True),
    default=".",
    help=".env 파일들이 있는 디렉토리 (기본: 현재 디렉토리)",
)
@click.option(
    "-v",
    "--verbose",
    count=True,
    help="로그 레벨을 DEBUG로 올립니다. (-vv 는 HTTP 요청 로그까지 출력)",
)
@click.pass_context
def main(ctx: click.Context, chdir: str, verbose: int) -> None:
    """Gitea 관리자 API 토큰 / 러너 등록 토큰 동기화 CLI"""
    setup_logging(verbose)
    ctx.ensure_object(dict)
    ctx.obj["chdir"] = chdir
    ctx.obj["verbose"] = verbose


def _fail(e: TokenSyncError) -> None:
    # 잡 스케줄러가 보는 것은 exit code 와 이 한 줄뿐이다.
    click.echo(f"[ERROR] {e.phase}: {type(e).__name__}: {e}", err=True)
    sys.exit(1)


def _load_config_from_ctx(ctx: click.Context) -> SyncConfig:
    base_dir: str = ctx.obj["chdir"]
    load_env_files(base_dir)
    try:
        cfg = SyncConfig.from_env()
    except ConfigError as e:
        _fail(e)
    logger.debug("Config loaded: %s", cfg)
    return cfg


def _make_store(cfg: SyncConfig) -> KubernetesSecretStore:
    return KubernetesSecretStore(load_core_api(cfg.kube_context), cfg.namespace)


def _make_client(cfg: SyncConfig) -> GiteaClient:
    return GiteaClient.from_config(cfg)


@main.command()
@click.pass_context
def plan(ctx: click.Context) -> None:
    """현재 설정과 섹션별 ENABLED/SKIPPED 상태를 출력 (원격 호출 없음)"""
    cfg = _load_config_from_ctx(ctx)
    click.echo(plan_all(cfg))


@main.command(name="sync")
@click.option(
    "--only",
    "only",
    type=str,
    default="",
    help="쉼표로 구분된 섹션 이름(admin-token,runner-token). "
    "기본 동작은 SYNC_ADMIN_TOKEN/SYNC_RUNNER_TOKEN 토글을 사용합니다.",
)
@click.pass_context
def sync(ctx: click.Context, only: str) -> None:
    """활성화된 섹션을 의존 순서대로 실행"""
    cfg = _load_config_from_ctx(ctx)

    only_list: Optional[list[str]] = None
    if only.strip():
        only_list = [p.strip() for p in only.split(",") if p.strip()]

        # --only 섹션 이름 검증
        invalid = sorted({s for s in only_list if s not in ALL_SECTIONS})
        if invalid:
            click.echo(
                "[ERROR] 잘못된 섹션 이름이 있습니다: "
                + ", ".join(invalid)
                + f"\n허용되는 섹션: {', '.join(ALL_SECTIONS)}",
                err=True,
            )
            sys.exit(1)

    try:
        store = _make_store(cfg)
        with _make_client(cfg) as client:
            summary, failure = apply_all(cfg, client, store, only_sections=only_list)
    except TokenSyncError as e:
        _fail(e)

    click.echo(summary)

    if failure is not None:
        _fail(failure)


@main.command(name="admin-token")
@click.pass_context
def admin_token(ctx: click.Context) -> None:
    """관리자 API 토큰만 점검/재발급"""
    cfg = _load_config_from_ctx(ctx)

    try:
        store = _make_store(cfg)
        account = read_admin_account(store, cfg.admin_secret_name, cfg.admin_username, cfg.admin_password)
        with _make_client(cfg) as client:
            client.account = account
            await_ready(client.is_alive, cfg.ready_interval_seconds, cfg.ready_max_attempts, description="Gitea API")
            result = reconcile_admin_token(cfg, client, store, account)
    except TokenSyncError as e:
        if not e.phase.startswith("admin-token"):
            e.phase = f"admin-token/{e.phase}"
        _fail(e)

    if result.fast_path:
        click.echo(f"관리자 API 토큰이 유효합니다. 변경 없음 ({cfg.namespace}/{cfg.admin_token_secret_name})")
    else:
        click.echo(
            f"관리자 API 토큰을 재발급했습니다: {mask_secret(result.credential.value)} "
            f"(삭제 {len(result.revoked)}개, 삭제 실패 {len(result.revoke_failures)}개)"
        )


@main.command(name="runner-token")
@click.pass_context
def runner_token(ctx: click.Context) -> None:
    """러너 등록 토큰을 무조건 새로 발급하여 Secret 교체"""
    cfg = _load_config_from_ctx(ctx)

    try:
        store = _make_store(cfg)
        with _make_client(cfg) as client:
            result = issue_registration_token(cfg, client, store)
    except TokenSyncError as e:
        if not e.phase.startswith("runner-token"):
            e.phase = f"runner-token/{e.phase}"
        _fail(e)

    click.echo(
        f"러너 등록 토큰을 {cfg.namespace}/{cfg.runner_secret_name} 에 저장했습니다: {mask_secret(result.token)}"
    )


@main.command()
@click.option(
    "-a",
    "--all",
    "show_all",
    is_flag=True,
    help="모든 체크 항목의 상세 상태를 출력합니다. (기본은 이슈만 요약)",
)
@click.pass_context
def check(ctx: click.Context, show_all: bool) -> None:
    """
    Gitea/Secret 상태를 점검한다. (토큰 발급/삭제 등 변경은 하지 않는다)
    """
    cfg = _load_config_from_ctx(ctx)

    try:
        store = _make_store(cfg)
        with _make_client(cfg) as client:
            report, has_issues = check_all(cfg, client, store, show_all=show_all)
    except TokenSyncError as e:
        _fail(e)

    click.echo(report)

    # 이슈가 있으면 exit 1 로 종료하여 CI 등에서 감지 가능하게 한다.
    if has_issues:
        sys.exit(1)


@main.command()
@click.option(
    "--max-attempts",
    type=int,
    default=None,
    help="최대 시도 횟수 (기본: READY_MAX_ATTEMPTS, 0 이면 무제한)",
)
@click.pass_context
def wait(ctx: click.Context, max_attempts: Optional[int]) -> None:
    """Gitea API 가 응답할 때까지 대기"""
    cfg = _load_config_from_ctx(ctx)
    limit = cfg.ready_max_attempts if max_attempts is None else (max_attempts or None)

    try:
        with _make_client(cfg) as client:
            attempts = await_ready(client.is_alive, cfg.ready_interval_seconds, limit, description="Gitea API")
    except TokenSyncError as e:
        _fail(e)

    click.echo(f"Gitea API 준비 완료 (시도 {attempts}회)")
