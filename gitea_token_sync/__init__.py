"""
gitea_token_sync
----------------

Gitea 관리자 API 토큰과 러너 등록 토큰을 Kubernetes Secret 과 동기화하는 CLI 패키지.
몇 번을 다시 실행해도 같은 결과로 수렴하도록(idempotent) 설계된 일회성 배치 잡을 목표로 한다.
"""

__all__ = [
    "config",
    "orchestrator",
    "reconciler",
    "runner_token",
]
