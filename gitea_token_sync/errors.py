"""
errors
------

토큰 동기화 과정에서 발생하는 예외 계층.

모든 치명적 오류는 TokenSyncError 를 상속하며, 어느 단계(phase)에서 실패했는지를 함께 들고 다닌다.
CLI 는 이 phase 를 이용해 한 줄짜리 진단 메시지를 출력한다.
"""

from __future__ import annotations

from typing import Optional


class TokenSyncError(Exception):
    """토큰 동기화 공통 예외."""

    default_phase = "sync"

    def __init__(self, message: str, phase: Optional[str] = None) -> None:
        super().__init__(message)
        self.message = message
        self.phase = phase or self.default_phase

    def __str__(self) -> str:
        return self.message


class ConfigError(TokenSyncError, ValueError):
    """필수 설정 누락 또는 잘못된 설정 값."""

    default_phase = "config"


class RemoteUnavailable(TokenSyncError):
    """Gitea 에 접속할 수 없음. 준비 대기(readiness gate)에서만 재시도한다."""

    default_phase = "readiness"


class AuthFailed(TokenSyncError):
    """관리자 계정 또는 토큰이 거부됨. 재시도해도 소용없으므로 즉시 실패."""

    default_phase = "auth"


class IssuanceFailed(TokenSyncError):
    """발급된 토큰이 형식 검사 또는 검증 probe 를 통과하지 못함."""

    default_phase = "issue"


class DependencyMissing(TokenSyncError):
    """러너 토큰 발급에 필요한 관리자 API 토큰 Secret 이 없음."""

    default_phase = "dependency"


class GiteaAPIError(TokenSyncError):
    """예상하지 못한 Gitea 응답."""

    default_phase = "gitea"

    def __init__(self, message: str, status: Optional[int] = None, phase: Optional[str] = None) -> None:
        super().__init__(message, phase=phase)
        self.status = status


class SecretStoreError(TokenSyncError):
    """Kubernetes Secret API 호출 실패."""

    default_phase = "secret-store"


class PartialRevokeFailure(TokenSyncError):
    """
    기존 토큰 일부를 삭제하지 못함.

    raise 되지 않고 ReconcileResult 에 기록만 된다. 새 토큰이 Secret 에 저장되기만 하면
    불변식은 회복되므로, 남은 고아 토큰은 다음 재발급 주기에 정리된다.
    """

    default_phase = "revoke"

    def __init__(self, token_id: int, reason: str) -> None:
        super().__init__(f"토큰 {token_id} 삭제 실패: {reason}")
        self.token_id = token_id
        self.reason = reason
