"""
readiness
---------

원격 서비스가 요청을 받을 준비가 될 때까지 기다리는 폴링 유틸.

기본은 무제한 재시도이다. 잡 스케줄러가 어차피 재시작하므로 빨리 실패할 이유가 없고,
취소는 바깥 잡의 deadline 으로 처리한다.
"""

from __future__ import annotations

import time
from typing import Callable, Optional

from .errors import RemoteUnavailable
from .logging_utils import get_logger


logger = get_logger(__name__)


def await_ready(
    probe: Callable[[], bool],
    interval: float = 5.0,
    max_attempts: Optional[int] = None,
    *,
    description: str = "remote service",
    sleep: Callable[[float], None] = time.sleep,
) -> int:
    """
    probe() 가 True 를 돌려줄 때까지 interval 초 간격으로 반복 호출한다.

    Args:
        probe: 준비 여부를 돌려주는 함수. RemoteUnavailable 을 던지면 실패한 시도로 간주한다.
        interval: 재시도 간격(초)
        max_attempts: 최대 시도 횟수. None 또는 0 이면 무제한.
        description: 로그용 대상 이름

    Returns:
        성공까지 걸린 시도 횟수

    Raises:
        RemoteUnavailable: max_attempts 를 모두 소진한 경우
    """
    limit = max_attempts or None
    attempt = 0
    while True:
        attempt += 1
        try:
            ready = bool(probe())
        except RemoteUnavailable as e:
            logger.debug("%s probe 실패: %s", description, e)
            ready = False

        if ready:
            if attempt > 1:
                logger.info("%s 준비 완료 (시도 %d회)", description, attempt)
            return attempt

        if limit is not None and attempt >= limit:
            raise RemoteUnavailable(
                f"{description} 이(가) {attempt}회 시도 후에도 준비되지 않았습니다."
            )

        if limit is None:
            logger.info("%s 준비 대기 중... (시도 %d, %.0f초 후 재시도)", description, attempt, interval)
        else:
            logger.info(
                "%s 준비 대기 중... (시도 %d/%d, %.0f초 후 재시도)", description, attempt, limit, interval
            )
        sleep(interval)
