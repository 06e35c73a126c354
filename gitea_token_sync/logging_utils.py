import logging
import sys
from typing import Optional


def setup_logging(verbosity: int = 0) -> None:
    level = logging.INFO
    if verbosity >= 1:
        level = logging.DEBUG

    logging.basicConfig(
        level=level,
        format="%(asctime)s | %(levelname)s | %(name)s | %(message)s",
        stream=sys.stdout,
    )

    # httpx 는 INFO 레벨에서 요청 URL 을 모두 찍으므로 -vv 일 때만 노출한다.
    logging.getLogger("httpx").setLevel(logging.DEBUG if verbosity >= 2 else logging.WARNING)


def get_logger(name: str) -> logging.Logger:
    return logging.getLogger(name)


def mask_secret(value: Optional[str], visible: int = 4) -> str:
    """
    토큰 값을 로그에 남길 수 있는 형태로 가린다. (앞 몇 글자 + 길이만 노출)
    """
    if not value:
        return "<empty>"
    if not isinstance(value, str):
        return f"<{type(value).__name__}>"
    if len(value) <= visible * 2:
        return f"<{len(value)} chars>"
    return f"{value[:visible]}… (length: {len(value)})"
