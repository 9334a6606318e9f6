"""日志初始化。"""

import logging

from twofa_api.core.config import Settings


def configure_logging(settings: Settings) -> None:
    """初始化日志输出格式与级别。"""
    logging.basicConfig(
        level=getattr(logging, settings.log_level.upper(), logging.INFO),
        format="%(asctime)s %(levelname)s [%(name)s] %(message)s",
    )
