"""structlog 配置模块

PARLEY_LOG_FORMAT=dev（默认）输出彩色可读日志，json 输出单行 JSON。
标准库 logging（uvicorn、aiosqlite）统一经 ProcessorFormatter 渲染。
Logfire 由 LOGFIRE_SEND_TO_LOGFIRE 控制，未启用时只写本地日志。
"""

import logging
import os

import structlog
from fastapi import FastAPI

# 第三方日志的最低级别：aiosqlite 在 DEBUG 下逐条记录 SQL
_NOISY_LOGGERS: dict[str, int] = {
    "aiosqlite": logging.WARNING,
    "uvicorn.access": logging.WARNING,
}


def _renderer(log_format: str) -> structlog.types.Processor:
    if log_format == "json":
        return structlog.processors.JSONRenderer(ensure_ascii=False)
    return structlog.dev.ConsoleRenderer()


def setup_logging() -> None:
    """初始化 structlog 与标准库 logging"""
    log_format = os.environ.get("PARLEY_LOG_FORMAT", "dev").lower()
    level_name = os.environ.get("PARLEY_LOG_LEVEL", "INFO").upper()
    level = logging.getLevelNamesMapping().get(level_name, logging.INFO)

    pre_chain: list[structlog.types.Processor] = [
        structlog.contextvars.merge_contextvars,
        structlog.stdlib.add_log_level,
        structlog.stdlib.add_logger_name,
        structlog.processors.TimeStamper(fmt="iso", utc=True),
    ]
    if log_format == "json":
        # JSON 下异常栈序列化为字符串字段
        pre_chain.append(structlog.processors.format_exc_info)

    structlog.configure(
        processors=[
            structlog.stdlib.filter_by_level,
            *pre_chain,
            structlog.processors.StackInfoRenderer(),
            structlog.stdlib.ProcessorFormatter.wrap_for_formatter,
        ],
        logger_factory=structlog.stdlib.LoggerFactory(),
        wrapper_class=structlog.stdlib.BoundLogger,
        cache_logger_on_first_use=True,
    )

    handler = logging.StreamHandler()
    handler.setFormatter(
        structlog.stdlib.ProcessorFormatter(
            processor=_renderer(log_format),
            foreign_pre_chain=pre_chain,
        )
    )

    root = logging.getLogger()
    root.handlers.clear()
    root.addHandler(handler)
    root.setLevel(level)
    for name, floor in _NOISY_LOGGERS.items():
        logging.getLogger(name).setLevel(max(level, floor))


def setup_logfire(app: FastAPI) -> None:
    """按需启用 Logfire（需要 LOGFIRE_TOKEN 与 observability extra）"""
    if os.environ.get("LOGFIRE_SEND_TO_LOGFIRE", "false").lower() != "true":
        return
    try:
        import logfire

        logfire.configure(service_name="parley-gateway")
        logfire.instrument_fastapi(app)
    except Exception:
        # Logfire 不可用时退回本地日志
        structlog.get_logger().warning("logfire_init_failed")
