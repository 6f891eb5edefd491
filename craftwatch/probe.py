"""
单次状态探测

对一个 host:port 执行一次限时的状态查询，返回 ProbeOnline 或 ProbeOffline。
超时预算覆盖整个过程（连接 + 握手 + 读取响应）。
"""

import asyncio
import logging
import time
from enum import Enum

from .models import ProbeOffline, ProbeOnline, ProbeOutcome
from .protocol import ProtocolError, query_status

logger = logging.getLogger(__name__)

PROBE_TIMEOUT = 3.0


class ProbeFailure(str, Enum):
    """失败原因，仅用于日志，不写入数据库"""
    CONNECT = "connect"
    TIMEOUT = "timeout"
    PROTOCOL = "protocol"


async def _exchange(host: str, port: int) -> ProbeOnline:
    reader, writer = await asyncio.open_connection(host, port)
    try:
        started = time.perf_counter()
        status = await query_status(reader, writer, host, port)
        latency_ms = int((time.perf_counter() - started) * 1000)
    finally:
        writer.close()
        try:
            await writer.wait_closed()
        except OSError:
            pass

    return ProbeOnline(latency_ms=latency_ms, **status)


async def probe(host: str, port: int, timeout: float = PROBE_TIMEOUT) -> ProbeOutcome:
    """
    探测单个服务器

    Args:
        host: 服务器地址
        port: 服务器端口
        timeout: 整个探测过程的时间预算（秒）

    Returns:
        ProbeOnline 或 ProbeOffline；网络和协议错误不会向外抛出
    """
    try:
        return await asyncio.wait_for(_exchange(host, port), timeout=timeout)
    except asyncio.TimeoutError:
        failure = ProbeFailure.TIMEOUT
    except ProtocolError as e:
        failure = ProbeFailure.PROTOCOL
        logger.debug(f"Protocol error from {host}:{port}: {e}")
    except (OSError, ValueError, OverflowError) as e:
        failure = ProbeFailure.CONNECT
        logger.debug(f"Connection to {host}:{port} failed: {e}")

    logger.debug(f"Probe {host}:{port} offline ({failure.value})")
    return ProbeOffline()
