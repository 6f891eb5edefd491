"""
测试公共夹具
"""

import asyncio
import json
from datetime import datetime, timedelta, timezone

import pytest

from craftwatch.database import Database
from craftwatch.protocol import build_packet, encode_string, read_packet


def format_ts(dt: datetime) -> str:
    """与 SQLite strftime('%Y-%m-%dT%H:%M:%fZ') 相同的格式"""
    dt = dt.astimezone(timezone.utc)
    return f"{dt:%Y-%m-%dT%H:%M:%S}.{dt.microsecond // 1000:03d}Z"


STATUS_JSON = {
    "version": {"name": "1.20.4", "protocol": 765},
    "players": {"max": 20, "online": 5},
    "description": {"text": "A ", "extra": [{"text": "Minecraft"}, " Server"]},
}


@pytest.fixture
def db(tmp_path):
    """创建临时测试数据库"""
    db = Database(str(tmp_path / "test_craftwatch.db"))
    db.init_schema()
    return db


@pytest.fixture
def add_ping(db):
    """
    以指定时间插入探测记录

    正常写入路径由 SQLite 分配时间戳，测试需要可控的时间，因此直接写 SQL。
    """
    def _add_ping(server_id, pinged_at, online=True, players_online=None, players_max=None):
        if isinstance(pinged_at, datetime):
            pinged_at = format_ts(pinged_at)
        with db.get_conn() as conn:
            cursor = conn.execute("""
                INSERT INTO ping_results (server_id, pinged_at, online, players_online, players_max)
                VALUES (?, ?, ?, ?, ?)
            """, (server_id, pinged_at, 1 if online else 0, players_online, players_max))
            return cursor.lastrowid

    return _add_ping


@pytest.fixture
def now():
    return datetime.now(timezone.utc)


@pytest.fixture
def start_status_server():
    """
    在 127.0.0.1 上启动一个假的游戏服务器（必须在事件循环内调用）

    mode:
    - "ok": 正常返回状态 JSON
    - "hang": 接受连接但从不响应
    - "garbage": 返回无法解析的状态

    status 可以是 dict 或现成的 JSON 文本。
    """
    async def _start(mode="ok", status=None):
        never = asyncio.Event()
        payload = status if isinstance(status, str) else json.dumps(status or STATUS_JSON)

        async def handle(reader, writer):
            if mode == "hang":
                await never.wait()
                return
            await read_packet(reader)  # 握手
            await read_packet(reader)  # 状态请求
            if mode == "garbage":
                writer.write(build_packet(0x00, encode_string("{not json")))
            else:
                writer.write(build_packet(0x00, encode_string(payload)))
            await writer.drain()
            writer.close()

        server = await asyncio.start_server(handle, "127.0.0.1", 0)
        port = server.sockets[0].getsockname()[1]
        return server, port

    return _start


@pytest.fixture
def base_time():
    return datetime(2026, 1, 20, 10, 0, 0, tzinfo=timezone.utc)


@pytest.fixture
def ts_at(base_time):
    """相对 base_time 的秒数 -> 时间字符串"""
    def _ts_at(seconds):
        return format_ts(base_time + timedelta(seconds=seconds))

    return _ts_at
