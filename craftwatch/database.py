"""
数据库操作抽象层

封装所有 SQLite 操作，提供服务器注册表和探测记录的读写接口。

并发说明：每次操作使用独立的短连接，数据库运行在 WAL 模式下，
因此后台探测的并发写入和 API 的并发读取无需额外加锁；
每次追加都是一个独立提交的事务，不会留下写了一半的记录。
"""

import sqlite3
from contextlib import contextmanager
from pathlib import Path
from typing import List, Optional, Dict, Any

from .config import get_config
from .models import ProbeOutcome

# 时间戳统一由 SQLite 在写入时生成（UTC，毫秒精度）
TS_FORMAT = "%Y-%m-%dT%H:%M:%fZ"

SCHEMA = """
CREATE TABLE IF NOT EXISTS servers (
    id          INTEGER PRIMARY KEY AUTOINCREMENT,
    name        TEXT NOT NULL,
    address     TEXT NOT NULL,
    port        INTEGER NOT NULL DEFAULT 25565,
    created_at  TEXT NOT NULL DEFAULT (strftime('%Y-%m-%dT%H:%M:%fZ','now'))
);

CREATE TABLE IF NOT EXISTS ping_results (
    id              INTEGER PRIMARY KEY AUTOINCREMENT,
    server_id       INTEGER NOT NULL,
    pinged_at       TEXT NOT NULL DEFAULT (strftime('%Y-%m-%dT%H:%M:%fZ','now')),
    online          INTEGER NOT NULL,
    latency_ms      INTEGER,
    players_online  INTEGER,
    players_max     INTEGER,
    version         TEXT,
    motd            TEXT,
    FOREIGN KEY (server_id) REFERENCES servers(id) ON DELETE CASCADE
);

CREATE INDEX IF NOT EXISTS idx_ping_results_server_date
    ON ping_results(server_id, pinged_at);
"""

PING_COLUMNS = (
    "id, server_id, pinged_at, online, latency_ms, "
    "players_online, players_max, version, motd"
)


class Database:
    """数据库操作类"""

    def __init__(self, db_path: Optional[str] = None, timeout: int = 30):
        """
        初始化数据库

        Args:
            db_path: 数据库文件路径，不指定则从配置加载
            timeout: SQLite busy timeout（秒）
        """
        if db_path is None:
            config = get_config()
            db_path = config.database.path
            timeout = config.database.timeout

        self.db_path = Path(db_path)
        self.timeout = timeout

        # 确保目录存在
        self.db_path.parent.mkdir(parents=True, exist_ok=True)

    @contextmanager
    def get_conn(self):
        """
        获取数据库连接（上下文管理器）

        使用方式：
            with db.get_conn() as conn:
                cursor = conn.execute("SELECT ...")
        """
        conn = sqlite3.connect(str(self.db_path), timeout=self.timeout)
        conn.row_factory = sqlite3.Row
        # 启用外键约束（删除服务器时级联删除探测记录）
        conn.execute("PRAGMA foreign_keys = ON")
        conn.execute("PRAGMA synchronous = NORMAL")
        try:
            yield conn
            conn.commit()
        except Exception:
            conn.rollback()
            raise
        finally:
            conn.close()

    def init_schema(self):
        """创建表结构并启用 WAL 模式（幂等）"""
        with self.get_conn() as conn:
            conn.execute("PRAGMA journal_mode = WAL")
            conn.executescript(SCHEMA)

    # =========================================================================
    # 服务器操作
    # =========================================================================

    def get_all_servers(self) -> List[Dict[str, Any]]:
        """获取所有服务器"""
        with self.get_conn() as conn:
            cursor = conn.execute("""
                SELECT id, name, address, port, created_at
                FROM servers
                ORDER BY id ASC
            """)
            return [dict(row) for row in cursor.fetchall()]

    def get_server_by_id(self, server_id: int) -> Optional[Dict[str, Any]]:
        """根据 ID 获取服务器"""
        with self.get_conn() as conn:
            cursor = conn.execute("""
                SELECT id, name, address, port, created_at
                FROM servers
                WHERE id = ?
            """, (server_id,))
            row = cursor.fetchone()
            return dict(row) if row else None

    def create_server(self, name: str, address: str, port: int = 25565) -> int:
        """
        创建服务器

        Returns:
            新创建的服务器 ID
        """
        with self.get_conn() as conn:
            cursor = conn.execute(
                "INSERT INTO servers (name, address, port) VALUES (?, ?, ?)",
                (name, address, port)
            )
            return cursor.lastrowid

    def delete_server(self, server_id: int) -> bool:
        """
        删除服务器（探测记录级联删除）

        Returns:
            是否删除成功
        """
        with self.get_conn() as conn:
            cursor = conn.execute("DELETE FROM servers WHERE id = ?", (server_id,))
            return cursor.rowcount > 0

    def seed_default_server(self, name: str, address: str, port: int) -> Optional[int]:
        """
        服务器表为空时插入一个默认服务器

        Returns:
            新插入的服务器 ID；表非空时返回 None
        """
        with self.get_conn() as conn:
            count = conn.execute("SELECT COUNT(*) FROM servers").fetchone()[0]
            if count:
                return None
            cursor = conn.execute(
                "INSERT INTO servers (name, address, port) VALUES (?, ?, ?)",
                (name, address, port)
            )
            return cursor.lastrowid

    # =========================================================================
    # 探测记录操作
    # =========================================================================

    def insert_ping_result(self, server_id: int, outcome: ProbeOutcome) -> int:
        """
        追加一条探测记录

        时间戳由 SQLite 在写入时分配，而不是由探测方提供，
        因此并发探测之间的时钟差异不会造成乱序记录。

        Returns:
            新记录 ID
        """
        if outcome.online:
            values = (
                server_id, 1, outcome.latency_ms,
                outcome.players_online, outcome.players_max,
                outcome.version, outcome.motd,
            )
        else:
            values = (server_id, 0, None, None, None, None, None)

        with self.get_conn() as conn:
            cursor = conn.execute("""
                INSERT INTO ping_results (
                    server_id, online, latency_ms,
                    players_online, players_max, version, motd
                ) VALUES (?, ?, ?, ?, ?, ?, ?)
            """, values)
            return cursor.lastrowid

    def get_last_ping(self, server_id: int) -> Optional[Dict[str, Any]]:
        """获取服务器最近一条探测记录"""
        with self.get_conn() as conn:
            cursor = conn.execute(f"""
                SELECT {PING_COLUMNS}
                FROM ping_results
                WHERE server_id = ?
                ORDER BY pinged_at DESC, id DESC
                LIMIT 1
            """, (server_id,))
            row = cursor.fetchone()
            return dict(row) if row else None

    def query_pings(
        self,
        server_id: int,
        since_id: Optional[int] = None,
        window_seconds: Optional[int] = None
    ) -> List[Dict[str, Any]]:
        """
        查询探测记录（按时间升序，同一时间按写入顺序）

        Args:
            server_id: 服务器 ID
            since_id: 只返回 id 大于该值的记录（增量模式）；给定时忽略 window_seconds
            window_seconds: 只返回最近 N 秒内的记录

        Returns:
            探测记录字典列表
        """
        sql = f"""
            SELECT {PING_COLUMNS}
            FROM ping_results
            WHERE server_id = ?
        """
        params: List[Any] = [server_id]

        if since_id is not None:
            sql += " AND id > ?"
            params.append(since_id)
        elif window_seconds is not None:
            # 截止时间与 pinged_at 使用相同的文本格式，保证字符串比较正确
            sql += f" AND pinged_at >= strftime('{TS_FORMAT}', 'now', ?)"
            params.append(f"-{int(window_seconds)} seconds")

        sql += " ORDER BY pinged_at ASC, id ASC"

        with self.get_conn() as conn:
            cursor = conn.execute(sql, params)
            return [dict(row) for row in cursor.fetchall()]


# 全局数据库实例（延迟加载）
_db: Optional[Database] = None


def get_db() -> Database:
    """获取全局数据库实例"""
    global _db
    if _db is None:
        _db = Database()
    return _db


def reset_db():
    """重置数据库实例（主要用于测试）"""
    global _db
    _db = None
