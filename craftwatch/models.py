"""
数据模型定义

包括：
- Pydantic 响应 / 请求模型
- 探测结果（在线 / 离线二选一）
"""

from typing import Literal, Optional, Union

from pydantic import BaseModel, ConfigDict, Field


# =============================================================================
# 探测结果
# =============================================================================

class ProbeOnline(BaseModel):
    """探测成功：协议交换在超时前完成"""
    online: Literal[True] = True
    latency_ms: Optional[int] = None
    players_online: int
    players_max: int
    version: str
    motd: str


class ProbeOffline(BaseModel):
    """
    探测失败

    连接失败、超时、协议错误统一折叠为这一种结果，不携带失败原因。
    """
    online: Literal[False] = False


ProbeOutcome = Union[ProbeOnline, ProbeOffline]


# =============================================================================
# Pydantic 响应模型（用于 API 和数据验证）
# =============================================================================

class PingResult(BaseModel):
    """单条探测记录（ping_results 表的一行）"""
    model_config = ConfigDict(populate_by_name=True)

    id: int
    server_id: int
    pinged_at: str
    online: bool
    latency_ms: Optional[int] = None
    # 前端图表使用 player_count 字段名
    players_online: Optional[int] = Field(None, alias="player_count")
    players_max: Optional[int] = None
    version: Optional[str] = None
    motd: Optional[str] = None


class ServerResponse(BaseModel):
    """服务器响应模型（GET /api/servers）"""
    id: int
    name: str
    address: str
    port: int
    created_at: str
    last_online: bool = False


class ServerCreate(BaseModel):
    """创建服务器请求模型"""
    name: str = Field(..., min_length=1)
    address: str = Field(..., min_length=1)
    port: int = Field(25565, ge=1, le=65535)


class SimpleResponse(BaseModel):
    """通用操作结果"""
    success: bool
