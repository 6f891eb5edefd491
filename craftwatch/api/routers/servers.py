"""
服务器管理 API

提供服务器的增删查、手动探测和历史记录查询。
"""

import logging
import sqlite3
from typing import List, Optional

from fastapi import APIRouter, Depends, HTTPException, Query, status

from ...database import Database
from ...history import load_history
from ...models import PingResult, ServerCreate, ServerResponse, SimpleResponse
from ...scheduler import ProbeScheduler
from ..dependencies import get_database, get_prober, verify_admin_token

logger = logging.getLogger(__name__)

router = APIRouter(prefix="/api/servers", tags=["servers"])


def _get_server_or_404(db: Database, server_id: int) -> dict:
    server = db.get_server_by_id(server_id)
    if not server:
        raise HTTPException(
            status_code=status.HTTP_404_NOT_FOUND,
            detail=f"Server {server_id} not found"
        )
    return server


@router.get("", response_model=List[ServerResponse])
async def list_servers(db: Database = Depends(get_database)):
    """
    获取所有服务器

    last_online 取自每台服务器最近一条探测记录，没有记录时为 False。
    """
    result = []
    for server in db.get_all_servers():
        last = db.get_last_ping(server["id"])
        result.append(ServerResponse(
            **server,
            last_online=bool(last["online"]) if last else False
        ))
    return result


@router.post("", response_model=ServerResponse, dependencies=[Depends(verify_admin_token)])
async def create_server(data: ServerCreate, db: Database = Depends(get_database)):
    """
    添加服务器

    新服务器从下一轮定时探测开始纳入探测。
    """
    server_id = db.create_server(name=data.name, address=data.address, port=data.port)
    logger.info(f"Created server: {data.name} {data.address}:{data.port} (id={server_id})")

    return ServerResponse(**db.get_server_by_id(server_id), last_online=False)


@router.delete("/{server_id}", response_model=SimpleResponse, dependencies=[Depends(verify_admin_token)])
async def delete_server(server_id: int, db: Database = Depends(get_database)):
    """删除服务器（历史探测记录一并删除）"""
    _get_server_or_404(db, server_id)

    success = db.delete_server(server_id)
    if success:
        logger.info(f"Deleted server {server_id}")

    return SimpleResponse(success=success)


@router.api_route(
    "/{server_id}/ping",
    methods=["GET", "POST"],
    response_model=SimpleResponse,
    dependencies=[Depends(verify_admin_token)],
)
async def ping_server(
    server_id: int,
    db: Database = Depends(get_database),
    prober: ProbeScheduler = Depends(get_prober)
):
    """
    立即探测一台服务器并写入结果

    返回的 success 表示写库是否成功，而不是服务器是否在线。
    """
    server = _get_server_or_404(db, server_id)

    if not await prober.probe_server(server):
        raise HTTPException(
            status_code=status.HTTP_500_INTERNAL_SERVER_ERROR,
            detail="Failed to store ping result"
        )
    return SimpleResponse(success=True)


@router.get("/{server_id}/pings", response_model=List[PingResult])
async def list_server_pings(
    server_id: int,
    range_tag: Optional[str] = Query(None, alias="range", description="时间范围：day（默认）, week, month"),
    since_id: Optional[int] = Query(None, description="增量更新：只返回 id 大于该值的记录"),
    db: Database = Depends(get_database)
):
    """
    查询历史探测记录

    week / month 范围返回降采样结果；day 范围和增量请求返回原始记录。
    """
    try:
        return load_history(db, server_id, range_tag, since_id)
    except sqlite3.Error as e:
        logger.error(f"Failed to query pings for server {server_id}: {e}", exc_info=True)
        raise HTTPException(
            status_code=status.HTTP_500_INTERNAL_SERVER_ERROR,
            detail="Failed to query ping history"
        )
