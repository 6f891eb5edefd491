"""
历史查询

根据查询参数选择返回原始记录还是降采样结果：
- 带 since_id 的增量请求：不限时间窗口，原样返回
- day 范围：原样返回
- week / month 范围：降采样后返回
"""

from typing import List, Optional

from .database import Database
from .downsample import HistoryRange, RANGE_WINDOWS, downsample
from .models import PingResult


def resolve_range(range_tag: Optional[str]) -> HistoryRange:
    """范围标签 -> HistoryRange，未知或缺省时按 day 处理"""
    try:
        return HistoryRange(range_tag)
    except ValueError:
        return HistoryRange.DAY


def load_history(
    db: Database,
    server_id: int,
    range_tag: Optional[str] = None,
    since_id: Optional[int] = None
) -> List[PingResult]:
    """
    查询单个服务器的历史记录

    数据库读取失败时异常直接向上抛出，不返回部分结果。
    """
    history_range = resolve_range(range_tag)
    window = None if since_id is not None else RANGE_WINDOWS[history_range]

    pings = [PingResult(**row) for row in db.query_pings(server_id, since_id, window)]

    if since_id is not None or history_range == HistoryRange.DAY:
        return pings
    return downsample(pings, history_range)
