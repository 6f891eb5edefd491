"""
历史数据降采样

把按时间升序的探测记录压缩成适合画图的短序列，同时保留在线/离线切换的细节：

1. 按 online 状态切分为连续段（segment）
2. 每段独立处理：
   - 短段（持续 <= 20 分钟）：不超过 2 条全部保留，否则只保留首尾
   - 长离线段：只保留首尾（画成一条平线）
   - 长在线段：按时间块求玩家数平均值
3. 各段结果按顺序拼接

纯函数，不访问数据库。
"""

from dataclasses import dataclass, field
from datetime import datetime
from enum import Enum
from typing import List, Sequence

from .models import PingResult

# 持续时间不超过该值的段视为短暂波动（blip），保留细节
BLIP_THRESHOLD = 20 * 60

# 时间无法解析时使用的哨兵值（Unix 纪元）
SENTINEL_TIME = 0


class HistoryRange(str, Enum):
    """历史查询范围"""
    DAY = "day"
    WEEK = "week"
    MONTH = "month"


RANGE_WINDOWS = {
    HistoryRange.DAY: 60 * 60 * 24,
    HistoryRange.WEEK: 60 * 60 * 24 * 7,
    HistoryRange.MONTH: 60 * 60 * 24 * 30,
}

# 长在线段的平均块宽度：周 -> 每天约 24 个点，月 -> 每天约 4 个点
CHUNK_WIDTHS = {
    HistoryRange.WEEK: 60 * 60,
    HistoryRange.MONTH: 6 * 60 * 60,
}
DEFAULT_CHUNK_WIDTH = 15 * 60


def parse_time(ts: str) -> int:
    """
    ISO 8601 时间字符串 -> Unix 秒

    无法解析时返回 SENTINEL_TIME 而不是抛异常；不带时区偏移的时间同样视为无法解析。
    """
    try:
        dt = datetime.fromisoformat(ts.replace("Z", "+00:00"))
    except (AttributeError, TypeError, ValueError):
        return SENTINEL_TIME
    if dt.tzinfo is None:
        return SENTINEL_TIME
    return int(dt.timestamp())


@dataclass
class Segment:
    """online 状态不变的一段连续记录"""
    online: bool
    members: List[PingResult] = field(default_factory=list)

    @property
    def start(self) -> int:
        return parse_time(self.members[0].pinged_at)

    @property
    def end(self) -> int:
        return parse_time(self.members[-1].pinged_at)

    @property
    def duration(self) -> int:
        return self.end - self.start

    def __len__(self) -> int:
        return len(self.members)


def split_segments(pings: Sequence[PingResult]) -> List[Segment]:
    """在 online 状态变化处切分"""
    segments: List[Segment] = []
    for ping in pings:
        if segments and segments[-1].online == ping.online:
            segments[-1].members.append(ping)
        else:
            segments.append(Segment(online=ping.online, members=[ping]))
    return segments


def _averaged(ref: PingResult, total: int, count: int, pinged_at: str) -> PingResult:
    # 整数平均，向零截断
    return ref.model_copy(update={
        "players_online": int(total / count),
        "pinged_at": pinged_at,
    })


def average_chunks(members: Sequence[PingResult], chunk_secs: int) -> List[PingResult]:
    """
    长在线段按时间块求平均

    每当距块起点的时间达到 chunk_secs，输出一个点：字段取自块的参考记录，
    玩家数为块内平均值，时间戳取当前记录（块内最后一次真实采样）。
    当前记录随即成为下一块的参考点和起点。
    循环结束后若还有未输出的部分块，再补一个平均点（时间戳沿用参考记录）。
    """
    out: List[PingResult] = []
    if not members:
        return out

    ref = members[0]
    chunk_start = parse_time(ref.pinged_at)
    total = 0
    count = 0

    for ping in members:
        t = parse_time(ping.pinged_at)
        total += ping.players_online or 0
        count += 1

        if t - chunk_start >= chunk_secs:
            out.append(_averaged(ref, total, count, ping.pinged_at))
            ref = ping
            chunk_start = t
            total = 0
            count = 0

    if count > 0:
        out.append(_averaged(ref, total, count, ref.pinged_at))

    return out


def compress_segment(
    segment: Segment,
    chunk_secs: int,
    blip_secs: int = BLIP_THRESHOLD
) -> List[PingResult]:
    """按段的时长和状态选择压缩策略"""
    members = segment.members
    first, last = members[0], members[-1]

    # 1) 短段：保留细节
    if segment.duration <= blip_secs:
        if len(members) <= 2:
            return list(members)
        return [first, last]

    # 2) 长离线段：只保留边缘
    if not segment.online:
        return [first, last]

    # 3) 长在线段：分块平均
    return average_chunks(members, chunk_secs)


def downsample(pings: Sequence[PingResult], history_range: HistoryRange) -> List[PingResult]:
    """
    降采样入口

    Args:
        pings: 单个服务器按时间升序的探测记录
        history_range: 查询范围，决定长在线段的块宽度

    Returns:
        按时间升序的压缩结果，长度不超过输入
    """
    if not pings:
        return []

    chunk_secs = CHUNK_WIDTHS.get(history_range, DEFAULT_CHUNK_WIDTH)

    optimized: List[PingResult] = []
    for segment in split_segments(pings):
        optimized.extend(compress_segment(segment, chunk_secs))
    return optimized
