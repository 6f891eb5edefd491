"""
测试历史数据降采样
"""

import random

import pytest

from craftwatch.downsample import (
    BLIP_THRESHOLD,
    SENTINEL_TIME,
    HistoryRange,
    average_chunks,
    compress_segment,
    downsample,
    parse_time,
    split_segments,
)
from craftwatch.models import PingResult


@pytest.fixture
def make_ping(ts_at):
    counter = {"id": 0}

    def _make_ping(seconds, online=True, players=None, pinged_at=None):
        counter["id"] += 1
        return PingResult(
            id=counter["id"],
            server_id=1,
            pinged_at=pinged_at if pinged_at is not None else ts_at(seconds),
            online=online,
            players_online=players if online else None,
            players_max=20 if online else None,
            version="1.20.4" if online else None,
            motd="hello" if online else None,
        )

    return _make_ping


class TestParseTime:
    def test_utc_suffix(self):
        assert parse_time("1970-01-01T00:10:00.000Z") == 600

    def test_missing_offset_returns_sentinel(self):
        assert parse_time("1970-01-01T00:10:00") == SENTINEL_TIME

    def test_malformed_returns_sentinel(self):
        assert parse_time("not-a-time") == SENTINEL_TIME
        assert parse_time("") == SENTINEL_TIME


class TestSegmentation:
    def test_segment_count_follows_transitions(self, make_ping):
        states = [True, True, False, False, True, False, False, False, True]
        pings = [make_ping(i * 60, online=s, players=1) for i, s in enumerate(states)]

        transitions = sum(1 for a, b in zip(states, states[1:]) if a != b)
        segments = split_segments(pings)

        assert len(segments) == 1 + transitions
        assert [len(s) for s in segments] == [2, 2, 1, 3, 1]
        assert [s.online for s in segments] == [True, False, True, False, True]

    def test_empty(self):
        assert split_segments([]) == []


class TestShortSegments:
    def test_two_members_kept_verbatim(self, make_ping):
        pings = [make_ping(0, online=False), make_ping(60, online=False)]
        segment = split_segments(pings)[0]

        assert compress_segment(segment, 3600) == pings

    def test_more_than_two_members_keep_edges(self, make_ping):
        pings = [make_ping(i * 300, players=i) for i in range(5)]  # 持续 1200s，正好等于阈值
        segment = split_segments(pings)[0]
        assert segment.duration == BLIP_THRESHOLD

        assert compress_segment(segment, 3600) == [pings[0], pings[-1]]

    def test_short_online_segment_is_never_averaged(self, make_ping):
        pings = [make_ping(0, players=1), make_ping(60, players=100), make_ping(120, players=3)]
        result = downsample(pings, HistoryRange.MONTH)

        assert [p.players_online for p in result] == [1, 3]


class TestLongSegments:
    def test_long_offline_keeps_edges(self, make_ping):
        pings = [make_ping(i * 600, online=False) for i in range(10)]

        assert downsample(pings, HistoryRange.WEEK) == [pings[0], pings[-1]]

    def test_week_chunks_average_players(self, make_ping, ts_at):
        # 0..7200s，每 600s 一次，玩家数 = 序号
        pings = [make_ping(i * 600, players=i) for i in range(13)]

        result = downsample(pings, HistoryRange.WEEK)

        assert len(result) == 2
        # 第一块：序号 0..6，平均 21 / 7 = 3；字段来自序号 0，时间取序号 6
        assert result[0].id == pings[0].id
        assert result[0].players_online == 3
        assert result[0].pinged_at == ts_at(3600)
        # 第二块：序号 7..12，平均 57 / 6 = 9.5 -> 9；字段来自序号 6，时间取序号 12
        assert result[1].id == pings[6].id
        assert result[1].players_online == 9
        assert result[1].pinged_at == ts_at(7200)

    def test_month_chunk_is_wider(self, make_ping, ts_at):
        pings = [make_ping(i * 600, players=i) for i in range(13)]

        result = downsample(pings, HistoryRange.MONTH)

        # 7200s 不足一个 6 小时块，只在最后补一个平均点
        assert len(result) == 1
        assert result[0].players_online == 6
        assert result[0].pinged_at == ts_at(0)

    def test_partial_chunk_treats_missing_players_as_zero(self, make_ping, ts_at):
        pings = [make_ping(0, players=4), make_ping(600, players=5),
                 make_ping(1200, players=6), make_ping(1800, players=None)]

        result = average_chunks(pings, 3600)

        assert len(result) == 1
        assert result[0].players_online == 3  # 15 / 4 = 3.75 -> 3
        assert result[0].pinged_at == ts_at(0)

    def test_averaging_does_not_mutate_input(self, make_ping):
        pings = [make_ping(i * 600, players=10 + i) for i in range(13)]
        before = [p.model_copy() for p in pings]

        downsample(pings, HistoryRange.WEEK)

        assert pings == before


class TestDownsample:
    def test_empty_input(self):
        assert downsample([], HistoryRange.WEEK) == []

    def test_single_observation_is_kept(self, make_ping):
        ping = make_ping(0, players=7)
        assert downsample([ping], HistoryRange.MONTH) == [ping]

    def test_blip_scenario(self, make_ping, ts_at):
        pings = [
            make_ping(0, players=5), make_ping(60, players=5), make_ping(120, players=5),
            make_ping(1300, online=False), make_ping(1360, online=False),
            make_ping(3000, players=10),
        ]

        result = downsample(pings, HistoryRange.WEEK)

        assert [p.pinged_at for p in result] == [
            ts_at(0), ts_at(120), ts_at(1300), ts_at(1360), ts_at(3000)
        ]
        assert [p.online for p in result] == [True, True, False, False, True]
        assert result[-1].players_online == 10

    @pytest.mark.parametrize("history_range", [HistoryRange.WEEK, HistoryRange.MONTH])
    @pytest.mark.parametrize("seed", [1, 2, 3, 4, 5])
    def test_output_is_ordered_and_not_longer(self, make_ping, history_range, seed):
        rng = random.Random(seed)
        t = 0
        online = True
        pings = []
        for _ in range(300):
            t += rng.randint(60, 3000)
            if rng.random() < 0.1:
                online = not online
            pings.append(make_ping(t, online=online, players=rng.randint(0, 50)))

        result = downsample(pings, history_range)
        times = [parse_time(p.pinged_at) for p in result]

        assert 0 < len(result) <= len(pings)
        assert times == sorted(times)


class TestMalformedTimestamps:
    """时间无法解析时按纪元 0 处理，会扭曲时长计算；以下测试固定当前行为"""

    def test_malformed_last_timestamp_makes_long_segment_look_short(self, make_ping):
        pings = [make_ping(i * 600, players=i) for i in range(5)]
        pings.append(make_ping(0, players=99, pinged_at="garbage"))

        result = downsample(pings, HistoryRange.WEEK)

        # 本应按长在线段分块平均，但时长变为负数，被当作短段只保留首尾
        assert result == [pings[0], pings[-1]]

    def test_timestamp_without_offset_is_treated_as_malformed(self, make_ping):
        pings = [make_ping(i * 600, players=i) for i in range(5)]
        pings.append(make_ping(3000, players=99, pinged_at="2026-01-20T10:50:00"))

        result = downsample(pings, HistoryRange.WEEK)

        assert result == [pings[0], pings[-1]]

    def test_malformed_first_timestamp_closes_chunk_immediately(self, make_ping, ts_at):
        pings = [make_ping(0, players=2, pinged_at="garbage")]
        pings += [make_ping(i * 600, players=4) for i in range(1, 5)]

        result = downsample(pings, HistoryRange.WEEK)

        # 块起点为纪元 0，第二条记录即超过块宽度
        assert result[0].pinged_at == ts_at(600)
        assert result[0].players_online == 3
        assert len(result) == 2
