"""
Server List Ping 协议编解码

状态查询流程：
1. 握手包（packet id 0x00，next_state = 1 表示状态查询）
2. 状态请求包（packet id 0x00，无负载）
3. 读取状态响应包（packet id 0x00，负载为一个 JSON 字符串）

所有解码错误统一抛出 ProtocolError。
"""

import asyncio
import json
import struct
from typing import Any, Dict, Tuple

# 状态查询不依赖具体协议版本，-1 表示"未知客户端版本"
PROTOCOL_VERSION = -1
STATE_STATUS = 1
PACKET_HANDSHAKE = 0x00
PACKET_STATUS = 0x00

# 状态响应 JSON 上限，防止恶意对端声明超大长度
MAX_PACKET_LENGTH = 1 << 21

# 玩家数按 32 位有符号整数存储
MAX_PLAYER_COUNT = (1 << 31) - 1


class ProtocolError(Exception):
    """对端响应不符合协议"""


def encode_varint(value: int) -> bytes:
    """
    编码 VarInt（每字节 7 位，低位在前，最高位为续位）

    负数按 32 位补码编码，固定占 5 字节。
    """
    if not -(1 << 31) <= value < (1 << 31):
        raise ValueError(f"VarInt out of range: {value}")
    value &= 0xFFFFFFFF
    out = bytearray()
    while True:
        byte = value & 0x7F
        value >>= 7
        if value:
            out.append(byte | 0x80)
        else:
            out.append(byte)
            return bytes(out)


def decode_varint(data: bytes, offset: int = 0) -> Tuple[int, int]:
    """
    从 data[offset:] 解码一个 VarInt

    Returns:
        (值, 解码后的新偏移量)
    """
    result = 0
    for i in range(5):
        if offset >= len(data):
            raise ProtocolError("Truncated VarInt")
        byte = data[offset]
        offset += 1
        result |= (byte & 0x7F) << (7 * i)
        if not byte & 0x80:
            if result & (1 << 31):
                result -= 1 << 32
            return result, offset
    raise ProtocolError("VarInt is too long")


async def read_varint(reader: asyncio.StreamReader) -> int:
    """从流中读取一个 VarInt"""
    result = 0
    for i in range(5):
        try:
            chunk = await reader.readexactly(1)
        except asyncio.IncompleteReadError as e:
            raise ProtocolError("Connection closed while reading VarInt") from e
        byte = chunk[0]
        result |= (byte & 0x7F) << (7 * i)
        if not byte & 0x80:
            if result & (1 << 31):
                result -= 1 << 32
            return result
    raise ProtocolError("VarInt is too long")


def encode_string(value: str) -> bytes:
    raw = value.encode("utf-8")
    return encode_varint(len(raw)) + raw


def decode_string(data: bytes, offset: int = 0) -> Tuple[str, int]:
    length, offset = decode_varint(data, offset)
    if length < 0 or offset + length > len(data):
        raise ProtocolError("String length exceeds packet")
    try:
        value = data[offset:offset + length].decode("utf-8")
    except UnicodeDecodeError as e:
        raise ProtocolError("String is not valid UTF-8") from e
    return value, offset + length


def build_packet(packet_id: int, payload: bytes = b"") -> bytes:
    """组帧：VarInt(长度) + VarInt(packet id) + 负载"""
    body = encode_varint(packet_id) + payload
    return encode_varint(len(body)) + body


def build_handshake(host: str, port: int) -> bytes:
    payload = (
        encode_varint(PROTOCOL_VERSION)
        + encode_string(host)
        + struct.pack(">H", port)
        + encode_varint(STATE_STATUS)
    )
    return build_packet(PACKET_HANDSHAKE, payload)


def build_status_request() -> bytes:
    return build_packet(PACKET_STATUS)


async def read_packet(reader: asyncio.StreamReader) -> Tuple[int, bytes]:
    """
    读取一个完整的包

    Returns:
        (packet id, 负载)
    """
    length = await read_varint(reader)
    if length <= 0 or length > MAX_PACKET_LENGTH:
        raise ProtocolError(f"Invalid packet length: {length}")
    try:
        body = await reader.readexactly(length)
    except asyncio.IncompleteReadError as e:
        raise ProtocolError("Connection closed while reading packet") from e
    packet_id, offset = decode_varint(body)
    return packet_id, body[offset:]


def flatten_description(description: Any) -> str:
    """
    将 MOTD（纯字符串或聊天组件）展开为纯文本

    聊天组件形如 {"text": "...", "extra": [...]}，extra 可任意嵌套，
    这里用显式栈展开，嵌套深度不受解释器递归上限影响。
    """
    parts = []
    stack = [description]
    while stack:
        item = stack.pop()
        if item is None:
            continue
        if isinstance(item, str):
            parts.append(item)
        elif isinstance(item, list):
            stack.extend(reversed(item))
        elif isinstance(item, dict):
            text = item.get("text", "")
            parts.append(text if isinstance(text, str) else str(text))
            stack.append(item.get("extra"))
        else:
            parts.append(str(item))
    return "".join(parts)


def _player_count(value: Any) -> int:
    count = int(value)
    if not 0 <= count <= MAX_PLAYER_COUNT:
        raise ProtocolError(f"Player count out of range: {count}")
    return count


def parse_status(payload: bytes) -> Dict[str, Any]:
    """
    解析状态响应负载

    Returns:
        {"players_online", "players_max", "version", "motd"}
    """
    raw, _ = decode_string(payload)
    try:
        status = json.loads(raw)
        players = status["players"]
        return {
            "players_online": _player_count(players["online"]),
            "players_max": _player_count(players["max"]),
            "version": str(status["version"]["name"]),
            "motd": flatten_description(status.get("description")),
        }
    except (ValueError, KeyError, TypeError, OverflowError, RecursionError) as e:
        raise ProtocolError(f"Malformed status response: {e!r}") from e


async def query_status(
    reader: asyncio.StreamReader,
    writer: asyncio.StreamWriter,
    host: str,
    port: int
) -> Dict[str, Any]:
    """
    在已建立的连接上执行一次状态查询

    Returns:
        parse_status() 的结果
    """
    writer.write(build_handshake(host, port) + build_status_request())
    await writer.drain()

    packet_id, payload = await read_packet(reader)
    if packet_id != PACKET_STATUS:
        raise ProtocolError(f"Unexpected packet id: {packet_id:#x}")
    return parse_status(payload)
