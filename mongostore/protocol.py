"""Wire protocol shared by the station modules: packets, message types and decoders."""

from __future__ import annotations

import struct
from dataclasses import dataclass, field
from enum import IntEnum
from typing import Optional

_UINT32 = struct.Struct("<I")
_HEADER = struct.Struct("<II")


class OpCode(IntEnum):
    """Operation codes carried in the first four bytes of every packet."""

    UNKNOWN = 0
    START_PLANNING = 1
    PAUSE_PLANNING = 2
    START_PATOTA = 3
    START_CREW = 4
    LIST_CREW = 5
    LIST_CREW_REPLY = 6
    EXPEL_CREW = 7
    GET_LOG = 8
    GET_LOG_REPLY = 9
    IS_ON = 10
    SABOTAGE = 11
    START_TASKS = 12
    MOVE_TO = 13
    REQUEST_TASK = 14
    RUN_TASK = 15
    FINISH_TASK = 16
    RESOLVE_SABOTAGE = 17
    FINISH_SABOTAGE = 18
    IO_TASK = 19
    UPDATE_CREW_STATE = 20
    CREW_SABOTAGE = 21
    RESPONSE = 22


class Response(IntEnum):
    OK = 0
    FAIL = 1


class CrewState(IntEnum):
    NEW = 0
    READY = 1
    BLOCKED_IO = 2
    BLOCKED_EMERGENCY = 3
    EXEC = 4
    EXIT = 5


class Movement(IntEnum):
    UP = 0
    DOWN = 1
    LEFT = 2
    RIGHT = 3


@dataclass(frozen=True)
class Position:
    x: int
    y: int

    def __str__(self) -> str:
        return f"{self.x}|{self.y}"


@dataclass
class Packet:
    """An operation code with its payload."""

    op_code: OpCode
    payload: bytearray = field(default_factory=bytearray)

    def add_string(self, value: str) -> None:
        """Append a length-prefixed, NUL-terminated string to the payload."""
        encoded = value.encode() + b"\0"
        self.payload += _UINT32.pack(len(encoded))
        self.payload += encoded

    def serialize(self) -> bytes:
        """Return the bytes sent on the wire: op code, payload size, payload."""
        return _HEADER.pack(int(self.op_code), len(self.payload)) + bytes(self.payload)


@dataclass
class PatotaStart:
    patota_id: int
    crew_count: int
    tasks_path: str
    positions: list[Position] = field(default_factory=list)


@dataclass
class CrewMember:
    id: int
    patota_id: int
    position: Optional[Position] = None
    state: Optional[CrewState] = None


@dataclass
class MoveTo:
    crew_id: int
    origin: Position
    destination: Position
    direction: Optional[Movement] = None
    patota_id: Optional[int] = None


@dataclass
class IOTask:
    crew_id: int
    name: str
    parameter: int


@dataclass
class LogTask:
    crew_id: int
    name: str


def read_exact(stream, size: int) -> bytes:
    """Read exactly ``size`` bytes from a socket or a binary file object."""
    reader = getattr(stream, "recv", None) or stream.read
    data = bytearray()
    while len(data) < size:
        chunk = reader(size - len(data))
        if not chunk:
            raise EOFError(f"expected {size} bytes, got {len(data)}")
        data += chunk
    return bytes(data)


def read_uint32(stream) -> int:
    return _UINT32.unpack(read_exact(stream, _UINT32.size))[0]


def _read_position(stream) -> Position:
    x = read_uint32(stream)
    y = read_uint32(stream)
    return Position(x, y)


def _read_text(stream, size: int) -> str:
    raw = read_exact(stream, size)
    return raw.split(b"\0", 1)[0].decode(errors="replace")


def decode_start_patota(stream) -> PatotaStart:
    crew_count = read_uint32(stream)
    path_size = read_uint32(stream)
    tasks_path = _read_text(stream, path_size)
    positions = [_read_position(stream) for _ in range(crew_count)]
    patota_id = read_uint32(stream)
    return PatotaStart(patota_id, crew_count, tasks_path, positions)


def decode_start_crew(stream) -> CrewMember:
    crew_id = read_uint32(stream)
    patota_id = read_uint32(stream)
    position = _read_position(stream)
    return CrewMember(crew_id, patota_id, position=position)


def decode_update_state(stream) -> CrewMember:
    crew_id = read_uint32(stream)
    patota_id = read_uint32(stream)
    state = CrewState(read_uint32(stream))
    return CrewMember(crew_id, patota_id, state=state)


def decode_move_to(stream) -> MoveTo:
    crew_id = read_uint32(stream)
    direction = Movement(read_uint32(stream))
    patota_id = read_uint32(stream)
    origin = _read_position(stream)
    destination = _read_position(stream)
    return MoveTo(crew_id, origin, destination, direction=direction, patota_id=patota_id)


def decode_mongo_move(stream) -> MoveTo:
    """Decode the short move message sent to the store: id, origin, destination."""
    crew_id = read_uint32(stream)
    origin = _read_position(stream)
    destination = _read_position(stream)
    return MoveTo(crew_id, origin, destination)


def decode_io_task(stream) -> IOTask:
    crew_id = read_uint32(stream)
    size = read_uint32(stream)
    name = _read_text(stream, size)
    parameter = read_uint32(stream)
    return IOTask(crew_id, name, parameter)


def decode_log_task(stream) -> LogTask:
    crew_id = read_uint32(stream)
    size = read_uint32(stream)
    name = _read_text(stream, size)
    return LogTask(crew_id, name)


def decode_sabotage_crew(stream) -> CrewMember:
    crew_id = read_uint32(stream)
    patota_id = read_uint32(stream)
    return CrewMember(crew_id, patota_id)


def read_sabotage_crew(stream) -> CrewMember:
    """Skip the packet header, then decode the crew member sent to fix a sabotage."""
    read_exact(stream, _HEADER.size)
    return decode_sabotage_crew(stream)


def response_packet(response: Response) -> Packet:
    return Packet(OpCode.RESPONSE, bytearray(_UINT32.pack(int(response))))


def read_response(stream) -> Response:
    read_exact(stream, _HEADER.size)
    return Response(read_uint32(stream))


def sabotage_packet(position: Position) -> Packet:
    return Packet(OpCode.SABOTAGE, bytearray(_HEADER.pack(position.x, position.y)))


def log_reply_packet(text: str) -> Packet:
    encoded = text.encode() + b"\0"
    return Packet(OpCode.GET_LOG_REPLY, bytearray(_UINT32.pack(len(encoded)) + encoded))


def origin_position(position: Position, direction: Movement) -> Position:
    """Return the position a crew member came from after one step in ``direction``."""
    x, y = position.x, position.y
    if direction is Movement.UP:
        y += 1
    elif direction is Movement.DOWN:
        y -= 1
    elif direction is Movement.RIGHT:
        x -= 1
    elif direction is Movement.LEFT:
        x += 1
    return Position(x % 2**32, y % 2**32)