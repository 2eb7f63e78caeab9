import io
import socket
import struct

import pytest

from mongostore.protocol import (
    CrewState,
    IOTask,
    LogTask,
    Movement,
    OpCode,
    Packet,
    Position,
    Response,
    decode_io_task,
    decode_log_task,
    decode_mongo_move,
    decode_move_to,
    decode_sabotage_crew,
    decode_start_crew,
    decode_start_patota,
    decode_update_state,
    log_reply_packet,
    origin_position,
    read_exact,
    read_response,
    read_sabotage_crew,
    read_uint32,
    response_packet,
    sabotage_packet,
)


def u32(*values):
    return struct.pack("<" + "I" * len(values), *values)


def test_opcode_values_follow_wire_order():
    assert Packet(OpCode.RESPONSE).serialize() == u32(22, 0)
    assert Packet(OpCode.IS_ON).serialize() == u32(10, 0)
    headers = [Packet(op).serialize()[:4] for op in OpCode]
    assert headers == [u32(index) for index in range(len(headers))]


def test_response_packet_wire_bytes():
    data = response_packet(Response.FAIL).serialize()
    assert data == u32(int(OpCode.RESPONSE), 4, int(Response.FAIL))


def test_read_response_round_trip():
    for response in Response:
        stream = io.BytesIO(response_packet(response).serialize())
        assert read_response(stream) is response


def test_add_string_prefixes_length_with_terminator():
    packet = Packet(OpCode.UNKNOWN)
    packet.add_string("abc")
    assert bytes(packet.payload) == u32(4) + b"abc\0"
    serialized = packet.serialize()
    assert serialized[:8] == u32(0, len(packet.payload))


def test_read_uint32_and_short_read():
    stream = io.BytesIO(u32(7) + b"\x01")
    assert read_uint32(stream) == 7
    with pytest.raises(EOFError):
        read_uint32(stream)


def test_read_exact_from_socket():
    left, right = socket.socketpair()
    try:
        left.sendall(b"hello")
        assert read_exact(right, 5) == b"hello"
    finally:
        left.close()
        right.close()


def test_decode_start_patota():
    path = b"tasks.txt\0"
    data = u32(2, len(path)) + path + u32(1, 2, 3, 4) + u32(9)
    patota = decode_start_patota(io.BytesIO(data))
    assert patota.patota_id == 9
    assert patota.crew_count == 2
    assert patota.tasks_path == "tasks.txt"
    assert patota.positions == [Position(1, 2), Position(3, 4)]


def test_decode_start_crew():
    crew = decode_start_crew(io.BytesIO(u32(5, 6, 7, 8)))
    assert (crew.id, crew.patota_id, crew.position) == (5, 6, Position(7, 8))


def test_decode_update_state():
    crew = decode_update_state(io.BytesIO(u32(5, 6, int(CrewState.EXEC))))
    assert crew.state is CrewState.EXEC
    assert crew.position is None


def test_decode_move_to():
    data = u32(3, int(Movement.LEFT), 2, 10, 11, 12, 13)
    move = decode_move_to(io.BytesIO(data))
    assert move.crew_id == 3
    assert move.direction is Movement.LEFT
    assert move.patota_id == 2
    assert move.origin == Position(10, 11)
    assert move.destination == Position(12, 13)


def test_decode_mongo_move():
    move = decode_mongo_move(io.BytesIO(u32(3, 10, 11, 12, 13)))
    assert (move.crew_id, move.origin, move.destination) == (3, Position(10, 11), Position(12, 13))
    assert move.direction is None


def test_decode_io_task():
    name = b"GENERAR_OXIGENO\0"
    task = decode_io_task(io.BytesIO(u32(4, len(name)) + name + u32(12)))
    assert task == IOTask(4, "GENERAR_OXIGENO", 12)


def test_decode_log_task():
    name = b"CONSUMIR_COMIDA\0"
    task = decode_log_task(io.BytesIO(u32(4, len(name)) + name))
    assert task == LogTask(4, "CONSUMIR_COMIDA")


def test_sabotage_crew_with_and_without_header():
    crew = decode_sabotage_crew(io.BytesIO(u32(8, 1)))
    assert (crew.id, crew.patota_id) == (8, 1)
    framed = read_sabotage_crew(io.BytesIO(u32(int(OpCode.CREW_SABOTAGE), 8, 8, 1)))
    assert framed == crew


def test_sabotage_packet():
    packet = sabotage_packet(Position(3, 4))
    assert packet.op_code is OpCode.SABOTAGE
    assert bytes(packet.payload) == u32(3, 4)


def test_log_reply_packet():
    packet = log_reply_packet("log text")
    stream = io.BytesIO(bytes(packet.payload))
    size = read_uint32(stream)
    assert read_exact(stream, size) == b"log text\0"
    assert packet.op_code is OpCode.GET_LOG_REPLY


@pytest.mark.parametrize(
    "direction, expected",
    [
        (Movement.UP, Position(5, 6)),
        (Movement.DOWN, Position(5, 4)),
        (Movement.RIGHT, Position(4, 5)),
        (Movement.LEFT, Position(6, 5)),
    ],
)
def test_origin_position(direction, expected):
    assert origin_position(Position(5, 5), direction) == expected


def test_position_str():
    assert str(Position(1, 2)) == "1|2"