"""
Point-to-point channel codec between the coordinator and its workers.

Each worker has two dedicated one-way pipes: one carrying its shard
descriptor in, one carrying its result out. Messages are fixed-size
little-endian records:

    descriptor: int64 start_index, int64 count
    result:     int64 correct_count
"""

import struct
from multiprocessing.connection import Connection

from core.errors import ChannelIOError
from core.partitioner import ShardDescriptor


DESCRIPTOR_FORMAT = struct.Struct('<qq')
RESULT_FORMAT = struct.Struct('<q')

DESCRIPTOR_SIZE = DESCRIPTOR_FORMAT.size
RESULT_SIZE = RESULT_FORMAT.size


def encode_descriptor(shard: ShardDescriptor) -> bytes:
    """Serialize a shard descriptor for its inbound channel."""
    return DESCRIPTOR_FORMAT.pack(shard.start_index, shard.count)


def decode_descriptor(payload: bytes) -> ShardDescriptor:
    """
    Deserialize a shard descriptor.

    Raises:
        ChannelIOError: On a wrong-sized payload or negative fields
    """
    if len(payload) != DESCRIPTOR_SIZE:
        raise ChannelIOError(
            f"descriptor must be {DESCRIPTOR_SIZE} bytes, got {len(payload)}"
        )
    start_index, count = DESCRIPTOR_FORMAT.unpack(payload)
    try:
        return ShardDescriptor(start_index=start_index, count=count)
    except ValueError as e:
        raise ChannelIOError(f"invalid descriptor: {e}") from e


def encode_result(correct_count: int) -> bytes:
    """Serialize a worker's correct-prediction count."""
    return RESULT_FORMAT.pack(correct_count)


def decode_result(payload: bytes) -> int:
    """
    Deserialize a worker's correct-prediction count.

    Raises:
        ChannelIOError: On a wrong-sized payload or a negative count
    """
    if len(payload) != RESULT_SIZE:
        raise ChannelIOError(f"result must be {RESULT_SIZE} bytes, got {len(payload)}")
    (correct_count,) = RESULT_FORMAT.unpack(payload)
    if correct_count < 0:
        raise ChannelIOError(f"invalid result: negative count {correct_count}")
    return correct_count


def send_message(conn: Connection, payload: bytes):
    """
    Write one payload to a channel.

    Raises:
        ChannelIOError: If the channel is closed or the write fails
    """
    try:
        conn.send_bytes(payload)
    except (OSError, ValueError) as e:
        raise ChannelIOError(f"write failed: {e}") from e


def recv_exact(conn: Connection, size: int) -> bytes:
    """
    Read exactly `size` bytes from a channel.

    Deliveries are concatenated until the full record is assembled, so a
    sender may split a record across several writes.

    Raises:
        ChannelIOError: If the channel closes or errors before `size` bytes
            arrive, or if more than `size` bytes are delivered
    """
    buffer = bytearray()
    while len(buffer) < size:
        try:
            chunk = conn.recv_bytes()
        except EOFError as e:
            raise ChannelIOError(
                f"channel closed after {len(buffer)} of {size} bytes"
            ) from e
        except (OSError, ValueError) as e:
            raise ChannelIOError(f"read failed: {e}") from e
        buffer.extend(chunk)

    if len(buffer) != size:
        raise ChannelIOError(f"expected {size} bytes, received {len(buffer)}")
    return bytes(buffer)
