"""
Communication module for sharded kNN classification.

Provides the fixed-size wire codec and channel helpers used on the
dedicated coordinator/worker pipes:
- Descriptor: coordinator -> worker
- Result: worker -> coordinator
"""

from communication.channel import (
    encode_descriptor,
    decode_descriptor,
    encode_result,
    decode_result,
    send_message,
    recv_exact,
)

__version__ = "0.1.0"

__all__ = [
    "encode_descriptor",
    "decode_descriptor",
    "encode_result",
    "decode_result",
    "send_message",
    "recv_exact",
]
