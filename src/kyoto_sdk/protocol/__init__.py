"""
Kyoto Tycoon SDK Protocol Module.

Implements the RPC envelope and the wire codec used to talk to Kyoto Tycoon.
"""

from .rpc import RPCMethod, RPCRequest, RPCResponse, build_params, validate_params
from .codec import (
    RESPONSE_ENCODINGS,
    WireEncoding,
    encode,
    decode,
    decode_as,
)

__all__ = [
    # RPC
    "RPCMethod",
    "RPCRequest",
    "RPCResponse",
    "build_params",
    "validate_params",
    # Codec
    "RESPONSE_ENCODINGS",
    "WireEncoding",
    "encode",
    "decode",
    "decode_as",
]
