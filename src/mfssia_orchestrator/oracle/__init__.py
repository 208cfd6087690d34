"""Oracle-facing building blocks: fingerprints, transport, envelope decoding, client."""

from mfssia_orchestrator.oracle.client import OracleClient, SingleWireFormat
from mfssia_orchestrator.oracle.envelope import (
    Business,
    Envelope,
    Ok,
    OracleResponse,
    Upstream,
    decode,
    status_hint,
)
from mfssia_orchestrator.oracle.errors import (
    OracleError,
    OracleResponseError,
    OracleTimeoutError,
    OracleTransportError,
    RetryPolicy,
)
from mfssia_orchestrator.oracle.fingerprint import (
    FingerprintAlgorithm,
    encode,
    encode_sha256,
    get_encoder,
)
from mfssia_orchestrator.oracle.transport import HttpOracleTransport, OracleTransport

__all__ = [
    "Business",
    "Envelope",
    "FingerprintAlgorithm",
    "HttpOracleTransport",
    "Ok",
    "OracleClient",
    "OracleError",
    "OracleResponse",
    "OracleResponseError",
    "OracleTimeoutError",
    "OracleTransport",
    "OracleTransportError",
    "RetryPolicy",
    "SingleWireFormat",
    "Upstream",
    "decode",
    "encode",
    "encode_sha256",
    "get_encoder",
    "status_hint",
]
