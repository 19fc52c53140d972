"""
Proof blob codec for the savings-goals verifier contract.

Layout (all integers big-endian):
    field_count: u32                 // 4 bytes, N
    public_inputs: [[u8; 32]; N]     // each input right-aligned in 32 bytes
    proof: [u8; ...]                 // raw prover output, verbatim

The blob travels as a 0x-prefixed lowercase hex string.
"""

from __future__ import annotations

import hashlib
import re
import struct

from ..errors import ProofBlobError

COUNT_SIZE = 4
FIELD_SIZE = 32
MAX_FIELD_VALUE = (1 << (FIELD_SIZE * 8)) - 1

_HEX_RE = re.compile(r"^[0-9a-fA-F]*$")


def _strip_0x(value: str) -> str:
    value = value.strip()
    if value[:2].lower() == "0x":
        return value[2:]
    return value


def hex_to_bytes(value: str | bytes) -> bytes:
    """Decode optional-0x hex, rejecting odd length and non-hex characters."""
    if isinstance(value, (bytes, bytearray)):
        return bytes(value)

    digits = _strip_0x(value)
    if len(digits) % 2 != 0:
        raise ProofBlobError("hex string must have an even number of digits")
    if not _HEX_RE.match(digits):
        raise ProofBlobError("hex string contains non-hex characters")
    return bytes.fromhex(digits)


def _field_value(public_input: str | int) -> int:
    if isinstance(public_input, bool):
        raise ProofBlobError("public input must be an integer, not a boolean")

    if isinstance(public_input, int):
        value = public_input
    else:
        text = str(public_input).strip()
        try:
            if text[:2].lower() == "0x":
                value = int(text[2:], 16)
            else:
                value = int(text, 10)
        except ValueError as exc:
            raise ProofBlobError(f"public input is not an integer: {public_input!r}") from exc

    if value < 0 or value > MAX_FIELD_VALUE:
        raise ProofBlobError("public input does not fit in a 32-byte field")
    return value


def encode_proof_blob(public_inputs: list[str | int], proof: str | bytes) -> str:
    """Encode public inputs and raw proof bytes into the verifier's hex blob."""
    proof_bytes = hex_to_bytes(proof)
    fields = [_field_value(item).to_bytes(FIELD_SIZE, "big") for item in public_inputs]
    blob = struct.pack(">I", len(fields)) + b"".join(fields) + proof_bytes
    return "0x" + blob.hex()


def decode_proof_blob(blob: str | bytes) -> tuple[list[str], bytes]:
    """Inverse of `encode_proof_blob`; public inputs come back as decimal strings."""
    raw = hex_to_bytes(blob)
    if len(raw) < COUNT_SIZE:
        raise ProofBlobError("proof blob is shorter than its 4-byte field count")

    (count,) = struct.unpack_from(">I", raw, 0)
    header_end = COUNT_SIZE + FIELD_SIZE * count
    if len(raw) < header_end:
        raise ProofBlobError(
            f"proof blob declares {count} public inputs but holds only {len(raw)} bytes"
        )

    public_inputs = [
        str(int.from_bytes(raw[pos : pos + FIELD_SIZE], "big"))
        for pos in range(COUNT_SIZE, header_end, FIELD_SIZE)
    ]
    return public_inputs, raw[header_end:]


def proof_id_for(blob: str | bytes) -> str:
    """Proof id = sha256 over the encoded blob bytes, 0x-prefixed."""
    return "0x" + hashlib.sha256(hex_to_bytes(blob)).hexdigest()
