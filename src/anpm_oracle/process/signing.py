"""Signer capability and ANS-104 data item construction for committed messages.

A data item is the signed binary envelope accepted by an AO messenger unit.
Layout (little-endian lengths)::

    signature type (2) | signature | owner | target flag [+32] | anchor flag [+32]
    | tag count (8) | tag bytes length (8) | avro tag block | data

The signature covers the SHA-384 deep hash of the item fields.
"""

from __future__ import annotations

import base64
import hashlib
import json
from collections.abc import Mapping, Sequence
from dataclasses import dataclass
from pathlib import Path
from typing import Protocol, Union

from cryptography.hazmat.primitives import hashes
from cryptography.hazmat.primitives.asymmetric import padding, rsa

from anpm_oracle.process.tags import Tag

SIGNATURE_TYPE_ARWEAVE = 1
_SIGNATURE_LAYOUTS: dict[int, tuple[int, int]] = {
    SIGNATURE_TYPE_ARWEAVE: (512, 512),
}
PSS_SALT_LENGTH = 32
MAX_TAGS = 128
MAX_TAG_NAME_BYTES = 1024
MAX_TAG_VALUE_BYTES = 3072
_ADDRESS_BYTES = 32

DeepHashChunk = Union[bytes, Sequence["DeepHashChunk"]]


class Signer(Protocol):
    """Opaque signing capability used for committed messages."""

    signature_type: int
    owner: bytes

    def sign(self, message: bytes) -> bytes:
        """Return the raw signature of `message`."""


@dataclass(frozen=True, slots=True)
class DataItem:
    """Signed, serialized data item ready for the messenger unit."""

    id: str
    raw: bytes
    owner: bytes


class ArweaveSigner:
    """RSA-PSS signer backed by an Arweave JWK."""

    signature_type = SIGNATURE_TYPE_ARWEAVE

    def __init__(self, jwk: Mapping[str, str]) -> None:
        missing = [name for name in ("n", "e", "d", "p", "q", "dp", "dq", "qi") if not jwk.get(name)]
        if missing:
            raise ValueError(f"Wallet JWK is missing fields: {', '.join(missing)}")
        public_numbers = rsa.RSAPublicNumbers(e=_b64url_int(jwk["e"]), n=_b64url_int(jwk["n"]))
        private_numbers = rsa.RSAPrivateNumbers(
            p=_b64url_int(jwk["p"]),
            q=_b64url_int(jwk["q"]),
            d=_b64url_int(jwk["d"]),
            dmp1=_b64url_int(jwk["dp"]),
            dmq1=_b64url_int(jwk["dq"]),
            iqmp=_b64url_int(jwk["qi"]),
            public_numbers=public_numbers,
        )
        self._key = private_numbers.private_key()
        owner_length = _SIGNATURE_LAYOUTS[SIGNATURE_TYPE_ARWEAVE][1]
        self.owner = public_numbers.n.to_bytes(owner_length, "big")

    @classmethod
    def from_file(cls, path: Path) -> ArweaveSigner:
        return cls(json.loads(path.expanduser().read_text("utf-8")))

    @property
    def address(self) -> str:
        return b64url_encode(hashlib.sha256(self.owner).digest())

    def sign(self, message: bytes) -> bytes:
        return self._key.sign(
            message,
            padding.PSS(mgf=padding.MGF1(hashes.SHA256()), salt_length=PSS_SALT_LENGTH),
            hashes.SHA256(),
        )


def build_data_item(
    signer: Signer,
    *,
    data: bytes,
    tags: Sequence[Tag] = (),
    target: str | None = None,
    anchor: bytes | None = None,
) -> DataItem:
    """Sign and serialize one data item."""

    layout = _SIGNATURE_LAYOUTS.get(signer.signature_type)
    if layout is None:
        raise ValueError(f"Unsupported signature type: {signer.signature_type}")
    signature_length, owner_length = layout
    if len(signer.owner) != owner_length:
        raise ValueError(f"Owner must be {owner_length} bytes, got {len(signer.owner)}")

    raw_target = b64url_decode(target) if target else b""
    if raw_target and len(raw_target) != _ADDRESS_BYTES:
        raise ValueError(f"Target must decode to {_ADDRESS_BYTES} bytes: {target!r}")
    raw_anchor = anchor or b""
    if raw_anchor and len(raw_anchor) != _ADDRESS_BYTES:
        raise ValueError(f"Anchor must be {_ADDRESS_BYTES} bytes, got {len(raw_anchor)}")
    tag_bytes = serialize_tags(tags)

    message = deep_hash(
        [
            b"dataitem",
            b"1",
            str(signer.signature_type).encode(),
            signer.owner,
            raw_target,
            raw_anchor,
            tag_bytes,
            data,
        ],
    )
    signature = signer.sign(message)
    if len(signature) != signature_length:
        raise ValueError(f"Signature must be {signature_length} bytes, got {len(signature)}")

    parts = [
        signer.signature_type.to_bytes(2, "little"),
        signature,
        signer.owner,
        b"\x01" + raw_target if raw_target else b"\x00",
        b"\x01" + raw_anchor if raw_anchor else b"\x00",
        len(tags).to_bytes(8, "little"),
        len(tag_bytes).to_bytes(8, "little"),
        tag_bytes,
        data,
    ]
    return DataItem(
        id=b64url_encode(hashlib.sha256(signature).digest()),
        raw=b"".join(parts),
        owner=signer.owner,
    )


def serialize_tags(tags: Sequence[Tag]) -> bytes:
    """Avro-encode tags as an array of {name: bytes, value: bytes} records."""

    if not tags:
        return b""
    if len(tags) > MAX_TAGS:
        raise ValueError(f"At most {MAX_TAGS} tags are allowed, got {len(tags)}")
    block = bytearray(_zigzag_varint(len(tags)))
    for tag in tags:
        name = tag.name.encode("utf-8")
        value = tag.value.encode("utf-8")
        if not name or len(name) > MAX_TAG_NAME_BYTES:
            raise ValueError(f"Tag name must be 1..{MAX_TAG_NAME_BYTES} bytes: {tag.name!r}")
        if not value or len(value) > MAX_TAG_VALUE_BYTES:
            raise ValueError(f"Tag {tag.name!r} value must be 1..{MAX_TAG_VALUE_BYTES} bytes")
        block += _zigzag_varint(len(name)) + name
        block += _zigzag_varint(len(value)) + value
    block += _zigzag_varint(0)
    return bytes(block)


def deep_hash(chunk: DeepHashChunk) -> bytes:
    """Arweave deep hash over nested byte lists."""

    if isinstance(chunk, bytes | bytearray):
        tag = b"blob" + str(len(chunk)).encode()
        return _sha384(_sha384(tag) + _sha384(bytes(chunk)))
    accumulator = _sha384(b"list" + str(len(chunk)).encode())
    for item in chunk:
        accumulator = _sha384(accumulator + deep_hash(item))
    return accumulator


def b64url_encode(value: bytes) -> str:
    return base64.urlsafe_b64encode(value).rstrip(b"=").decode("ascii")


def b64url_decode(value: str) -> bytes:
    return base64.urlsafe_b64decode(value + "=" * (-len(value) % 4))


def _b64url_int(value: str) -> int:
    return int.from_bytes(b64url_decode(value), "big")


def _sha384(value: bytes) -> bytes:
    return hashlib.sha384(value).digest()


def _zigzag_varint(value: int) -> bytes:
    encoded = (value << 1) ^ (value >> 63)
    out = bytearray()
    while encoded & ~0x7F:
        out.append((encoded & 0x7F) | 0x80)
        encoded >>= 7
    out.append(encoded)
    return bytes(out)
