"""Instance record codec for JSON and MessagePack payloads."""

import json
from typing import Any

import msgpack
from pydantic import ValidationError

from ..domain.enums import PayloadFormat
from ..domain.exceptions import DecodeError
from ..domain.models import ServiceInstanceRecord


def is_msgpack(data: bytes) -> bool:
    """Check if data looks like a MessagePack map.

    Records are always maps: 0x80-0x8f is fixmap, 0xde/0xdf are map16/map32.
    JSON objects start with '{' or whitespace, which never collide.
    """
    if not data:
        return False
    first_byte = data[0]
    return 0x80 <= first_byte <= 0x8F or first_byte in (0xDE, 0xDF)


class RecordCodec:
    """Serializes ServiceInstanceRecord to the stored payload and back.

    Writes use the configured format; reads detect the format per payload so a
    mixed fleet can migrate between formats without downtime.
    """

    def __init__(self, payload_format: PayloadFormat = PayloadFormat.JSON):
        self._format = payload_format

    @property
    def payload_format(self) -> PayloadFormat:
        return self._format

    def encode(self, record: ServiceInstanceRecord) -> bytes:
        data = record.model_dump(mode="json")
        if self._format is PayloadFormat.MSGPACK:
            return bytes(msgpack.packb(data, use_bin_type=True))
        return json.dumps(data, separators=(",", ":")).encode()

    def decode(self, payload: bytes, key: str | None = None) -> ServiceInstanceRecord:
        """Decode one stored payload.

        Raises:
            DecodeError: If the payload is empty, unparseable or not a valid record
        """
        if not payload or payload.isspace():
            raise DecodeError("Empty payload", key=key)

        try:
            data: Any
            if is_msgpack(payload):
                data = msgpack.unpackb(payload, raw=False)
            else:
                data = json.loads(payload.decode())
        except (ValueError, TypeError, msgpack.UnpackException) as e:
            raise DecodeError(f"Unparseable payload: {e}", key=key) from e

        if not isinstance(data, dict):
            raise DecodeError(f"Expected an object, got {type(data).__name__}", key=key)

        try:
            return ServiceInstanceRecord.model_validate(data)
        except ValidationError as e:
            raise DecodeError(f"Invalid instance record: {e.error_count()} error(s)", key=key) from e
