"""Record decoder for PRF profiling logs.

A log is a flat concatenation of length-delimited protobuf records with no
header, magic number or record count. Each record is framed as
``[varint length][length bytes]`` and its body is a ``ProfileEvent`` message.
"""

from __future__ import annotations

from dataclasses import dataclass
from enum import IntEnum
from typing import Iterator

from google.protobuf import descriptor_pb2, descriptor_pool, message_factory
from google.protobuf.message import DecodeError as ProtobufDecodeError
from google.protobuf.unknown_fields import UnknownFieldSet

from prf_analyzer.errors import DecodeError


MAX_VARINT_BYTES = 10
KNOWN_FIELD_NUMBERS = (1, 2, 3, 4)


class EventKind(IntEnum):
    UNKNOWN = 0
    LEGACY_ENTER = 1
    ENTER = 2
    EXIT = 3

    @property
    def is_enter(self) -> bool:
        return self in (EventKind.ENTER, EventKind.LEGACY_ENTER)

    @classmethod
    def from_wire(cls, value: int) -> "EventKind":
        """Map a raw event_type value to a kind; unrecognized values are UNKNOWN."""
        return _KIND_BY_WIRE_VALUE.get(value, cls.UNKNOWN)


# Older firmware writes 1 for function enter; treat it as an alias of ENTER.
_KIND_BY_WIRE_VALUE = {
    0: EventKind.UNKNOWN,
    1: EventKind.LEGACY_ENTER,
    2: EventKind.ENTER,
    3: EventKind.EXIT,
}


@dataclass(frozen=True)
class Event:
    timestamp_us: int
    code_address: int = 0
    kind: EventKind = EventKind.UNKNOWN
    extra: int = 0


def _build_profile_event_class():
    field = descriptor_pb2.FieldDescriptorProto
    file_proto = descriptor_pb2.FileDescriptorProto(
        name="prf_analyzer/profile_event.proto",
        package="prf_analyzer",
        syntax="proto2",
    )
    message = file_proto.message_type.add(name="ProfileEvent")
    for name, number, field_type in (
        ("timestamp", 1, field.TYPE_INT64),
        ("pc", 2, field.TYPE_INT32),
        ("event_type", 3, field.TYPE_INT32),
        ("extra_data", 4, field.TYPE_INT32),
    ):
        message.field.add(name=name, number=number, type=field_type, label=field.LABEL_OPTIONAL)

    pool = descriptor_pool.DescriptorPool()
    pool.AddSerializedFile(file_proto.SerializeToString())
    return message_factory.GetMessageClass(
        pool.FindMessageTypeByName("prf_analyzer.ProfileEvent")
    )


ProfileEvent = _build_profile_event_class()


def _read_varint(view: memoryview, pos: int) -> tuple[int, int]:
    start = pos
    result = 0
    shift = 0
    while True:
        if pos >= len(view):
            raise DecodeError("Truncated length delimiter", start)
        if pos - start >= MAX_VARINT_BYTES:
            raise DecodeError("Length delimiter is too long", start)
        byte = view[pos]
        pos += 1
        result |= (byte & 0x7F) << shift
        if not byte & 0x80:
            return result, pos
        shift += 7


def _encode_varint(value: int) -> bytes:
    out = bytearray()
    while True:
        byte = value & 0x7F
        value >>= 7
        if value:
            out.append(byte | 0x80)
        else:
            out.append(byte)
            return bytes(out)


def _event_from_message(message) -> Event:
    return Event(
        timestamp_us=message.timestamp,
        code_address=message.pc,
        kind=EventKind.from_wire(message.event_type),
        extra=message.extra_data,
    )


def iter_events(data: bytes) -> Iterator[Event]:
    """
    Lazily decode every record in ``data``.

    Raises:
        DecodeError: if a length delimiter is truncated, a declared length
            runs past the end of the buffer, or a record body is not a valid
            ProfileEvent message.
    """
    view = memoryview(data)
    pos = 0
    while pos < len(view):
        record_offset = pos
        length, pos = _read_varint(view, pos)
        if len(view) - pos < length:
            raise DecodeError(
                f"Unexpected EOF: record declares {length} bytes, {len(view) - pos} remain",
                record_offset,
            )
        message = ProfileEvent()
        try:
            message.ParseFromString(view[pos:pos + length].tobytes())
        except ProtobufDecodeError as exc:
            raise DecodeError(f"Failed to decode ProfileEvent: {exc}", record_offset) from exc
        # Known tags with the wrong wire type land in the unknown field set.
        for unknown in UnknownFieldSet(message):
            if unknown.field_number in KNOWN_FIELD_NUMBERS:
                raise DecodeError(
                    f"Field {unknown.field_number} has wrong wire type {unknown.wire_type}",
                    record_offset,
                )
        pos += length
        yield _event_from_message(message)


def decode_events(data: bytes) -> list[Event]:
    return list(iter_events(data))


def frame_record(body: bytes) -> bytes:
    """Prefix a record body with its varint length."""
    return _encode_varint(len(body)) + body


def encode_event(event: Event) -> bytes:
    """Serialize one event as a framed record."""
    message = ProfileEvent(
        timestamp=event.timestamp_us,
        pc=event.code_address,
        event_type=int(event.kind),
        extra_data=event.extra,
    )
    return frame_record(message.SerializeToString())
