"""Git smart HTTP protocol: pkt-line framing, side-band and headers"""

import io
import re
from enum import IntEnum
from typing import BinaryIO, Dict, List, Optional, Union

from gitbridge.core.git.git_types import GitService


class PktLineError(ValueError):
    """Base class for pkt-line framing errors"""


class InvalidPacketLength(PktLineError):
    pass


class TruncatedPacket(PktLineError):
    pass


class PacketTooLarge(PktLineError):
    pass


class StreamCode(IntEnum):
    """Side-band channel prefixes (side-band-64k capability)"""
    PACK_DATA = 1
    PROGRESS = 2
    FATAL = 3


DEFAULT_STREAM_CODE = StreamCode.PROGRESS


class PktLine:
    """Encoder/decoder for git's packet-line format"""

    FLUSH_PKT = b"0000"
    HEADER_LEN = 4
    # LARGE_PACKET_MAX in git; larger packets are refused by git clients
    MAX_PKT_LEN = 65520
    MAX_PKT_DATA_LEN = MAX_PKT_LEN - HEADER_LEN
    # Room left once the side-band channel byte is prepended
    MAX_SIDEBAND_DATA_LEN = MAX_PKT_DATA_LEN - 1

    _HEADER_PATTERN = re.compile(rb"^[0-9a-fA-F]{4}$")

    @staticmethod
    def encode(payload: Union[str, bytes]) -> bytes:
        """
        Encode a payload as a pkt-line; an empty payload is a flush packet.

        Payloads are capped at 65516 bytes (git's 65520 byte packet limit),
        below the 65531 bytes a four digit length could describe.

        Raises:
            PacketTooLarge: payload longer than MAX_PKT_DATA_LEN
        """
        if isinstance(payload, str):
            payload = payload.encode("utf-8")

        if not payload:
            return PktLine.FLUSH_PKT

        if len(payload) > PktLine.MAX_PKT_DATA_LEN:
            raise PacketTooLarge(f"Data too long for pkt-line: {len(payload)} bytes")

        return f"{len(payload) + PktLine.HEADER_LEN:04x}".encode("ascii") + payload

    @staticmethod
    def encode_flush() -> bytes:
        return PktLine.FLUSH_PKT

    @staticmethod
    def encode_sideband(stream_code: StreamCode, message: Union[str, bytes]) -> bytes:
        if isinstance(message, str):
            message = message.encode("utf-8")
        return PktLine.encode(bytes([stream_code]) + message)

    @staticmethod
    def encode_ref_advertisement(service: GitService) -> bytes:
        """Header sent before the refs on GET /info/refs?service=..."""
        return PktLine.encode(f"# service={service.value}\n") + PktLine.FLUSH_PKT

    @staticmethod
    def parse_length(header: bytes) -> int:
        if not PktLine._HEADER_PATTERN.match(header):
            raise InvalidPacketLength(f"Invalid pkt-line length: {header!r}")

        length = int(header, 16)
        if 0 < length < PktLine.HEADER_LEN:
            raise InvalidPacketLength(f"Invalid pkt-line length: {length}")

        return length

    @staticmethod
    def read_packet(stream: BinaryIO) -> Optional[bytes]:
        """
        Read exactly one pkt-line from stream.

        Returns the payload, or None for a flush packet. Never reads past the
        declared length, so the stream is left positioned at the next packet.
        """
        header = stream.read(PktLine.HEADER_LEN)
        if len(header) < PktLine.HEADER_LEN:
            raise TruncatedPacket(
                f"Insufficient data for pkt-line length: have {len(header)} bytes"
            )

        length = PktLine.parse_length(header)
        if length == 0:
            return None

        want = length - PktLine.HEADER_LEN
        payload = stream.read(want)
        if len(payload) < want:
            raise TruncatedPacket(
                f"Insufficient data for pkt-line: need {want}, have {len(payload)}"
            )

        return payload

    @staticmethod
    def decode(stream: BinaryIO) -> bytes:
        """Read one pkt-line; a flush packet decodes to an empty payload"""
        payload = PktLine.read_packet(stream)
        return payload if payload is not None else b""

    @staticmethod
    def decode_lines(data: bytes) -> List[Optional[bytes]]:
        """Decode packets up to and including the first flush (None)"""
        reader = PktLineReader(data)
        lines: List[Optional[bytes]] = []

        while not reader.at_eof():
            line = reader.read_line()
            if line is None:
                lines.append(None)
                break
            lines.append(line)

        return lines


class PktLineReader:
    """Reads pkt-lines one at a time from a buffer, keeping the remainder opaque"""

    def __init__(self, data: Union[bytes, BinaryIO]):
        self._stream = io.BytesIO(data) if isinstance(data, (bytes, bytearray)) else data

    def read_line(self) -> Optional[bytes]:
        """Return the next payload, or None for a flush packet"""
        return PktLine.read_packet(self._stream)

    def remainder(self) -> bytes:
        return self._stream.read()

    def at_eof(self) -> bool:
        position = self._stream.tell()
        more = self._stream.read(1)
        self._stream.seek(position)
        return not more


class GitHeaders:
    """Git protocol HTTP headers"""

    NO_CACHE: Dict[str, str] = {
        "Expires": "Fri, 01 Jan 1980 00:00:00 GMT",
        "Pragma": "no-cache",
        "Cache-Control": "no-cache, max-age=0, must-revalidate",
    }

    @staticmethod
    def no_cache() -> Dict[str, str]:
        return dict(GitHeaders.NO_CACHE)

    @staticmethod
    def for_response(content_type: str) -> Dict[str, str]:
        headers = GitHeaders.no_cache()
        headers["Content-Type"] = content_type
        return headers

    @staticmethod
    def is_gzip_encoded(headers) -> bool:
        encoding = headers.get("content-encoding", "")
        return encoding.strip().lower() in ("gzip", "x-gzip")
