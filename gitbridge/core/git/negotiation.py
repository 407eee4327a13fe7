"""Parser for the command line that opens a git-receive-pack request"""
import re
from typing import BinaryIO, List, Union

from gitbridge.core.exceptions import MalformedNegotiation
from gitbridge.infrastructure.git_protocol import PktLineError, PktLineReader

from .git_types import ReceivePackNegotiation

OBJECT_ID_PATTERN = re.compile(r"^(?:[0-9a-f]{40}|[0-9a-f]{64})$")
AGENT_PREFIX = "agent="

# Leftovers of the flush packet (and pack header) that can trail the agent
# when the body was not framed by the client as expected.
AGENT_TRAILERS = ("0000PACK", "0000", "\x00")


def _strip_agent(value: str) -> str:
    value = value[len(AGENT_PREFIX):]
    stripped = True
    while stripped:
        stripped = False
        for trailer in AGENT_TRAILERS:
            if value.endswith(trailer):
                value = value[:-len(trailer)]
                stripped = True
    return value


def _split_capabilities(capability_line: str) -> List[str]:
    return [token for token in capability_line.split(" ") if token]


def parse_command_line(payload: bytes) -> ReceivePackNegotiation:
    """
    Parse "<old> <new> <ref>\\0<capabilities...> agent=<agent>".

    Raises:
        MalformedNegotiation: when any part of the line is missing or invalid
    """
    if b"\x00" not in payload:
        raise MalformedNegotiation("Missing capability separator in receive-pack command")

    ref_part, capability_part = payload.split(b"\x00", 1)

    try:
        ref_line = ref_part.decode("utf-8")
        capability_line = capability_part.decode("utf-8")
    except UnicodeDecodeError:
        raise MalformedNegotiation("receive-pack command is not valid UTF-8")

    fields = ref_line.split(" ")
    if len(fields) != 3:
        raise MalformedNegotiation(
            f"Expected 3 ref fields in receive-pack command, got {len(fields)}"
        )

    old_ref, new_ref, branch = fields
    if not OBJECT_ID_PATTERN.match(old_ref) or not OBJECT_ID_PATTERN.match(new_ref):
        raise MalformedNegotiation("Invalid object id in receive-pack command")
    if not branch:
        raise MalformedNegotiation("Missing ref name in receive-pack command")

    capabilities = _split_capabilities(capability_line.rstrip("\n"))
    if not capabilities:
        raise MalformedNegotiation("Missing capabilities in receive-pack command")

    # The trailing token is dropped as metadata only when it is agent=...;
    # anything else is kept as a capability
    agent = ""
    if capabilities[-1].startswith(AGENT_PREFIX):
        agent = _strip_agent(capabilities.pop())

    return ReceivePackNegotiation(
        old_ref=old_ref,
        new_ref=new_ref,
        branch=branch,
        capabilities=tuple(capabilities),
        agent=agent,
    )


def parse_receive_pack_negotiation(
    data: Union[bytes, BinaryIO, PktLineReader]
) -> ReceivePackNegotiation:
    """
    Decode exactly one pkt-line from a receive-pack body and parse it.

    The rest of the body is pack data and is left untouched. A body that
    starts with a flush packet (or is empty) yields an empty negotiation.
    """
    if isinstance(data, (bytes, bytearray)) and not data:
        return ReceivePackNegotiation.empty()

    reader = data if isinstance(data, PktLineReader) else PktLineReader(data)

    try:
        payload = reader.read_line()
    except PktLineError as e:
        raise MalformedNegotiation(f"Unreadable receive-pack command: {e}")

    if not payload:
        return ReceivePackNegotiation.empty()

    return parse_command_line(payload)
