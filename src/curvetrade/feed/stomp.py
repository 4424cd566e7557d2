"""Minimal STOMP 1.2 frame codec.

Frame layout: COMMAND, EOL, header lines, blank line, body, NUL. A bare
EOL between frames is a heart-beat. Header names and values escape
backslash, CR, LF and colon, except in CONNECT/CONNECTED frames.
"""

from dataclasses import dataclass, field

from curvetrade.exceptions import FeedParseError

NULL = "\x00"
HEARTBEAT = "\n"

_UNESCAPED_COMMANDS = frozenset({"CONNECT", "CONNECTED"})
_ESCAPES = (("\\", "\\\\"), ("\r", "\\r"), ("\n", "\\n"), (":", "\\c"))
_UNESCAPES = {"\\": "\\", "r": "\r", "n": "\n", "c": ":"}


@dataclass(frozen=True)
class Frame:
    """One decoded STOMP frame."""

    command: str
    headers: dict[str, str] = field(default_factory=dict)
    body: str = ""


def _escape(value: str) -> str:
    for raw, escaped in _ESCAPES:
        value = value.replace(raw, escaped)
    return value


def _unescape(value: str) -> str:
    out = []
    chars = iter(value)
    for ch in chars:
        if ch != "\\":
            out.append(ch)
            continue
        nxt = next(chars, None)
        if nxt not in _UNESCAPES:
            raise FeedParseError(f"invalid header escape sequence: \\{nxt or ''}")
        out.append(_UNESCAPES[nxt])
    return "".join(out)


def encode_frame(command: str, headers: dict[str, str] | None = None, body: str = "") -> str:
    """Serialize a frame. A non-empty body gets a content-length header."""
    headers = dict(headers or {})
    if body and "content-length" not in headers:
        headers["content-length"] = str(len(body.encode("utf-8")))

    escape = command not in _UNESCAPED_COMMANDS
    lines = [command]
    for name, value in headers.items():
        if escape:
            lines.append(f"{_escape(name)}:{_escape(str(value))}")
        else:
            lines.append(f"{name}:{value}")
    return "\n".join(lines) + "\n\n" + body + NULL


def decode_frame(data: str | bytes) -> Frame | None:
    """Parse one frame. Returns None for a heart-beat.

    Raises:
        FeedParseError: If the frame is truncated or malformed.
    """
    if isinstance(data, bytes):
        try:
            data = data.decode("utf-8")
        except UnicodeDecodeError as exc:
            raise FeedParseError("frame is not valid UTF-8") from exc

    text = data.lstrip("\r\n")
    if not text or text == NULL:
        return None

    head, sep, rest = text.partition("\n\n")
    if not sep:
        head, sep, rest = text.partition("\r\n\r\n")
    if not sep:
        raise FeedParseError("frame has no header terminator")

    lines = head.replace("\r\n", "\n").split("\n")
    command = lines[0].strip()
    if not command:
        raise FeedParseError("frame has no command")

    escape = command not in _UNESCAPED_COMMANDS
    headers: dict[str, str] = {}
    for line in lines[1:]:
        if not line:
            continue
        name, colon, value = line.partition(":")
        if not colon:
            raise FeedParseError(f"malformed header line: {line!r}")
        if escape:
            name, value = _unescape(name), _unescape(value)
        # Repeated headers: the first occurrence wins
        headers.setdefault(name, value)

    length = headers.get("content-length")
    if length is not None:
        try:
            size = int(length)
        except ValueError as exc:
            raise FeedParseError(f"bad content-length: {length!r}") from exc
        raw_body = rest.encode("utf-8")
        if size < 0 or len(raw_body) < size + 1 or raw_body[size:size + 1] != b"\x00":
            raise FeedParseError("frame body shorter than content-length or missing NUL")
        body = raw_body[:size].decode("utf-8")
    else:
        body, nul, _ = rest.partition(NULL)
        if not nul:
            raise FeedParseError("frame is missing its NUL terminator")

    return Frame(command=command, headers=headers, body=body)
