from __future__ import annotations

# Single-character escapes as git's quote_c_style() emits them.
UNESCAPES: dict[str, int] = {
    "a": 0x07,
    "b": 0x08,
    "t": 0x09,
    "n": 0x0A,
    "v": 0x0B,
    "f": 0x0C,
    "r": 0x0D,
    "e": 0x1B,
    "\\": 0x5C,
    '"': 0x22,
    "'": 0x27,
}

_OCTAL_DIGITS = "01234567"


def _escaped_to_bytes(text: str) -> bytes:
    """
    Turn the body of a quoted git path into raw bytes.

    `\\NNN` octal escapes are single bytes; literal characters are UTF-8 encoded
    in place so the byte order of mixed input is kept.
    """
    out = bytearray()
    i = 0
    n = len(text)
    while i < n:
        ch = text[i]
        nxt = text[i + 1] if i + 1 < n else ""
        if ch == "\\" and nxt and nxt in _OCTAL_DIGITS:
            digits = nxt
            while len(digits) < 3 and i + 1 + len(digits) < n and text[i + 1 + len(digits)] in _OCTAL_DIGITS:
                digits += text[i + 1 + len(digits)]
            out.append(int(digits, 8) & 0xFF)
            i += 1 + len(digits)
        elif ch == "\\" and nxt in UNESCAPES:
            out.append(UNESCAPES[nxt])
            i += 2
        else:
            out += ch.encode("utf-8")
            i += 1
    return bytes(out)


def unescape(text: str) -> str:
    """
    Decode the inside of a quoted path (quotes already removed).

    Octal escapes of a multi-byte character are regrouped before UTF-8 decoding:
      unescape('my_file_\\342\\230\\240') -> 'my_file_☠'
    """
    return _escaped_to_bytes(text).decode("utf-8", errors="replace")


def unescape_path(token: str | None) -> str | None:
    """
    Unescape `token` if git quoted it, otherwise return it unchanged.
    """
    if token is None:
        return None
    if len(token) >= 2 and token.startswith('"') and token.endswith('"'):
        return unescape(token[1:-1])
    return token
