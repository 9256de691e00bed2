"""
Decoder for vis-encoded syslog lines from iOS devices.

Device syslog output is encoded in 7-bit form. Input bytes are encoded as follows:
  1. 0x00 to 0x19: non-printing range. Some ignored, some encoded as <...>.
  2. 0x20 to 0x7f: as-is, with the exception of 0x5c (backslash).
  3. 0x5c (backslash): octal representation \\134.
  4. 0x80 to 0x9f: \\M^x (using control-character notation for range 0x00 to 0x40).
  5. 0xa0: octal representation \\240.
  6. 0xa1 to 0xf7: \\M-x (where x is the input byte stripped of its high-order bit).
  7. 0xf8 to 0xff: unused in 4-byte UTF-8.

See vis(3).
"""

BACKSLASH = 0x5c
LETTER_M = 0x4d
DASH = 0x2d
CARET = 0x5e


def _is_digit(byte: int) -> bool:
    return 0x30 <= byte <= 0x39


def _decode_octal(x: int, y: int, z: int) -> int:
    """Convert the ASCII digits of an octal triplet `xyz` to a byte value."""
    return (x & 0x3) << 6 | (y & 0x7) << 3 | (z & 0x7)


def decode_syslog(line: str) -> str:
    """Decode a vis-encoded syslog line to its UTF-8 representation.

    Lines that cannot be decoded are returned unchanged.
    """
    try:
        data = line.encode('utf-8')
        out = bytearray()
        i = 0
        while i < len(data):
            if data[i] != BACKSLASH or i > len(data) - 4:
                # Unmapped byte: copy as-is.
                out.append(data[i])
                i += 1
                continue

            if data[i + 1] == LETTER_M and data[i + 2] == CARET:
                # \M^x form: bytes in range 0x80 to 0x9f.
                out.append((data[i + 3] & 0x7f) + 0x40)
            elif data[i + 1] == LETTER_M and data[i + 2] == DASH:
                # \M-x form: bytes in range 0xa0 to 0xf7.
                out.append(data[i + 3] | 0x80)
            elif all(_is_digit(b) for b in data[i + 1:i + 4]):
                # \ddd form: only used for \134 and \240.
                out.append(_decode_octal(data[i + 1], data[i + 2], data[i + 3]))
            else:
                # Unknown escape.
                out.extend(data[i:i + 4])
            i += 4
        return out.decode('utf-8')
    except (UnicodeError, ValueError):
        return line
