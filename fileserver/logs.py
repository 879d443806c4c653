import logging
import sys
from typing import Optional, TextIO

VERBOSE = 5
logging.addLevelName(VERBOSE, "VERBOSE")

# Debug levels 0..4 as accepted by the -v flag.
LEVELS = {
    0: logging.CRITICAL + 10,
    1: logging.ERROR,
    2: logging.INFO,
    3: logging.DEBUG,
    4: VERBOSE,
}

LOG_FORMAT = "%(asctime)s %(levelname)-7s %(name)s: %(message)s"


def configure_logging(debug_level: int, stream: Optional[TextIO] = None) -> None:
    if debug_level not in LEVELS:
        raise ValueError(f"debug level must be between 0 and 4, got {debug_level}")
    logging.basicConfig(
        level=LEVELS[debug_level],
        format=LOG_FORMAT,
        stream=stream or sys.stderr,
        force=True,
    )


def hexdump(data: bytes, width: int = 16) -> str:
    """Offset, hex bytes and printable ASCII, one line per ``width`` bytes."""
    lines = []
    for offset in range(0, len(data), width):
        chunk = data[offset:offset + width]
        hex_part = " ".join(f"{b:02x}" for b in chunk)
        text = "".join(chr(b) if 32 <= b < 127 else "." for b in chunk)
        lines.append(f"{offset:04x}  {hex_part:<{width * 3 - 1}}  {text}")
    return "\n".join(lines)
