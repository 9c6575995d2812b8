"""
Parses the engine's format listing into FormatDescriptors.

This is the only place that knows the engine's textual table layout:

     D. = Demuxing supported
     .E = Muxing supported
     ---
     D  3dostr          3DO STR
      E 3g2             3GP2 (3GPP2 file format)
     DE mp4             MP4 (MPEG-4 Part 14)
     D d alsa           ALSA audio output
"""
import logging
import re
from typing import Iterable, Optional, Sequence

from dropconvert.conversion.models import FormatDescriptor

logger = logging.getLogger("dropconvert.capabilities")

# Flags, an optional device marker 'd', abbreviation, long name
_RE_FORMAT_LINE = re.compile(r"^\s*(DE|D|E)(?:\s?d)?\s+(\S+)\s+(\S.*?)\s*$")


def parse_format_line(line: str) -> Optional[FormatDescriptor]:
    m = _RE_FORMAT_LINE.match(line)
    if not m:
        return None
    flags, abbreviation, name = m.groups()
    return FormatDescriptor(
        abbreviation=abbreviation,
        name=name,
        demuxing_supported="D" in flags,
        muxing_supported="E" in flags,
    )


def parse_format_listing(lines: Iterable[str]) -> tuple[FormatDescriptor, ...]:
    """Keep matching lines in listing order; everything else is discarded."""
    formats = []
    for line in lines:
        fmt = parse_format_line(line)
        if fmt is not None:
            formats.append(fmt)
    logger.debug("Parsed %s formats from engine listing", len(formats))
    return tuple(formats)


def find_format(formats: Sequence[FormatDescriptor], abbreviation: str) -> Optional[FormatDescriptor]:
    """First descriptor whose abbreviation, or one of its aliases, equals abbreviation."""
    abbreviation = abbreviation.strip().lower()
    if not abbreviation:
        return None
    for fmt in formats:
        if fmt.abbreviation == abbreviation:
            return fmt
    for fmt in formats:
        if abbreviation in fmt.aliases:
            return fmt
    return None


def demuxable(formats: Sequence[FormatDescriptor]) -> list[str]:
    return [f.abbreviation for f in formats if f.demuxing_supported]


def muxable(formats: Sequence[FormatDescriptor]) -> list[str]:
    return [f.abbreviation for f in formats if f.muxing_supported]
