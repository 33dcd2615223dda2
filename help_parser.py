"""Extract flags from unstructured ``--help`` output.

Help text comes in many shapes. Parsing runs through a fixed, ordered chain
of format strategies; each one says whether it recognizes the text and, if
so, extracts flag records from it. The first strategy that recognizes the
text and finds at least one flag wins. The last strategy accepts anything
that looks like a flag on an indented line.
"""

import re
from typing import Callable, NamedTuple

from models import CommandFlag, ParsedHelp


class HelpFormat(NamedTuple):
    """One strategy in the parsing chain."""

    name: str
    recognizes: Callable[[str], bool]
    extract: Callable[[str], list[CommandFlag]]


def _make_flag(short: str | None, long: str | None, value_hint: str | None, description: str) -> CommandFlag | None:
    if not (short or long):
        return None
    return CommandFlag(
        flag=long or short,
        short_flag=short if (short and long) else None,
        description=description.strip(),
        takes_value=bool(value_hint),
        value_hint=value_hint or None,
    )


def _collect(lines: list[str], match_line, continuation: re.Pattern) -> list[CommandFlag]:
    """Walk lines, starting a flag on each match and appending continuation lines."""
    flags: list[CommandFlag] = []
    current: CommandFlag | None = None
    for line in lines:
        flag = match_line(line)
        if flag is not None:
            current = flag
            flags.append(current)
        elif current is not None and continuation.match(line):
            current.description = f"{current.description} {line.strip()}".strip()
        elif not line.strip():
            current = None
    return flags


# GNU style:  -v, --verbose          description
#             --file=<path>          description
#             --add-dir <dirs...>    description
_GNU_VALUE = r"(?:[=\s](<[^>]+>|\[[^\]]+\]))?"
_GNU_PATTERNS = [
    re.compile(rf"^\s*(-\w),?\s*(--[\w-]+){_GNU_VALUE}\s{{2,}}(.+)$"),
    re.compile(rf"^\s*(--[\w-]+),?\s*(-\w)?{_GNU_VALUE}\s{{2,}}(.+)$"),
    re.compile(rf"^\s*()(--[\w-]+){_GNU_VALUE}\s{{2,}}(.+)$"),
    re.compile(rf"^\s*(-\w)(){_GNU_VALUE}\s{{2,}}(.+)$"),
]
_GNU_CONTINUATION = re.compile(r"^\s{10,}\S")
_GNU_SHAPE = re.compile(r"^\s+-\w,?\s+--\w", re.MULTILINE)


def _gnu_recognizes(text: str) -> bool:
    return (
        "--help" in text
        or "Usage:" in text
        or "OPTIONS" in text
        or "Options:" in text
        or bool(_GNU_SHAPE.search(text))
    )


def _gnu_line(line: str) -> CommandFlag | None:
    for pattern in _GNU_PATTERNS:
        m = pattern.match(line)
        if m:
            first, second, value_hint, description = m.groups()
            short = first if first and not first.startswith("--") else second
            long = first if first and first.startswith("--") else second
            if short and short.startswith("--"):
                short = None
            if long and not long.startswith("--"):
                long = None
            return _make_flag(short or None, long or None, value_hint, description)
    return None


def _gnu_extract(text: str) -> list[CommandFlag]:
    return _collect(text.splitlines(), _gnu_line, _GNU_CONTINUATION)


# argparse style:  -v, --verbose    description
#                  --file FILE      description
_ARGPARSE_METAVAR = r"[A-Z][A-Z0-9_]*(?:\.\.\.)?|<[^>]+>|\[.*?\]"
_ARGPARSE_LINE = re.compile(
    rf"^\s*(-\w)?(?:\s+({_ARGPARSE_METAVAR}))?(?:,\s*)?(--[\w-]+)?(?:[\s=]({_ARGPARSE_METAVAR}))?\s{{2,}}(.+)$"
)
_ARGPARSE_HEADERS = ("optional arguments:", "positional arguments:", "options:")
_ARGPARSE_CONTINUATION = re.compile(r"^\s{20,}\S")


def _argparse_recognizes(text: str) -> bool:
    return any(header in text for header in _ARGPARSE_HEADERS)


def _argparse_line(line: str) -> CommandFlag | None:
    m = _ARGPARSE_LINE.match(line)
    if not m:
        return None
    short, short_hint, long, long_hint, description = m.groups()
    return _make_flag(short, long, long_hint or short_hint, description)


def _argparse_extract(text: str) -> list[CommandFlag]:
    return _collect(text.splitlines(), _argparse_line, _ARGPARSE_CONTINUATION)


# Go flag package:  -name string
#                   \tdescription on the next line
_GO_HEADER = re.compile(r"^Usage of \S+:", re.MULTILINE)
_GO_FLAG = re.compile(r"^\s{1,4}(-{1,2}[\w][\w.-]*)(?:\s+(\w+))?\s*$")
_GO_INLINE = re.compile(r"^\s{1,4}(-{1,2}[\w][\w.-]*)(?:\s+(\w+))?(?:\s{2,}|\t)(.+)$")


def _go_recognizes(text: str) -> bool:
    return bool(_GO_HEADER.search(text))


def _go_extract(text: str) -> list[CommandFlag]:
    flags: list[CommandFlag] = []
    current: CommandFlag | None = None
    for line in text.splitlines():
        m = _GO_FLAG.match(line) or _GO_INLINE.match(line)
        if m:
            name, value_hint = m.group(1), m.group(2)
            description = m.group(3) if m.re is _GO_INLINE else ""
            # Go flags accept one or two dashes; suggest the double-dash form
            long = "--" + name.lstrip("-")
            current = _make_flag(None, long, value_hint, description or "")
            flags.append(current)
        elif current is not None and line.startswith(("\t", "    ")) and line.strip():
            current.description = f"{current.description} {line.strip()}".strip()
        elif not line.strip():
            current = None
    return flags


# Last resort: anything flag-shaped at the start of an indented line
_FALLBACK_LINES = (
    re.compile(r"^\s+(--[\w-]+|-\w)(?:[=\s]([<\[]?\w[\w.-]*[>\]]?))?\s{2,}(.+)$"),
    re.compile(r"^\s+(--[\w-]+|-\w)()\s+(.+)$"),
)


def _fallback_extract(text: str) -> list[CommandFlag]:
    flags: list[CommandFlag] = []
    for line in text.splitlines():
        for pattern in _FALLBACK_LINES:
            m = pattern.match(line)
            if m:
                flag, value_hint, description = m.groups()
                flags.append(CommandFlag(
                    flag=flag,
                    description=description.strip(),
                    takes_value=bool(value_hint),
                    value_hint=value_hint or None,
                ))
                break
    return flags


HELP_FORMATS: tuple[HelpFormat, ...] = (
    HelpFormat("argparse", _argparse_recognizes, _argparse_extract),
    HelpFormat("gnu", _gnu_recognizes, _gnu_extract),
    HelpFormat("go", _go_recognizes, _go_extract),
    HelpFormat("fallback", lambda text: True, _fallback_extract),
)


_SUBCOMMAND_HEADER = re.compile(
    r"^(?:(?:available |sub)?commands|subcommands)\s*:?\s*$", re.IGNORECASE
)
_SUBCOMMAND_LINE = re.compile(r"^\s{2,}([a-z][\w-]*)(?:[,|]\s*[\w-]+)*(?:\s{2,}\S.*)?$")


def extract_subcommands(text: str) -> list[str]:
    """Names listed under a ``Commands:`` style section."""
    names: list[str] = []
    in_section = False
    for line in text.splitlines():
        if _SUBCOMMAND_HEADER.match(line.strip()):
            in_section = True
            continue
        if not in_section:
            continue
        if not line.strip():
            continue
        if not line[0].isspace():
            # Next section header ends the list
            in_section = False
            continue
        m = _SUBCOMMAND_LINE.match(line)
        if m and m.group(1) not in names:
            names.append(m.group(1))
    return names


def dedupe_flags(flags: list[CommandFlag]) -> list[CommandFlag]:
    """Keep the first record for each flag."""
    seen: set[str] = set()
    unique = []
    for flag in flags:
        if "=" in flag.flag or flag.flag in seen:
            continue
        seen.add(flag.flag)
        unique.append(flag)
    return unique


def parse_help(command: str, text: str) -> ParsedHelp:
    """Run the strategy chain over help text."""
    subcommands = extract_subcommands(text)
    for fmt in HELP_FORMATS:
        if not fmt.recognizes(text):
            continue
        flags = dedupe_flags(fmt.extract(text))
        if flags:
            return ParsedHelp(command=command, flags=flags, subcommands=subcommands)
    return ParsedHelp(
        command=command,
        subcommands=subcommands,
        parse_errors=["No flags found in help output"],
    )
