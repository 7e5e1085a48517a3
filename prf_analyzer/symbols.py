"""Symbol resolution for code addresses.

Symbols come from the ``.prg.debug.xml`` file emitted next to a compiled
program. Addresses without a symbol fall back to a label derived from the
memory region the address belongs to.
"""

from __future__ import annotations

import re
from dataclasses import dataclass
from xml.etree import ElementTree

from prf_analyzer.errors import IoError, SymbolFileError


# Platform memory layout. Region starts are fixed by the device runtime.
NATIVE_CODE_START = 0x40000000
API_CODE_START = 0x30000000
APP_CODE_START = 0x10000000
NATIVE_CODE_MASK = 0x0FFFFFFF

INT32_MIN = -(2 ** 31)
INT32_MAX = 2 ** 31 - 1

# Root namespace prefix stripped from pc-to-line parents.
GLOBALS_PREFIX = "globals/"

_INT32_PATTERN = re.compile(r"[+-]?[0-9]+")

NATIVE_CODE_LABEL = "<Native Code>"
API_CODE_LABEL = "<API Code>"
APP_CODE_LABEL = "<App Code>"


@dataclass(frozen=True)
class SourceLocation:
    file: str
    line: int
    symbol: str


def address_region(address: int) -> str:
    """Classify an address into native/api/app/unknown."""
    if address >= NATIVE_CODE_START:
        return "native"
    if address >= API_CODE_START:
        return "api"
    if address >= APP_CODE_START:
        return "app"
    return "unknown"


def synthesize_name(address: int) -> str:
    region = address_region(address)
    if region == "native":
        return f"{NATIVE_CODE_LABEL} ({address & NATIVE_CODE_MASK})"
    if region == "api":
        return f"{API_CODE_LABEL} ({address:08x})"
    if region == "app":
        return f"{APP_CODE_LABEL} ({address:08x})"
    return f"Unknown_{address}"


class SymbolTable:
    """Read-only address lookups, populated once before aggregation."""

    def __init__(
        self,
        names: dict[int, str] | None = None,
        sources: dict[int, SourceLocation] | None = None
    ):
        self._names = dict(names or {})
        self._sources = dict(sources or {})

    def __len__(self) -> int:
        return len(self._names) + len(self._sources)

    def resolve_name(self, address: int) -> str | None:
        return self._names.get(address)

    def resolve_source(self, address: int) -> SourceLocation | None:
        return self._sources.get(address)

    def display_name(self, address: int) -> str:
        name = self.resolve_name(address)
        if name is not None:
            return name
        return synthesize_name(address)

    def describe(self, address: int) -> tuple[str, str, int | None]:
        """
        Describe a call-stack frame as (name, file, line).

        Prefers the pc-to-line table, then the function name table, then
        the region label. File is empty and line is None when unknown.
        """
        source = self.resolve_source(address)
        if source is not None:
            return source.symbol, source.file, source.line
        return self.display_name(address), "", None


EMPTY_SYMBOLS = SymbolTable()


def _local_name(tag: str) -> str:
    if "}" in tag:
        return tag.rsplit("}", 1)[1]
    return tag


def _parse_int(value: str | None, default: int) -> int:
    """Parse a signed 32-bit decimal attribute, or return default."""
    if value is None or not _INT32_PATTERN.fullmatch(value):
        return default
    number = int(value)
    if not INT32_MIN <= number <= INT32_MAX:
        return default
    return number


def _qualify(parent: str, name: str) -> str:
    if parent:
        return f"{parent}.{name}"
    return name


def parse_debug_xml(source) -> SymbolTable:
    """
    Build a symbol table from a debug XML document.

    Args:
        source: a filename or a binary file object

    ``functionEntry`` elements give function start addresses and names;
    ``entry`` elements give the pc-to-line table. Elements whose address is
    missing or not a signed 32-bit integer are skipped.
    """
    names: dict[int, str] = {}
    sources: dict[int, SourceLocation] = {}

    try:
        for _, element in ElementTree.iterparse(source, events=("end",)):
            tag = _local_name(element.tag)
            if tag == "functionEntry":
                start_pc = _parse_int(element.get("startPc"), -1)
                if start_pc != -1:
                    names[start_pc] = _qualify(
                        element.get("parent", ""),
                        element.get("name", "")
                    )
            elif tag == "entry":
                pc = _parse_int(element.get("pc"), -1)
                if pc != -1:
                    parent = element.get("parent", "").replace(GLOBALS_PREFIX, "")
                    sources[pc] = SourceLocation(
                        file=element.get("filename", ""),
                        line=_parse_int(element.get("lineNum"), -1),
                        symbol=_qualify(parent, element.get("symbol", ""))
                    )
            else:
                continue
            element.clear()
    except ElementTree.ParseError as exc:
        raise SymbolFileError(f"Malformed debug XML: {exc}") from exc

    return SymbolTable(names, sources)


def load_debug_xml(path: str) -> SymbolTable:
    try:
        with open(path, "rb") as f:
            return parse_debug_xml(f)
    except OSError as exc:
        raise IoError(f"Failed to open debug XML {path}: {exc}") from exc
