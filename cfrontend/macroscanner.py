import re
from typing import IO, Optional, Callable, Iterator

from declarationtable import Macro, SourceLocation

_LINE_MARKER = re.compile(r'^\s*#\s*(?:line\s+)?(\d+)(?:\s+"((?:[^"\\]|\\.)*)")?')
_DIRECTIVE = re.compile(r'^\s*#\s*([A-Za-z_]\w*)?')
_DEFINE = re.compile(r'^\s*#\s*define\s+([A-Za-z_]\w*)(\(([^)]*)\))?(.*)$', re.DOTALL)

# files a preprocessor invents for its own definitions
BUILTIN_FILES = ("<built-in>", "<command line>", "<command-line>", "<builtin>")


class LineProvider:
    """Yields source lines one at a time; ``line()`` is the current one."""

    def next(self) -> Optional[str]:
        raise NotImplementedError

    def line(self) -> Optional[str]:
        raise NotImplementedError

    def destroy(self):
        pass


class TextLineProvider(LineProvider):
    _lines: list[str]
    _index: int = -1

    def __init__(self, text: str):
        self._lines = text.splitlines(keepends=True)

    def next(self) -> Optional[str]:
        self._index += 1
        return self.line()

    def line(self) -> Optional[str]:
        if 0 <= self._index < len(self._lines):
            return self._lines[self._index]
        return None


class FileLineProvider(LineProvider):
    _file: IO
    _current_line: Optional[str] = None

    def __init__(self, file: IO):
        self._file = file

    def next(self) -> Optional[str]:
        self._current_line = self._file.readline() or None
        return self._current_line

    def line(self) -> Optional[str]:
        return self._current_line

    def destroy(self):
        self._file.close()


class CommentRemovingLineProvider(LineProvider):
    """Strips ``/* */`` and ``//`` comments outside of literals.

    A comment spanning lines leaves its lines empty rather than dropping
    them, so line numbers stay what the compiler reports.
    """
    _line_provider: LineProvider
    _current_line: Optional[str] = None
    _in_comment: bool = False

    def __init__(self, line_provider: LineProvider):
        self._line_provider = line_provider

    def _preprocess_line(self, line: str) -> str:
        output = []
        index = 0
        quote = None
        while index < len(line):
            char = line[index]
            if self._in_comment:
                end = line.find("*/", index)
                if end < 0:
                    break
                self._in_comment = False
                output.append(" ")
                index = end + 2
                continue
            if quote is not None:
                output.append(char)
                if char == "\\" and index + 1 < len(line):
                    output.append(line[index + 1])
                    index += 2
                    continue
                if char == quote:
                    quote = None
            elif char in "\"'":
                quote = char
                output.append(char)
            elif line.startswith("/*", index):
                self._in_comment = True
                index += 2
                continue
            elif line.startswith("//", index):
                break
            else:
                output.append(char)
            index += 1
        text = "".join(output)
        if line.endswith("\n") and not text.endswith("\n"):
            text += "\n"
        return text

    def next(self) -> Optional[str]:
        line = self._line_provider.next()
        self._current_line = None if line is None else self._preprocess_line(line)
        return self._current_line

    def line(self) -> Optional[str]:
        return self._current_line

    def destroy(self):
        self._line_provider.destroy()


class MacroScanner:
    """Splits source text into macro definitions and text pycparser accepts.

    ``#define`` lines, continuations included, become :class:`Macro`
    declarations. Every other directive except ``#pragma`` and line markers
    is blanked out; lines are never removed so coordinates stay intact.
    """

    def __init__(self, filename: str = "<text>", origin_file_filter: Optional[Callable[[str], bool]] = None):
        self.filename = filename
        self.origin_file_filter = origin_file_filter or (lambda it: it not in BUILTIN_FILES)
        self.macros: list[Macro] = []

    def scan(self, line_provider: LineProvider) -> str:
        line_provider = CommentRemovingLineProvider(line_provider)
        output: list[str] = []
        current_file = self.filename
        line_number = 0
        try:
            for line, count in self._logical_lines(line_provider):
                line_number += 1
                start = line_number
                line_number += count - 1
                marker = _LINE_MARKER.match(line)
                if marker is not None:
                    # the line after the marker carries the number it names
                    line_number = int(marker.group(1)) - 1
                    if marker.group(2) is not None:
                        current_file = marker.group(2)
                    output.append(line.rstrip("\n") + "\n")
                    output.extend("\n" * (count - 1))
                    continue
                directive = _DIRECTIVE.match(line)
                if directive is None or directive.group(1) == "pragma":
                    output.append(line if line.endswith("\n") else line + "\n")
                    output.extend("\n" * (count - 1))
                    continue
                if directive.group(1) == "define" and self.origin_file_filter(current_file):
                    self._define(line, SourceLocation(current_file, start))
                output.extend("\n" * count)
        finally:
            line_provider.destroy()
        return "".join(output)

    @staticmethod
    def _logical_lines(line_provider: LineProvider) -> Iterator[tuple[str, int]]:
        """Joins backslash continuations; yields each logical line and how many physical lines it spans."""
        pending = ""
        count = 0
        while True:
            line = line_provider.next()
            if line is None:
                break
            count += 1
            stripped = line.rstrip("\r\n")
            if stripped.endswith("\\"):
                pending += stripped[:-1] + " "
                continue
            yield pending + line, count
            pending = ""
            count = 0
        if count:
            yield pending, count

    def _define(self, line: str, location: SourceLocation):
        match = _DEFINE.match(line.rstrip("\r\n"))
        if match is None:
            return
        name, function_like, parameters, body = match.groups()
        if function_like is not None:
            parameters = tuple(p.strip() for p in parameters.split(",") if p.strip())
        else:
            parameters = None
        self.macros.append(Macro(name=name, tokens=" ".join(body.split()), parameters=parameters,
                                 location=location))
