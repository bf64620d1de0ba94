"""
go.mod manifest parsing.

Reads the project's module file into immutable records: the declared
module path, the required `go` toolchain version and the ordered list of
module requirements. Parsing is a pure transform of bytes to structure.
"""

from __future__ import annotations

import os
import re
from dataclasses import dataclass

from .common import vlog
from .errors import ManifestMalformed, ManifestUnreadable


DEFAULT_MANIFEST_PATH = "go.mod"

# Directives that accept the parenthesised block form
BLOCK_VERBS = frozenset({"require", "exclude", "replace", "retract", "godebug", "tool", "ignore"})
SINGLE_VERBS = frozenset({"module", "go", "toolchain"})

STRUCTURAL_TOKENS = frozenset({"(", ")", "[", "]", ",", "=>"})

_TOKEN_RE = re.compile(r'"(?:[^"\\]|\\.)*"|`[^`]*`|=>|[()\[\],]|[^\s()\[\],"`]+')


@dataclass(frozen=True)
class ManifestRequirement:
    """
    A single `require` entry.

    Attributes:
        module_path: Module path (e.g. "golang.org/x/tools")
        required_version: Version string exactly as written in the manifest
        indirect: Whether the entry is marked `// indirect`
    """
    module_path: str
    required_version: str
    indirect: bool = False


@dataclass(frozen=True)
class ManifestToolchain:
    """
    Toolchain requirements declared at the top level.

    Attributes:
        required_go_version: Value of the mandatory `go` directive
        toolchain: Value of the optional `toolchain` directive
    """
    required_go_version: str
    toolchain: str | None = None


@dataclass(frozen=True)
class ManifestReplacement:
    """A `replace` entry; versions are empty when not given."""
    old_path: str
    old_version: str
    new_path: str
    new_version: str


@dataclass(frozen=True)
class ParsedManifest:
    """
    Parsed go.mod contents.

    Attributes:
        module_path: Path from the `module` directive (empty if absent)
        requirements: Requirements in declaration order
        toolchain: Toolchain requirements
        replacements: Replace directives in declaration order
        excludes: Excluded (path, version) pairs
        source: Where the manifest was read from
    """
    module_path: str
    requirements: tuple[ManifestRequirement, ...]
    toolchain: ManifestToolchain
    replacements: tuple[ManifestReplacement, ...] = ()
    excludes: tuple[tuple[str, str], ...] = ()
    source: str = DEFAULT_MANIFEST_PATH

    def find_requirement(self, module_path: str, duplicates: str = "last") -> ManifestRequirement | None:
        """
        Find the requirement for a module path.

        Args:
            module_path: Module path to look up
            duplicates: Which entry wins when a path is listed more than once ('last' or 'first')

        Returns:
            Matching requirement, or None if the path is not required
        """
        if duplicates not in {"last", "first"}:
            raise ValueError(f"Invalid duplicates policy: {duplicates}. Must be 'last' or 'first'")

        found = None
        for requirement in self.requirements:
            if requirement.module_path != module_path:
                continue
            if duplicates == "first":
                return requirement
            found = requirement
        return found


_ESCAPES = {
    "a": "\a", "b": "\b", "f": "\f", "n": "\n", "r": "\r",
    "t": "\t", "v": "\v", "\\": "\\", '"': '"',
}
# Escapes accepted inside a double-quoted go.mod string
_ESCAPE_RE = re.compile(
    r'\\(?:(?P<simple>[abfnrtv\\"])|x(?P<hex>[0-9a-fA-F]{2})|(?P<octal>[0-7]{3})'
    r"|u(?P<u4>[0-9a-fA-F]{4})|U(?P<u8>[0-9a-fA-F]{8})|(?P<bad>.))"
)


def _unquote(token: str, lineno: int, source: str) -> str:
    """
    Strip the quotes from a go.mod string token.

    Backquoted strings are raw. Double-quoted strings take Go escapes;
    \\x and octal escapes are single bytes, so the result must still be
    valid UTF-8.
    """
    if token.startswith("`"):
        return token[1:-1]
    if not token.startswith('"'):
        return token

    body = token[1:-1]
    out = bytearray()
    pos = 0
    for m in _ESCAPE_RE.finditer(body):
        out += body[pos:m.start()].encode("utf-8")
        pos = m.end()
        if m.group("simple"):
            out += _ESCAPES[m.group("simple")].encode("ascii")
        elif m.group("hex"):
            out.append(int(m.group("hex"), 16))
        elif m.group("octal"):
            value = int(m.group("octal"), 8)
            if value > 0xFF:
                raise ManifestMalformed(f"invalid octal escape in {token}", lineno, source)
            out.append(value)
        elif m.group("u4") or m.group("u8"):
            code = int(m.group("u4") or m.group("u8"), 16)
            if code > 0x10FFFF or 0xD800 <= code <= 0xDFFF:
                raise ManifestMalformed(f"invalid unicode escape in {token}", lineno, source)
            out += chr(code).encode("utf-8")
        else:
            raise ManifestMalformed(f"invalid escape \\{m.group('bad')} in {token}", lineno, source)
    out += body[pos:].encode("utf-8")

    try:
        return out.decode("utf-8")
    except UnicodeDecodeError:
        raise ManifestMalformed(f"quoted string is not valid UTF-8: {token}", lineno, source)


def _tokenize(line: str, lineno: int, source: str) -> tuple[list[str], str]:
    """Split one line into tokens and a trailing `//` comment."""
    tokens: list[str] = []
    pos = 0
    while pos < len(line):
        if line[pos].isspace():
            pos += 1
            continue
        if line.startswith("//", pos):
            return tokens, line[pos + 2:].strip()
        if line.startswith("/*", pos):
            raise ManifestMalformed("block comments are not supported", lineno, source)
        m = _TOKEN_RE.match(line, pos)
        if m is None:
            raise ManifestMalformed(f"unterminated string: {line[pos:]}", lineno, source)
        tokens.append(_unquote(m.group(0), lineno, source))
        pos = m.end()
    return tokens, ""


def _is_indirect(comment: str) -> bool:
    words = comment.split()
    return bool(words) and words[0] in {"indirect", "indirect;"}


class _ManifestBuilder:
    """Accumulates directives while walking the manifest."""

    def __init__(self, source: str):
        self.source = source
        self.module_path: str | None = None
        self.go_version: str | None = None
        self.toolchain: str | None = None
        self.requirements: list[ManifestRequirement] = []
        self.replacements: list[ManifestReplacement] = []
        self.excludes: list[tuple[str, str]] = []

    def error(self, message: str, lineno: int) -> ManifestMalformed:
        return ManifestMalformed(message, lineno, self.source)

    def apply(self, verb: str, args: list[str], comment: str, lineno: int) -> None:
        handler = getattr(self, f"_do_{verb}", None)
        if handler is None:
            raise self.error(f"unknown directive: {verb}", lineno)
        handler(args, comment, lineno)

    def _expect(self, verb: str, args: list[str], count: int, usage: str, lineno: int) -> None:
        if len(args) != count or any(a in STRUCTURAL_TOKENS for a in args):
            raise self.error(f"usage: {verb} {usage}", lineno)

    def _do_module(self, args, comment, lineno):
        self._expect("module", args, 1, "module/path", lineno)
        if self.module_path is not None:
            raise self.error("repeated module statement", lineno)
        self.module_path = args[0]

    def _do_go(self, args, comment, lineno):
        self._expect("go", args, 1, "1.23", lineno)
        if self.go_version is not None:
            raise self.error("repeated go statement", lineno)
        self.go_version = args[0]

    def _do_toolchain(self, args, comment, lineno):
        self._expect("toolchain", args, 1, "go1.23.4", lineno)
        if self.toolchain is not None:
            raise self.error("repeated toolchain statement", lineno)
        self.toolchain = args[0]

    def _do_require(self, args, comment, lineno):
        self._expect("require", args, 2, "module/path v1.2.3", lineno)
        self.requirements.append(
            ManifestRequirement(args[0], args[1], indirect=_is_indirect(comment))
        )

    def _do_exclude(self, args, comment, lineno):
        self._expect("exclude", args, 2, "module/path v1.2.3", lineno)
        self.excludes.append((args[0], args[1]))

    def _do_replace(self, args, comment, lineno):
        usage = "module/path [v1.2.3] => other/module v1.4\n\t or module/path [v1.2.3] => ../local/directory"
        if "=>" not in args:
            raise self.error(f"usage: replace {usage}", lineno)
        arrow = args.index("=>")
        old, new = args[:arrow], args[arrow + 1:]
        if len(old) not in (1, 2) or len(new) not in (1, 2):
            raise self.error(f"usage: replace {usage}", lineno)
        if any(a in STRUCTURAL_TOKENS for a in old + new):
            raise self.error(f"usage: replace {usage}", lineno)
        self.replacements.append(ManifestReplacement(
            old_path=old[0],
            old_version=old[1] if len(old) == 2 else "",
            new_path=new[0],
            new_version=new[1] if len(new) == 2 else "",
        ))

    def _do_retract(self, args, comment, lineno):
        if len(args) == 1 and args[0] not in STRUCTURAL_TOKENS:
            return
        if len(args) == 5 and args[0] == "[" and args[2] == "," and args[4] == "]":
            if args[1] not in STRUCTURAL_TOKENS and args[3] not in STRUCTURAL_TOKENS:
                return
        raise self.error("usage: retract version | retract [low, high]", lineno)

    def _do_godebug(self, args, comment, lineno):
        self._expect("godebug", args, 1, "key=value", lineno)
        key, sep, value = args[0].partition("=")
        if not sep or not key or not value:
            raise self.error("usage: godebug key=value", lineno)

    def _do_tool(self, args, comment, lineno):
        self._expect("tool", args, 1, "module/path/cmd", lineno)

    def _do_ignore(self, args, comment, lineno):
        self._expect("ignore", args, 1, "./path", lineno)

    def build(self) -> ParsedManifest:
        if self.go_version is None:
            raise ManifestMalformed("missing go directive", source=self.source)
        return ParsedManifest(
            module_path=self.module_path or "",
            requirements=tuple(self.requirements),
            toolchain=ManifestToolchain(self.go_version, self.toolchain),
            replacements=tuple(self.replacements),
            excludes=tuple(self.excludes),
            source=self.source,
        )


def parse_manifest(raw: bytes, source: str = DEFAULT_MANIFEST_PATH) -> ParsedManifest:
    """
    Parse go.mod content.

    The `go` version is kept exactly as written; whether it is a usable
    version is decided when it is compared.

    Args:
        raw: Raw manifest bytes
        source: Name used in error messages

    Returns:
        Immutable ParsedManifest

    Raises:
        ManifestMalformed: If the content does not follow the go.mod grammar
    """
    try:
        text = raw.decode("utf-8")
    except UnicodeDecodeError as e:
        raise ManifestMalformed(f"invalid UTF-8: {e}", source=source) from e

    if text.startswith("\ufeff"):
        text = text[1:]

    builder = _ManifestBuilder(source)
    block_verb: str | None = None
    block_start = 0

    for lineno, line in enumerate(text.splitlines(), start=1):
        tokens, comment = _tokenize(line, lineno, source)
        if not tokens:
            continue

        if block_verb is not None:
            if tokens == [")"]:
                block_verb = None
            elif "(" in tokens or ")" in tokens:
                raise builder.error(f"unexpected parenthesis in {block_verb} block", lineno)
            else:
                builder.apply(block_verb, tokens, comment, lineno)
            continue

        verb, args = tokens[0], tokens[1:]
        if args[:1] == ["("]:
            if verb not in BLOCK_VERBS:
                if verb in SINGLE_VERBS:
                    raise builder.error(f"{verb} directive does not accept a block", lineno)
                raise builder.error(f"unknown block type: {verb}", lineno)
            rest = args[1:]
            if rest == [")"]:
                continue
            if rest:
                raise builder.error(f"unexpected tokens after {verb} (", lineno)
            block_verb, block_start = verb, lineno
            continue

        builder.apply(verb, args, comment, lineno)

    if block_verb is not None:
        raise builder.error(f"unterminated {block_verb} block", block_start)

    return builder.build()


def read_manifest(path: str | os.PathLike = DEFAULT_MANIFEST_PATH, verbose: bool = False) -> ParsedManifest:
    """
    Read and parse a go.mod file.

    Args:
        path: Path to the manifest
        verbose: Enable verbose logging

    Returns:
        Immutable ParsedManifest

    Raises:
        ManifestUnreadable: If the file cannot be opened or read
        ManifestMalformed: If the content cannot be parsed
    """
    try:
        with open(path, "rb") as f:
            raw = f.read()
    except OSError as e:
        raise ManifestUnreadable(f"reading modfile: {e}") from e

    manifest = parse_manifest(raw, source=os.fspath(path))
    vlog(
        f"Parsed {manifest.source}: go {manifest.toolchain.required_go_version}, "
        f"{len(manifest.requirements)} requirements",
        verbose,
    )
    return manifest
