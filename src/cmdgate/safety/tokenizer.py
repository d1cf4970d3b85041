"""Command tokenizer and structural analyzer.

Splits a command line into logical units so later stages see every
executable sub-command, not just the raw string:
- Pipelines, lists (;, &&, ||, &, newlines) and ( ... ) groups
- Command substitution ($(...), backticks) and process substitution
- Redirections, kept on the unit as data
- Indirection (eval, sh -c, su -c, xargs, find -exec) re-tokenized as
  nested units
- Wrapper commands (sudo, env, nohup, time, ...) peeled off so rules see
  the real program

Nothing is executed or expanded. Nested structure is processed from an
explicit work queue, breadth-first, so arbitrarily nested input cannot
exhaust the interpreter stack.
"""

import posixpath
import re
import shlex
from collections import deque
from dataclasses import dataclass, field
from typing import Sequence

from cmdgate.safety.models import LogicalUnit, Redirect, TokenizeResult, UnitOrigin

MAX_DEPTH = 16
MAX_UNITS = 256

ASSIGNMENT_PATTERN = re.compile(r"^[A-Za-z_][A-Za-z0-9_]*(\[[^\]]*\])?\+?=")
FD_PATTERN = re.compile(r"^\d+$")
ANSI_C_ESCAPE = re.compile(r"\\(x[0-9a-fA-F]{1,2}|[0-7]{1,3}|u[0-9a-fA-F]{4}|.)", re.DOTALL)

WORD_BREAKS = frozenset(" \t\n|&;<>()")

# Longest first
REDIRECT_OPERATORS = ("&>>", "&>", "<<<", "<<-", "<<", "<>", ">>", ">|", ">&", "<&", ">", "<")

RESERVED_WORDS = frozenset({
    "!", "{", "}", "if", "then", "else", "elif", "fi",
    "do", "done", "while", "until", "esac", "coproc",
})

# Headers of loops and case statements run nothing themselves
HEADER_WORDS = frozenset({"for", "select", "case", "function"})

# wrapper -> (options taking a value, positional arguments before the command)
WRAPPERS: dict[str, tuple[frozenset[str], int]] = {
    "sudo": (frozenset({
        "-u", "-g", "-C", "-D", "-h", "-p", "-r", "-t", "-U", "-T",
        "--user", "--group", "--chdir", "--prompt", "--role", "--type",
        "--other-user", "--host", "--close-from", "--command-timeout",
    }), 0),
    "doas": (frozenset({"-u", "-C"}), 0),
    "env": (frozenset({"-u", "-C", "--unset", "--chdir"}), 0),
    "nohup": (frozenset(), 0),
    "nice": (frozenset({"-n", "--adjustment"}), 0),
    "time": (frozenset({"-f", "-o", "--format", "--output"}), 0),
    "timeout": (frozenset({"-s", "-k", "--signal", "--kill-after"}), 1),
    "command": (frozenset(), 0),
    "exec": (frozenset({"-a"}), 0),
    "builtin": (frozenset(), 0),
    "stdbuf": (frozenset({"-i", "-o", "-e"}), 0),
    "ionice": (frozenset({"-c", "-n", "-p", "-P", "-u", "--class", "--classdata"}), 0),
    "chroot": (frozenset({"--userspec", "--groups"}), 1),
    "setsid": (frozenset(), 0),
    "watch": (frozenset({"-n", "--interval"}), 0),
    # multi-call binaries: busybox rm == rm
    "busybox": (frozenset(), 0),
    "toybox": (frozenset(), 0),
}

SHELL_PROGRAMS = frozenset({"sh", "bash", "zsh", "dash", "ksh", "mksh", "ash", "fish", "csh", "tcsh"})

XARGS_VALUE_OPTIONS = frozenset({
    "-I", "-L", "-n", "-P", "-s", "-d", "-E", "-a",
    "--max-args", "--max-procs", "--max-chars", "--delimiter",
    "--arg-file", "--eof", "--replace", "--max-lines", "--process-slot-var",
})

FIND_EXEC_ACTIONS = frozenset({"-exec", "-execdir", "-ok", "-okdir"})
FD_EXEC_ACTIONS = frozenset({"-x", "--exec", "-X", "--exec-batch"})


def _find_backtick(text: str, start: int) -> int:
    """Index of the next unescaped backquote at or after start, or -1."""
    i = start
    while i < len(text):
        if text[i] == "\\":
            i += 2
            continue
        if text[i] == "`":
            return i
        i += 1
    return -1


def _find_closing(text: str, start: int, closer: str = ")") -> int:
    """Index of the delimiter closing a construct opened just before start.

    Quote-aware. Nested constructs are tracked on an explicit stack of
    expected closers, so the scan is iterative whatever the nesting.

    Returns:
        Index of the closing character, or -1 if the construct is unbalanced.
    """
    stack = [closer]
    i, n = start, len(text)
    while i < n:
        c = text[i]
        top = stack[-1]
        if c == "\\":
            i += 2
            continue
        if c == "`":
            end = _find_backtick(text, i + 1)
            if end == -1:
                return -1
            i = end + 1
            continue
        if top == '"':
            if c == '"':
                stack.pop()
            elif text.startswith("$(", i):
                stack.append(")")
                i += 1
            elif text.startswith("${", i):
                stack.append("}")
                i += 1
        elif c == "'":
            end = text.find("'", i + 1)
            if end == -1:
                return -1
            i = end + 1
            continue
        elif c == '"':
            stack.append('"')
        elif text.startswith("${", i):
            stack.append("}")
            i += 1
        elif c == "(":
            stack.append(")")
        elif c == top:
            stack.pop()
        if not stack:
            return i
        i += 1
    return -1


def _expansion_payloads(text: str) -> list[str]:
    """Command substitutions found in text that is otherwise data.

    Used for arithmetic, parameter expansions and unquoted here-documents,
    where only embedded $(...) and backticks can run anything.
    """
    payloads = []
    i, n = 0, len(text)
    while i < n:
        if text[i] == "\\":
            i += 2
            continue
        if text.startswith("$(", i):
            close = _find_closing(text, i + 2)
            if close == -1:
                payloads.append(text[i + 2:])
                break
            payloads.append(text[i + 2:close])
            i = close + 1
            continue
        if text[i] == "`":
            end = _find_backtick(text, i + 1)
            if end == -1:
                payloads.append(text[i + 1:])
                break
            payloads.append(text[i + 1:end])
            i = end + 1
            continue
        i += 1
    return payloads


def _decode_ansi_c(body: str) -> str:
    """Decode the escapes of a $'...' string."""
    simple = {"n": "\n", "t": "\t", "r": "\r", "a": "\a", "b": "\b",
              "e": "\x1b", "E": "\x1b", "f": "\f", "v": "\v"}

    def replace(match: re.Match) -> str:
        esc = match.group(1)
        if esc[0] == "x" and len(esc) > 1:
            return chr(int(esc[1:], 16))
        if esc[0] == "u" and len(esc) == 5:
            return chr(int(esc[1:], 16))
        if esc[0] in "01234567":
            return chr(int(esc, 8) & 0xFF)
        return simple.get(esc, esc)

    return ANSI_C_ESCAPE.sub(replace, body)


@dataclass
class _Word:
    value: str  # quotes removed, substitutions kept literally
    raw: str


@dataclass
class _Command:
    """One simple command (or group) found while scanning a segment."""

    operator: str | None = None
    stdin_from: str | None = None
    start: int | None = None
    text: str = ""
    words: list[_Word] = field(default_factory=list)
    redirections: list[Redirect] = field(default_factory=list)
    nested: list[tuple[str, UnitOrigin]] = field(default_factory=list)
    group: str | None = None
    background: bool = False
    errors: list[str] = field(default_factory=list)

    @property
    def is_empty(self) -> bool:
        return not (self.words or self.redirections or self.group is not None)


@dataclass
class _Pending:
    """A piece of text waiting to be scanned."""

    text: str
    origin: UnitOrigin
    depth: int
    parent: int | None = None
    stdin_from: str | None = None


class _SegmentScanner:
    """Quote-aware scanner for one segment of shell text."""

    def __init__(self, text: str, result: TokenizeResult, stdin_from: str | None = None):
        self.text = text
        self.n = len(text)
        self.i = 0
        self.result = result
        self.commands: list[_Command] = []
        self.heredocs: list[tuple[str, bool, bool, _Command]] = []
        self.current = _Command(stdin_from=stdin_from)

    def scan(self) -> list[_Command]:
        text = self.text
        while self.i < self.n:
            c = text[self.i]
            nxt = text[self.i + 1] if self.i + 1 < self.n else ""
            if c in " \t":
                self.i += 1
            elif c == "\\" and nxt == "\n":
                self.i += 2
            elif c == "\n":
                self.i += 1
                # a trailing |, && or || continues on the next line
                if not (self.current.is_empty and self.current.operator in ("|", "|&", "&&", "||")):
                    self._end_command("\n")
                self._consume_heredocs()
            elif c == "#":
                end = text.find("\n", self.i)
                self.i = self.n if end == -1 else end
            elif text.startswith(("&&", "||"), self.i):
                self.result.has_chains = True
                self._end_command(text[self.i:self.i + 2])
                self.i += 2
            elif text.startswith("|&", self.i):
                self.result.has_pipes = True
                self._end_command("|&")
                self.i += 2
            elif c == "|":
                self.result.has_pipes = True
                self._end_command("|")
                self.i += 1
            elif c == ";":
                self.result.has_chains = True
                self._end_command(";")
                self.i += 2 if nxt in ";&" else 1
            elif c == "&" and nxt != ">":
                self.current.background = True
                self.result.has_background = True
                self._end_command("&")
                self.i += 1
            elif c in "<>" and nxt == "(":
                self._process_substitution()
            elif c in "<>" or c == "&":
                self._redirect("")
            elif c == "(":
                self._open_paren()
            elif c == ")":
                self._mark_start()
                self._error("unmatched ')'")
                self.i += 1
            else:
                self._mark_start()
                word = self._read_word()
                at_redirect = (
                    self.i < self.n
                    and text[self.i] in "<>"
                    and text[self.i + 1:self.i + 2] != "("
                    and FD_PATTERN.match(word.raw)
                )
                if at_redirect:
                    self._redirect(word.raw)
                else:
                    self.current.words.append(word)
        self._end_command(None)
        return self.commands

    # Command boundaries

    def _mark_start(self) -> None:
        if self.current.start is None:
            self.current.start = self.i

    def _end_command(self, operator: str | None) -> None:
        cmd = self.current
        if cmd.start is not None:
            cmd.text = self.text[cmd.start:self.i].strip()
        if cmd.is_empty and not cmd.errors:
            if operator in ("&&", "||", "|", "|&", "&") or (
                operator is None and cmd.operator in ("&&", "||", "|", "|&")
            ):
                missing = operator if operator is not None else cmd.operator
                self._error(f"missing command around '{missing}'")
                cmd.text = cmd.text or str(missing)
            elif operator == ";" and cmd.operator is not None and cmd.operator not in ("\n", ";", "&"):
                self._error(f"missing command before '{operator}'")
                cmd.text = cmd.text or operator
        if not cmd.is_empty or cmd.errors:
            self.commands.append(cmd)
        stdin_from = cmd.text if operator in ("|", "|&") and not cmd.is_empty else None
        self.current = _Command(operator=operator, stdin_from=stdin_from)

    def _error(self, message: str) -> None:
        self.current.errors.append(message)
        self.result.parse_errors.append(message)

    def _nest(self, payload: str, origin: UnitOrigin) -> None:
        self.current.nested.append((payload, origin))
        self.result.has_substitutions = True

    # Words

    def _read_word(self) -> _Word:
        text = self.text
        start = self.i
        value: list[str] = []
        while self.i < self.n:
            c = text[self.i]
            if c == "(" and value and ASSIGNMENT_PATTERN.match("".join(value)) and value[-1] == "=":
                # array assignment: name=( ... )
                close = _find_closing(text, self.i + 1)
                if close == -1:
                    self._error("unterminated array assignment")
                    value.append(text[self.i:])
                    self.i = self.n
                    break
                for payload in _expansion_payloads(text[self.i + 1:close]):
                    self._nest(payload, UnitOrigin.COMMAND_SUBSTITUTION)
                value.append(text[self.i:close + 1])
                self.i = close + 1
                continue
            if c in WORD_BREAKS:
                break
            if c == "'":
                end = text.find("'", self.i + 1)
                if end == -1:
                    self._error("unterminated single quote")
                    value.append(text[self.i + 1:])
                    self.i = self.n
                    break
                value.append(text[self.i + 1:end])
                self.i = end + 1
            elif c == '"':
                self._read_double_quoted(value)
            elif c == "\\":
                if self.i + 1 < self.n:
                    if text[self.i + 1] != "\n":
                        value.append(text[self.i + 1])
                    self.i += 2
                else:
                    value.append(c)
                    self.i += 1
            elif text.startswith("$'", self.i):
                self._read_ansi_c(value)
            elif text.startswith("$(", self.i):
                value.append(self._substitution())
            elif text.startswith("${", self.i):
                value.append(self._parameter_expansion())
            elif c == "`":
                value.append(self._backtick())
            else:
                value.append(c)
                self.i += 1
        return _Word("".join(value), text[start:self.i])

    def _read_double_quoted(self, value: list[str]) -> None:
        text = self.text
        i = self.i + 1
        while i < self.n:
            c = text[i]
            if c == '"':
                self.i = i + 1
                return
            if c == "\\" and i + 1 < self.n:
                nxt = text[i + 1]
                if nxt in '"\\$`':
                    value.append(nxt)
                elif nxt != "\n":
                    value.append(c + nxt)
                i += 2
                continue
            if text.startswith("$(", i):
                self.i = i
                value.append(self._substitution())
                i = self.i
                continue
            if text.startswith("${", i):
                self.i = i
                value.append(self._parameter_expansion())
                i = self.i
                continue
            if c == "`":
                self.i = i
                value.append(self._backtick())
                i = self.i
                continue
            value.append(c)
            i += 1
        self._error("unterminated double quote")
        self.i = self.n

    def _read_ansi_c(self, value: list[str]) -> None:
        text = self.text
        i = self.i + 2
        while i < self.n:
            if text[i] == "\\":
                i += 2
                continue
            if text[i] == "'":
                value.append(_decode_ansi_c(text[self.i + 2:i]))
                self.i = i + 1
                return
            i += 1
        self._error("unterminated $'...' string")
        value.append(text[self.i + 2:])
        self.i = self.n

    def _substitution(self) -> str:
        text = self.text
        start = self.i
        close = _find_closing(text, self.i + 2)
        if close == -1:
            self._error("unterminated command substitution")
            self.i = self.n
            return text[start:]
        inner = text[self.i + 2:close]
        self.i = close + 1
        if inner.startswith("(") and inner.endswith(")"):
            # $(( arithmetic ))
            for payload in _expansion_payloads(inner[1:-1]):
                self._nest(payload, UnitOrigin.COMMAND_SUBSTITUTION)
        else:
            self._nest(inner, UnitOrigin.COMMAND_SUBSTITUTION)
        return text[start:self.i]

    def _parameter_expansion(self) -> str:
        text = self.text
        start = self.i
        close = _find_closing(text, self.i + 2, "}")
        if close == -1:
            self._error("unterminated parameter expansion")
            self.i = self.n
            return text[start:]
        for payload in _expansion_payloads(text[self.i + 2:close]):
            self._nest(payload, UnitOrigin.COMMAND_SUBSTITUTION)
        self.i = close + 1
        return text[start:self.i]

    def _backtick(self) -> str:
        text = self.text
        start = self.i
        end = _find_backtick(text, self.i + 1)
        if end == -1:
            self._error("unterminated backquote")
            self.i = self.n
            return text[start:]
        self._nest(text[self.i + 1:end].replace("\\`", "`"), UnitOrigin.COMMAND_SUBSTITUTION)
        self.i = end + 1
        return text[start:self.i]

    # Operators

    def _process_substitution(self) -> None:
        self._mark_start()
        text = self.text
        close = _find_closing(text, self.i + 2)
        if close == -1:
            self._error("unterminated process substitution")
            self.i = self.n
            return
        self._nest(text[self.i + 2:close], UnitOrigin.PROCESS_SUBSTITUTION)
        literal = text[self.i:close + 1]
        self.current.words.append(_Word(literal, literal))
        self.i = close + 1

    def _open_paren(self) -> None:
        text = self.text
        if self.current.words and text.startswith("()", self.i):
            # function definition: name() { ... }
            last = self.current.words[-1]
            self.current.words[-1] = _Word(last.value + "()", last.raw + "()")
            self.i += 2
            self._end_command(None)
            return
        self._mark_start()
        if self.current.words or self.current.group is not None:
            self._error("unexpected '('")
            self.i += 1
            return
        close = _find_closing(text, self.i + 1)
        if close == -1:
            self._error("unterminated subshell")
            self.i = self.n
            return
        self.current.group = text[self.i + 1:close]
        self.i = close + 1

    def _redirect(self, fd: str) -> None:
        self._mark_start()
        text = self.text
        op = next((op for op in REDIRECT_OPERATORS if text.startswith(op, self.i)), None)
        if op is None:
            self._error(f"unexpected '{text[self.i]}'")
            self.i += 1
            return
        self.i += len(op)
        self.result.has_redirections = True
        while self.i < self.n and text[self.i] in " \t":
            self.i += 1
        if self.i >= self.n or text[self.i] in WORD_BREAKS:
            self._error(f"missing target for '{op}'")
            self.current.redirections.append(Redirect(fd + op, ""))
            return
        word = self._read_word()
        if op in ("<<", "<<-"):
            expands = word.raw == word.value
            self.heredocs.append((word.value, op == "<<-", expands, self.current))
        self.current.redirections.append(Redirect(fd + op, word.value))

    def _consume_heredocs(self) -> None:
        text = self.text
        for delimiter, strip_tabs, expands, owner in self.heredocs:
            body: list[str] = []
            while self.i < self.n:
                end = text.find("\n", self.i)
                line_end = self.n if end == -1 else end
                line = text[self.i:line_end]
                self.i = self.n if end == -1 else end + 1
                if (line.lstrip("\t") if strip_tabs else line) == delimiter:
                    break
                body.append(line)
            if expands:
                for payload in _expansion_payloads("\n".join(body)):
                    owner.nested.append((payload, UnitOrigin.COMMAND_SUBSTITUTION))
                    self.result.has_substitutions = True
        self.heredocs = []


class CommandTokenizer:
    """Tokenizes shell commands into a flat, ordered list of LogicalUnits.

    Units come out breadth-first: the top-level line's units in source order,
    then the units of nested payloads in the order they were discovered.
    Each unit records its parent so rules can see what consumes its output.
    """

    def tokenize(self, command: str, decoded_payloads: Sequence[str] = ()) -> TokenizeResult:
        """Parse a command line into logical units.

        Args:
            command: The shell command string to parse.
            decoded_payloads: Plain text recovered from encoded parts of the
                command; analyzed as additional nested units.

        Returns:
            TokenizeResult with units and structural flags.
        """
        result = TokenizeResult(command=command)
        if not command.strip():
            result.parse_errors.append("empty command")
            return result

        queue: deque[_Pending] = deque([_Pending(command, UnitOrigin.TOP_LEVEL, 0)])
        for payload in decoded_payloads:
            queue.append(_Pending(payload, UnitOrigin.DECODED, 1))
            result.has_indirection = True

        while queue:
            pending = queue.popleft()
            if pending.depth > MAX_DEPTH:
                self._add_opaque(result, pending, f"nesting deeper than {MAX_DEPTH} levels")
                continue

            scanner = _SegmentScanner(pending.text, result, pending.stdin_from)
            for cmd in scanner.scan():
                if len(result.units) >= MAX_UNITS:
                    self._add_opaque(result, pending, f"more than {MAX_UNITS} sub-commands")
                    result.truncated = True
                    return result

                unit = self._build_unit(cmd, pending, len(result.units))
                parent = pending.parent
                if unit is not None:
                    result.units.append(unit)
                    parent = unit.index

                if cmd.group is not None:
                    origin = pending.origin if pending.origin.is_indirect else UnitOrigin.SUBSHELL
                    queue.append(_Pending(
                        cmd.group, origin, pending.depth + 1, pending.parent, cmd.stdin_from,
                    ))
                for payload, origin in cmd.nested:
                    queue.append(_Pending(payload, origin, pending.depth + 1, parent))
                if unit is not None:
                    for payload, origin in self._indirect_payloads(unit):
                        result.has_indirection = True
                        queue.append(_Pending(payload, origin, pending.depth + 1, unit.index))

        return result

    def _build_unit(self, cmd: _Command, pending: _Pending, index: int) -> LogicalUnit | None:
        argv = [word.value for word in cmd.words]
        while argv and (ASSIGNMENT_PATTERN.match(argv[0]) or argv[0] in RESERVED_WORDS):
            argv.pop(0)
        if argv and (argv[0] in HEADER_WORDS or argv[0].endswith("()")) and not cmd.errors:
            argv = []
        unwrapped, wrappers = self._unwrap(argv)

        if not unwrapped and not cmd.redirections and not cmd.errors:
            return None

        return LogicalUnit(
            index=index,
            text=cmd.text or shlex.join(argv),
            argv=unwrapped,
            wrappers=wrappers,
            redirections=tuple(cmd.redirections),
            origin=pending.origin,
            depth=pending.depth,
            parent=pending.parent,
            operator=cmd.operator,
            stdin_from=cmd.stdin_from,
            background=cmd.background,
            opaque=bool(cmd.errors),
            opaque_reason="; ".join(cmd.errors) or None,
        )

    def _add_opaque(self, result: TokenizeResult, pending: _Pending, reason: str) -> None:
        result.parse_errors.append(reason)
        result.units.append(LogicalUnit(
            index=len(result.units),
            text=pending.text[:200],
            origin=pending.origin,
            depth=pending.depth,
            parent=pending.parent,
            opaque=True,
            opaque_reason=reason,
        ))

    @staticmethod
    def _unwrap(argv: list[str]) -> tuple[tuple[str, ...], tuple[str, ...]]:
        """Peel wrapper commands off argv.

        A wrapper with nothing left to run (``sudo -i``, ``env``) stays the
        program itself.
        """
        wrappers: list[str] = []
        while argv:
            prog = posixpath.basename(argv[0])
            spec = WRAPPERS.get(prog)
            if spec is None:
                break
            if prog == "command" and len(argv) > 1 and argv[1] in ("-v", "-V"):
                break
            value_options, positionals = spec
            i = 1
            while i < len(argv):
                tok = argv[i]
                if tok == "--":
                    i += 1
                    break
                if tok.startswith("-") and len(tok) > 1:
                    i += 2 if tok in value_options else 1
                    continue
                if prog in ("env", "sudo") and ASSIGNMENT_PATTERN.match(tok):
                    i += 1
                    continue
                break
            i += positionals
            if i >= len(argv):
                break
            wrappers.append(prog)
            argv = argv[i:]
        return tuple(argv), tuple(wrappers)

    @staticmethod
    def _indirect_payloads(unit: LogicalUnit) -> list[tuple[str, UnitOrigin]]:
        """Argument payloads that the unit's program will run as commands."""
        argv = unit.argv
        prog = unit.program
        payloads: list[tuple[str, UnitOrigin]] = []

        if prog == "eval" and len(argv) > 1:
            payloads.append((" ".join(argv[1:]), UnitOrigin.EVAL))

        elif prog in SHELL_PROGRAMS:
            i, saw_c = 1, False
            while i < len(argv):
                tok = argv[i]
                if tok == "--":
                    i += 1
                    break
                if tok in ("-o", "+o", "-O", "+O", "--rcfile", "--init-file"):
                    i += 2
                    continue
                if tok.startswith("--"):
                    i += 1
                    continue
                if tok[:1] in ("-", "+") and len(tok) > 1:
                    saw_c = saw_c or "c" in tok[1:]
                    i += 1
                    continue
                break
            if saw_c and i < len(argv):
                payloads.append((argv[i], UnitOrigin.SHELL_COMMAND))

        elif prog == "su":
            for i, tok in enumerate(argv[1:], start=1):
                if tok in ("-c", "--command") and i + 1 < len(argv):
                    payloads.append((argv[i + 1], UnitOrigin.SHELL_COMMAND))
                elif tok.startswith("--command="):
                    payloads.append((tok.split("=", 1)[1], UnitOrigin.SHELL_COMMAND))

        elif prog == "xargs":
            i = 1
            while i < len(argv) and argv[i].startswith("-") and len(argv[i]) > 1:
                if argv[i] == "--":
                    i += 1
                    break
                i += 2 if argv[i] in XARGS_VALUE_OPTIONS else 1
            if i < len(argv):
                payloads.append((shlex.join(argv[i:]), UnitOrigin.XARGS))

        elif prog in ("find", "fd", "fdfind"):
            actions = FIND_EXEC_ACTIONS if prog == "find" else FD_EXEC_ACTIONS
            i = 1
            while i < len(argv):
                if argv[i] in actions:
                    j = i + 1
                    while j < len(argv) and argv[j] not in (";", "+"):
                        j += 1
                    if j > i + 1:
                        payloads.append((shlex.join(argv[i + 1:j]), UnitOrigin.FIND_EXEC))
                    i = j
                i += 1

        return payloads
