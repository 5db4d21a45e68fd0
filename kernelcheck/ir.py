"""Parsing of textual LLVM IR into a small in-memory model.

Values are referred to by the text that names them in the IR: registers and
globals keep their sigil (``%5``, ``@sdata``), constants keep their literal
spelling (``16``, ``true``, ``getelementptr inbounds (...)``).  Operands are
kept in the order the IR gives them: a store holds ``(value, pointer)``, a
load ``(pointer,)``, a getelementptr ``(base, index, ...)`` and a call its
arguments followed by the callee.
"""

from __future__ import annotations

import re
from dataclasses import dataclass, field

__all__ = [
    "Argument",
    "BasicBlock",
    "Function",
    "IRParseError",
    "Instruction",
    "Module",
    "operand_names",
    "parse_module",
]


class IRParseError(ValueError):
    """Raised when IR text cannot be read."""


_OPERAND_NAME_RE = re.compile(r"%([A-Za-z0-9]*).?", re.S)
_IDENT = r'(?:[-A-Za-z$._0-9]+|"[^"]*")'
_RESULT_RE = re.compile(rf"^(%{_IDENT})\s*=\s*(.+)$", re.S)
_LABEL_RE = re.compile(rf"^({_IDENT}):$")
_CALLEE_RE = re.compile(rf"([@%]{_IDENT})\(")
_CASE_LABEL_RE = re.compile(rf"label\s+(%{_IDENT})")
_PHI_VALUE_RE = re.compile(r"\[\s*([^,\]]+?)\s*,\s*%")
_OPCODE_RE = re.compile(r"[a-z][a-z0-9_]*")
_TYPE_HEAD_RE = re.compile(rf"%?{_IDENT}")

_OPENERS = "([{<"
_CLOSERS = ")]}>"

_CALL_PREFIXES = frozenset({"tail", "musttail", "notail"})
_BINARY = frozenset({
    "add", "sub", "mul", "udiv", "sdiv", "urem", "srem",
    "fadd", "fsub", "fmul", "fdiv", "frem",
    "shl", "lshr", "ashr", "and", "or", "xor",
})
_CASTS = frozenset({
    "trunc", "zext", "sext", "fptrunc", "fpext", "fptoui", "fptosi",
    "uitofp", "sitofp", "ptrtoint", "inttoptr", "bitcast", "addrspacecast",
})
_PREDICATES = frozenset({
    "eq", "ne", "ugt", "uge", "ult", "ule", "sgt", "sge", "slt", "sle",
    "false", "oeq", "ogt", "oge", "olt", "ole", "one", "ord",
    "ueq", "une", "uno", "true",
})
_CONSTEXPR_OPS = frozenset({
    "getelementptr", "bitcast", "addrspacecast", "inttoptr", "ptrtoint",
    "trunc", "zext", "sext", "fptrunc", "fpext", "select", "icmp", "fcmp",
    "extractelement", "insertelement", "shufflevector",
    "add", "sub", "mul", "shl", "and", "or", "xor",
})
_CONSTEXPR_FLAGS = frozenset({"inbounds", "nuw", "nsw", "exact"})


def operand_names(text):
    """Return the name after each ``%`` in ``text``.

    A name is the run of ASCII letters and digits following the ``%``; the
    character that ends a name is consumed with it, so a ``%`` directly after
    a name is not seen.  A ``%`` followed by no such character gives ``""``.
    """
    return [match.group(1) for match in _OPERAND_NAME_RE.finditer(text)]


@dataclass(eq=False)
class Instruction:
    """One IR instruction as written, with the parts the analyses use."""

    text: str
    opcode: str
    result: str | None = None
    operands: tuple[str, ...] = ()
    predicate: str | None = None
    callee: str | None = None
    successors: tuple[str, ...] = ()

    def operand_names(self):
        """Names of the ``%`` values in this instruction's text."""
        return operand_names(self.text)


@dataclass
class Argument:
    """A formal parameter of a function; ``name`` is empty when unnamed."""

    name: str
    type: str
    index: int
    is_pointer: bool = field(init=False)

    def __post_init__(self):
        kind = self.type.strip()
        self.is_pointer = kind == "ptr" or kind.startswith("ptr ") or kind.endswith("*")


@dataclass(eq=False)
class BasicBlock:
    """A labelled run of instructions; numbered labels count as unnamed."""

    label: str
    instructions: list[Instruction] = field(default_factory=list)
    named: bool = field(init=False)

    def __post_init__(self):
        self.named = not self.label.isdigit()


@dataclass(eq=False)
class Function:
    """A defined function with its arguments and blocks in program order."""

    name: str
    arguments: list[Argument] = field(default_factory=list)
    blocks: list[BasicBlock] = field(default_factory=list)

    def predecessors(self, block):
        """Blocks that branch to ``block``, one entry per branch edge."""
        found = []
        for candidate in self.blocks:
            if not candidate.instructions:
                continue
            successors = candidate.instructions[-1].successors
            found.extend(candidate for label in successors if label == block.label)
        return found

    def block_names(self):
        """Map each unnamed block to ``bb0``, ``bb1``, ... in program order."""
        unnamed = (block for block in self.blocks if not block.named)
        return {block: f"bb{position}" for position, block in enumerate(unnamed)}


@dataclass(eq=False)
class Module:
    """The functions defined in one IR file."""

    identifier: str
    functions: list[Function] = field(default_factory=list)


def _strip_comment(line):
    quoted = False
    for position, char in enumerate(line):
        if char == '"':
            quoted = not quoted
        elif char == ";" and not quoted:
            return line[:position]
    return line


def _unquote(name):
    if len(name) >= 2 and name.startswith('"') and name.endswith('"'):
        return name[1:-1]
    return name


def _strip_sigil(token):
    return _unquote(token[1:])


def _bracket_depth(text):
    depth = 0
    quoted = False
    for char in text:
        if char == '"':
            quoted = not quoted
        elif quoted:
            continue
        elif char in "([{":
            depth += 1
        elif char in ")]}":
            depth -= 1
    return depth


def _find_closing(text, index):
    depth = 0
    quoted = False
    for position, char in enumerate(text[index:], start=index):
        if char == '"':
            quoted = not quoted
        elif quoted:
            continue
        elif char in _OPENERS:
            depth += 1
        elif char in _CLOSERS:
            depth -= 1
            if depth == 0:
                return position
    raise IRParseError(f"unbalanced brackets in {text!r}")


def _matching_open(text):
    depth = 0
    for position, char in reversed(list(enumerate(text))):
        if char in _CLOSERS:
            depth += 1
        elif char in _OPENERS:
            depth -= 1
            if depth == 0:
                return position
    raise IRParseError(f"unbalanced brackets in {text!r}")


def _split_top_level(text):
    parts = []
    current = []
    depth = 0
    quoted = False
    for char in text:
        if quoted:
            current.append(char)
            if char == '"':
                quoted = False
            continue
        if char == '"':
            quoted = True
        elif char in _OPENERS:
            depth += 1
        elif char in _CLOSERS:
            depth -= 1
            if depth < 0:
                raise IRParseError(f"unbalanced brackets in {text!r}")
        elif char == "," and depth == 0:
            parts.append("".join(current).strip())
            current = []
            continue
        current.append(char)
    if depth or quoted:
        raise IRParseError(f"unbalanced brackets in {text!r}")
    parts.append("".join(current).strip())
    return parts


def _last_value(piece):
    """The value at the end of a typed operand such as ``i32* %4``."""
    piece = piece.strip()
    if not piece:
        raise IRParseError("missing operand")
    if piece[-1] in _CLOSERS:
        start = _matching_open(piece)
        head = piece[:start]
        spans = [match.start() for match in re.finditer(r"\S+", head)]
        words = head.split()
        keep = len(words)
        while keep and words[keep - 1] in _CONSTEXPR_FLAGS:
            keep -= 1
        if keep and words[keep - 1] in _CONSTEXPR_OPS:
            return piece[spans[keep - 1]:]
        if piece[-1] != ")":
            return piece[start:]
    return piece.split()[-1]


def _take_type(text):
    """Split ``text`` into a leading type and whatever follows it."""
    text = text.strip()
    if not text:
        return "", ""
    if text[0] in "[{<":
        end = _find_closing(text, 0) + 1
    else:
        match = _TYPE_HEAD_RE.match(text)
        if match is None:
            raise IRParseError(f"cannot read type in {text!r}")
        end = match.end()
    while True:
        rest = text[end:]
        stripped = rest.lstrip()
        gap = len(rest) - len(stripped)
        if stripped.startswith("addrspace("):
            end += gap + _find_closing(stripped, len("addrspace")) + 1
        elif stripped.startswith("*"):
            end += gap + 1
        elif stripped.startswith("("):
            end += gap + _find_closing(stripped, 0) + 1
        else:
            break
    return text[:end], text[end:].strip()


def _label_of(piece):
    value = _last_value(piece)
    if not value.startswith("%"):
        raise IRParseError(f"expected a label in {piece!r}")
    return _strip_sigil(value)


def _parse_call(rest):
    match = _CALLEE_RE.search(rest)
    if match is None:
        return {"operands": (), "callee": None}
    token = match.group(1)
    open_index = match.end() - 1
    close_index = _find_closing(rest, open_index)
    arguments = tuple(
        _last_value(piece)
        for piece in _split_top_level(rest[open_index + 1:close_index])
        if piece
    )
    callee = _strip_sigil(token) if token.startswith("@") else None
    return {"operands": (*arguments, token), "callee": callee}


def _parse_branch(pieces):
    labels = tuple(_label_of(piece) for piece in pieces if piece.startswith("label"))
    if pieces[0].startswith("label"):
        return {"successors": labels}
    return {"operands": (_last_value(pieces[0]),), "successors": labels}


def _parse_switch(rest):
    bracket = rest.find("[")
    if bracket < 0:
        raise IRParseError(f"switch without cases: {rest!r}")
    close = _find_closing(rest, bracket)
    pieces = _split_top_level(rest[:bracket])
    if len(pieces) < 2:
        raise IRParseError(f"switch without default: {rest!r}")
    cases = tuple(
        _strip_sigil(label) for label in _CASE_LABEL_RE.findall(rest[bracket + 1:close])
    )
    return {
        "operands": (_last_value(pieces[0]),),
        "successors": (_label_of(pieces[1]), *cases),
    }


def _parse_fields(opcode, rest):
    if opcode in ("call", "invoke"):
        return _parse_call(rest)
    if opcode == "switch":
        return _parse_switch(rest)
    if opcode == "phi":
        return {"operands": tuple(_PHI_VALUE_RE.findall(rest))}
    if opcode in ("alloca", "unreachable"):
        return {}

    pieces = _split_top_level(rest) if rest else []
    if opcode == "br":
        if not pieces or not pieces[0]:
            raise IRParseError("branch without target")
        return _parse_branch(pieces)
    if opcode == "ret":
        if not pieces or pieces[0] == "void":
            return {}
        return {"operands": (_last_value(pieces[0]),)}
    if opcode in _CASTS:
        head = pieces[0] if pieces else ""
        split_at = head.rfind(" to ")
        if split_at < 0:
            raise IRParseError(f"cast without target type: {rest!r}")
        return {"operands": (_last_value(head[:split_at]),)}
    if opcode == "load":
        if len(pieces) < 2:
            raise IRParseError(f"load without pointer: {rest!r}")
        return {"operands": (_last_value(pieces[1]),)}
    if opcode == "store":
        if len(pieces) < 2:
            raise IRParseError(f"store needs a value and a pointer: {rest!r}")
        return {"operands": (_last_value(pieces[0]), _last_value(pieces[1]))}
    if opcode == "getelementptr":
        values = [piece for piece in pieces[1:] if not piece.startswith("!")]
        if not values:
            raise IRParseError(f"getelementptr without base: {rest!r}")
        return {"operands": tuple(_last_value(piece) for piece in values)}
    if opcode in _BINARY or opcode in ("icmp", "fcmp"):
        if len(pieces) < 2:
            raise IRParseError(f"{opcode} needs two operands: {rest!r}")
        found = {"operands": (_last_value(pieces[0]), _last_value(pieces[1]))}
        if opcode in ("icmp", "fcmp"):
            found["predicate"] = next(
                (word for word in pieces[0].split() if word in _PREDICATES), None
            )
        return found
    values = [
        piece for piece in pieces
        if piece and not piece.startswith(("align", "!"))
    ]
    return {"operands": tuple(_last_value(piece) for piece in values)}


def _parse_instruction(statement):
    result = None
    body = statement
    match = _RESULT_RE.match(statement)
    if match:
        result, body = match.group(1), match.group(2)
    words = body.split(None, 1)
    if words and words[0] in _CALL_PREFIXES:
        words = words[1].split(None, 1) if len(words) > 1 else []
    if not words or not _OPCODE_RE.fullmatch(words[0]):
        raise IRParseError(f"cannot read instruction: {statement!r}")
    opcode = words[0]
    rest = words[1] if len(words) > 1 else ""
    return Instruction(
        text="  " + statement,
        opcode=opcode,
        result=result,
        **_parse_fields(opcode, rest),
    )


def _parse_argument(piece, index):
    type_text, remainder = _take_type(piece)
    tokens = remainder.split()
    name = _strip_sigil(tokens[-1]) if tokens and tokens[-1].startswith("%") else ""
    return Argument(name=name, type=type_text, index=index)


def _parse_header(header):
    match = _CALLEE_RE.search(header)
    if match is None or not match.group(1).startswith("@"):
        raise IRParseError(f"cannot read function header: {header!r}")
    open_index = match.end() - 1
    close_index = _find_closing(header, open_index)
    params = [
        piece
        for piece in _split_top_level(header[open_index + 1:close_index])
        if piece and piece != "..."
    ]
    arguments = [_parse_argument(piece, index) for index, piece in enumerate(params)]
    return Function(name=_strip_sigil(match.group(1)), arguments=arguments)


def _parse_body(lines, arguments):
    entry_label = str(sum(1 for arg in arguments if arg.name == "" or arg.name.isdigit()))
    blocks = []
    current = None
    pending = ""
    for raw in lines:
        line = _strip_comment(raw).strip()
        if not line:
            continue
        if not pending and line == "}":
            break
        statement = f"{pending}\n{line}" if pending else line
        if _bracket_depth(statement) > 0:
            pending = statement
            continue
        pending = ""
        label = _LABEL_RE.match(statement)
        if label:
            current = BasicBlock(_unquote(label.group(1)))
            blocks.append(current)
            continue
        if current is None:
            current = BasicBlock(entry_label)
            blocks.append(current)
        current.instructions.append(_parse_instruction(statement))
    else:
        raise IRParseError("function body is not closed")
    if not blocks:
        raise IRParseError("function has no basic blocks")
    return blocks


def parse_module(text, identifier=""):
    """Read the function definitions in IR ``text``; declarations are skipped."""
    module = Module(identifier=identifier)
    lines = iter(text.splitlines())
    for raw in lines:
        line = _strip_comment(raw).strip()
        if not line.split() or line.split()[0] != "define":
            continue
        header = line
        while not header.endswith("{"):
            following = next(lines, None)
            if following is None:
                raise IRParseError("function header is not closed")
            header = f"{header} {_strip_comment(following).strip()}"
        function = _parse_header(header[:-1])
        function.blocks = _parse_body(lines, function.arguments)
        module.functions.append(function)
    return module