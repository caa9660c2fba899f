"""Lightweight structural view of a source file.

JavaScript/TypeScript sources are read through a comment-stripped text view
(positions preserved) with regular expressions; Python sources go through
``ast``. Either way the result is a :class:`StructuralView`: import records,
call sites, array literals and object properties, which is all the graph
builder and the dynamic-usage rules need. Nothing is executed or type checked.
"""

from __future__ import annotations

import ast
import bisect
import re
from dataclasses import dataclass, field

JS_EXTS = (".ts", ".tsx", ".js", ".jsx", ".mjs", ".cjs", ".mts", ".cts")
PY_EXTS = (".py",)

IDENT = r"[A-Za-z_$][\w$]*"
_IDENT_RE = re.compile(rf"^{IDENT}$")
_NOT_MEMBER = r"(?<![\w$.])"

# default, namespace, named braces, or default plus one of the latter; a
# clause never spans past its closing brace into the next statement
_CLAUSE = (
    r"(?:" + IDENT + r"\s*,\s*)?(?:\{[^{}]*\}|\*(?:\s*as\s+" + IDENT + r")?)|" + IDENT
)
_IMPORT_FROM = re.compile(
    _NOT_MEMBER + r"import\s+(type\s+)?(" + _CLAUSE + r")\s*from\s*(['\"])([^'\"\n]+)\3"
)
_IMPORT_BARE = re.compile(_NOT_MEMBER + r"import\s*(['\"])([^'\"\n]+)\1")
_EXPORT_FROM = re.compile(
    _NOT_MEMBER + r"export\s+(type\s+)?(" + _CLAUSE + r")\s*from\s*(['\"])([^'\"\n]+)\3"
)
_REQUIRE = re.compile(_NOT_MEMBER + r"require\s*\(")
_DYNAMIC_IMPORT = re.compile(_NOT_MEMBER + r"import\s*\(")
_CALL = re.compile(rf"(?<![\w$])({IDENT})\s*\(")
_ARRAY_OPEN = re.compile(r"\[")
_PROPERTY = re.compile(rf"{_NOT_MEMBER}({IDENT})\s*:\s*({IDENT})\s*(?=[,}}\n])")
_OWNED_OBJECT = re.compile(rf"(?:({IDENT})\s*:\s*|({IDENT})\s*\(\s*)\{{")
_ASSIGNED_BINDING = re.compile(rf"(?:const|let|var)\s+({IDENT}|\{{[^}}]*\}})\s*=\s*(?:await\s+)?$")
_STRING_LITERAL = re.compile(r"^(['\"])([^'\"\n]*)\1$|^`([^`$]*)`$")

_KEYWORDS = frozenset(
    {
        "if", "for", "while", "switch", "catch", "function", "return", "typeof",
        "new", "await", "yield", "super", "import", "require", "export", "do",
        "else", "in", "of", "void", "delete", "instanceof", "case", "with",
    }
)


class ImportStyle:
    IMPORT = "import"
    EXPORT = "export"
    REQUIRE = "require"
    DYNAMIC = "dynamic-import"


@dataclass(frozen=True)
class ImportRecord:
    """One dependency-bearing construct.

    ``specifier`` is ``None`` when the target is computed at runtime. Python
    records carry the parsed ``module``/``level``/``name`` triple as well as
    a display specifier.
    """

    specifier: str | None
    style: str
    line: int
    column: int
    type_only: bool = False
    names: tuple[str, ...] = ()
    text: str = ""
    module: str | None = None
    level: int = 0
    name: str | None = None

    @property
    def computed(self) -> bool:
        return self.specifier is None


@dataclass(frozen=True)
class CallSite:
    callee: str
    args: tuple[str, ...]
    line: int


@dataclass(frozen=True)
class ArrayLiteral:
    owner: str | None
    items: tuple[str, ...]
    line: int


@dataclass(frozen=True)
class PropertyValue:
    owner: str | None
    key: str
    value: str
    line: int
    shorthand: bool = False


@dataclass
class StructuralView:
    language: str
    imports: list[ImportRecord] = field(default_factory=list)
    calls: list[CallSite] = field(default_factory=list)
    arrays: list[ArrayLiteral] = field(default_factory=list)
    properties: list[PropertyValue] = field(default_factory=list)
    parse_error: str | None = None

    def imported_names(self) -> list[str]:
        out: list[str] = []
        for rec in self.imports:
            if rec.type_only:
                continue
            for name in rec.names:
                if name not in out:
                    out.append(name)
        return out


def language_for(rel_path: str) -> str | None:
    lower = rel_path.lower()
    if lower.endswith(JS_EXTS):
        return "js"
    if lower.endswith(PY_EXTS):
        return "python"
    return None


def extract(rel_path: str, source: str) -> StructuralView:
    lang = language_for(rel_path)
    if lang == "python":
        return extract_python(source)
    if lang == "js":
        return extract_js(source)
    return StructuralView(language="unknown")


# --- JavaScript / TypeScript -------------------------------------------------


@dataclass
class _Text:
    """Source with comments blanked, plus the spans covered by string literals."""

    code: str
    masked: str
    line_starts: list[int]
    string_starts: list[int]
    string_ends: list[int]

    def position(self, offset: int) -> tuple[int, int]:
        idx = bisect.bisect_right(self.line_starts, offset) - 1
        return idx + 1, offset - self.line_starts[idx] + 1

    def in_string(self, offset: int) -> bool:
        idx = bisect.bisect_right(self.string_starts, offset) - 1
        return idx >= 0 and offset < self.string_ends[idx]


def _blank(chunk: str) -> str:
    return "".join("\n" if ch == "\n" else " " for ch in chunk)


def prepare_js(source: str) -> _Text:
    """Blank comments (keeping offsets) and record string literal spans.

    ``masked`` additionally blanks string interiors, so bracket matching over
    it is not thrown off by quotes or brackets inside literals.
    """
    code: list[str] = []
    masked: list[str] = []
    starts: list[int] = []
    ends: list[int] = []
    i = 0
    n = len(source)
    while i < n:
        ch = source[i]
        nxt = source[i + 1] if i + 1 < n else ""
        if ch == "/" and nxt == "/":
            j = source.find("\n", i)
            j = n if j == -1 else j
            blank = _blank(source[i:j])
            code.append(blank)
            masked.append(blank)
            i = j
        elif ch == "/" and nxt == "*":
            j = source.find("*/", i + 2)
            j = n if j == -1 else j + 2
            blank = _blank(source[i:j])
            code.append(blank)
            masked.append(blank)
            i = j
        elif ch in "'\"`":
            j = i + 1
            while j < n and source[j] != ch:
                if source[j] == "\\":
                    j += 1
                elif source[j] == "\n" and ch != "`":
                    break
                j += 1
            j = min(j + 1, n)
            starts.append(i + 1)
            ends.append(j - 1)
            code.append(source[i:j])
            masked.append(ch + _blank(source[i + 1 : j - 1]) + (source[j - 1] if j - 1 > i else ""))
            i = j
        else:
            code.append(ch)
            masked.append(ch)
            i += 1
    text = "".join(code)
    line_starts = [0] + [m.end() for m in re.finditer(r"\n", text)]
    return _Text(text, "".join(masked), line_starts, starts, ends)


def _matching(text: str, open_at: int, opener: str, closer: str) -> int:
    depth = 0
    for i in range(open_at, len(text)):
        c = text[i]
        if c == opener:
            depth += 1
        elif c == closer:
            depth -= 1
            if depth == 0:
                return i
    return -1


def _split_top_level(body: str) -> list[str]:
    parts: list[str] = []
    depth = 0
    current: list[str] = []
    for ch in body:
        if ch in "([{":
            depth += 1
        elif ch in ")]}":
            depth -= 1
        if ch == "," and depth == 0:
            parts.append("".join(current))
            current = []
            continue
        current.append(ch)
    parts.append("".join(current))
    return [p.strip() for p in parts]


def _identifier_or_blank(arg: str) -> str:
    arg = arg.strip()
    if arg.startswith("..."):
        arg = arg[3:].strip()
    return arg if _IDENT_RE.match(arg) else ""


def _clause_names(clause: str) -> tuple[tuple[str, ...], bool]:
    """Local bindings of an import clause and whether every binding is type-only."""
    names: list[str] = []
    all_type = True
    seen = 0
    clause = clause.strip()
    brace = re.search(r"\{([^}]*)\}", clause)
    outside = re.sub(r"\{[^}]*\}", " ", clause)
    for part in (p.strip() for p in outside.split(",")):
        if not part:
            continue
        seen += 1
        all_type = False
        ns = re.match(rf"\*\s*as\s+({IDENT})$", part)
        if ns:
            names.append(ns.group(1))
        elif _IDENT_RE.match(part):
            names.append(part)
    if brace:
        for spec in (s.strip() for s in brace.group(1).split(",")):
            if not spec:
                continue
            seen += 1
            is_type = spec.startswith("type ")
            if is_type:
                spec = spec[5:].strip()
            else:
                all_type = False
            local = re.split(r"\s+as\s+", spec)[-1].strip()
            if _IDENT_RE.match(local) and not is_type:
                names.append(local)
    return tuple(names), all_type and seen > 0


def _call_argument(text: _Text, paren_at: int) -> tuple[str | None, int]:
    """Literal specifier of ``require(...)``/``import(...)`` and the call end."""
    close = _matching(text.masked, paren_at, "(", ")")
    if close == -1:
        return None, len(text.code)
    first_masked = _split_top_level(text.masked[paren_at + 1 : close])[0]
    start = text.masked.index(first_masked, paren_at + 1) if first_masked else paren_at + 1
    first = text.code[start : start + len(first_masked)]
    m = _STRING_LITERAL.match(first)
    if not m:
        return None, close
    return (m.group(2) if m.group(1) else m.group(3)), close


def _binding_before(text: _Text, offset: int) -> tuple[str, ...]:
    line_start = text.line_starts[text.position(offset)[0] - 1]
    m = _ASSIGNED_BINDING.search(text.code[line_start:offset])
    if not m:
        return ()
    target = m.group(1)
    if target.startswith("{"):
        names = [re.split(r"\s*:\s*", p.strip())[-1] for p in target[1:-1].split(",")]
        return tuple(n for n in names if _IDENT_RE.match(n))
    return (target,)


def _js_imports(text: _Text) -> list[ImportRecord]:
    records: list[tuple[int, ImportRecord]] = []
    taken: set[int] = set()

    def add(offset: int, rec: ImportRecord) -> None:
        taken.add(offset)
        records.append((offset, rec))

    for rx, style in ((_IMPORT_FROM, ImportStyle.IMPORT), (_EXPORT_FROM, ImportStyle.EXPORT)):
        for m in rx.finditer(text.code):
            if text.in_string(m.start()):
                continue
            names, inline_type = _clause_names(m.group(2))
            line, col = text.position(m.start())
            add(
                m.start(),
                ImportRecord(
                    specifier=m.group(4),
                    style=style,
                    line=line,
                    column=col,
                    type_only=bool(m.group(1)) or inline_type,
                    names=names if style == ImportStyle.IMPORT else (),
                    text=m.group(0),
                ),
            )

    for m in _IMPORT_BARE.finditer(text.code):
        if m.start() in taken or text.in_string(m.start()):
            continue
        line, col = text.position(m.start())
        add(m.start(), ImportRecord(m.group(2), ImportStyle.IMPORT, line, col, text=m.group(0)))

    for rx, style in ((_REQUIRE, ImportStyle.REQUIRE), (_DYNAMIC_IMPORT, ImportStyle.DYNAMIC)):
        for m in rx.finditer(text.code):
            if text.in_string(m.start()):
                continue
            specifier, end = _call_argument(text, m.end() - 1)
            line, col = text.position(m.start())
            add(
                m.start(),
                ImportRecord(
                    specifier=specifier,
                    style=style,
                    line=line,
                    column=col,
                    names=_binding_before(text, m.start()),
                    text=text.code[m.start() : end + 1],
                ),
            )

    records.sort(key=lambda item: item[0])
    return [rec for _, rec in records]


def _js_calls(text: _Text) -> list[CallSite]:
    out: list[CallSite] = []
    for m in _CALL.finditer(text.masked):
        callee = m.group(1)
        if callee in _KEYWORDS:
            continue
        close = _matching(text.masked, m.end() - 1, "(", ")")
        if close == -1:
            continue
        body = text.masked[m.end() : close]
        args = tuple(_identifier_or_blank(a) for a in _split_top_level(body)) if body.strip() else ()
        out.append(CallSite(callee, args, text.position(m.start())[0]))
    return out


def _js_arrays(text: _Text) -> list[ArrayLiteral]:
    out: list[ArrayLiteral] = []
    src = text.masked
    for m in _ARRAY_OPEN.finditer(src):
        before = src[max(0, m.start() - 80) : m.start()].rstrip()
        if before and (before[-1] in ")]" or re.search(r"[\w$]$", before)):
            # element access, not a literal
            if not re.search(r"(?<![\w$])(?:return|in|of|case|typeof|await|yield)$", before):
                continue
        close = _matching(src, m.start(), "[", "]")
        if close == -1:
            continue
        owner_m = re.search(rf"({IDENT})\s*[:=]$", before)
        items = tuple(i for i in (_identifier_or_blank(p) for p in _split_top_level(src[m.start() + 1 : close])) if i)
        out.append(ArrayLiteral(owner_m.group(1) if owner_m else None, items, text.position(m.start())[0]))
    return out


def _js_properties(text: _Text) -> list[PropertyValue]:
    out: list[PropertyValue] = []
    src = text.masked
    for m in _PROPERTY.finditer(src):
        out.append(PropertyValue(None, m.group(1), m.group(2), text.position(m.start())[0]))
    for m in _OWNED_OBJECT.finditer(src):
        owner = m.group(1) or m.group(2)
        brace_at = m.end() - 1
        close = _matching(src, brace_at, "{", "}")
        if close == -1:
            continue
        line = text.position(m.start())[0]
        for entry in _split_top_level(src[brace_at + 1 : close]):
            if _IDENT_RE.match(entry):
                out.append(PropertyValue(owner, entry, entry, line, shorthand=True))
                continue
            kv = re.match(rf"^({IDENT})\s*:\s*({IDENT})$", entry)
            if kv:
                out.append(PropertyValue(owner, kv.group(1), kv.group(2), line))
    return out


def extract_js(source: str) -> StructuralView:
    text = prepare_js(source)
    return StructuralView(
        language="js",
        imports=_js_imports(text),
        calls=_js_calls(text),
        arrays=_js_arrays(text),
        properties=_js_properties(text),
    )


# --- Python ------------------------------------------------------------------


def _is_type_checking_test(node: ast.expr) -> bool:
    if isinstance(node, ast.Name):
        return node.id == "TYPE_CHECKING"
    if isinstance(node, ast.Attribute):
        return node.attr == "TYPE_CHECKING"
    return False


def _type_checking_nodes(tree: ast.AST) -> set[int]:
    guarded: set[int] = set()
    for node in ast.walk(tree):
        if isinstance(node, ast.If) and _is_type_checking_test(node.test):
            for stmt in node.body:
                for inner in ast.walk(stmt):
                    guarded.add(id(inner))
    return guarded


def _callee_name(func: ast.expr) -> str | None:
    if isinstance(func, ast.Name):
        return func.id
    if isinstance(func, ast.Attribute):
        return func.attr
    return None


def _py_arg(node: ast.expr) -> str:
    if isinstance(node, ast.Starred):
        node = node.value
    return node.id if isinstance(node, ast.Name) else ""


def extract_python(source: str) -> StructuralView:
    view = StructuralView(language="python")
    try:
        tree = ast.parse(source)
    except (SyntaxError, ValueError, RecursionError, MemoryError) as exc:
        view.parse_error = str(exc) or type(exc).__name__
        return view
    guarded = _type_checking_nodes(tree)
    owners: dict[int, str] = {}

    for node in ast.walk(tree):
        if isinstance(node, ast.Assign) and len(node.targets) == 1 and isinstance(node.targets[0], ast.Name):
            owners[id(node.value)] = node.targets[0].id
        elif isinstance(node, ast.keyword) and node.arg:
            owners[id(node.value)] = node.arg

    for node in ast.walk(tree):
        type_only = id(node) in guarded
        if isinstance(node, ast.Import):
            for alias in node.names:
                local = alias.asname or alias.name.split(".")[0]
                view.imports.append(
                    ImportRecord(
                        specifier=alias.name,
                        style=ImportStyle.IMPORT,
                        line=node.lineno,
                        column=node.col_offset + 1,
                        type_only=type_only,
                        names=(local,),
                        module=alias.name,
                    )
                )
        elif isinstance(node, ast.ImportFrom):
            level = int(node.level or 0)
            for alias in node.names:
                spec = "." * level + (f"{node.module}." if node.module else "") + alias.name
                view.imports.append(
                    ImportRecord(
                        specifier=spec,
                        style=ImportStyle.IMPORT,
                        line=node.lineno,
                        column=node.col_offset + 1,
                        type_only=type_only,
                        names=() if alias.name == "*" else (alias.asname or alias.name,),
                        module=node.module,
                        level=level,
                        name=alias.name,
                    )
                )
        elif isinstance(node, ast.Call):
            callee = _callee_name(node.func)
            if callee in {"import_module", "__import__"}:
                arg = node.args[0] if node.args else None
                literal = arg.value if isinstance(arg, ast.Constant) and isinstance(arg.value, str) else None
                view.imports.append(
                    ImportRecord(
                        specifier=literal,
                        style=ImportStyle.DYNAMIC,
                        line=node.lineno,
                        column=node.col_offset + 1,
                        module=literal,
                    )
                )
            if callee:
                view.calls.append(CallSite(callee, tuple(_py_arg(a) for a in node.args), node.lineno))
        elif isinstance(node, (ast.List, ast.Tuple, ast.Set)):
            items = tuple(i for i in (_py_arg(e) for e in node.elts) if i)
            view.arrays.append(ArrayLiteral(owners.get(id(node)), items, node.lineno))
        elif isinstance(node, ast.Dict):
            owner = owners.get(id(node))
            for key, value in zip(node.keys, node.values):
                if isinstance(key, ast.Constant) and isinstance(key.value, str) and isinstance(value, ast.Name):
                    view.properties.append(PropertyValue(owner, key.value, value.id, node.lineno))
    view.imports.sort(key=lambda r: (r.line, r.column))
    return view
