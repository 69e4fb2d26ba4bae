from __future__ import annotations

import json
import re
import textwrap
from dataclasses import dataclass, field
from enum import Enum
from typing import List, Optional, Tuple

from wirecode.classifier import ClassifiedContent, ContentKind

ENTRY_NAME = "App"
DEFAULT_EXPORT_NAME = "__DefaultExport"


class EntryStrategy(str, Enum):
    PASSTHROUGH = "passthrough"
    DIRECT = "direct"
    DEFAULT_EXPORT = "default_export"
    DECLARATION = "declaration"
    WRAPPED = "wrapped"
    MARKUP = "markup"


@dataclass(frozen=True)
class ImportBinding:
    local: str
    imported: str  # "default", "*" or the exported name
    module: str


@dataclass(frozen=True)
class TransformedSource:
    kind: ContentKind
    code: str
    strategy: EntryStrategy
    entry_name: str = ENTRY_NAME
    alias_target: Optional[str] = None
    imports: Tuple[str, ...] = field(default_factory=tuple)
    bindings: Tuple[ImportBinding, ...] = field(default_factory=tuple)
    uses_router: bool = False


_IMPORT_START_RE = re.compile(r"^\s*import[\s{*'\"]")
_FROM_CLAUSE_RE = re.compile(r"\bfrom\s*['\"][^'\"]+['\"]")
_SIDE_EFFECT_IMPORT_RE = re.compile(r"^\s*import\s*['\"][^'\"]+['\"]\s*;?\s*$")
_IMPORT_STMT_RE = re.compile(
    r"^\s*import\s+(?P<clause>[\s\S]+?)\s*from\s*['\"](?P<module>[^'\"]+)['\"]"
)
_IDENT = r"[A-Za-z_$][\w$]*"

# Export forms, applied at statement boundaries (line start or after ";")
_EXPORT_DEFAULT_NAMED_FN_RE = re.compile(
    rf"(?m)(^|;)([ \t]*)export\s+default\s+((?:async\s+)?function\s*\*?\s*({_IDENT})\s*\()"
)
_EXPORT_DEFAULT_NAMED_CLASS_RE = re.compile(rf"(?m)(^|;)([ \t]*)export\s+default\s+(class\s+({_IDENT})\b)")
_EXPORT_DEFAULT_IDENT_RE = re.compile(rf"(?m)(^|;)[ \t]*export\s+default\s+({_IDENT})[ \t]*;?[ \t]*$")
_EXPORT_DEFAULT_EXPR_RE = re.compile(r"(?m)(^|;)([ \t]*)export\s+default\s+")
_EXPORT_LIST_RE = re.compile(r"(?m)(^|;)[ \t]*export\s*\{([^}]*)\}\s*;?[ \t]*$")
_EXPORT_DECL_RE = re.compile(r"(?m)(^|;)([ \t]*)export\s+(?=(?:const|let|var|function|class|async)\b)")

_ENTRY_DECL_RE = re.compile(
    rf"(?m)(?:^|;[ \t]*)(?:async\s+)?(?:const|let|var|function\s*\*?|class)\s+{ENTRY_NAME}(?![\w$])"
)
_COMPONENT_DECL_RE = re.compile(
    r"(?m)(?:^|;[ \t]*)(?:async\s+)?(?:const|let|var|function\s*\*?|class)\s+([A-Z][\w$]*)"
)
_NOT_AN_EXPRESSION_START = {"function", "class", "async"}

ROUTER_TOKENS = (
    "useNavigate",
    "useParams",
    "useLocation",
    "<Link",
    "<NavLink",
    "<Route",
    "BrowserRouter",
    "HashRouter",
    "MemoryRouter",
    "RouterProvider",
)


def split_imports(source: str) -> Tuple[List[str], List[str]]:
    """Separate import statements from the rest of the source.

    Returns (import_statements, body_lines). Multi-line import clauses are
    joined into one statement; an unterminated clause is left in the body.
    """
    imports: List[str] = []
    body: List[str] = []
    lines = source.split("\n")
    i = 0
    while i < len(lines):
        line = lines[i]
        if not _IMPORT_START_RE.match(line):
            body.append(line)
            i += 1
            continue
        if _SIDE_EFFECT_IMPORT_RE.match(line) or _FROM_CLAUSE_RE.search(line):
            imports.append(line.strip())
            i += 1
            continue
        j = i + 1
        while j < len(lines) and not _FROM_CLAUSE_RE.search(lines[j]):
            j += 1
        if j >= len(lines):
            body.append(line)
            i += 1
            continue
        imports.append(" ".join(part.strip() for part in lines[i : j + 1]))
        i = j + 1
    return imports, body


def parse_import_bindings(statement: str) -> List[ImportBinding]:
    m = _IMPORT_STMT_RE.match(statement)
    if not m:
        return []
    module = m.group("module")
    clause = m.group("clause").strip()
    if clause.startswith("type "):
        return []
    bindings: List[ImportBinding] = []
    named = ""
    brace = clause.find("{")
    if brace != -1:
        named = clause[brace + 1 : clause.rfind("}")]
        clause = clause[:brace]
    for part in (p.strip() for p in clause.split(",")):
        if not part:
            continue
        if part.startswith("*"):
            local = part.split(" as ", 1)[-1].strip()
            bindings.append(ImportBinding(local, "*", module))
        else:
            bindings.append(ImportBinding(part, "default", module))
    for part in (p.strip() for p in named.split(",")):
        if not part or part.startswith("type "):
            continue
        if " as " in part:
            imported, local = (s.strip() for s in part.split(" as ", 1))
        else:
            imported = local = part
        bindings.append(ImportBinding(local, imported, module))
    return bindings


def strip_exports(body: str) -> Tuple[str, Optional[str]]:
    """Remove module export syntax; return (code, default_exported_identifier)."""
    default_ident: Optional[str] = None

    m = _EXPORT_DEFAULT_NAMED_FN_RE.search(body) or _EXPORT_DEFAULT_NAMED_CLASS_RE.search(body)
    if m:
        default_ident = m.group(4)
        body = body[: m.start()] + m.group(1) + m.group(2) + m.group(3) + body[m.end() :]

    def _drop_ident(match: "re.Match[str]") -> str:
        nonlocal default_ident
        name = match.group(2)
        if name in _NOT_AN_EXPRESSION_START:
            return match.group(0)
        default_ident = default_ident or name
        return match.group(1)

    body = _EXPORT_DEFAULT_IDENT_RE.sub(_drop_ident, body)

    def _drop_list(match: "re.Match[str]") -> str:
        nonlocal default_ident
        for item in match.group(2).split(","):
            parts = item.strip().split(" as ")
            if len(parts) == 2 and parts[1].strip() == "default":
                default_ident = default_ident or parts[0].strip()
        return match.group(1)

    body = _EXPORT_LIST_RE.sub(_drop_list, body)

    if _EXPORT_DEFAULT_EXPR_RE.search(body):
        body = _EXPORT_DEFAULT_EXPR_RE.sub(rf"\1\2const {DEFAULT_EXPORT_NAME} = ", body, count=1)
        default_ident = default_ident or DEFAULT_EXPORT_NAME

    body = _EXPORT_DECL_RE.sub(r"\1\2", body)
    return body, default_ident


def has_entry_binding(code: str) -> bool:
    return bool(_ENTRY_DECL_RE.search(code))


def find_component_declaration(code: str) -> Optional[str]:
    """First top-level uppercase declaration that is not an ALL_CAPS constant."""
    for m in _COMPONENT_DECL_RE.finditer(code):
        name = m.group(1)
        if len(name) > 1 and name.upper() == name:
            continue
        return name
    return None


def uses_router(code: str) -> bool:
    return any(token in code for token in ROUTER_TOKENS)


def _wrap_body(body: str) -> str:
    inner = textwrap.indent(body.strip(), "      ")
    return (
        f"const {ENTRY_NAME} = () => {{\n"
        "  return (\n"
        '    <div className="container mx-auto p-4">\n'
        f"{inner}\n"
        "    </div>\n"
        "  );\n"
        "};\n"
    )


def _wrap_markup(markup: str) -> str:
    return (
        f"const {ENTRY_NAME} = () => (\n"
        f'  <div className="container mx-auto p-4" dangerouslySetInnerHTML={{{{ __html: {json.dumps(markup)} }}}} />\n'
        ");\n"
    )


def transform(classified: ClassifiedContent) -> TransformedSource:
    """Normalize classified source so exactly one `App` binding exists.

    Raw HTML documents pass through untouched. Everything else has its
    imports hoisted out (recorded as bindings for the preview runtime),
    its exports stripped, and an `App` alias added when needed.
    """
    kind = classified.kind
    if kind is ContentKind.RAW_HTML:
        return TransformedSource(kind, classified.source, EntryStrategy.PASSTHROUGH)

    if kind is ContentKind.MARKUP_FALLBACK:
        return TransformedSource(kind, _wrap_markup(classified.source), EntryStrategy.MARKUP)

    imports, body_lines = split_imports(classified.source)
    bindings: List[ImportBinding] = []
    for stmt in imports:
        bindings.extend(parse_import_bindings(stmt))

    body = textwrap.dedent("\n".join(body_lines)).strip("\n")
    body, default_ident = strip_exports(body)

    alias: Optional[str] = None
    if has_entry_binding(body):
        strategy = EntryStrategy.DIRECT
        code = body
    elif default_ident and default_ident != ENTRY_NAME:
        strategy = EntryStrategy.DEFAULT_EXPORT
        alias = default_ident
    else:
        alias = find_component_declaration(body)
        strategy = EntryStrategy.DECLARATION if alias else EntryStrategy.WRAPPED

    if alias:
        code = f"{body.rstrip()}\n\nconst {ENTRY_NAME} = {alias};\n"
    elif strategy is EntryStrategy.WRAPPED:
        code = _wrap_body(body)

    return TransformedSource(
        kind=kind,
        code=code,
        strategy=strategy,
        alias_target=alias,
        imports=tuple(imports),
        bindings=tuple(bindings),
        uses_router=uses_router(code),
    )
