import json
import re

from wirecode.classifier import ContentKind, classify
from wirecode.transformer import (
    DEFAULT_EXPORT_NAME,
    ENTRY_NAME,
    EntryStrategy,
    ImportBinding,
    parse_import_bindings,
    split_imports,
    strip_exports,
    transform,
)


def _run(code, language=None):
    return transform(classify(code, language))


def _entry_bindings(code):
    return re.findall(r"(?m)(?:^|;\s*)(?:const|let|var|function|class)\s+App(?![\w$])", code)


def test_default_exported_function_gets_alias():
    src = """import React, { useState } from 'react';

export default function Counter() {
  const [n, setN] = useState(0);
  return <button onClick={() => setN(n + 1)}>{n}</button>;
}
"""
    out = _run(src)
    assert out.kind is ContentKind.REACT_COMPONENT
    assert out.strategy is EntryStrategy.DEFAULT_EXPORT
    assert out.alias_target == "Counter"
    assert "import" not in out.code
    assert "export" not in out.code
    assert "function Counter()" in out.code
    assert out.code.rstrip().endswith("const App = Counter;")
    assert out.bindings == (
        ImportBinding("React", "default", "react"),
        ImportBinding("useState", "useState", "react"),
    )
    assert out.imports == ("import React, { useState } from 'react';",)


def test_existing_app_is_used_directly():
    src = 'const App = () => <div className="x">Hi</div>;\nexport default App;\n'
    out = _run(src)
    assert out.strategy is EntryStrategy.DIRECT
    assert out.alias_target is None
    assert "export" not in out.code
    assert len(_entry_bindings(out.code)) == 1


def test_export_default_app_function_is_direct():
    out = _run("export default function App() { return <Main />; }")
    assert out.strategy is EntryStrategy.DIRECT
    assert out.code.startswith("function App()")


def test_first_uppercase_declaration_is_aliased():
    src = "const API_URL = '/x';\nconst Header = () => <h1 className=\"t\">Hi</h1>;\nconst Footer = () => null;\n"
    out = _run(src)
    assert out.strategy is EntryStrategy.DECLARATION
    assert out.alias_target == "Header"
    assert out.code.rstrip().endswith("const App = Header;")
    assert len(_entry_bindings(out.code)) == 1


def test_anonymous_default_export_is_bound():
    out = _run('export default () => <div className="a" />;')
    assert out.strategy is EntryStrategy.DEFAULT_EXPORT
    assert out.alias_target == DEFAULT_EXPORT_NAME
    assert f"const {DEFAULT_EXPORT_NAME} = () =>" in out.code
    assert out.code.rstrip().endswith(f"const App = {DEFAULT_EXPORT_NAME};")


def test_default_export_expression_is_bound():
    src = "const Card = () => <div className=\"c\" />;\nexport default React.memo(Card);\n"
    out = _run(src)
    assert out.strategy is EntryStrategy.DEFAULT_EXPORT
    assert f"const {DEFAULT_EXPORT_NAME} = React.memo(Card);" in out.code


def test_export_list_with_default_alias():
    src = "function Card() { return <div className=\"c\" />; }\nexport { Card as default };\n"
    out = _run(src)
    assert out.strategy is EntryStrategy.DEFAULT_EXPORT
    assert out.alias_target == "Card"
    assert "export" not in out.code


def test_named_exports_lose_keyword():
    out = _run('export const Button = () => <button className="b">x</button>;')
    assert out.code.startswith("const Button")
    assert out.strategy is EntryStrategy.DECLARATION


def test_bare_markup_is_wrapped():
    out = _run('<div className="hero">Hello</div>')
    assert out.strategy is EntryStrategy.WRAPPED
    assert out.code.startswith(f"const {ENTRY_NAME} = () => {{")
    assert '<div className="container mx-auto p-4">' in out.code
    assert '<div className="hero">Hello</div>' in out.code
    assert len(_entry_bindings(out.code)) == 1


def test_markup_fallback_is_injected_as_markup():
    out = _run("<section><p>Plain</p></section>")
    assert out.kind is ContentKind.MARKUP_FALLBACK
    assert out.strategy is EntryStrategy.MARKUP
    assert "dangerouslySetInnerHTML" in out.code
    assert json.dumps("<section><p>Plain</p></section>") in out.code


def test_raw_html_passes_through_unchanged():
    doc = "<!doctype html><html><body><script>alert(1)</script></body></html>"
    out = _run(doc)
    assert out.strategy is EntryStrategy.PASSTHROUGH
    assert out.code == doc


def test_placeholder_transforms_directly():
    out = _run("")
    assert out.kind is ContentKind.EMPTY_PLACEHOLDER
    assert out.strategy is EntryStrategy.DIRECT
    assert "No code to preview" in out.code


def test_router_usage_is_detected():
    src = """import { Link, useNavigate } from 'react-router-dom';
export default function Nav() {
  const navigate = useNavigate();
  return <Link to="/a">A</Link>;
}
"""
    out = _run(src)
    assert out.uses_router is True
    plain = _run("const App = () => <Box />;")
    assert plain.uses_router is False


def test_split_imports_handles_multiline_and_side_effects():
    src = "import {\n  useState,\n  useEffect as useEff,\n} from 'react';\nimport './styles.css';\nconst App = () => <X />;"
    imports, body = split_imports(src)
    assert imports == ["import { useState, useEffect as useEff, } from 'react';", "import './styles.css';"]
    assert body == ["const App = () => <X />;"]
    bindings = parse_import_bindings(imports[0])
    assert bindings == [
        ImportBinding("useState", "useState", "react"),
        ImportBinding("useEff", "useEffect", "react"),
    ]
    assert parse_import_bindings(imports[1]) == []


def test_namespace_and_type_imports():
    assert parse_import_bindings("import * as Icons from 'lucide-react';") == [
        ImportBinding("Icons", "*", "lucide-react")
    ]
    assert parse_import_bindings("import type { Props } from './types';") == []


def test_unterminated_import_stays_in_body():
    imports, body = split_imports("import {\n  a,\n  b")
    assert imports == []
    assert body[0] == "import {"


def test_strip_exports_reports_default_identifier():
    code, default = strip_exports("class Shop extends React.Component {}\nexport default Shop;")
    assert default == "Shop"
    assert "export" not in code
