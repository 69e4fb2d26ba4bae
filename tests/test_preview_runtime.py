import json
import shutil
import subprocess
from pathlib import Path

import pytest

from wirecode.isolation import MESSAGE_TYPE, prepare

HARNESS = Path(__file__).resolve().parent / "js" / "preview_harness.js"
NODE = shutil.which("node")

pytestmark = pytest.mark.skipif(NODE is None, reason="node is not installed")


def _run_frame(code, *flags, generation=5):
    """Run the document's bootstrap under node and return what the frame did."""
    doc = prepare(code, generation=generation)
    proc = subprocess.run(
        [NODE, str(HARNESS), *flags],
        input=doc.html,
        capture_output=True,
        text=True,
        timeout=30,
    )
    assert proc.returncode == 0, proc.stderr
    lines = proc.stdout.strip().splitlines()
    assert lines, proc.stderr
    out = json.loads(lines[-1])
    assert "fatal" not in out
    return out


def test_empty_input_renders_placeholder_without_error():
    out = _run_frame("")
    assert out["messages"] == []
    assert len(out["renders"]) == 1
    assert "No code to preview" in out["renders"][0]


def test_const_app_with_default_export_renders():
    code = (
        "const App = () => {\n"
        "  const [n] = useState(1);\n"
        "  return React.createElement('h1', null, 'count ' + n);\n"
        "};\n"
        "export default App;\n"
    )
    out = _run_frame(code)
    assert out["messages"] == []
    assert out["renders"] == ["count 1"]


def test_first_uppercase_const_is_aliased():
    code = "const Bar = () => {\n  const [n] = useState(3);\n  return React.createElement('p', null, 'bar ' + n);\n};\n"
    out = _run_frame(code)
    assert out["messages"] == []
    assert out["renders"] == ["bar 3"]


def test_class_component_default_export_renders():
    code = (
        "import React from 'react';\n"
        "class Shop extends React.Component {\n"
        "  render() { return React.createElement('p', null, 'shop open'); }\n"
        "}\n"
        "export default Shop;\n"
    )
    out = _run_frame(code)
    assert out["messages"] == []
    assert out["renders"] == ["shop open"]


def test_render_throw_shows_panel_and_relays_once():
    code = "const App = () => {\n  useState(0);\n  throw new Error('kaboom');\n};\n"
    out = _run_frame(code, generation=9)
    assert out["messages"] == [{"type": MESSAGE_TYPE, "message": "kaboom", "generation": 9}]
    assert len(out["renders"]) == 1
    assert "Error rendering preview:" in out["renders"][0]
    assert "kaboom" in out["renders"][0]


def test_evaluation_throw_shows_panel_and_relays_once():
    code = "const App = () => null;\nuseState(0);\nthrow new Error('bad <input>');\n"
    out = _run_frame(code)
    assert out["messages"] == [{"type": MESSAGE_TYPE, "message": "bad <input>", "generation": 5}]
    assert out["renders"] == []
    assert 'class="preview-error"' in out["rootHTML"]
    assert "bad &lt;input&gt;" in out["rootHTML"]


def test_missing_component_is_reported():
    out = _run_frame("const App = 40 + useState(0).length;\n")
    assert len(out["messages"]) == 1
    assert out["messages"][0]["message"].startswith("No React component found in the code.")


def test_submit_is_captured_as_form_data():
    code = "const App = () => {\n  useState(0);\n  return React.createElement('form', null, 'signup');\n};\n"
    out = _run_frame(code, "--submit")
    assert out["submitPrevented"] is True
    assert out["submitStopped"] is True
    assert out["uiState"]["formData"] == {"email": "ada@example.com", "plan": "pro"}
    assert out["navigations"] == []
    assert out["messages"] == []


def test_navigation_primitives_are_neutralized():
    out = _run_frame("const App = () => { useState(0); return 'stay'; };\n", "--navigate")
    assert out["navigations"] == []
    assert out["renders"] == ["stay"]


def test_repeated_load_evaluates_once():
    out = _run_frame("const App = () => { useState(0); return 'once'; };\n", "--twice")
    assert out["renders"] == ["once"]
    assert out["messages"] == []
