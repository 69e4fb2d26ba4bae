from __future__ import annotations
import base64
import json
import logging
import os
import re
from dataclasses import dataclass
from pathlib import Path
from typing import Any, Dict, List, Optional, Tuple

import jsonschema
import requests

log = logging.getLogger(__name__)

GEMINI_API_KEY = os.getenv("GEMINI_API_KEY", "").strip()
GEMINI_MODEL = os.getenv("GEMINI_MODEL", "gemini-2.0-flash").strip()
_ENV_GEMINI_API_KEY = GEMINI_API_KEY
GEMINI_ENDPOINT_TEMPLATE = "https://generativelanguage.googleapis.com/v1beta/models/{model}:generateContent"

OPENROUTER_API_KEY = os.getenv("OPENROUTER_API_KEY", "").strip()
OPENROUTER_MODEL = os.getenv("OPENROUTER_MODEL", "meta-llama/llama-3.2-11b-vision-instruct").strip()
_ENV_OPENROUTER_API_KEY = OPENROUTER_API_KEY
OPENROUTER_ENDPOINT = "https://openrouter.ai/api/v1/chat/completions"

# Short model ids offered in the UI
OPENROUTER_MODEL_ALIASES = {
    "llava": "liuhaotian/llava-yi-34b",
    "llama": "meta-llama/llama-3.2-11b-vision-instruct",
}
GEMINI_MODEL_IDS = {"gemini", "google"}

try:
    LLM_TIMEOUT_SECS = int(os.getenv("LLM_TIMEOUT_SECS", "75"))
except Exception:
    LLM_TIMEOUT_SECS = 75
try:
    TEMPERATURE = float(os.getenv("TEMPERATURE", "0.1"))
except Exception:
    TEMPERATURE = 0.1
try:
    LLM_MAX_TOKENS = int(os.getenv("LLM_MAX_TOKENS", "32000"))
except Exception:
    LLM_MAX_TOKENS = 32000
try:
    IMAGE_FETCH_TIMEOUT_SECS = int(os.getenv("IMAGE_FETCH_TIMEOUT_SECS", "20"))
except Exception:
    IMAGE_FETCH_TIMEOUT_SECS = 20


def _testing_stub_enabled() -> bool:
    """Return True when pytest is running and keys match the values read at import."""
    if not os.getenv("PYTEST_CURRENT_TEST"):
        return False
    if os.getenv("RUN_LIVE_LLM_TESTS", "0").lower() in {"1", "true", "yes", "on"}:
        return False
    if GEMINI_API_KEY != _ENV_GEMINI_API_KEY:
        return False
    if OPENROUTER_API_KEY != _ENV_OPENROUTER_API_KEY:
        return False
    return True


_SCHEMA_PATH = Path(__file__).resolve().parent / "schemas" / "analysis_schema.json"


class GenerationError(Exception):
    """Raised when code generation or image analysis cannot produce a result."""


@dataclass(frozen=True)
class ImagePayload:
    mime_type: str
    data: str  # base64

    @property
    def data_url(self) -> str:
        return f"data:{self.mime_type};base64,{self.data}"


@dataclass(frozen=True)
class GeneratedCode:
    code: str
    language: str  # "html" or "react"
    provider: str
    model: Optional[str] = None

    def as_dict(self) -> Dict[str, Any]:
        return {"code": self.code, "language": self.language, "provider": self.provider, "model": self.model}


def status() -> Dict[str, Any]:
    if _testing_stub_enabled():
        return {"provider": None, "model": None, "has_token": False, "using": "stub", "testing": True}
    if GEMINI_API_KEY:
        return {
            "provider": "gemini",
            "model": GEMINI_MODEL,
            "has_token": True,
            "using": "gemini",
            "fallback": "openrouter" if OPENROUTER_API_KEY else None,
        }
    if OPENROUTER_API_KEY:
        return {"provider": "openrouter", "model": OPENROUTER_MODEL, "has_token": True, "using": "openrouter", "fallback": None}
    return {"provider": None, "model": None, "has_token": False, "using": "stub"}


def probe() -> Dict[str, Any]:
    if _testing_stub_enabled():
        return {"ok": False, "using": "stub", "testing": True}
    if GEMINI_API_KEY:
        return {"ok": True, "using": "gemini"}
    if OPENROUTER_API_KEY:
        return {"ok": True, "using": "openrouter"}
    return {"ok": False, "using": "stub"}


# --- image input -------------------------------------------------------------

_DATA_URL_RE = re.compile(r"^data:(?P<mime>[\w.+-]+/[\w.+-]+)?(?P<params>(?:;[^,;]*)*),(?P<data>.*)$", re.DOTALL)


def load_image(image_ref: str) -> ImagePayload:
    """Turn a data URL or an http(s) URL into base64 image content."""
    ref = (image_ref or "").strip()
    if not ref:
        raise GenerationError("Invalid image URL")
    if ref.startswith("data:"):
        m = _DATA_URL_RE.match(ref)
        if not m:
            raise GenerationError("Invalid image data URL")
        data = m.group("data")
        if ";base64" not in (m.group("params") or ""):
            data = base64.b64encode(data.encode("utf-8")).decode("ascii")
        return ImagePayload(m.group("mime") or "image/jpeg", data)
    if ref.startswith(("http://", "https://")):
        try:
            resp = requests.get(ref, timeout=IMAGE_FETCH_TIMEOUT_SECS)
        except Exception as e:
            raise GenerationError(f"Could not fetch image: {e}") from e
        if resp.status_code != 200:
            raise GenerationError(f"Could not fetch image: HTTP {resp.status_code}")
        mime = (resp.headers.get("Content-Type") or "image/jpeg").split(";")[0].strip() or "image/jpeg"
        return ImagePayload(mime, base64.b64encode(resp.content).decode("ascii"))
    raise GenerationError("Unsupported image reference; expected a data URL or an http(s) URL")


# --- output format and prompts -----------------------------------------------

_HTML_ONLY_PHRASES = (
    "html and css only",
    "html & css only",
    "html css only",
    "only html",
    "only html and css",
    "give the code in html",
    "generate html",
)
_REACT_PHRASES = ("react", "jsx", "component", "hooks", "usestate")


def output_format(description: str) -> str:
    """'react' only when asked for and HTML was not explicitly requested; 'html' otherwise."""
    d = (description or "").lower()
    if any(p in d for p in _HTML_ONLY_PHRASES):
        return "html"
    if any(p in d for p in _REACT_PHRASES):
        return "react"
    return "html"


_REACT_REQUIREMENTS = """REACT-SPECIFIC REQUIREMENTS:
1. Create a modern React component structure
2. Include all necessary React imports (React, useState, useEffect, etc.)
3. Use functional components with hooks
4. Use inline style objects (style={{property: 'value'}})
5. Make all UI elements fully interactive with proper event handlers
6. Include state management for all interactive elements
7. Export the component as default
8. Make sure the component can be imported and used in a React application"""

_HTML_REQUIREMENTS = """HTML-SPECIFIC REQUIREMENTS:
1. Use inline styles directly on HTML elements
2. Add JavaScript event handlers directly in the HTML
3. Include onclick, onchange, onsubmit handlers for interactive elements
4. Include a complete JavaScript section at the end of the HTML file
5. Make sure all interactive elements are fully functional"""


def build_prompt(description: str, language: str) -> str:
    react = language == "react"
    target = (
        "IMPORTANT: The user has specifically requested REACT code. You MUST generate React components, NOT HTML/CSS."
        if react
        else "IMPORTANT: Generate complete HTML with inline CSS code based on this wireframe image. "
        "Do NOT generate React components unless specifically requested."
    )
    closing = (
        "Return a complete React component with ALL imports, ALL state variables, ALL event handlers, and ALL helper "
        "functions. The code should start with import statements and end with export default ComponentName. "
        "DO NOT RETURN HTML CODE."
        if react
        else "Return the complete HTML with inline styles and embedded JavaScript to make all UI elements interactive. "
        "Include <script> tags with all event handler functions at the end of the document."
    )
    return f"""
You are a senior full-stack developer converting a wireframe into complete, working code.

You MUST generate COMPLETE code with NO abbreviations, NO placeholders and NO truncation.

{target}

User's requirements: {(description or '').strip()} Make it fully interactive with JavaScript functionality.

The code should:
1. Be complete and functional, ready to paste into a project
2. Include ALL necessary imports and boilerplate
3. Follow accessibility and responsive design practices
4. Include comments only where necessary

{_REACT_REQUIREMENTS if react else _HTML_REQUIREMENTS}

{closing}
"""


_ANALYSIS_PROMPT = """
Analyze this wireframe image. Identify:
1. All UI components present (buttons, forms, navigation, etc.)
2. The layout structure and organization
3. Any interactive elements
4. The general purpose of this wireframe (e-commerce, blog, dashboard, etc.)
5. Color scheme if visible

Answer with one JSON object only, no prose, shaped like:
{"isWireframe": true, "confidence": 0.9, "suggested": "HTML CSS",
 "elements": ["Button"], "layout": {"type": "Landing Page Layout", "sections": ["Header"]},
 "colorScheme": ["#ffffff"],
 "wireframeDetails": {"components": ["NavBar"], "structure": "...", "interactions": ["Button clicks"],
                      "dimensionsEstimate": "Desktop view, approximately 1200px width"}}
"""


# --- post-processing ---------------------------------------------------------

_FENCE_OPEN_RE = re.compile(r"```(?:html|css|jsx|tsx|javascript|js|react|typescript|ts)?[ \t]*\n", re.IGNORECASE)
_FENCE_CLOSE_RE = re.compile(r"\n?```[ \t]*$")

DEFAULT_INTERACTIVITY_SCRIPT = """<script>
document.addEventListener('DOMContentLoaded', function() {
  document.querySelectorAll('button').forEach(function(button) {
    button.addEventListener('click', function(e) {
      console.log('Button clicked:', e.target.textContent);
    });
  });
  document.querySelectorAll('form').forEach(function(form) {
    form.addEventListener('submit', function(e) {
      e.preventDefault();
      console.log('Form submitted');
    });
  });
  document.querySelectorAll('a:not([href^="http"])').forEach(function(link) {
    link.addEventListener('click', function(e) {
      e.preventDefault();
      console.log('Navigation link clicked:', link.textContent);
    });
  });
});
</script>
"""

HTML_INTERACTIVITY_NOTE = (
    "<!-- Note: This code may lack sufficient JavaScript interactivity. Basic event handlers have been added. -->\n"
    "<!-- You may need to customize the event handlers for your specific UI elements. -->\n\n"
)
REACT_INTERACTIVITY_NOTE = (
    "// Note: This code may lack interactive elements. Consider adding event handlers like onClick, onChange, etc.\n\n"
)


def strip_fences(text: str) -> str:
    t = _FENCE_OPEN_RE.sub("", text or "")
    return _FENCE_CLOSE_RE.sub("", t.rstrip()).strip()


def postprocess(code: str, language: str) -> str:
    """Make sure the result has some interactivity, or say so in a leading note."""
    if language == "react":
        if not any(h in code for h in ("onClick={", "onChange={", "onSubmit={")):
            return REACT_INTERACTIVITY_NOTE + code
        return code
    lowered = code.lower()
    if "<script" in lowered or 'onclick="' in lowered or 'onchange="' in lowered:
        return code
    idx = lowered.rfind("</body>")
    if idx != -1:
        code = code[:idx] + DEFAULT_INTERACTIVITY_SCRIPT + code[idx:]
    else:
        code = code + "\n" + DEFAULT_INTERACTIVITY_SCRIPT
    return HTML_INTERACTIVITY_NOTE + code


def offline_code(language: str) -> str:
    """Small working sample used when no provider is configured."""
    if language == "react":
        return """import React, { useState } from 'react';

export default function App() {
  const [count, setCount] = useState(0);
  return (
    <div className="p-6 rounded-xl border border-slate-200 bg-white">
      <h3 className="text-xl font-semibold">Offline Preview</h3>
      <p className="mt-2 text-sm text-slate-700">This was rendered without an API key.</p>
      <button className="mt-3 px-4 py-2 rounded bg-indigo-600 text-white" onClick={() => setCount(count + 1)}>
        Clicks: {count}
      </button>
    </div>
  );
}
"""
    return """<!DOCTYPE html>
<html>
<body style="font-family: system-ui, sans-serif; padding: 2rem;">
  <h3>Offline Preview</h3>
  <p>This was rendered without an API key.</p>
  <button id="btn">Click</button>
  <div id="out"></div>
  <script>let n=0; const o=document.getElementById('out');document.getElementById('btn').onclick=()=>{n++;o.textContent='Clicks: '+n;};</script>
</body>
</html>
"""


# --- providers ---------------------------------------------------------------

def _extract_gemini_text(payload: Dict[str, Any]) -> Optional[str]:
    try:
        for cand in payload.get("candidates") or []:
            content = cand.get("content") or {}
            for part in content.get("parts") or []:
                txt = part.get("text")
                if isinstance(txt, str) and txt.strip():
                    return txt
    except Exception:
        pass
    return None


def _extract_openrouter_text(payload: Dict[str, Any]) -> Optional[str]:
    try:
        content = payload["choices"][0]["message"]["content"]
    except (KeyError, IndexError, TypeError):
        return None
    if isinstance(content, list):
        content = "".join(p.get("text", "") for p in content if isinstance(p, dict))
    if isinstance(content, str) and content.strip():
        return content
    return None


def _call_gemini(prompt: str, image: ImagePayload, *, json_mode: bool = False) -> Optional[str]:
    """Call Gemini generateContent with the prompt and image; None on failure."""
    generation_config: Dict[str, Any] = {
        "temperature": TEMPERATURE,
        "maxOutputTokens": LLM_MAX_TOKENS,
        "topK": 40,
        "topP": 0.95,
    }
    if json_mode:
        generation_config["responseMimeType"] = "application/json"
    body = {
        "contents": [
            {
                "parts": [
                    {"text": prompt},
                    {"inlineData": {"mimeType": image.mime_type, "data": image.data}},
                ]
            }
        ],
        "generationConfig": generation_config,
    }
    try:
        resp = requests.post(
            GEMINI_ENDPOINT_TEMPLATE.format(model=GEMINI_MODEL),
            params={"key": GEMINI_API_KEY},
            json=body,
            timeout=LLM_TIMEOUT_SECS,
        )
    except Exception as e:
        log.warning("Gemini request error: %r", e)
        return None

    if resp.status_code != 200:
        try:
            msg = resp.text[:400]
        except Exception:
            msg = str(resp.status_code)
        log.warning("Gemini HTTP %s: %s", resp.status_code, msg)
        return None

    try:
        data = resp.json()
    except Exception:
        log.warning("Gemini: non-JSON body")
        return None

    text = _extract_gemini_text(data)
    if not text:
        log.warning("Gemini: empty response text")
        return None
    return text


def _call_openrouter(prompt: str, image: ImagePayload, model: str) -> Optional[str]:
    """Call OpenRouter Chat Completions with a vision message; None on failure."""
    headers = {
        "Authorization": f"Bearer {OPENROUTER_API_KEY}",
        "Content-Type": "application/json",
        "X-Title": "wirecode",
    }
    body = {
        "model": model,
        "messages": [
            {
                "role": "user",
                "content": [
                    {"type": "text", "text": prompt},
                    {"type": "image_url", "image_url": {"url": image.data_url}},
                ],
            }
        ],
        "temperature": TEMPERATURE,
        "max_tokens": LLM_MAX_TOKENS,
    }
    try:
        resp = requests.post(OPENROUTER_ENDPOINT, headers=headers, json=body, timeout=LLM_TIMEOUT_SECS)
    except Exception as e:
        log.warning("OpenRouter request error: %r", e)
        return None

    if resp.status_code != 200:
        try:
            msg = resp.text[:400]
        except Exception:
            msg = str(resp.status_code)
        log.warning("OpenRouter HTTP %s: %s", resp.status_code, msg)
        return None

    try:
        data = resp.json()
    except Exception:
        log.warning("OpenRouter: non-JSON body")
        return None

    text = _extract_openrouter_text(data)
    if not text:
        log.warning("OpenRouter: empty response text")
        return None
    return text


def _resolve_openrouter_model(model_id: str) -> str:
    mid = (model_id or "").strip()
    if mid.lower() in OPENROUTER_MODEL_ALIASES:
        return OPENROUTER_MODEL_ALIASES[mid.lower()]
    if "/" in mid:
        return mid
    return OPENROUTER_MODEL


def provider_order(model_id: str) -> List[Tuple[str, str]]:
    """Configured (provider, model) pairs to try, preferred provider first."""
    gemini = ("gemini", GEMINI_MODEL) if GEMINI_API_KEY else None
    openrouter = ("openrouter", _resolve_openrouter_model(model_id)) if OPENROUTER_API_KEY else None
    if (model_id or "gemini").strip().lower() in GEMINI_MODEL_IDS:
        ordered = [gemini, openrouter]
    else:
        ordered = [openrouter, gemini]
    return [p for p in ordered if p is not None]


def _ask(prompt: str, image: ImagePayload, model_id: str, *, json_mode: bool = False) -> Optional[Tuple[str, str, str]]:
    for provider, model in provider_order(model_id):
        if provider == "gemini":
            text = _call_gemini(prompt, image, json_mode=json_mode)
        else:
            text = _call_openrouter(prompt, image, model)
        if text:
            return text, provider, model
        log.warning("llm: provider %s (%s) returned nothing, trying next", provider, model)
    return None


# --- public API --------------------------------------------------------------

def generate_code(image_ref: str, description: str, model_id: str = "gemini") -> GeneratedCode:
    """Generate HTML or React source for a wireframe image.

    Raises GenerationError when no provider produced usable output.
    """
    language = output_format(description)
    if _testing_stub_enabled():
        return GeneratedCode(offline_code(language), language, "stub")

    try:
        image = load_image(image_ref)
    except GenerationError as e:
        raise GenerationError(f"Failed to generate code: {e}") from e

    if not provider_order(model_id):
        raise GenerationError("Failed to generate code: no model provider is configured")

    answer = _ask(build_prompt(description, language), image, model_id)
    if answer is None:
        raise GenerationError("Failed to generate code: every configured provider failed")
    text, provider, model = answer
    code = strip_fences(text)
    if not code:
        raise GenerationError("Failed to generate code: the model returned no code")
    log.info("llm.generate provider=%s model=%s language=%s chars=%d", provider, model, language, len(code))
    return GeneratedCode(postprocess(code, language), language, provider, model)


def _json_from_text(text: str) -> Any:
    """Extract a JSON object from fenced or free text; raise ValueError on failure."""
    t = (text or "").strip()

    def _balanced_json_slice(s: str) -> Optional[str]:
        in_str = False
        esc = False
        depth = 0
        start_idx = -1
        for i, ch in enumerate(s):
            if not in_str and ch == "{":
                if depth == 0:
                    start_idx = i
                depth += 1
            elif not in_str and ch == "}":
                if depth > 0:
                    depth -= 1
                    if depth == 0 and start_idx != -1:
                        return s[start_idx : i + 1]
            elif ch == '"':
                if not esc:
                    in_str = not in_str
                esc = False
                continue
            esc = (ch == "\\") and not esc
        return None

    m = re.search(r"```json\s*([\s\S]*?)```", t, re.IGNORECASE) or re.search(r"```\s*([\s\S]*?)```", t)
    candidate = m.group(1) if m else _balanced_json_slice(t)
    if not candidate:
        raise ValueError("No JSON content found")
    try:
        return json.loads(candidate)
    except Exception:
        s = re.sub(r",\s*([}\]])", r"\1", candidate)
        s = s.replace("“", '"').replace("”", '"').replace("’", "'")
        return json.loads(s)


_schema_validator: Optional[jsonschema.Draft202012Validator] = None


def _analysis_validator() -> jsonschema.Draft202012Validator:
    global _schema_validator
    if _schema_validator is None:
        schema = json.loads(_SCHEMA_PATH.read_text(encoding="utf-8"))
        _schema_validator = jsonschema.Draft202012Validator(schema)
    return _schema_validator


def analysis_errors(doc: Any) -> List[str]:
    errors = []
    for err in _analysis_validator().iter_errors(doc):
        loc = ".".join(str(p) for p in err.path) or "(root)"
        errors.append(f"{loc}: {err.message}")
    return errors


# Keyword heuristics used when the model does not answer with valid JSON

_COMMON_ELEMENTS = [
    "Button", "Navigation", "Header", "Footer", "Form", "Input",
    "Image", "Product", "Gallery", "Card", "Search", "Menu",
    "Carousel", "List", "Tab", "Icon", "Modal", "Dropdown",
]
_COMPONENT_RE = re.compile(r"button|form|nav|header|footer|image|gallery|search|menu|card|section", re.IGNORECASE)
_HEX_OR_RGB_RE = re.compile(r"(#[0-9a-f]{3,6})|(?:rgb\(\d+,\s*\d+,\s*\d+\))", re.IGNORECASE)
_COLOR_NAMES = {
    "black": "#000000",
    "white": "#ffffff",
    "gray": "#808080",
    "blue": "#0000ff",
    "red": "#ff0000",
    "green": "#00ff00",
    "yellow": "#ffff00",
    "purple": "#800080",
    "pink": "#ffc0cb",
    "orange": "#ffa500",
}
DEFAULT_COLORS = ["#000000", "#ffffff", "#f3f4f6", "#1f2937"]
DEFAULT_DIMENSIONS = "Desktop view, approximately 1200px width"


def extract_elements(text: str) -> List[str]:
    t = text.lower()
    return [e for e in _COMMON_ELEMENTS if e.lower() in t]


def determine_layout_type(text: str) -> str:
    t = text.lower()
    if "e-commerce" in t or "product" in t:
        return "E-commerce Product Detail Layout"
    if "dashboard" in t:
        return "Dashboard Layout"
    if "landing" in t:
        return "Landing Page Layout"
    if "blog" in t:
        return "Blog Layout"
    return "General Purpose Layout"


def extract_sections(text: str) -> List[str]:
    t = text.lower()
    rules = [
        ("Header", "header" in t),
        ("Navigation", "navigation" in t or "nav" in t),
        ("Footer", "footer" in t),
        ("Sidebar", "sidebar" in t),
        ("Main Content", "main" in t),
        ("Hero Section", "hero" in t),
        ("Product Listing", "product" in t and "list" in t),
        ("Product Details", "product" in t and "detail" in t),
        ("Image Gallery", "gallery" in t),
    ]
    return [name for name, hit in rules if hit]


def extract_colors(text: str) -> List[str]:
    found = [m.group(0) for m in _HEX_OR_RGB_RE.finditer(text)]
    if found:
        return list(dict.fromkeys(found))
    t = text.lower()
    named = [hexval for name, hexval in _COLOR_NAMES.items() if name in t]
    return named or list(DEFAULT_COLORS)


def extract_structure(text: str) -> str:
    t = text.lower()
    if "grid" in t:
        return "Grid-based layout"
    if "column" in t or "col" in t:
        return "Multi-column layout"
    if "flex" in t:
        return "Flexbox-based layout"
    return "Standard layout with header, main content, and footer"


def extract_interactions(text: str) -> List[str]:
    t = text.lower()
    rules = [
        ("Button clicks", "button" in t),
        ("Form submission", "form" in t),
        ("Hover effects", "hover" in t),
        ("Dropdown selection", "dropdown" in t),
        ("Menu navigation", "menu" in t),
        ("Carousel/slider navigation", "carousel" in t or "slider" in t),
        ("Modal dialogs", "modal" in t),
        ("Tab switching", "tab" in t),
    ]
    return [name for name, hit in rules if hit]


def analysis_from_text(text: str) -> Dict[str, Any]:
    components = list(dict.fromkeys(m.group(0) for m in _COMPONENT_RE.finditer(text)))
    return {
        "isWireframe": True,
        "confidence": 0.95,
        "suggested": "HTML CSS",
        "elements": extract_elements(text),
        "layout": {"type": determine_layout_type(text), "sections": extract_sections(text)},
        "colorScheme": extract_colors(text),
        "wireframeDetails": {
            "components": components,
            "structure": extract_structure(text),
            "interactions": extract_interactions(text),
            "dimensionsEstimate": DEFAULT_DIMENSIONS,
        },
    }


def analyze_image(image_ref: str, model_id: str = "gemini") -> Dict[str, Any]:
    """Describe the wireframe in an image. Raises GenerationError on failure."""
    if _testing_stub_enabled():
        return analysis_from_text("header navigation button form footer")

    try:
        image = load_image(image_ref)
    except GenerationError as e:
        raise GenerationError(f"Failed to analyze image: {e}") from e

    if not provider_order(model_id):
        raise GenerationError("Failed to analyze image: no model provider is configured")

    answer = _ask(_ANALYSIS_PROMPT, image, model_id, json_mode=True)
    if answer is None:
        raise GenerationError("Failed to analyze image: every configured provider failed")
    text, provider, _model = answer

    try:
        doc = _json_from_text(text)
    except Exception as e:
        log.info("llm.analyze provider=%s: no JSON in answer (%r); using keyword heuristics", provider, e)
        return analysis_from_text(text)

    errors = analysis_errors(doc)
    if errors:
        log.info("llm.analyze provider=%s: answer failed schema (%s); using keyword heuristics", provider, errors[:3])
        return analysis_from_text(text)
    return doc
