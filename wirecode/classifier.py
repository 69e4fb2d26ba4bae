from __future__ import annotations

import re
from dataclasses import dataclass
from enum import Enum
from typing import Optional


class ContentKind(str, Enum):
    RAW_HTML = "raw_html"
    REACT_COMPONENT = "react_component"
    # React family, but the text is shown as inert markup instead of run as a component
    MARKUP_FALLBACK = "markup_fallback"
    EMPTY_PLACEHOLDER = "empty_placeholder"


PLACEHOLDER_SOURCE = """const App = () => React.createElement(
  'div',
  { className: 'flex items-center justify-center h-screen bg-gray-100' },
  React.createElement(
    'div',
    { className: 'p-6 bg-white rounded-lg shadow-lg' },
    React.createElement('h2', { className: 'text-xl font-bold text-gray-800' }, 'No code to preview'),
    React.createElement('p', { className: 'mt-2 text-gray-600' }, 'Generate code first to see a preview')
  )
);
"""

_HTML_DOCUMENT_RE = re.compile(r"<!doctype\s+html|<html[\s>]", re.IGNORECASE)
_COMPONENT_TAG_RE = re.compile(r"<[A-Z][A-Za-z0-9]*")
_HOOK_RE = re.compile(r"\buse(?:State|Effect|Ref|Memo|Callback|Context|Reducer|LayoutEffect)\b")
_REACT_MARKERS = (
    "import React",
    'from "react"',
    "from 'react'",
    "<React.",
    "<>",
    "className=",
)


@dataclass(frozen=True)
class ClassifiedContent:
    kind: ContentKind
    source: str
    language: Optional[str] = None

    @property
    def is_react_family(self) -> bool:
        return self.kind is not ContentKind.RAW_HTML


def looks_like_html_document(text: str) -> bool:
    return bool(_HTML_DOCUMENT_RE.search(text or ""))


def looks_like_react(text: str) -> bool:
    if not text:
        return False
    if any(marker in text for marker in _REACT_MARKERS):
        return True
    if _COMPONENT_TAG_RE.search(text):
        return True
    return bool(_HOOK_RE.search(text))


def classify(text: Optional[str], language: Optional[str] = None) -> ClassifiedContent:
    """Decide how a piece of generated source should be previewed.

    First match wins: empty input gets the placeholder component, an html
    hint or an html/doctype root tag means a raw document, React tokens mean
    a component, and anything else is wrapped as markup.
    """
    hint = (language or "").strip().lower() or None
    source = text or ""
    if not source.strip():
        return ClassifiedContent(ContentKind.EMPTY_PLACEHOLDER, PLACEHOLDER_SOURCE, hint)
    if hint == "html" or looks_like_html_document(source):
        return ClassifiedContent(ContentKind.RAW_HTML, source, hint)
    if looks_like_react(source):
        return ClassifiedContent(ContentKind.REACT_COMPONENT, source, hint)
    return ClassifiedContent(ContentKind.MARKUP_FALLBACK, source, hint)
