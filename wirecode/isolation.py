from __future__ import annotations

import itertools
import logging
import threading
from dataclasses import dataclass
from typing import Any, Dict, Optional, Tuple
from urllib.parse import urlsplit

from wirecode.classifier import ContentKind, classify
from wirecode.render import render_isolation_document
from wirecode.transformer import EntryStrategy, TransformedSource, transform

log = logging.getLogger(__name__)

MESSAGE_TYPE = "code-preview-error"
# No allow-same-origin: the candidate never sees host cookies, storage or DOM
SANDBOX = "allow-scripts allow-forms allow-modals"


@dataclass(frozen=True)
class RuntimeLibrary:
    name: str
    url: str
    global_name: Optional[str] = None
    modules: Tuple[str, ...] = ()


RUNTIME_LIBRARIES: Tuple[RuntimeLibrary, ...] = (
    RuntimeLibrary("tailwindcss", "https://cdn.tailwindcss.com"),
    RuntimeLibrary("react", "https://unpkg.com/react@18.2.0/umd/react.development.js", "React", ("react",)),
    RuntimeLibrary(
        "react-dom",
        "https://unpkg.com/react-dom@18.2.0/umd/react-dom.development.js",
        "ReactDOM",
        ("react-dom", "react-dom/client"),
    ),
    RuntimeLibrary("babel", "https://unpkg.com/@babel/standalone@7.23.5/babel.min.js", "Babel"),
    RuntimeLibrary("prop-types", "https://unpkg.com/prop-types@15.8.1/prop-types.js", "PropTypes", ("prop-types",)),
    RuntimeLibrary("remix-router", "https://unpkg.com/@remix-run/router@1.5.0/dist/router.umd.min.js", "RemixRouter"),
    RuntimeLibrary(
        "react-router",
        "https://unpkg.com/react-router@6.10.0/dist/umd/react-router.production.min.js",
        "ReactRouter",
        ("react-router",),
    ),
    RuntimeLibrary(
        "react-router-dom",
        "https://unpkg.com/react-router-dom@6.10.0/dist/umd/react-router-dom.production.min.js",
        "ReactRouterDOM",
        ("react-router-dom",),
    ),
    RuntimeLibrary("axios", "https://unpkg.com/axios@1.6.2/dist/axios.min.js", "axios", ("axios",)),
    RuntimeLibrary(
        "lucide-react",
        "https://unpkg.com/lucide-react@0.292.0/dist/umd/lucide-react.js",
        "LucideReact",
        ("lucide-react",),
    ),
)


def allowed_origins() -> Tuple[str, ...]:
    seen: Dict[str, None] = {}
    for lib in RUNTIME_LIBRARIES:
        parts = urlsplit(lib.url)
        seen.setdefault(f"{parts.scheme}://{parts.netloc}", None)
    return tuple(seen)


def content_security_policy() -> str:
    scripts = " ".join(allowed_origins())
    return "; ".join(
        [
            "default-src 'none'",
            # the JSX transpiler needs eval; inline bootstrap needs unsafe-inline
            f"script-src 'unsafe-inline' 'unsafe-eval' {scripts}",
            "style-src 'unsafe-inline'",
            "img-src data: blob:",
            "font-src data:",
            "connect-src 'none'",
            "frame-src 'none'",
            "child-src 'none'",
            "form-action 'none'",
            "base-uri 'none'",
        ]
    )


class GenerationCounter:
    """Thread-safe, monotonically increasing document generation ids."""

    def __init__(self, start: int = 1) -> None:
        self._counter = itertools.count(start)
        self._lock = threading.Lock()

    def next(self) -> int:
        with self._lock:
            return next(self._counter)


_generations = GenerationCounter()


def next_generation() -> int:
    return _generations.next()


@dataclass(frozen=True)
class IsolationDocument:
    generation: int
    kind: ContentKind
    strategy: EntryStrategy
    html: str
    uses_router: bool = False
    sandbox: str = SANDBOX
    message_type: str = MESSAGE_TYPE

    @property
    def relays_errors(self) -> bool:
        # Raw documents run verbatim, without the shim
        return self.kind is not ContentKind.RAW_HTML

    def as_dict(self) -> Dict[str, Any]:
        return {
            "generation": self.generation,
            "kind": self.kind.value,
            "strategy": self.strategy.value,
            "uses_router": self.uses_router,
            "sandbox": self.sandbox,
            "message_type": self.message_type,
            "relays_errors": self.relays_errors,
            "html": self.html,
        }


def _payload(transformed: TransformedSource, generation: int) -> Dict[str, Any]:
    modules: Dict[str, str] = {}
    for lib in RUNTIME_LIBRARIES:
        for module in lib.modules:
            if lib.global_name:
                modules[module] = lib.global_name
    return {
        "generation": generation,
        "source": transformed.code,
        "entry": transformed.entry_name,
        "usesRouter": transformed.uses_router,
        "messageType": MESSAGE_TYPE,
        "modules": modules,
        "bindings": [
            {"local": b.local, "imported": b.imported, "module": b.module} for b in transformed.bindings
        ],
    }


def build_document(transformed: TransformedSource, generation: Optional[int] = None) -> IsolationDocument:
    """Build the self-contained document loaded into the sandboxed frame."""
    gen = generation if generation is not None else next_generation()
    if transformed.kind is ContentKind.RAW_HTML:
        html = transformed.code
    else:
        html = render_isolation_document(
            csp=content_security_policy(),
            libraries=RUNTIME_LIBRARIES,
            payload=_payload(transformed, gen),
        )
    log.debug(
        "isolation.build generation=%d kind=%s strategy=%s router=%s bytes=%d",
        gen,
        transformed.kind.value,
        transformed.strategy.value,
        transformed.uses_router,
        len(html),
    )
    return IsolationDocument(
        generation=gen,
        kind=transformed.kind,
        strategy=transformed.strategy,
        html=html,
        uses_router=transformed.uses_router,
    )


def prepare(code: Optional[str], language: Optional[str] = None, generation: Optional[int] = None) -> IsolationDocument:
    return build_document(transform(classify(code, language)), generation)
