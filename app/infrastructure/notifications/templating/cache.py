"""Template compilation cache.

Compiled templates are memoized by source string for the lifetime of the
process. Templates are finite and operator-controlled, so the cache is
unbounded.

Usage:
    cache = TemplateCache(registry=template_registry)

    cache.render("Welcome {{name}}!", {"name": "John"})   # "Welcome John!"
    rendered = cache.render_template("welcome", {"name": "John"})
    rendered.subject, rendered.html, rendered.text
"""

import threading
from typing import TYPE_CHECKING, Any, Callable, Dict, Optional, Union

from infrastructure.logging import get_module_logger
from infrastructure.notifications.errors import TemplateCompileError
from infrastructure.notifications.models import RenderedTemplate, Template
from infrastructure.notifications.templating.helpers import build_helpers
from infrastructure.notifications.templating.parser import parse
from infrastructure.notifications.templating.renderer import CompiledTemplate

if TYPE_CHECKING:
    from infrastructure.notifications.store import TemplateRegistry

logger = get_module_logger()


class TemplateCache:
    """Compiles and memoizes templates; renders them against data.

    Concurrent first compiles of the same source may both parse, but
    only the first inserted compiled form is retained and returned to
    every caller.

    Args:
        registry: Template registry used by render_template(template_id, ...)
        helpers: Helper table; defaults to the built-in helpers
        locale: Locale for the built-in date helper
        default_currency: Currency for formatCurrency without a code
    """

    def __init__(
        self,
        registry: Optional["TemplateRegistry"] = None,
        helpers: Optional[Dict[str, Callable[..., Any]]] = None,
        locale: str = "en_US",
        default_currency: str = "USD",
    ):
        self.registry = registry
        self.helpers = (
            helpers
            if helpers is not None
            else build_helpers(locale=locale, default_currency=default_currency)
        )
        self._compiled: Dict[str, CompiledTemplate] = {}
        self._lock = threading.Lock()
        self._hits = 0
        self._misses = 0

    def compile(self, source: str) -> CompiledTemplate:
        """Return the compiled form of source, compiling on first use.

        Raises:
            TemplateCompileError: If the source is malformed.
        """
        compiled = self._compiled.get(source)
        if compiled is not None:
            with self._lock:
                self._hits += 1
            return compiled

        try:
            nodes = parse(source, self.helpers)
        except TemplateCompileError as e:
            logger.error(
                "template_compilation_failed",
                error=e.reason,
                template=e.snippet,
            )
            raise

        with self._lock:
            self._misses += 1
            compiled = self._compiled.setdefault(
                source, CompiledTemplate(source=source, nodes=nodes)
            )
        logger.debug("template_compiled", template=source[:100], cache_size=len(self))
        return compiled

    def render(self, source: str, data: Any = None) -> str:
        """Render template source against data.

        Raises:
            TemplateCompileError: If the source is malformed.
        """
        return self.compile(source).render(data or {})

    def render_template(
        self, template: Union[str, Template], data: Any = None
    ) -> RenderedTemplate:
        """Render subject, html and optional text of a registered template.

        Args:
            template: Template id (resolved through the registry) or Template

        Raises:
            TemplateNotFoundError: If the id is unknown.
            TemplateCompileError: If any part is malformed.
        """
        if isinstance(template, str):
            if self.registry is None:
                raise ValueError("TemplateCache has no registry to resolve ids")
            template = self.registry.get(template)

        return RenderedTemplate(
            subject=self.render(template.subject, data),
            html=self.render(template.html, data),
            text=self.render(template.text, data) if template.text else None,
        )

    def __len__(self) -> int:
        return len(self._compiled)

    def __contains__(self, source: object) -> bool:
        return source in self._compiled

    def get_stats(self) -> Dict[str, int]:
        with self._lock:
            return {"size": len(self._compiled), "hits": self._hits, "misses": self._misses}
