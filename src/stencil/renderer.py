"""Render results and batch rendering of a frozen template set."""

import logging
import time
from concurrent.futures import ThreadPoolExecutor, as_completed
from dataclasses import dataclass, field
from typing import TYPE_CHECKING, Any, Callable, Dict, List, Optional, Tuple

from .errors import Diagnostic

if TYPE_CHECKING:
    from .template import TemplateSet

logger = logging.getLogger(__name__)


@dataclass
class RenderResult:
    """Outcome of rendering one template.

    ``output`` is empty when the caller supplied its own sink.
    """

    output: str
    diagnostics: List[Diagnostic] = field(default_factory=list)
    render_time: float = 0.0
    metadata: Dict[str, Any] = field(default_factory=dict)

    @property
    def has_diagnostics(self) -> bool:
        return bool(self.diagnostics)


@dataclass
class BatchResult:
    """Result of rendering one template against many data values."""

    outputs: List[Optional[str]]
    success_count: int
    error_count: int
    errors: List[Tuple[int, str]] = field(default_factory=list)
    diagnostics: List[Tuple[int, Diagnostic]] = field(default_factory=list)
    render_time: float = 0.0
    metadata: Dict[str, Any] = field(default_factory=dict)

    @property
    def success_rate(self) -> float:
        """Calculate success rate percentage."""
        total = self.success_count + self.error_count
        return (self.success_count / total * 100) if total > 0 else 0.0


_Outcome = Tuple[Optional[str], Optional[str], List[Diagnostic]]


class BatchRenderer:
    """Render one named template of a set against many data values.

    The set must be frozen: renders share its trees and helper registry
    without synchronisation, so no parsing or helper registration may happen
    while a batch runs.
    """

    def __init__(
        self,
        template_set: "TemplateSet",
        batch_size: int = 100,
        max_workers: int = 4,
        parallel_threshold: int = 100,
    ) -> None:
        """Initialize the batch renderer.

        Args:
            template_set: Set holding the template to render
            batch_size: Number of data values handed to each worker job
            max_workers: Maximum worker threads for parallel processing
            parallel_threshold: Smallest batch rendered in parallel
        """
        self.template_set = template_set
        self.batch_size = batch_size
        self.max_workers = max_workers
        self.parallel_threshold = parallel_threshold

    def render(
        self,
        name: str,
        contexts: List[Any],
        progress_callback: Optional[Callable[[int], None]] = None,
        parallel: bool = True,
    ) -> BatchResult:
        """Render template ``name`` once per data value.

        Args:
            name: Template to render
            contexts: Data values, one render each
            progress_callback: Called with the number of renders completed
            parallel: Use worker threads for large batches

        Returns:
            BatchResult with outputs in input order; failed renders leave
            ``None`` in their slot and an entry in ``errors``
        """
        start_time = time.time()
        n_contexts = len(contexts)

        if self.template_set.lookup(name) is None:
            message = (
                f"no template {name!r} in set {self.template_set.name!r}"
                f"{self.template_set.defined_templates()}"
            )
            return BatchResult(
                outputs=[],
                success_count=0,
                error_count=1,
                errors=[(0, message)],
                render_time=time.time() - start_time,
                metadata={"lookup_failed": True},
            )

        use_parallel = parallel and n_contexts >= self.parallel_threshold
        if use_parallel:
            outcomes = self._render_parallel(name, contexts, progress_callback)
        else:
            outcomes = self._render_sequential(name, contexts, progress_callback)

        outputs: List[Optional[str]] = []
        errors: List[Tuple[int, str]] = []
        diagnostics: List[Tuple[int, Diagnostic]] = []
        for i, (output, error, item_diagnostics) in enumerate(outcomes):
            outputs.append(output)
            if error is not None:
                errors.append((i, error))
            diagnostics.extend((i, d) for d in item_diagnostics)

        render_time = time.time() - start_time
        logger.debug(
            f"Batch render of {name!r}: {n_contexts - len(errors)} ok, "
            f"{len(errors)} failed in {render_time:.3f}s"
        )
        return BatchResult(
            outputs=outputs,
            success_count=n_contexts - len(errors),
            error_count=len(errors),
            errors=errors,
            diagnostics=diagnostics,
            render_time=render_time,
            metadata={
                "template": name,
                "total_contexts": n_contexts,
                "batch_size": self.batch_size,
                "parallel": use_parallel,
                "avg_time_per_render": (
                    render_time / n_contexts if n_contexts > 0 else 0
                ),
            },
        )

    def _render_one(self, name: str, context: Any) -> _Outcome:
        try:
            result = self.template_set.render(name, context)
        except Exception as e:
            return None, str(e), []
        return result.output, None, result.diagnostics

    def _render_sequential(
        self,
        name: str,
        contexts: List[Any],
        progress_callback: Optional[Callable[[int], None]],
    ) -> List[_Outcome]:
        """Render each data value in turn."""
        outcomes = []
        for i, context in enumerate(contexts):
            outcomes.append(self._render_one(name, context))
            if progress_callback and (i + 1) % 10 == 0:
                progress_callback(10)

        if progress_callback:
            remaining = len(contexts) % 10
            if remaining > 0:
                progress_callback(remaining)
        return outcomes

    def _render_parallel(
        self,
        name: str,
        contexts: List[Any],
        progress_callback: Optional[Callable[[int], None]],
    ) -> List[_Outcome]:
        """Render batches of data values on worker threads."""
        outcomes: List[Optional[_Outcome]] = [None] * len(contexts)

        with ThreadPoolExecutor(max_workers=self.max_workers) as executor:
            future_to_batch = {
                executor.submit(self._render_batch, name, batch): (start, len(batch))
                for start, batch in self._create_batches(contexts)
            }
            for future in as_completed(future_to_batch):
                start, size = future_to_batch[future]
                for i, outcome in enumerate(future.result()):
                    outcomes[start + i] = outcome
                if progress_callback:
                    progress_callback(size)

        return outcomes

    def _create_batches(self, contexts: List[Any]) -> List[Tuple[int, List[Any]]]:
        """Split data values into (start index, batch) pairs."""
        return [
            (i, contexts[i : i + self.batch_size])
            for i in range(0, len(contexts), self.batch_size)
        ]

    def _render_batch(self, name: str, batch: List[Any]) -> List[_Outcome]:
        return [self._render_one(name, context) for context in batch]
