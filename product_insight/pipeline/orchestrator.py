"""
Analysis orchestrator using LangGraph.

Runs the nine product analysis tasks for one product against a shared,
once-computed context and collects their results into an AnalysisRun.

Graph structure:
    enrich_context -> task_categorizer ----------+
                   -> task_competitor -----------+
                   -> ...                        +-> finalize -> END
                   -> task_marketing_generator --+

Features:
    - One context enrichment per run, shared read-only by every task
    - All tasks dispatched concurrently, each isolated from the others
    - Per-task progress notifications
    - Fire-and-forget result publishing to a ResultStore
    - Cooperative cancellation of undispatched tasks
"""

import asyncio
import operator
import time
from datetime import datetime, timezone
from typing import Annotated, Any, Callable, Iterable, Optional, TypedDict

from langchain_core.runnables import RunnableConfig
from langgraph.graph import END, StateGraph

from product_insight.analyzers.task_executor import ResilientTaskExecutor
from product_insight.analyzers.task_registry import TASK_REGISTRY, TaskSpec
from product_insight.config.settings import Settings, get_settings
from product_insight.extractors.context_enricher import ContextEnricher
from product_insight.extractors.identity_resolver import ConfirmedIdentityCache, IdentityResolver
from product_insight.models.schemas import (
    AnalysisRun,
    EnrichedContext,
    IdentityCandidate,
    ProductReference,
    TaskResult,
    TaskResultRecord,
    TaskStatus,
)
from product_insight.services.llm_service import ChatService, create_chat_service
from product_insight.services.page_fetcher import PageFetcher
from product_insight.services.result_store import InMemoryResultStore, ResultPublisher, ResultStore
from product_insight.services.search_service import SearchService
from product_insight.utils.logger import LogContext, get_logger

logger = get_logger(__name__)

# on_progress(task_id, status, data)
ProgressCallback = Callable[[str, TaskStatus, Optional[dict[str, Any]]], None]

ENRICH_NODE = "enrich_context"
FINALIZE_NODE = "finalize"


def task_node_name(task_id: str) -> str:
    return f"task_{task_id}"


def merge_tools(left: Optional[dict], right: Optional[dict]) -> dict:
    """Reducer for concurrent task updates; each task writes its own key."""
    merged = dict(left or {})
    merged.update(right or {})
    return merged


# =============================================================================
# Graph State Definition
# =============================================================================

class AnalysisStateDict(TypedDict, total=False):
    """
    LangGraph state for one analysis run.

    ``tools`` and ``errors`` carry reducers because the task nodes update
    them concurrently within one superstep.
    """
    run_id: str
    product: ProductReference
    context: Optional[EnrichedContext]
    tools: Annotated[dict[str, TaskResult], merge_tools]
    errors: Annotated[list[str], operator.add]
    started_at: str
    completed_at: Optional[str]


# =============================================================================
# Orchestrator
# =============================================================================

class ProductAnalysisOrchestrator:
    """
    LangGraph-based orchestrator for product analysis runs.

    Example:
        >>> async with ProductAnalysisOrchestrator() as orchestrator:
        ...     run = await orchestrator.analyze(
        ...         ProductReference.from_input("3017620422003", "Nutella 400g"),
        ...         on_progress=lambda task_id, status, data: print(task_id, status),
        ...     )
        ...     print(run.summary())
    """

    def __init__(
        self,
        settings: Optional[Settings] = None,
        chat_service: Optional[ChatService] = None,
        search_service: Optional[SearchService] = None,
        page_fetcher: Optional[PageFetcher] = None,
        executor: Optional[ResilientTaskExecutor] = None,
        enricher: Optional[ContextEnricher] = None,
        resolver: Optional[IdentityResolver] = None,
        store: Optional[ResultStore] = None,
        registry: Optional[dict[str, TaskSpec]] = None,
    ):
        """
        Initialize the orchestrator.

        Any collaborator left out is created from ``settings`` on first use
        and closed by ``close()``.
        """
        self.settings = settings or get_settings()
        self.registry = registry if registry is not None else TASK_REGISTRY

        self._chat_service = chat_service
        self._search_service = search_service
        self._page_fetcher = page_fetcher
        self._executor = executor
        self._enricher = enricher
        self._resolver = resolver
        self._owned: list[Any] = []

        self.store = store or InMemoryResultStore()
        self.publisher = ResultPublisher(self.store)

        self._cancel_event = asyncio.Event()
        self._graph = self._build_graph()

    async def __aenter__(self) -> "ProductAnalysisOrchestrator":
        await self._initialize_services()
        return self

    async def __aexit__(self, exc_type, exc_val, exc_tb) -> None:
        await self.close()

    async def _initialize_services(self) -> None:
        """Create missing collaborators and start the result publisher."""
        if self._executor is None:
            if self._chat_service is None:
                self._chat_service = create_chat_service(self.settings)
                self._owned.append(self._chat_service)
            self._executor = ResilientTaskExecutor(
                chat_service=self._chat_service,
                settings=self.settings,
                registry=self.registry,
            )

        if self._search_service is None and (self._enricher is None or self._resolver is None):
            self._search_service = SearchService(self.settings)
            self._owned.append(self._search_service)

        if self._enricher is None:
            self._enricher = ContextEnricher(self._search_service)

        if self._resolver is None:
            if self._page_fetcher is None:
                self._page_fetcher = PageFetcher(self.settings)
                self._owned.append(self._page_fetcher)
            self._resolver = IdentityResolver(
                search_service=self._search_service,
                page_fetcher=self._page_fetcher,
                settings=self.settings,
            )

        self.publisher.start()

    @property
    def executor(self) -> ResilientTaskExecutor:
        if self._executor is None:
            raise RuntimeError("Orchestrator not initialized. Use async context manager.")
        return self._executor

    @property
    def enricher(self) -> ContextEnricher:
        if self._enricher is None:
            raise RuntimeError("Orchestrator not initialized. Use async context manager.")
        return self._enricher

    @property
    def resolver(self) -> IdentityResolver:
        if self._resolver is None:
            raise RuntimeError("Orchestrator not initialized. Use async context manager.")
        return self._resolver

    @property
    def is_cancelled(self) -> bool:
        return self._cancel_event.is_set()

    def _build_graph(self):
        graph = StateGraph(AnalysisStateDict)

        graph.add_node(ENRICH_NODE, self._enrich_context_node)
        graph.add_node(FINALIZE_NODE, self._finalize_node)
        task_nodes = []
        for spec in self.registry.values():
            name = task_node_name(spec.task_id)
            graph.add_node(name, self._make_task_node(spec))
            task_nodes.append(name)

        graph.set_entry_point(ENRICH_NODE)
        for name in task_nodes:
            graph.add_edge(ENRICH_NODE, name)
        # Join: finalize waits for every task node
        graph.add_edge(task_nodes, FINALIZE_NODE)
        graph.add_edge(FINALIZE_NODE, END)

        return graph.compile()

    # =========================================================================
    # Node Implementations
    # =========================================================================

    async def _enrich_context_node(self, state: AnalysisStateDict) -> dict[str, Any]:
        product = state["product"]
        try:
            context = await self.enricher.enrich_context(product)
        except Exception as e:
            logger.error("Context enrichment failed, continuing without context", error=str(e))
            context = EnrichedContext(
                product_id=product.identifier,
                kind=product.kind,
                errors=(f"enrichment: {e}",),
            )
            return {"context": context, "errors": [f"enrichment: {e}"]}
        return {"context": context}

    def _make_task_node(self, spec: TaskSpec):
        async def run_task(state: AnalysisStateDict, config: RunnableConfig) -> dict[str, Any]:
            return await self._run_task(spec, state, config)

        run_task.__name__ = task_node_name(spec.task_id)
        return run_task

    async def _run_task(
        self,
        spec: TaskSpec,
        state: AnalysisStateDict,
        config: RunnableConfig,
    ) -> dict[str, Any]:
        task_id = spec.task_id
        on_progress = (config or {}).get("configurable", {}).get("on_progress")

        if self.is_cancelled:
            logger.info("Run cancelled, task not dispatched", task_id=task_id)
            return {"tools": {task_id: TaskResult(task_id=task_id)}}

        self._notify(on_progress, task_id, TaskStatus.RUNNING, None)
        product = state["product"]
        start = time.monotonic()
        errors: list[str] = []

        try:
            prompt = spec.build_prompt(product, state.get("context"))
            outcome = await self.executor.execute(
                task_id,
                prompt,
                spec.default_confidence,
                max_retries=self.settings.max_retries,
            )
            result = TaskResult(
                task_id=task_id,
                status=TaskStatus.COMPLETED,
                data=outcome.data,
                confidence_score=outcome.confidence_score,
                degraded=outcome.degraded,
                error=outcome.last_error if outcome.degraded else None,
                attempts=outcome.attempts,
                duration_ms=int((time.monotonic() - start) * 1000),
            )
        except Exception as e:
            logger.error("Task failed", task_id=task_id, error=str(e))
            result = TaskResult(
                task_id=task_id,
                status=TaskStatus.ERROR,
                error=str(e),
                duration_ms=int((time.monotonic() - start) * 1000),
            )
            errors.append(f"{task_id}: {e}")

        self._notify(on_progress, task_id, result.status, result.data)
        self._publish(state, spec, result)
        return {"tools": {task_id: result}, "errors": errors}

    async def _finalize_node(self, state: AnalysisStateDict) -> dict[str, Any]:
        tools = state.get("tools", {})
        logger.info(
            "All tasks settled",
            completed=sum(1 for r in tools.values() if r.status == TaskStatus.COMPLETED),
            errors=sum(1 for r in tools.values() if r.status == TaskStatus.ERROR),
            degraded=sum(1 for r in tools.values() if r.degraded),
        )
        return {"completed_at": datetime.now(timezone.utc).isoformat()}

    # =========================================================================
    # Notifications
    # =========================================================================

    @staticmethod
    def _notify(
        on_progress: Optional[ProgressCallback],
        task_id: str,
        status: TaskStatus,
        data: Optional[dict[str, Any]],
    ) -> None:
        if on_progress is None:
            return
        try:
            on_progress(task_id, status, data)
        except Exception as e:
            logger.warning("Progress callback failed", task_id=task_id, error=str(e))

    def _publish(self, state: AnalysisStateDict, spec: TaskSpec, result: TaskResult) -> None:
        product = state["product"]
        record = TaskResultRecord(
            run_id=state["run_id"],
            task_id=spec.task_id,
            tool_name=spec.display_name,
            product_identifier=product.identifier,
            product_name=product.name,
            product_kind=product.kind,
            result_data=result.data,
            confidence_score=result.confidence_score,
            status=result.status,
            degraded=result.degraded,
            model_used=self.executor.model,
            processing_time_ms=result.duration_ms,
        )
        self.publisher.publish(record)

    # =========================================================================
    # Public API
    # =========================================================================

    async def analyze(
        self,
        product: ProductReference,
        on_progress: Optional[ProgressCallback] = None,
    ) -> AnalysisRun:
        """
        Run every registered task for one product.

        Args:
            product: Product to analyze
            on_progress: Called synchronously as each task starts and settles

        Returns:
            AnalysisRun with one settled TaskResult per task, except tasks
            left pending by ``cancel()``
        """
        await self._initialize_services()
        self._cancel_event.clear()

        run = AnalysisRun(
            product_id=product.identifier,
            product=product,
            tools={task_id: TaskResult(task_id=task_id) for task_id in self.registry},
        )
        initial_state: AnalysisStateDict = {
            "run_id": run.run_id,
            "product": product,
            "context": None,
            "tools": {},
            "errors": [],
            "started_at": run.created_at.isoformat(),
            "completed_at": None,
        }

        with LogContext(run_id=run.run_id, product_id=product.identifier):
            logger.info("Starting analysis run", kind=product.kind, tasks=len(self.registry))
            final_state = await self._graph.ainvoke(
                initial_state,
                config={"configurable": {"on_progress": on_progress}},
            )

            run.tools.update(final_state.get("tools", {}))
            run.context = final_state.get("context")
            run.cancelled = self.is_cancelled
            run.completed_at = datetime.now(timezone.utc)

            if final_state.get("errors"):
                logger.warning("Analysis run finished with errors", errors=final_state["errors"])
            logger.info("Analysis run finished", **run.summary())

        return run

    async def analyze_many(
        self,
        products: Iterable[ProductReference],
        on_progress: Optional[ProgressCallback] = None,
    ) -> list[AnalysisRun]:
        """Analyze products one after another; stops early once cancelled."""
        runs = []
        for product in products:
            runs.append(await self.analyze(product, on_progress))
            if self.is_cancelled:
                logger.info("Batch cancelled", analyzed=len(runs))
                break
        return runs

    async def resolve_candidates(
        self,
        code: str,
        cache: Optional[ConfirmedIdentityCache] = None,
    ) -> list[IdentityCandidate]:
        """Identity candidates for a product code, best first."""
        await self._initialize_services()
        return await self.resolver.resolve_candidates(code, cache)

    def cancel(self) -> None:
        """Stop dispatching tasks; calls already in flight finish normally."""
        logger.info("Cancellation requested")
        self._cancel_event.set()

    # =========================================================================
    # Cleanup
    # =========================================================================

    async def close(self) -> None:
        """Drain pending results and close the services this instance created."""
        await self.publisher.close()
        for service in self._owned:
            try:
                await service.close()
            except Exception as e:
                logger.warning("Error closing service", service=type(service).__name__, error=str(e))
        self._owned.clear()


# =============================================================================
# Convenience Functions
# =============================================================================

async def create_orchestrator(settings: Optional[Settings] = None) -> ProductAnalysisOrchestrator:
    """Create an orchestrator with services initialized."""
    orchestrator = ProductAnalysisOrchestrator(settings=settings)
    await orchestrator._initialize_services()
    return orchestrator


async def analyze_product(
    identifier: str,
    name: Optional[str] = None,
    settings: Optional[Settings] = None,
    on_progress: Optional[ProgressCallback] = None,
) -> AnalysisRun:
    """
    Convenience function to analyze one product.

    Example:
        >>> run = await analyze_product("Wireless Mouse X200")
        >>> run.tools["categorizer"].data["main_category"]
    """
    async with ProductAnalysisOrchestrator(settings=settings) as orchestrator:
        return await orchestrator.analyze(ProductReference.from_input(identifier, name), on_progress)


__all__ = [
    "ProductAnalysisOrchestrator",
    "AnalysisStateDict",
    "ProgressCallback",
    "create_orchestrator",
    "analyze_product",
    "task_node_name",
]
