"""Request orchestrator: classify, then load capabilities only when needed.

State machine per request::

    CLASSIFY -> no capabilities -> NO_CAP_COMPLETE -> FALLBACK_CHECK -> DONE
                                                   \\-> LOAD_CAPS -> CAP_COMPLETE -> DONE
             -> capabilities    -> LOAD_CAPS -> CAP_COMPLETE -> DONE

CAP_COMPLETE runs at most one execution round-trip and the fallback retry
fires at most once, so every request terminates.
"""

import asyncio
import logging
import time
from dataclasses import dataclass, field
from typing import Any, Optional

from .capabilities import CapabilityCatalog, CapabilityExecutor, normalize_capabilities
from .classifier import IntentClassifier
from .config import GateConfig
from .errors import (
    CapabilityExecutionTimeoutError,
    CatalogError,
    CompletionError,
    CompletionTimeoutError,
)
from .fallback import FallbackDetector, PhraseFallbackDetector
from .llm.completion import BaseCompletionEngine
from .metrics import MetricsCollector
from .models.capability import (
    CapabilityDefinition,
    CapabilityInvocation,
    CompletionResult,
    InvocationResult,
)
from .models.decision import TokenUsage
from .models.pipeline import PipelineOutcome, PipelinePath, PipelineRequest, StageTimings

logger = logging.getLogger(__name__)

ACTION_GUIDANCE = (
    "If the user's message is a request or command (send, create, search, get, find, etc.), "
    "call the matching function. Do not reply that you will do it; make the call."
)


def capability_guidance(capabilities: list[CapabilityDefinition]) -> list[dict[str, Any]]:
    """System messages appended whenever a capability schema is attached."""
    names = ", ".join(c.name for c in capabilities)
    return [
        {"role": "system", "content": f"You can call these functions for this request: {names}."},
        {"role": "system", "content": ACTION_GUIDANCE},
    ]


@dataclass
class _RunState:
    """Mutable bookkeeping for one request."""

    timings: StageTimings = field(default_factory=StageTimings)
    usage: TokenUsage = field(default_factory=TokenUsage)
    loaded_names: list[str] = field(default_factory=list)
    loaded: bool = False
    results: list[InvocationResult] = field(default_factory=list)


class PipelineOrchestrator:
    """Runs one request through classification, loading and completion.

    All collaborators are injected. The classification cache lives inside
    the classifier and is shared across every request this orchestrator
    handles.
    """

    def __init__(
        self,
        classifier: IntentClassifier,
        catalog: CapabilityCatalog,
        engine: BaseCompletionEngine,
        executor: CapabilityExecutor,
        fallback_detector: Optional[FallbackDetector] = None,
        metrics: Optional[MetricsCollector] = None,
        config: Optional[GateConfig] = None,
    ):
        self.config = config or GateConfig()
        self.classifier = classifier
        self.catalog = catalog
        self.engine = engine
        self.executor = executor
        self.fallback_detector = fallback_detector or PhraseFallbackDetector.from_config(self.config.fallback)
        self.metrics = metrics or MetricsCollector(window_size=self.config.metrics.window_size)

    async def run(self, request: PipelineRequest) -> PipelineOutcome:
        """Produce the final response for one request.

        Raises:
            CompletionError: The completion engine failed or timed out
            CatalogError: The capability catalog could not be resolved
            CapabilityExecutionTimeoutError: A capability invocation timed out

        Cancellation propagates to the call in flight and is not counted
        as a failed request.
        """
        try:
            outcome = await self._run(request)
        except Exception:
            self.metrics.record_failure()
            raise
        self.metrics.record(outcome)
        return outcome

    async def _run(self, request: PipelineRequest) -> PipelineOutcome:
        start = time.perf_counter()
        state = _RunState()

        decision = await self.classifier.classify(
            request.message_text,
            request.agent_id,
            history=request.history,
        )
        state.timings.classify_ms = decision.elapsed_ms
        if decision.usage is not None:
            state.usage = state.usage + decision.usage

        messages = [*request.history, {"role": "user", "content": request.message_text}]
        fallback_signal: Optional[str] = None
        executed = False

        if decision.requires_capabilities:
            capabilities = await self._load(request, state)
            attached = self._select(capabilities, decision.suggested_capability_names)
            state.loaded_names = [c.name for c in attached]
            logger.info(
                f"Request {request.request_id}: loaded {len(attached)} capabilities "
                f"(confidence={decision.confidence.value}, degraded={decision.degraded})"
            )
            text, executed = await self._complete_with_capabilities(messages, attached, state)
            path = PipelinePath.CAPABILITY
        else:
            logger.info(f"Request {request.request_id}: skipped capability loading")
            result = await self._complete(messages, None, state)
            text = result.text or ""
            path = PipelinePath.NO_CAPABILITY

            if result.requests_capabilities:
                logger.warning(
                    f"Request {request.request_id}: ignoring {len(result.invocations)} invocation(s) "
                    f"from a completion without capabilities"
                )
            elif self.config.fallback.enabled:
                fallback_signal = self._check_fallback(text, decision.suggested_capability_names)

            if fallback_signal is not None:
                logger.info(f"Request {request.request_id}: fallback retry with capabilities ({fallback_signal})")
                capabilities = await self._load(request, state)
                text, executed = await self._complete_with_capabilities(messages, capabilities, state)
                path = PipelinePath.FALLBACK

        state.timings.total_ms = _elapsed_ms(start)
        t = state.timings
        logger.debug(
            f"Request {request.request_id} ({path.value}): classify={t.classify_ms}ms load={t.load_ms}ms "
            f"completion={t.completion_ms}ms execution={t.execution_ms}ms total={t.total_ms}ms"
        )
        return PipelineOutcome(
            request_id=request.request_id,
            response_text=text or self.config.pipeline.empty_response_text,
            decision=decision,
            path=path,
            capabilities_loaded=state.loaded,
            capabilities_executed=executed,
            fallback_retried=path is PipelinePath.FALLBACK,
            fallback_signal=fallback_signal,
            loaded_capability_names=state.loaded_names,
            invocation_results=state.results,
            timings=state.timings,
            usage=state.usage,
        )

    async def _load(self, request: PipelineRequest, state: _RunState) -> list[CapabilityDefinition]:
        """Resolve and normalize the capability set. The only catalog call site."""
        start = time.perf_counter()
        timeout = self.config.pipeline.catalog_timeout_seconds
        try:
            raw = await asyncio.wait_for(
                self.catalog.resolve(request.agent_id, request.session_id, request.capability_catalog_ref),
                timeout=timeout,
            )
        except asyncio.TimeoutError as e:
            raise CatalogError(f"capability catalog timed out after {timeout}s") from e
        except CatalogError:
            raise
        except Exception as e:
            raise CatalogError(f"capability catalog failed: {e}") from e
        finally:
            state.timings.load_ms += _elapsed_ms(start)

        capabilities = normalize_capabilities(raw)
        state.loaded = True
        state.loaded_names = [c.name for c in capabilities]
        return capabilities

    def _select(
        self,
        capabilities: list[CapabilityDefinition],
        suggested: list[str],
    ) -> list[CapabilityDefinition]:
        if not self.config.pipeline.selective_loading or not suggested:
            return capabilities
        wanted = set(suggested)
        narrowed = [c for c in capabilities if c.name in wanted]
        # Suggestions naming nothing in the catalog fall back to the full set
        return narrowed or capabilities

    def _check_fallback(self, text: str, suggested: list[str]) -> Optional[str]:
        names = list(dict.fromkeys([*self.config.pipeline.known_capability_names, *suggested]))
        return self.fallback_detector.inspect(text, names)

    async def _complete_with_capabilities(
        self,
        messages: list[dict[str, Any]],
        capabilities: list[CapabilityDefinition],
        state: _RunState,
    ) -> tuple[str, bool]:
        """CAP_COMPLETE with at most one execution round-trip.

        Returns the final text and whether any invocation was executed.
        """
        conversation = list(messages)
        if capabilities:
            conversation.extend(capability_guidance(capabilities))

        result = await self._complete(conversation, capabilities, state)
        if not result.requests_capabilities:
            return result.text or "", False

        conversation.append({
            "role": "assistant",
            "content": result.text or "",
            "tool_calls": [inv.to_tool_call() for inv in result.invocations],
        })
        results = await self._execute_all(result.invocations, state)
        conversation.extend(r.to_message() for r in results)

        final = await self._complete(conversation, capabilities, state)
        if final.requests_capabilities:
            logger.info(
                f"Not executing {len(final.invocations)} invocation(s) requested after the execution round-trip"
            )
        return final.text or "", True

    async def _complete(
        self,
        messages: list[dict[str, Any]],
        capabilities: Optional[list[CapabilityDefinition]],
        state: _RunState,
    ) -> CompletionResult:
        start = time.perf_counter()
        timeout = self.config.pipeline.completion_timeout_seconds
        try:
            result = await asyncio.wait_for(self.engine.complete(messages, capabilities), timeout=timeout)
        except asyncio.TimeoutError as e:
            raise CompletionTimeoutError(f"completion engine timed out after {timeout}s") from e
        except CompletionError:
            raise
        except Exception as e:
            raise CompletionError(f"completion engine failed: {e}") from e
        finally:
            state.timings.completion_ms += _elapsed_ms(start)

        state.usage = state.usage + result.usage
        return result

    async def _execute_all(
        self,
        invocations: list[CapabilityInvocation],
        state: _RunState,
    ) -> list[InvocationResult]:
        start = time.perf_counter()
        try:
            # Every invocation settles before a timeout propagates
            outcomes = await asyncio.gather(
                *(self._execute(inv) for inv in invocations),
                return_exceptions=True,
            )
        finally:
            state.timings.execution_ms += _elapsed_ms(start)

        for outcome in outcomes:
            if isinstance(outcome, BaseException):
                raise outcome
        results: list[InvocationResult] = list(outcomes)

        failed = [r.name for r in results if not r.ok]
        if failed:
            logger.warning(f"Capability invocation(s) failed: {', '.join(failed)}")
        state.results.extend(results)
        return results

    async def _execute(self, invocation: CapabilityInvocation) -> InvocationResult:
        timeout = self.config.pipeline.execution_timeout_seconds
        start = time.perf_counter()
        try:
            return await asyncio.wait_for(self.executor.execute(invocation), timeout=timeout)
        except asyncio.TimeoutError as e:
            raise CapabilityExecutionTimeoutError(
                f"capability {invocation.name} timed out after {timeout}s"
            ) from e
        except Exception as e:
            logger.warning(f"Capability {invocation.name} raised, reporting failure to the engine: {e}")
            return InvocationResult.failure(
                invocation, str(e) or type(e).__name__, elapsed_ms=_elapsed_ms(start)
            )


def _elapsed_ms(start: float) -> int:
    return int((time.perf_counter() - start) * 1000)
