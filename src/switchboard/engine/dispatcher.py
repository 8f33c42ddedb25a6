"""Chat dispatcher: the single entry point of the routing core.

Dispatch runs one way: validate, budget, acquire a concurrency slot, call
the adapter, release the slot, run the tool loop, record health. Failures
are never swallowed here; they propagate as DispatchError carrying an
ErrorContext that names the model's health and failover candidates.
Only tool-execution failures are absorbed, as an inline note.

The tool loop re-dispatches at most once per turn. The follow-up call
runs with tools disabled and a depth counter, so a model cannot chain
tool calls.
"""

from __future__ import annotations

import asyncio
import logging
from collections import defaultdict
from dataclasses import dataclass, field, replace
from typing import Any
from urllib.parse import urlparse

from switchboard.config import BudgetConfig, Config
from switchboard.context.budget import PromptInput, fit_input
from switchboard.context.history import ConversationHistory
from switchboard.context.parts import PromptParts
from switchboard.context.subjects import PastSubject
from switchboard.credentials import ConfigCredentialProvider, CredentialProvider
from switchboard.engine.concurrency import (
    DEFAULT_PRIORITY,
    ConcurrencyManager,
    ConcurrencyStats,
)
from switchboard.engine.health import HealthStatus, HealthTracker
from switchboard.engine.tool_loop import (
    MAX_TOOL_ROUND_TRIPS,
    build_tool_result_prompt,
    extract_tool_call,
)
from switchboard.events import EventBus
from switchboard.events import types as events
from switchboard.exceptions import (
    AdapterError,
    ChatCancelledError,
    DispatchError,
    InputError,
)
from switchboard.models import create_default_adapters
from switchboard.models.base import (
    AdapterOptions,
    ChatResult,
    ConnectionCheck,
    ModelAdapter,
    StreamCallback,
)
from switchboard.models.catalog import ModelCatalog
from switchboard.models.descriptor import (
    CloudModel,
    ModelDescriptor,
    ServerModel,
)
from switchboard.models.local_adapter import LocalInferenceBackend
from switchboard.models.registry import AdapterRegistry
from switchboard.tools.registry import ToolContext, ToolExecutor, ToolRegistry

logger = logging.getLogger(__name__)

ANALYSIS_TEMPERATURE = 0.3
ANALYSIS_MAX_TOKENS = 2048

Prompt = PromptInput | PromptParts | list[dict] | str


@dataclass
class ChatOptions:
    """Per-call options. Unset sampling fields use the model's defaults."""

    on_stream: StreamCallback | None = None
    on_thinking_stream: StreamCallback | None = None
    disable_tools: bool = False
    temperature: float | None = None
    max_tokens: int | None = None
    top_p: float | None = None
    top_k: int | None = None
    response_format: dict | None = None
    topic_id: str = ""
    priority: int = DEFAULT_PRIORITY
    api_key: str | None = None
    timeout: float | None = None
    tool_context: ToolContext | None = None
    update_continuation: bool = True
    tool_depth: int = 0


@dataclass
class _Continuation:
    model_id: str
    state: Any


@dataclass
class _TopicTasks:
    tasks: set[asyncio.Task] = field(default_factory=set)


class ChatDispatcher:
    """Routes chat calls to adapters under budget, concurrency and health control.

    Every collaborator is injected; nothing is shared between instances.
    """

    def __init__(
        self,
        catalog: ModelCatalog,
        adapters: AdapterRegistry,
        *,
        concurrency: ConcurrencyManager | None = None,
        health: HealthTracker | None = None,
        credentials: CredentialProvider | None = None,
        tools: ToolExecutor | None = None,
        history: ConversationHistory | None = None,
        events_bus: EventBus | None = None,
        budget: BudgetConfig | None = None,
    ):
        self._catalog = catalog
        self._adapters = adapters
        self._concurrency = concurrency or ConcurrencyManager()
        self._events = events_bus
        self._health = health or HealthTracker(catalog, events_bus)
        self._credentials = credentials
        self._tools = tools
        self._history = history
        self._budget = budget or BudgetConfig()
        self._continuations: dict[str, _Continuation] = {}
        self._inflight: dict[str, _TopicTasks] = defaultdict(_TopicTasks)
        self._cancelled: set[asyncio.Task] = set()

    @classmethod
    def from_config(
        cls,
        config: Config,
        *,
        local_backend: LocalInferenceBackend | None = None,
        tools: ToolExecutor | None = None,
        history: ConversationHistory | None = None,
        events_bus: EventBus | None = None,
        transport=None,
    ) -> ChatDispatcher:
        """Build a dispatcher with the bundled adapters and configured models."""
        catalog = ModelCatalog.from_config(config, events_bus)
        return cls(
            catalog,
            create_default_adapters(local_backend, transport=transport),
            concurrency=ConcurrencyManager(config.concurrency),
            credentials=ConfigCredentialProvider(config.credentials),
            tools=tools or ToolRegistry(default_timeout=config.tools.timeout_seconds),
            history=history,
            events_bus=events_bus,
            budget=config.budget,
        )

    @property
    def catalog(self) -> ModelCatalog:
        return self._catalog

    @property
    def health(self) -> HealthTracker:
        return self._health

    @property
    def concurrency(self) -> ConcurrencyManager:
        return self._concurrency

    def _publish(self, event_type: str, topic_id: str = "", **data) -> None:
        if self._events is not None:
            self._events.publish(event_type, topic_id=topic_id, **data)

    # ------------------------------------------------------------------
    # Entry points
    # ------------------------------------------------------------------

    async def chat(
        self,
        prompt: Prompt,
        model_id: str,
        options: ChatOptions | None = None,
    ) -> ChatResult:
        """Dispatch one chat turn to ``model_id``.

        Raises InputError (or ModelNotFoundError) for bad requests,
        AdapterError when no adapter serves the model, DispatchError when
        the backend call fails, and ChatCancelledError when the topic is
        cancelled.
        """
        options = options or ChatOptions()
        if not model_id:
            raise InputError("A model id is required")
        descriptor = self._catalog.require(model_id)
        adapter = self._adapters.resolve(descriptor)
        parts = self._prepare(prompt, descriptor)

        topic_id = options.topic_id
        task = asyncio.create_task(self._run(descriptor, adapter, parts, options))
        if topic_id:
            self._inflight[topic_id].tasks.add(task)
        try:
            return await task
        except asyncio.CancelledError:
            if task in self._cancelled:
                raise ChatCancelledError(topic_id) from None
            raise
        finally:
            self._cancelled.discard(task)
            if topic_id:
                self._forget_task(topic_id, task)

    async def chat_in_topic(
        self,
        topic_id: str,
        new_message: str,
        model_id: str,
        system_prompt: str = "",
        past_subjects: list[PastSubject] | None = None,
        options: ChatOptions | None = None,
    ) -> ChatResult:
        """Chat with the topic's stored history as the recent messages."""
        if self._history is None:
            raise InputError("No conversation history provider configured")
        if not topic_id:
            raise InputError("A topic id is required")
        messages = await self._history.messages_for(topic_id)
        prompt = PromptInput(
            new_message=new_message,
            system_prompt=system_prompt,
            past_subjects=list(past_subjects or []),
            current_messages=messages,
        )
        return await self.chat(prompt, model_id, replace(options or ChatOptions(), topic_id=topic_id))

    async def analyze_with_cache(
        self,
        topic_id: str,
        prompt: str,
        model_id: str,
        options: ChatOptions | None = None,
    ) -> ChatResult:
        """Ask a side question on top of a topic's cached backend context.

        The cached context is read but not replaced, so the conversation
        itself is unaffected.
        """
        if self.get_cached_context(topic_id, model_id) is None:
            raise InputError(
                f"No cached context for topic {topic_id!r} on model {model_id!r}"
            )
        base = options or ChatOptions()
        analysis = replace(
            base,
            topic_id=topic_id,
            temperature=base.temperature if base.temperature is not None else ANALYSIS_TEMPERATURE,
            max_tokens=base.max_tokens or ANALYSIS_MAX_TOKENS,
            disable_tools=True,
            update_continuation=False,
        )
        return await self.chat(prompt, model_id, analysis)

    def cancel(self, topic_id: str) -> bool:
        """Cancel every in-flight call of ``topic_id``.

        Held slots are released as the calls unwind and the topic's cached
        backend context is dropped. Cancelled calls leave health untouched.
        """
        cancelled = False
        entry = self._inflight.get(topic_id)
        for task in list(entry.tasks if entry else ()):
            if not task.done():
                self._cancelled.add(task)
                task.cancel()
                cancelled = True
        self._continuations.pop(topic_id, None)
        if cancelled:
            logger.info("Cancelled in-flight chat for topic %s", topic_id)
            self._publish(events.DISPATCH_CANCELLED, topic_id=topic_id)
        return cancelled

    def _forget_task(self, topic_id: str, task: asyncio.Task) -> None:
        entry = self._inflight.get(topic_id)
        if entry is None:
            return
        entry.tasks.discard(task)
        if not entry.tasks:
            del self._inflight[topic_id]

    # ------------------------------------------------------------------
    # Dispatch
    # ------------------------------------------------------------------

    def _prepare(self, prompt: Prompt, descriptor: ModelDescriptor) -> PromptParts:
        if isinstance(prompt, PromptParts):
            return prompt
        if isinstance(prompt, PromptInput):
            if not prompt.new_message.strip():
                raise InputError("The new message is empty")
            return fit_input(
                prompt,
                descriptor.context_window,
                target_past_subject_count=self._budget.target_past_subjects,
                target_message_limit=self._budget.target_message_limit,
                initial_compression=self._budget.initial_compression,
            )
        if isinstance(prompt, str):
            if not prompt.strip():
                raise InputError("The message is empty")
            return PromptParts.build(system_prompt="", new_message=prompt)
        if isinstance(prompt, list):
            if not prompt:
                raise InputError("The message list is empty")
            return PromptParts.from_messages(prompt)
        raise InputError(f"Unsupported prompt type: {type(prompt).__name__}")

    def _adapter_options(self, descriptor: ModelDescriptor, options: ChatOptions) -> AdapterOptions:
        sampling = descriptor.sampling
        api_key = options.api_key
        if api_key is None and isinstance(descriptor, CloudModel) and self._credentials is not None:
            api_key = self._credentials.get_api_key(descriptor.provider)
        cached = self._continuations.get(options.topic_id) if options.topic_id else None
        return AdapterOptions(
            temperature=options.temperature if options.temperature is not None else sampling.temperature,
            max_tokens=options.max_tokens or sampling.max_tokens,
            top_p=options.top_p if options.top_p is not None else sampling.top_p,
            top_k=options.top_k if options.top_k is not None else sampling.top_k,
            on_stream=options.on_stream,
            on_thinking_stream=options.on_thinking_stream,
            api_key=api_key,
            response_format=options.response_format,
            timeout=options.timeout,
            continuation=cached.state if cached and cached.model_id == descriptor.id else None,
            topic_id=options.topic_id,
        )

    async def _run(
        self,
        descriptor: ModelDescriptor,
        adapter: ModelAdapter,
        parts: PromptParts,
        options: ChatOptions,
    ) -> ChatResult:
        result = await self._dispatch(descriptor, adapter, parts, options)
        if (
            options.disable_tools
            or self._tools is None
            or options.tool_depth >= MAX_TOOL_ROUND_TRIPS
        ):
            return result
        return await self._tool_round_trip(descriptor, adapter, parts, options, result)

    async def _dispatch(
        self,
        descriptor: ModelDescriptor,
        adapter: ModelAdapter,
        parts: PromptParts,
        options: ChatOptions,
    ) -> ChatResult:
        policy = self._concurrency.policy_for(descriptor)
        topic_id = options.topic_id
        slot = await self._concurrency.acquire(
            descriptor.id, policy.group, options.priority, topic_id,
        )
        self._publish(
            events.DISPATCH_STARTED, topic_id,
            model_id=descriptor.id, adapter=adapter.adapter_id, tokens=parts.total_tokens,
        )
        try:
            result = await adapter.chat(
                descriptor, parts, self._adapter_options(descriptor, options),
            )
        except Exception as e:
            self._health.record_failure(descriptor.id, e)
            context = self._health.error_context(descriptor.id, e, topic_id)
            logger.error(
                "Chat with %s failed (%s): %s",
                descriptor.id, context.health_status.value, e,
            )
            self._publish(
                events.DISPATCH_FAILED, topic_id,
                model_id=descriptor.id,
                status=context.health_status.value,
                retryable=context.is_retryable,
                alternatives=list(context.alternative_models),
            )
            raise DispatchError(f"Model {descriptor.id!r} failed: {e}", context) from e
        finally:
            self._concurrency.release(slot)

        self._health.record_success(descriptor.id)
        if options.update_continuation and topic_id and result.continuation is not None:
            self._continuations[topic_id] = _Continuation(descriptor.id, result.continuation)
        self._publish(
            events.DISPATCH_COMPLETED, topic_id,
            model_id=descriptor.id,
            output_tokens=result.usage.output_tokens,
        )
        return result

    async def _tool_round_trip(
        self,
        descriptor: ModelDescriptor,
        adapter: ModelAdapter,
        parts: PromptParts,
        options: ChatOptions,
        result: ChatResult,
    ) -> ChatResult:
        invocation = extract_tool_call(result.content)
        if invocation is None:
            return result

        context = options.tool_context or ToolContext(
            topic_id=options.topic_id, model_id=descriptor.id,
        )
        try:
            tool_result = await self._tools.execute(
                invocation.tool, invocation.parameters, context,
            )
            result_text = self._tools.format_result_for_llm(tool_result)
        except Exception as e:
            logger.warning("Tool %s failed: %s", invocation.tool, e)
            note = f"[error processing tool result: {e}]"
            remaining = invocation.strip_from(result.content)
            result.content = f"{remaining}\n\n{note}" if remaining else note
            return result

        self._publish(
            events.TOOL_EXECUTED, options.topic_id,
            model_id=descriptor.id,
            tool=invocation.tool,
            success=tool_result.success,
        )
        follow_up = parts.with_follow_up(
            result.content, build_tool_result_prompt(invocation.tool, result_text),
        )
        final = await self._run(
            descriptor,
            adapter,
            follow_up,
            replace(options, disable_tools=True, tool_depth=options.tool_depth + 1),
        )
        final.tool_results = [
            *result.tool_results,
            {
                "tool": invocation.tool,
                "parameters": invocation.parameters,
                "output": result_text,
                "success": tool_result.success,
            },
        ]
        return final

    # ------------------------------------------------------------------
    # Introspection
    # ------------------------------------------------------------------

    def get_model(self, model_id: str) -> ModelDescriptor:
        return self._catalog.require(model_id)

    def get_available_models(self) -> list[ModelDescriptor]:
        """Registered models, deduplicated by name and endpoint."""
        seen: set[tuple[str, str]] = set()
        models: list[ModelDescriptor] = []
        for descriptor in self._catalog.available():
            key = (descriptor.display_name, descriptor.endpoint)
            if key in seen:
                continue
            seen.add(key)
            models.append(descriptor)
        return models

    def get_model_health(self, model_id: str) -> HealthStatus:
        return self._health.status(model_id)

    def get_concurrency_stats(self) -> ConcurrencyStats:
        return self._concurrency.stats()

    def can_run_immediately(self, model_id: str) -> bool:
        policy = self._concurrency.policy_for(self._catalog.require(model_id))
        return self._concurrency.can_run_immediately(policy.group)

    def get_cached_context(self, topic_id: str, model_id: str | None = None) -> Any:
        cached = self._continuations.get(topic_id)
        if cached is None or (model_id is not None and cached.model_id != model_id):
            return None
        return cached.state

    def clear_cached_context(self, topic_id: str) -> None:
        self._continuations.pop(topic_id, None)

    def clear_all_cached_contexts(self) -> None:
        self._continuations.clear()

    # ------------------------------------------------------------------
    # Model management
    # ------------------------------------------------------------------

    async def test_connection(self, model_id: str) -> ConnectionCheck:
        descriptor = self._catalog.require(model_id)
        adapter = self._adapters.resolve(descriptor)
        api_key = None
        if isinstance(descriptor, CloudModel) and self._credentials is not None:
            api_key = self._credentials.get_api_key(descriptor.provider)
        check = await adapter.test_connection(descriptor, api_key)
        if check.ok:
            self._catalog.mark_verified(model_id)
        return check

    async def discover_models(self, server: str, provider: str = "ollama") -> list[ModelDescriptor]:
        """Register every model served at ``server`` and return the descriptors.

        Models previously discovered on the same server but no longer
        listed are marked unavailable.
        """
        adapter = self._adapters.get(provider)
        if adapter is None:
            raise AdapterError(f"No adapter registered for provider {provider!r}")
        server = server.rstrip("/")
        listed = await adapter.list_models(server)

        found: list[ModelDescriptor] = []
        for item in listed:
            name = str(item.get("name") or item.get("id") or "").strip()
            if not name:
                continue
            model_id = name
            existing = self._catalog.entry(model_id)
            if existing is not None and existing.descriptor.endpoint != server:
                model_id = f"{name}@{urlparse(server).netloc or server}"
            descriptor = ServerModel(
                id=model_id, provider=provider, model=name, name=name, server=server,
            )
            self._catalog.register(descriptor, source="discovered", server_id=server)
            found.append(descriptor)

        found_ids = {d.id for d in found}
        for descriptor in self._catalog.all():
            entry = self._catalog.entry(descriptor.id)
            if (
                entry.source == "discovered"
                and entry.server_id == server
                and descriptor.id not in found_ids
            ):
                self._catalog.mark_unavailable(descriptor.id)
        logger.info("Discovered %d model(s) at %s", len(found), server)
        return found

    async def close(self) -> None:
        for entry in list(self._inflight.values()):
            for task in list(entry.tasks):
                task.cancel()
        await self._adapters.close()
