"""
Main orchestration loop for Praxis.

One request runs as a state machine over an explicit :class:`AgentRunState`:

    plan -> decide -> describe -> execute -> reflect -> (loop | done)

Every stage asks the LLM for a structured (schema-validated) or free-text answer through the
:class:`LLMProvider` interface; the loop never branches on provider identity.  After the loop a final
answer is streamed to the caller and the exchange is persisted.
"""

import asyncio
import json
import logging
import uuid
from typing import (
    Any,
    Callable,
    Dict,
    List,
    Optional,
    Sequence,
    Tuple,
)

from praxis.common import maybe_await
from praxis.config import settings
from praxis.core import prompts
from praxis.core.approval import ApprovalGate
from praxis.core.attachments import AttachmentPreprocessor
from praxis.core.cache import ToolResultCache
from praxis.core.cancellation import CancellationToken
from praxis.core.schema import (
    ActionRecord,
    AgentEvent,
    AgentRunState,
    ApprovalDecision,
    ApprovalDecisionKind,
    ApprovalRequest,
    Attachment,
    Message,
    Role,
    RunError,
    RunFailed,
    RunFinished,
    RunOutcome,
    RunStatus,
    Stage,
    StreamChunk,
    ToolCall,
    ToolCallRef,
    ToolResult,
)
from praxis.core.tool_executor import (
    ToolExecutor,
    batch_failed,
)
from praxis.core.tool_outputs import (
    ToolOutputRecord,
    ToolOutputStore,
    history_reference,
    should_persist,
    truncate,
)
from praxis.core.trace import Trace
from praxis.llm.errors import (
    LLMProviderError,
    StructuredOutputError,
)
from praxis.llm.providers import (
    LLMProvider,
    StructuredResult,
    load_provider,
)
from praxis.llm.registry import ModelInfo
from praxis.llm.schemas import (
    INTENT_ANALYSIS_SCHEMA,
    PLAN_SCHEMA,
    StructuredOutputSchema,
    decide_schema,
    tool_parameters_schema,
)
from praxis.memory.memory_store import (
    ConversationStore,
    InMemoryConversationStore,
)
from praxis.tools import (
    ToolExecutionContext,
    ToolRegistry,
    build_registry,
)
from praxis.tools.builtin import FINAL_ANSWER

logger = logging.getLogger(__name__)

ChunkCallback = Callable[[str], Any]
EventCallback = Callable[[AgentEvent], Any]
ProviderFactory = Callable[[str], Tuple[LLMProvider, ModelInfo]]


class OrchestratorError(RuntimeError):
    """A stage failed; carries the position of the run at the time of failure."""

    def __init__(
        self,
        message: str,
        stage: Optional[Stage] = None,
        step: Optional[int] = None,
        active_tool: Optional[str] = None,
        model: Optional[str] = None,
        error_type: str = "orchestrator_error",
    ):
        super().__init__(message)
        self.stage = stage
        self.step = step
        self.active_tool = active_tool
        self.model = model
        self.error_type = error_type

    def to_run_error(self) -> RunError:
        return RunError(
            type=self.error_type,
            message=str(self),
            stage=self.stage,
            step=self.step,
            active_tool=self.active_tool,
            model=self.model,
        )


class _RunContext:
    """Per-run collaborators that are not part of the serialisable state."""

    def __init__(
        self,
        provider: LLMProvider,
        executor: ToolExecutor,
        on_stream_chunk: ChunkCallback | None,
        on_event: EventCallback | None,
        system_prompt: str | None,
    ):
        self.provider = provider
        self.executor = executor
        self.on_stream_chunk = on_stream_chunk
        self.on_event = on_event
        self.system_prompt = system_prompt
        self.user_message: Message | None = None


# ---------------------------------------------------------------------------
# Intent analysis
# ---------------------------------------------------------------------------
class IntentAnalyzer:
    """Optional pre-stage classifying the request as ``tool_call`` or ``other``."""

    def __init__(self, failure_policy: str | None = None):
        self.failure_policy = failure_policy or settings.INTENT_FAILURE_POLICY

    async def analyze(
        self,
        provider: LLMProvider,
        state: AgentRunState,
        tools: Sequence[Dict[str, Any]],
        native_tools: Sequence[Dict[str, Any]],
    ) -> Dict[str, Any]:
        """
        Return the ``intent_analysis`` data.

        Raises
        ------
        LLMProviderError
            Only when the failure policy is ``fail``; with ``degrade`` a parse failure yields
            ``{"intent_type": "other"}``.
        """
        try:
            with state.trace.generation("intent_analysis", state.model) as gen:
                result = await provider.structured_completion(
                    state.model,
                    state.history,
                    INTENT_ANALYSIS_SCHEMA,
                    system=prompts.intent_prompt(tools),
                    tools=native_tools,
                )
                gen.end(result.data, result.usage)
        except LLMProviderError as exc:
            if self.failure_policy == "fail":
                raise
            logger.warning("Intent analysis failed, treating request as 'other': %s", exc)
            return {"intent_type": "other"}
        state.usage = state.usage + result.usage
        return result.data


# ---------------------------------------------------------------------------
# Orchestrator
# ---------------------------------------------------------------------------
class Orchestrator:
    """Runs requests through the plan/decide/describe/execute/reflect loop."""

    def __init__(
        self,
        registry: ToolRegistry | None = None,
        store: ConversationStore | None = None,
        provider_factory: ProviderFactory | None = None,
        approval_gate: ApprovalGate | None = None,
        preprocessor: AttachmentPreprocessor | None = None,
        max_iterations: int | None = None,
        intent_analysis: bool | None = None,
        intent_analyzer: IntentAnalyzer | None = None,
        cache_scope: str | None = None,
        tool_timeout: float | None = None,
        output_store: ToolOutputStore | None = None,
    ):
        self.registry = registry or build_registry()
        self.store = store or InMemoryConversationStore()
        self.provider_factory: ProviderFactory = provider_factory or load_provider
        self.approvals = approval_gate or ApprovalGate()
        self.preprocessor = preprocessor or AttachmentPreprocessor()
        self.max_iterations = max_iterations or settings.MAX_ITERATIONS
        self.intent_analysis = (
            settings.INTENT_ANALYSIS if intent_analysis is None else intent_analysis
        )
        self.intent_analyzer = intent_analyzer or IntentAnalyzer()
        self.cache_scope = cache_scope or settings.TOOL_CACHE_SCOPE
        self.tool_timeout = tool_timeout
        self._conversation_caches: Dict[str, ToolResultCache] = {}
        self.output_store = output_store or ToolOutputStore()
        self._runs: Dict[str, Tuple["asyncio.Task[RunOutcome]", CancellationToken]] = {}
        self._locks: Dict[str, asyncio.Lock] = {}

    # ------------------------------------------------------------------
    # Public API
    # ------------------------------------------------------------------
    async def handle_send_message(
        self,
        content: str,
        model_id: str | None = None,
        on_stream_chunk: ChunkCallback | None = None,
        system_prompt: str | None = None,
        attachments: Sequence[Attachment] = (),
        conversation_id: str | None = None,
        on_event: EventCallback | None = None,
    ) -> RunOutcome:
        """
        Run one request to completion.

        A new request on a conversation cancels the previous run of that conversation first and
        waits for it to unwind.

        Raises
        ------
        UnknownModelError, MissingCredentialError
            Before any stage runs, when *model_id* cannot be served.
        """
        conversation_id = conversation_id or uuid.uuid4().hex
        provider, info = self.provider_factory(model_id or settings.DEFAULT_MODEL)

        # Cancel-wait-register is serialised per conversation so concurrent sends queue up and
        # each one cancels the run registered by the send before it.
        async with self._locks.setdefault(conversation_id, asyncio.Lock()):
            previous = self._runs.get(conversation_id)
            if previous is not None and not previous[0].done():
                logger.info("Cancelling previous run of conversation %s", conversation_id)
                previous[1].cancel()
                await asyncio.wait([previous[0]])
            state, ctx, task, token = self._start_run(
                conversation_id, provider, info, content, attachments, on_stream_chunk,
                on_event, system_prompt,
            )

        try:
            return await task
        except asyncio.CancelledError:
            if not task.cancelled():
                # The run finished; only the caller was cancelled
                raise
            outcome = await self._finish_cancelled(state, ctx)
            if not token.cancelled:
                # Cancelled by whoever awaits this call rather than through the token
                token.cancel()
                raise
            return outcome
        finally:
            current = self._runs.get(conversation_id)
            if current is not None and current[0] is task:
                del self._runs[conversation_id]

    def _start_run(
        self,
        conversation_id: str,
        provider: LLMProvider,
        info: ModelInfo,
        content: str,
        attachments: Sequence[Attachment],
        on_stream_chunk: ChunkCallback | None,
        on_event: EventCallback | None,
        system_prompt: str | None,
    ) -> Tuple[AgentRunState, _RunContext, "asyncio.Task[RunOutcome]", CancellationToken]:
        """Create the state and task of a new run and register it for its conversation."""
        state = AgentRunState(
            conversation_id=conversation_id,
            model=info.api_model,
            max_iterations=self.max_iterations,
        )
        state.trace = Trace(run_id=state.run_id, session_id=conversation_id)
        ctx = _RunContext(
            provider=provider,
            executor=ToolExecutor(
                self.registry, self._cache_for(conversation_id), timeout=self.tool_timeout
            ),
            on_stream_chunk=on_stream_chunk,
            on_event=on_event,
            system_prompt=system_prompt,
        )
        token = CancellationToken()
        task = asyncio.create_task(
            self._run(state, ctx, content, attachments, token), name=f"run-{state.run_id}"
        )
        token.bind(task)
        self._runs[conversation_id] = (task, token)
        logger.info(
            "Run %s started (conversation=%s, model=%s)",
            state.run_id,
            conversation_id,
            info.model_id,
        )
        return state, ctx, task, token

    def cancel(self, conversation_id: str) -> bool:
        """Cancel the in-flight run of *conversation_id*; False if none is running."""
        entry = self._runs.get(conversation_id)
        if entry is None or entry[0].done():
            return False
        entry[1].cancel()
        return True

    def resolve_approval(self, approval_id: str, decision: ApprovalDecision) -> ApprovalRequest:
        """Deliver a human decision; see :meth:`ApprovalGate.resolve`."""
        return self.approvals.resolve(approval_id, decision)

    def pending_approvals(self, conversation_id: str | None = None) -> List[ApprovalRequest]:
        return self.approvals.pending(conversation_id)

    def is_running(self, conversation_id: str) -> bool:
        entry = self._runs.get(conversation_id)
        return entry is not None and not entry[0].done()

    # ------------------------------------------------------------------
    # Run driver
    # ------------------------------------------------------------------
    async def _run(
        self,
        state: AgentRunState,
        ctx: _RunContext,
        content: str,
        attachments: Sequence[Attachment],
        token: CancellationToken,
    ) -> RunOutcome:
        text_tools = self.registry.render("text")
        native_tools = self.registry.render(ctx.provider.tool_format)

        state.history.extend(self.store.history(state.conversation_id, settings.HISTORY_TURNS))
        answer: str | None = None
        try:
            ctx.user_message = await self.preprocessor.process(content, attachments, state.trace)
            state.history.append(ctx.user_message)

            run_loop = True
            if self.intent_analysis:
                run_loop = await self._analyze_intent(state, ctx, text_tools, native_tools)
            if run_loop:
                await self._loop(state, ctx, token, text_tools, native_tools)

            if state.status != RunStatus.TOOL_FAILURE:
                answer = await self._stage(
                    state, Stage.DONE, self._final_answer(state, ctx, native_tools)
                )
                if state.status == RunStatus.RUNNING:
                    state.status = RunStatus.COMPLETED
        except OrchestratorError as exc:
            logger.error(
                "Run %s failed at stage=%s step=%s tool=%s: %s",
                state.run_id,
                exc.stage.value if exc.stage else None,
                exc.step,
                exc.active_tool,
                exc,
            )
            state.status = RunStatus.FAILED
            state.error = exc.to_run_error()
            state.current_stage = Stage.DONE
            state.trace.end({"error": str(exc)})
            self.store.save_run(state)
            await self._emit(ctx.on_event, RunFailed(error=state.error))
            return self._outcome(state, None)

        state.current_stage = Stage.DONE
        self._persist(state, ctx, answer)
        if state.error is not None:
            await self._emit(ctx.on_event, RunFailed(error=state.error))
        else:
            await self._emit(
                ctx.on_event, RunFinished(run_id=state.run_id, status=state.status, answer=answer)
            )
        logger.info(
            "Run %s finished: status=%s iterations=%d actions=%d",
            state.run_id,
            state.status.value,
            state.current_step,
            len(state.actions_taken),
        )
        return self._outcome(state, answer)

    async def _loop(
        self,
        state: AgentRunState,
        ctx: _RunContext,
        token: CancellationToken,
        text_tools: List[Dict[str, Any]],
        native_tools: List[Dict[str, Any]],
    ) -> None:
        while True:
            # The bound is checked before planning a new iteration
            if state.current_step >= state.max_iterations:
                logger.warning(
                    "Run %s reached max iterations (%d)", state.run_id, state.max_iterations
                )
                state.status = RunStatus.MAX_ITERATIONS
                return
            token.raise_if_cancelled()

            await self._stage(state, Stage.PLAN, self.plan(state, ctx, text_tools, native_tools))
            chosen = await self._stage(
                state, Stage.DECIDE, self.decide(state, ctx, text_tools, native_tools)
            )
            if chosen == FINAL_ANSWER:
                return

            await self._stage(state, Stage.DESCRIBE, self.describe(state, ctx, native_tools))
            results = await self._stage(state, Stage.EXECUTE, self.execute(state, ctx))
            if batch_failed(results):
                logger.warning("Run %s: every tool call failed non-retriably", state.run_id)
                state.status = RunStatus.TOOL_FAILURE
                state.error = RunError(
                    type="tool_failure",
                    message="; ".join(r.as_text() for r in results),
                    stage=Stage.EXECUTE,
                    step=state.current_step,
                    active_tool=chosen,
                    model=state.model,
                    details=[r.error.model_dump() for r in results if r.error is not None],
                )
                return

            await self._stage(
                state, Stage.REFLECT, self.reflect(state, ctx, text_tools, native_tools)
            )
            state.advance()

    async def _stage(self, state: AgentRunState, stage: Stage, awaitable: Any) -> Any:
        """Await one stage, wrapping failures with the run position."""
        state.current_stage = stage
        try:
            return await awaitable
        except OrchestratorError:
            raise
        except Exception as exc:  # noqa: BLE001
            error_type = (
                "structured_output_error"
                if isinstance(exc, StructuredOutputError)
                else type(exc).__name__
            )
            raise OrchestratorError(
                f"{stage.value} failed: {exc}",
                stage=stage,
                step=state.current_step,
                active_tool=state.active_tool.name if state.active_tool else None,
                model=state.model,
                error_type=error_type,
            ) from exc

    # ------------------------------------------------------------------
    # Stages
    # ------------------------------------------------------------------
    async def _structured(
        self,
        state: AgentRunState,
        ctx: _RunContext,
        schema: StructuredOutputSchema,
        system: str,
        native_tools: Sequence[Dict[str, Any]],
    ) -> StructuredResult:
        with state.trace.generation(schema.name, state.model, input=schema.name) as gen:
            result = await ctx.provider.structured_completion(
                state.model, state.history, schema, system=system, tools=native_tools
            )
            gen.end(result.data, result.usage)
        state.usage = state.usage + result.usage
        return result

    async def plan(
        self,
        state: AgentRunState,
        ctx: _RunContext,
        text_tools: Sequence[Dict[str, Any]],
        native_tools: Sequence[Dict[str, Any]],
    ) -> str:
        """Ask for a plan, store it on the state and append it to history."""
        result = await self._structured(
            state, ctx, PLAN_SCHEMA, prompts.plan_prompt(state, text_tools), native_tools
        )
        steps = "\n".join(f"- {s['tool']}: {s['note']}" for s in result.data["steps"])
        state.plan = f"{result.data['thinking']}\n{steps}".strip()
        state.append(Role.ASSISTANT, f"<plan>\n{state.plan}\n</plan>")
        logger.debug("Plan:\n%s", state.plan)
        return state.plan

    async def decide(
        self,
        state: AgentRunState,
        ctx: _RunContext,
        text_tools: Sequence[Dict[str, Any]],
        native_tools: Sequence[Dict[str, Any]],
    ) -> str:
        """Select the next tool by exact name."""
        result = await self._structured(
            state,
            ctx,
            decide_schema(self.registry.names()),
            prompts.decide_prompt(state, text_tools),
            native_tools,
        )
        name = result.data["tool"]
        if name not in self.registry:
            raise StructuredOutputError(
                f"Decision selected unknown tool '{name}'",
                schema_name="decide",
                raw_response=result.raw_response,
                provider=ctx.provider.name,
            )
        state.select_tool(self.registry.spec(name))
        logger.info(
            "Step %d: decided on '%s' (%s)", state.current_step, name, result.data["_thoughts"]
        )
        return name

    async def describe(
        self, state: AgentRunState, ctx: _RunContext, native_tools: Sequence[Dict[str, Any]]
    ) -> Dict[str, Any]:
        """Fill and validate the active tool's parameters."""
        if state.active_tool is None:
            raise OrchestratorError(
                "no active tool to describe", Stage.DESCRIBE, state.current_step, model=state.model
            )
        spec = state.active_tool
        result = await self._structured(
            state,
            ctx,
            tool_parameters_schema(spec.name, spec.input_schema),
            prompts.describe_prompt(state),
            native_tools,
        )
        raw = {k: v for k, v in result.data.items() if k != "_thoughts"}
        payload = self.registry[spec.name].validate(raw).model_dump()
        state.set_payload(payload)
        return payload

    async def execute(self, state: AgentRunState, ctx: _RunContext) -> List[ToolResult]:
        """Run the active tool through the approval gate and the executor."""
        if state.active_tool is None:
            raise OrchestratorError(
                "no active tool to execute", Stage.EXECUTE, state.current_step, model=state.model
            )
        name = state.active_tool.name
        payload = dict(state.active_tool_payload or {})
        call_ref = ToolCallRef(name=name, input=payload)
        state.append(Role.ASSISTANT, "", tool_call=call_ref)

        with state.trace.span(f"tool:{name}", input=payload) as span:
            result, parameters, feedback = await self._gated_execute(state, ctx, name, payload)
            span.end(result.model_dump(mode="json"))

        state.actions_taken.append(
            ActionRecord(
                tool_name=name, parameters=parameters, result=result, step=state.current_step
            )
        )
        if feedback is None:
            feedback = self._history_text(state, name, parameters, result)
        state.append(Role.TOOL_RESULT, feedback, tool_call_id=call_ref.id, tool_name=name)
        return [result]

    def _history_text(
        self, state: AgentRunState, name: str, parameters: Dict[str, Any], result: ToolResult
    ) -> str:
        """Result text for history; large outputs are stored and replaced by a reference."""
        text = result.as_text()
        if not result.success or not should_persist(self.registry[name].result_mode, len(text)):
            return text
        record = ToolOutputRecord(
            tool_name=name,
            conversation_id=state.conversation_id,
            run_id=state.run_id,
            parameters=parameters,
            output=result.data,
        )
        try:
            ref = self.output_store.store(record)
        except OSError as exc:
            logger.error("Could not store output of '%s', truncating it instead: %s", name, exc)
            return truncate(text, settings.TOOL_OUTPUT_INLINE_MAX_CHARS)[0]
        result.metadata.output_ref = ref.id
        return history_reference(ref, text)

    async def _gated_execute(
        self, state: AgentRunState, ctx: _RunContext, name: str, payload: Dict[str, Any]
    ) -> Tuple[ToolResult, Dict[str, Any], Optional[str]]:
        """Returns ``(result, parameters used, history text override)``."""
        context = ToolExecutionContext(
            run_id=state.run_id,
            conversation_id=state.conversation_id,
            tool_outputs=self.output_store.root,
            media=self.preprocessor,
        )

        async def run(parameters: Dict[str, Any]) -> ToolResult:
            return await ctx.executor.execute(
                ToolCall(tool=name, parameters=parameters),
                context,
                on_activity=lambda event: self._emit(ctx.on_event, event),
            )

        if not self.registry.requires_approval(name):
            return await run(payload), payload, None

        tool = self.registry[name]
        request = ApprovalRequest(
            tool_name=name,
            args=payload,
            preview=tool.preview(payload),
            risk=tool.risk,
            run_id=state.run_id,
            conversation_id=state.conversation_id,
        )
        state.status = RunStatus.AWAITING_APPROVAL
        try:
            decision = await self.approvals.request(request, ctx.on_event)
        finally:
            state.status = RunStatus.RUNNING
        kind = decision.decision
        note = f" Feedback: {decision.feedback}" if decision.feedback else ""

        if kind == ApprovalDecisionKind.SKIPPED:
            result = ToolResult.ok({"skipped": True})
            text = f"The user skipped this tool call; it was not executed.{note}"
            parameters = payload
        elif kind == ApprovalDecisionKind.DENIED:
            result = ToolResult.failure(
                "denied", decision.feedback or "Tool call denied by the user", retriable=False
            )
            text = f"The user denied this tool call; it was not executed.{note}"
            parameters = payload
        elif kind == ApprovalDecisionKind.MODIFIED:
            parameters = dict(decision.parameters or {})
            result = await run(parameters)
            text = (
                f"The user modified the parameters to {json.dumps(parameters, ensure_ascii=False)}."
                f"{note}\nResult: {result.as_text()}"
            )
        else:
            parameters = payload
            result = await run(payload)
            text = None
        result.metadata.approval = kind
        return result, parameters, text

    async def reflect(
        self,
        state: AgentRunState,
        ctx: _RunContext,
        text_tools: Sequence[Dict[str, Any]],
        native_tools: Sequence[Dict[str, Any]],
    ) -> str:
        """Free-text reflection on the latest action."""
        with state.trace.generation("reflect", state.model) as gen:
            completion = await ctx.provider.complete(
                state.model,
                state.history,
                system=prompts.reflect_prompt(state, text_tools),
                tools=native_tools,
            )
            gen.end(completion.text, completion.usage)
        state.usage = state.usage + completion.usage
        reflection = completion.text.strip()
        if state.actions_taken:
            state.actions_taken[-1].reflection = reflection
        state.append(Role.ASSISTANT, reflection)
        return reflection

    async def _final_answer(
        self, state: AgentRunState, ctx: _RunContext, native_tools: Sequence[Dict[str, Any]]
    ) -> str:
        chunks: List[str] = []
        with state.trace.generation("final_answer", state.model) as gen:
            async for chunk in ctx.provider.stream(
                state.model,
                state.history,
                system=prompts.final_answer_prompt(state, ctx.system_prompt),
                tools=native_tools,
            ):
                chunks.append(chunk)
                if ctx.on_stream_chunk is not None:
                    await maybe_await(ctx.on_stream_chunk(chunk))
                await self._emit(ctx.on_event, StreamChunk(text=chunk))
            answer = "".join(chunks).strip()
            gen.end(answer)
        return answer

    async def _analyze_intent(
        self,
        state: AgentRunState,
        ctx: _RunContext,
        text_tools: Sequence[Dict[str, Any]],
        native_tools: Sequence[Dict[str, Any]],
    ) -> bool:
        """True when the request should go through the tool loop."""
        try:
            intent = await self.intent_analyzer.analyze(
                ctx.provider, state, text_tools, native_tools
            )
        except LLMProviderError as exc:
            raise OrchestratorError(
                f"intent analysis failed: {exc}",
                step=state.current_step,
                model=state.model,
                error_type="structured_output_error",
            ) from exc
        logger.info("Intent: %s", intent.get("intent_type"))
        return intent.get("intent_type") != "other"

    # ------------------------------------------------------------------
    # Helpers
    # ------------------------------------------------------------------
    def _cache_for(self, conversation_id: str) -> ToolResultCache | None:
        if not settings.ENABLE_TOOL_CACHE:
            return None
        if self.cache_scope == "conversation":
            if conversation_id not in self._conversation_caches:
                self._conversation_caches[conversation_id] = ToolResultCache(
                    settings.TOOL_CACHE_TTL_SECONDS, settings.TOOL_CACHE_MAX_ENTRIES
                )
            return self._conversation_caches[conversation_id]
        return ToolResultCache(settings.TOOL_CACHE_TTL_SECONDS, settings.TOOL_CACHE_MAX_ENTRIES)

    def _persist(self, state: AgentRunState, ctx: _RunContext, answer: str | None) -> None:
        if ctx.user_message is not None:
            self.store.append(state.conversation_id, Role.USER, ctx.user_message.content)
        if answer:
            self.store.append(state.conversation_id, Role.ASSISTANT, answer)
        state.trace.end(answer)
        self.store.save_run(state)

    async def _finish_cancelled(self, state: AgentRunState, ctx: _RunContext) -> RunOutcome:
        logger.info(
            "Run %s cancelled at stage=%s step=%d",
            state.run_id,
            state.current_stage.value,
            state.current_step,
        )
        state.status = RunStatus.CANCELLED
        state.current_stage = Stage.DONE
        state.trace.end({"cancelled": True})
        self.store.save_run(state)
        await self._emit(ctx.on_event, RunFinished(run_id=state.run_id, status=state.status))
        return self._outcome(state, None)

    @staticmethod
    async def _emit(callback: EventCallback | None, event: AgentEvent) -> None:
        if callback is not None:
            await maybe_await(callback(event))

    @staticmethod
    def _outcome(state: AgentRunState, answer: str | None) -> RunOutcome:
        return RunOutcome(
            run_id=state.run_id,
            conversation_id=state.conversation_id,
            status=state.status,
            answer=answer,
            actions=list(state.actions_taken),
            iterations=state.current_step,
            error=state.error,
            usage=state.usage,
        )
