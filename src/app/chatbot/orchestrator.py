"""Conversation orchestrator: one inbound message in, one reply out.

Per turn:
1. Reject empty messages.
2. Human handoff check; on a hit, reply with the canned message and skip
   everything else, including the LLM.
3. Classify phase and emotion.
4. Embed the message (one provider call).
5. Score the knowledge corpus, optionally enrich by shared tags.
6. Score the methodology corpus.
7. Assemble the system prompt.
8. Call the completion provider, blocking or streaming.
9. Persist the customer message, the reply and the updated state, and return
   the reply with a full debug trace.

Provider failures abort the turn with ProviderError; nothing is persisted
for a failed turn. An empty retrieval is not an error: the prompt carries an
explicit "no knowledge" marker instead.

Writes for a conversation are serialized through the store's per-id lock. A
blocking turn holds the lock for the whole turn; a streaming turn holds it
from planning until its stream has completed, been cancelled or failed.
"""

from __future__ import annotations

import asyncio
import time
from concurrent.futures import Executor
from dataclasses import dataclass, field
from datetime import datetime, timezone
from typing import AsyncGenerator

import structlog
from pydantic import BaseModel, Field

from src.app.chatbot.classifier import (
    EmotionDetection,
    PhaseDetection,
    detect_emotion,
    detect_phase,
)
from src.app.chatbot.errors import EmptyMessageError, ProviderError
from src.app.chatbot.handoff import HANDOFF_MESSAGE, HandoffDecision, check_handoff
from src.app.chatbot.prompts import PromptSections, build_system_prompt
from src.app.chatbot.schemas import (
    CapsuleDebugInfo,
    ChatbotConfig,
    ChatbotProfile,
    MethodologyDebugInfo,
    TurnDebugInfo,
    TurnResult,
    content_preview,
)
from src.app.chatbot.streaming import ResponseStream, StreamStatus
from src.app.services.llm import LLMService
from src.knowledge.config import KnowledgeConfig
from src.knowledge.conversations.session import (
    ChatMessage,
    ConversationContext,
    ConversationContextCache,
)
from src.knowledge.conversations.store import (
    ConversationNotFoundError,
    ConversationStats,
    ConversationStore,
)
from src.knowledge.corpus import CorpusStats, KnowledgeCorpus, MethodologyCorpus, corpus_stats
from src.knowledge.embeddings import EmbeddingService
from src.knowledge.models import (
    ChannelType,
    ConversationOutcome,
    ConversationRecord,
    ConversationStatus,
    MessageRecord,
    MessageRole,
)
from src.knowledge.retrieval.enrichment import enrich
from src.knowledge.retrieval.lexical import find_matched_tags, find_matched_triggers
from src.knowledge.retrieval.methodology import MethodologyScorer, ScoredMethodology
from src.knowledge.retrieval.query import RetrievalQuery
from src.knowledge.retrieval.scorer import KnowledgeScorer, ScoredKnowledge

logger = structlog.get_logger(__name__)

_HISTORY_ROLES: dict[MessageRole, str] = {
    MessageRole.CUSTOMER: "user",
    MessageRole.ASSISTANT: "assistant",
    MessageRole.HUMAN_AGENT: "assistant",
}


def _elapsed_ms(start: float) -> float:
    return (time.perf_counter() - start) * 1000


class TurnPlan(BaseModel):
    """Everything decided for a turn before the completion call."""

    message: str
    phase: PhaseDetection
    emotion: EmotionDetection
    knowledge: list[ScoredKnowledge] = Field(default_factory=list)
    methodologies: list[ScoredMethodology] = Field(default_factory=list)
    prompt: PromptSections
    history: list[ChatMessage] = Field(default_factory=list)
    debug: TurnDebugInfo = Field(default_factory=TurnDebugInfo)

    @property
    def capsule_ids(self) -> list[str]:
        return [k.record.id for k in self.knowledge]

    def llm_messages(self) -> list[dict]:
        return [m.model_dump() for m in self.history] + [
            {"role": "user", "content": self.message}
        ]


@dataclass
class StreamingTurn:
    """Handle for a streaming turn.

    The stream is already producing when the handle is returned, and the
    conversation stays locked until it ends. Drain it or cancel it: a handle
    dropped with a long reply still buffered keeps the conversation locked
    and leaves the turn unpersisted.

    Attributes:
        conversation_id: Conversation the turn belongs to.
        stream: Reply chunks; iterate it, and cancel it if you stop early.
        debug: Trace of the decisions taken before streaming started.
        human_handoff_requested: True when the stream is the canned handoff.
    """

    conversation_id: str
    stream: ResponseStream
    debug: TurnDebugInfo = field(default_factory=TurnDebugInfo)
    human_handoff_requested: bool = False


class ChatbotOrchestrator:
    """Runs conversation turns for one chatbot.

    Every collaborator is injected so tests can supply isolated instances.

    Args:
        knowledge: Knowledge capsule corpus (may contain the config sentinel).
        methodology: Sales methodology corpus.
        embedder: Embedding provider for inbound messages.
        llm: Completion provider.
        store: Authoritative conversation store.
        cache: Live-context cache in front of the store.
        profile: Chatbot identity for the prompt.
        config: Chatbot configuration; read from the corpus sentinel when None.
        knowledge_config: Knowledge-layer settings (stream buffer size, cache).
        chatbot_id: Identifier passed to the LLM for cost tracking.
        scoring_executor: Optional executor for parallel candidate scoring.
    """

    def __init__(
        self,
        knowledge: KnowledgeCorpus,
        methodology: MethodologyCorpus,
        embedder: EmbeddingService,
        llm: LLMService,
        store: ConversationStore,
        cache: ConversationContextCache | None = None,
        profile: ChatbotProfile | None = None,
        config: ChatbotConfig | None = None,
        knowledge_config: KnowledgeConfig | None = None,
        chatbot_id: str = "default",
        scoring_executor: Executor | None = None,
    ) -> None:
        self._knowledge = knowledge
        self._methodology = methodology
        self._embedder = embedder
        self._llm = llm
        self._store = store
        self._knowledge_config = knowledge_config or KnowledgeConfig()
        self._cache = cache or ConversationContextCache.from_config(self._knowledge_config)
        self._profile = profile or ChatbotProfile()
        self._config = config or ChatbotConfig.from_corpus(knowledge)
        self._chatbot_id = chatbot_id
        self._knowledge_scorer = KnowledgeScorer(
            weights=self._config.retrieval_weights,
            max_results=self._config.max_capsules_per_query,
            executor=scoring_executor,
        )
        self._methodology_scorer = MethodologyScorer(
            max_results=self._config.max_methodologies_per_query
        )

    @property
    def config(self) -> ChatbotConfig:
        return self._config

    # ── Conversation Lifecycle ─────────────────────────────────────────────

    async def start_conversation(
        self,
        channel_id: str,
        channel_type: ChannelType = ChannelType.WEB_WIDGET,
        customer_identifier: str | None = None,
    ) -> ConversationRecord:
        """Create a conversation in the greeting phase and cache its context."""
        record = await self._store.create(
            ConversationRecord(
                channel_id=channel_id,
                channel_type=channel_type,
                customer_identifier=customer_identifier,
            )
        )
        self._cache.put(ConversationContext(conversation=record))
        logger.info(
            "conversation_started",
            conversation_id=record.id,
            chatbot_id=self._chatbot_id,
            channel_type=channel_type.value,
        )
        return record

    async def restore_conversation(self, conversation_id: str) -> ConversationContext | None:
        """Rebuild a conversation's context from the store alone.

        Returns:
            The context, or None when the id is unknown so the caller can
            start a fresh conversation.
        """
        record = await self._store.get(conversation_id)
        if record is None:
            logger.info("conversation_not_found", conversation_id=conversation_id)
            return None

        messages = await self._store.list_messages(conversation_id)
        history = [
            ChatMessage(role=_HISTORY_ROLES[m.role], content=m.content)
            for m in messages
            if m.role in _HISTORY_ROLES
        ]
        context = ConversationContext(conversation=record, history=history)
        self._cache.put(context)
        logger.debug(
            "conversation_restored",
            conversation_id=conversation_id,
            messages=len(history),
            phase=record.current_sales_phase.value,
        )
        return context

    async def end_conversation(
        self, conversation_id: str, outcome: ConversationOutcome
    ) -> ConversationRecord:
        """Close a conversation with its outcome and drop its cached context.

        Raises:
            ConversationNotFoundError: If the id is unknown.
        """
        async with self._store.lock(conversation_id):
            record = await self._store.get(conversation_id)
            if record is None:
                raise ConversationNotFoundError(conversation_id)

            ended_at = datetime.now(timezone.utc)
            status = (
                ConversationStatus.CONVERTED
                if outcome == ConversationOutcome.CONVERSION
                else ConversationStatus.COMPLETED
            )
            updated = await self._store.update(
                conversation_id,
                status=status,
                outcome=outcome,
                ended_at=ended_at,
                duration_seconds=(ended_at - record.started_at).total_seconds(),
            )
        self._cache.evict(conversation_id)
        logger.info(
            "conversation_ended",
            conversation_id=conversation_id,
            outcome=outcome.value,
            messages=updated.message_count,
        )
        return updated

    # ── Turns ──────────────────────────────────────────────────────────────

    async def chat(self, conversation_id: str, message: str) -> TurnResult:
        """Run one blocking turn.

        Raises:
            EmptyMessageError: If the message is empty.
            ConversationNotFoundError: If the conversation is unknown.
            ProviderError: If embedding or completion fails.
        """
        text = self._validate(message)
        async with self._store.lock(conversation_id):
            context = await self._load_context(conversation_id)

            handoff = check_handoff(text, self._config)
            if handoff.requested:
                await self._record_handoff(context, text, handoff)
                return TurnResult(
                    conversation_id=conversation_id,
                    response=HANDOFF_MESSAGE,
                    phase=context.conversation.current_sales_phase,
                    emotion=context.conversation.detected_emotion,
                    human_handoff_requested=True,
                    debug=self._handoff_debug(handoff),
                )

            plan = await self._plan_turn(context, text)
            try:
                result = await self._llm.completion(
                    plan.llm_messages(),
                    system_prompt=plan.prompt.system_prompt,
                    temperature=self._config.temperature,
                    max_tokens=self._config.max_tokens_per_response,
                    metadata=self._llm_metadata(conversation_id),
                )
            except Exception as exc:
                logger.error(
                    "completion_failed", conversation_id=conversation_id, error=str(exc)
                )
                raise ProviderError("completion", str(exc)) from exc

            response = result["content"]
            await self._commit_turn(conversation_id, plan, response)

        logger.info(
            "turn_completed",
            conversation_id=conversation_id,
            phase=plan.phase.phase.value,
            emotion=plan.emotion.emotion.value,
            capsules=len(plan.knowledge),
            methodologies=len(plan.methodologies),
        )
        return TurnResult(
            conversation_id=conversation_id,
            response=response,
            phase=plan.phase.phase,
            emotion=plan.emotion.emotion,
            capsule_ids=plan.capsule_ids,
            debug=plan.debug,
        )

    async def chat_stream(self, conversation_id: str, message: str) -> StreamingTurn:
        """Start a streaming turn.

        Chunks are forwarded as they arrive and buffered for persistence. The
        reply is committed when the stream completes; a cancelled stream
        commits whatever partial text it produced.

        The conversation's lock is held from planning until the stream
        finishes (completed, cancelled or failed), so other turns in the same
        conversation wait for this one. The provider starts producing
        immediately; callers must drain or cancel the stream.

        Raises:
            EmptyMessageError: If the message is empty.
            ConversationNotFoundError: If the conversation is unknown.
            ProviderError: If embedding fails (completion failures are raised
                while iterating the stream).
        """
        text = self._validate(message)
        lock = self._store.lock(conversation_id)
        await lock.acquire()
        try:
            context = await self._load_context(conversation_id)
            handoff = check_handoff(text, self._config)
            if handoff.requested:
                await self._record_handoff(context, text, handoff)
            else:
                plan = await self._plan_turn(context, text)
        except BaseException:
            lock.release()
            raise

        if handoff.requested:
            lock.release()
            return StreamingTurn(
                conversation_id=conversation_id,
                stream=ResponseStream(_single_chunk(HANDOFF_MESSAGE)),
                debug=self._handoff_debug(handoff),
                human_handoff_requested=True,
            )

        async def commit(reply: str) -> None:
            try:
                await self._commit_turn(conversation_id, plan, reply)
            finally:
                lock.release()

        async def on_finish(reply: str, status: StreamStatus) -> None:
            if status == StreamStatus.FAILED:
                lock.release()
                logger.warning("stream_turn_failed", conversation_id=conversation_id)
                return
            # A second cancel must not leave the turn half written
            await asyncio.shield(asyncio.ensure_future(commit(reply)))
            logger.info(
                "stream_turn_finished",
                conversation_id=conversation_id,
                status=status.value,
                chars=len(reply),
            )

        stream = ResponseStream(
            self._provider_chunks(plan, conversation_id),
            on_finish=on_finish,
            buffer_size=self._knowledge_config.stream_buffer_size,
        )
        stream.start()
        return StreamingTurn(conversation_id=conversation_id, stream=stream, debug=plan.debug)

    # ── Stats ──────────────────────────────────────────────────────────────

    def corpus_stats(self) -> CorpusStats:
        return corpus_stats(self._knowledge, self._methodology)

    async def conversation_stats(self) -> ConversationStats:
        return await self._store.stats()

    # ── Internals ──────────────────────────────────────────────────────────

    @staticmethod
    def _validate(message: str | None) -> str:
        if message is None or not message.strip():
            raise EmptyMessageError()
        return message.strip()

    async def _load_context(self, conversation_id: str) -> ConversationContext:
        context = self._cache.get(conversation_id)
        if context is not None:
            return context
        context = await self.restore_conversation(conversation_id)
        if context is None:
            raise ConversationNotFoundError(conversation_id)
        return context

    def _llm_metadata(self, conversation_id: str) -> dict:
        return {"chatbot_id": self._chatbot_id, "conversation_id": conversation_id}

    async def _plan_turn(self, context: ConversationContext, text: str) -> TurnPlan:
        """Classify, embed, retrieve and build the prompt for a turn."""
        turn_start = time.perf_counter()
        record = context.conversation

        phase = detect_phase(text, record.current_sales_phase)
        emotion = detect_emotion(text)

        embed_start = time.perf_counter()
        try:
            embedding = await self._embedder.embed(text)
        except Exception as exc:
            logger.error("embedding_failed", conversation_id=record.id, error=str(exc))
            raise ProviderError("embedding", str(exc)) from exc
        embedding_ms = _elapsed_ms(embed_start)

        retrieval_start = time.perf_counter()
        query = RetrievalQuery(
            text=text,
            embedding=embedding,
            phase=phase.phase,
            emotion=emotion.emotion,
        )
        candidates = self._knowledge.all()
        knowledge = self._knowledge_scorer.score(candidates, query)
        if self._config.enable_context_enrichment:
            knowledge = enrich(
                knowledge, candidates, max_additional=self._config.max_enrichment_additions
            )
        methodology_candidates = self._methodology.all()
        methodologies = self._methodology_scorer.score(methodology_candidates, query)
        retrieval_ms = _elapsed_ms(retrieval_start)

        turn_limit_reached = record.message_count >= self._config.max_conversation_turns
        prompt = build_system_prompt(
            self._profile,
            self._config,
            phase.phase,
            emotion.emotion,
            knowledge,
            methodologies,
            turn_limit_reached=turn_limit_reached,
        )

        debug = TurnDebugInfo(
            phase_reasoning=phase.reasoning,
            emotion_reasoning=emotion.reasoning,
            matched_phase_indicators=phase.matched_indicators,
            matched_emotion_indicators=emotion.matched_indicators,
            capsules=[_capsule_debug(text, item) for item in knowledge],
            methodologies=[_methodology_debug(text, item) for item in methodologies],
            total_capsules_scanned=len(candidates),
            total_methodologies_scanned=len(methodology_candidates),
            injected_knowledge=prompt.injected_knowledge,
            injected_methodology=prompt.injected_methodology,
            system_prompt=prompt.system_prompt,
            embedding_time_ms=embedding_ms,
            retrieval_time_ms=retrieval_ms,
            total_time_ms=_elapsed_ms(turn_start),
            turn_limit_reached=turn_limit_reached,
        )
        logger.debug(
            "turn_planned",
            conversation_id=record.id,
            phase=phase.phase.value,
            emotion=emotion.emotion.value,
            capsules=len(knowledge),
            methodologies=len(methodologies),
            embedding_ms=round(embedding_ms, 2),
            retrieval_ms=round(retrieval_ms, 2),
        )
        return TurnPlan(
            message=text,
            phase=phase,
            emotion=emotion,
            knowledge=knowledge,
            methodologies=methodologies,
            prompt=prompt,
            history=context.history,
            debug=debug,
        )

    async def _provider_chunks(
        self, plan: TurnPlan, conversation_id: str
    ) -> AsyncGenerator[str, None]:
        try:
            async for chunk in self._llm.streaming_completion(
                plan.llm_messages(),
                system_prompt=plan.prompt.system_prompt,
                temperature=self._config.temperature,
                max_tokens=self._config.max_tokens_per_response,
                metadata=self._llm_metadata(conversation_id),
            ):
                yield chunk
        except Exception as exc:
            logger.error(
                "completion_stream_failed", conversation_id=conversation_id, error=str(exc)
            )
            raise ProviderError("completion", str(exc)) from exc

    async def _commit_turn(self, conversation_id: str, plan: TurnPlan, reply: str) -> None:
        """Persist the customer message, the reply and the funnel state.

        Must be called while holding the conversation's lock.
        """
        context = await self._load_context(conversation_id)
        record = context.conversation
        phase = plan.phase.phase
        emotion = plan.emotion.emotion

        await self._store.append_message(
            MessageRecord(
                conversation_id=conversation_id,
                role=MessageRole.CUSTOMER,
                content=plan.message,
                sales_phase_at_time=phase,
                detected_emotion=emotion,
            )
        )
        history = [*context.history, ChatMessage(role="user", content=plan.message)]
        if reply:
            await self._store.append_message(
                MessageRecord(
                    conversation_id=conversation_id,
                    role=MessageRole.ASSISTANT,
                    content=reply,
                    sales_phase_at_time=phase,
                    capsules_used=plan.capsule_ids,
                )
            )
            history.append(ChatMessage(role="assistant", content=reply))

        reached = list(record.reached_phases)
        if phase not in reached:
            reached.append(phase)
        objections = list(record.objections_faced)
        for item in plan.knowledge:
            if item.record.objection_pattern and item.record.id not in objections:
                objections.append(item.record.id)

        updated = await self._store.update(
            conversation_id,
            current_sales_phase=phase,
            detected_emotion=emotion,
            reached_phases=reached,
            objections_faced=objections,
        )
        self._cache.put(ConversationContext(conversation=updated, history=history))

    async def _record_handoff(
        self, context: ConversationContext, text: str, handoff: HandoffDecision
    ) -> None:
        """Persist a handoff turn and flag the conversation for a person."""
        record = context.conversation
        await self._store.append_message(
            MessageRecord(
                conversation_id=record.id,
                role=MessageRole.CUSTOMER,
                content=text,
                sales_phase_at_time=record.current_sales_phase,
            )
        )
        await self._store.append_message(
            MessageRecord(
                conversation_id=record.id,
                role=MessageRole.ASSISTANT,
                content=HANDOFF_MESSAGE,
                sales_phase_at_time=record.current_sales_phase,
            )
        )
        updated = await self._store.update(
            record.id,
            status=ConversationStatus.WAITING_HUMAN,
            human_requested=True,
            human_handoff_reason=handoff.trigger,
        )
        self._cache.put(
            ConversationContext(
                conversation=updated,
                history=[
                    *context.history,
                    ChatMessage(role="user", content=text),
                    ChatMessage(role="assistant", content=HANDOFF_MESSAGE),
                ],
            )
        )
        logger.info(
            "conversation_waiting_human",
            conversation_id=record.id,
            trigger=handoff.trigger,
        )

    @staticmethod
    def _handoff_debug(handoff: HandoffDecision) -> TurnDebugInfo:
        return TurnDebugInfo(
            phase_reasoning="Human handoff triggered",
            emotion_reasoning="N/A - handoff",
            handoff_trigger=handoff.trigger,
        )


# ── Debug Helpers ───────────────────────────────────────────────────────────


def _capsule_debug(message: str, item: ScoredKnowledge) -> CapsuleDebugInfo:
    record = item.record
    return CapsuleDebugInfo(
        id=record.id,
        source_document=record.source_document,
        context_type=record.context_type,
        content_preview=content_preview(record.content),
        relevance_score=item.relevance_score,
        value_score=item.value_score,
        final_score=item.final_score,
        details=item.details,
        matched_triggers=find_matched_triggers(message, record.trigger_phrases),
        matched_tags=find_matched_tags(message, record.semantic_tags),
        is_enriched=item.is_enriched,
    )


def _methodology_debug(message: str, item: ScoredMethodology) -> MethodologyDebugInfo:
    record = item.record
    return MethodologyDebugInfo(
        id=record.id,
        title=record.title,
        methodology_type=record.methodology_type,
        content_preview=content_preview(record.content),
        relevance_score=item.relevance_score,
        phase_score=item.phase_score,
        emotion_score=item.emotion_score,
        priority_score=item.priority_score,
        final_score=item.final_score,
        matched_triggers=find_matched_triggers(message, record.trigger_phrases),
        phase_match=item.phase_match,
        emotion_match=item.emotion_match,
    )


async def _single_chunk(text: str) -> AsyncGenerator[str, None]:
    yield text
