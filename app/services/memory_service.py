"""Conversation memory: a verbatim recent window plus rolling summaries."""

import asyncio
import logging
import weakref
from collections.abc import Callable, Sequence
from contextlib import AbstractAsyncContextManager
from uuid import UUID

from fastapi import BackgroundTasks
from sqlalchemy import select
from sqlalchemy.ext.asyncio import AsyncSession

from app.core.config import Settings, settings
from app.services.llm_service import LLMService
from models.chat_summary import ChatSummary

logger = logging.getLogger(__name__)

SUMMARY_INSTRUCTION = """You are a memory compression engine for an AI tutor.

Summarize the chat turns below into a compact memory that will be reused as context in later conversations. If an earlier memory is given, merge it with the new turns into one updated memory.

Rules:
- Keep facts, definitions, decisions, constraints and conclusions.
- Keep the user's goals, misunderstandings and corrections.
- Keep unresolved questions and open tasks.
- Drop greetings, filler, repetition and stylistic phrasing.
- Do NOT invent information.
- Do NOT explain; only summarize.
- Be concise and information-dense.
- Write in neutral third person.
"""

# A turn is {"user": ..., "assistant": ...}, the shape of ChatMessage.turn.
Turn = dict[str, str]
SessionFactory = Callable[[], AbstractAsyncContextManager[AsyncSession]]


def format_turns(turns: Sequence[Turn]) -> str:
    return "\n\n".join(f"User: {t['user']}\nAssistant: {t['assistant']}" for t in turns)


class ConversationMemory:
    """Owns summary bookkeeping for every chat in the process.

    Summary rows for a chat must cover contiguous, non-overlapping turn
    ranges, so regeneration for one chat is serialised by a per-chat lock. A
    lock lives only while some summary job for its chat holds it.
    """

    def __init__(
        self,
        llm: LLMService,
        session_factory: SessionFactory,
        config: Settings = settings,
    ):
        self.llm = llm
        self.session_factory = session_factory
        self.recent_turns = config.recent_history_turns
        self.interval = config.summary_interval
        self.temperature = config.summary_temperature
        self.max_tokens = config.summary_max_tokens
        self._locks: weakref.WeakValueDictionary[UUID, asyncio.Lock] = (
            weakref.WeakValueDictionary()
        )

    def format_recent_history(self, turns: Sequence[Turn]) -> str:
        if not turns:
            return ""
        return format_turns(turns[-self.recent_turns :])

    def should_summarize(self, turn_count: int) -> bool:
        """Regenerate on turns 7, 13, 19... (every ``interval`` past the window)."""
        return turn_count % self.interval == 1 and turn_count > self.recent_turns

    @staticmethod
    async def _latest(db: AsyncSession, chat_id: UUID) -> ChatSummary | None:
        result = await db.execute(
            select(ChatSummary)
            .where(ChatSummary.chat_id == chat_id)
            .order_by(ChatSummary.end_turn.desc(), ChatSummary.created_at.desc())
            .limit(1)
        )
        return result.scalar_one_or_none()

    async def get_latest_summary(self, db: AsyncSession, chat_id: UUID) -> str:
        latest = await self._latest(db, chat_id)
        return latest.summary if latest else ""

    def _build_prompt(self, previous: str, turns: Sequence[Turn]) -> str:
        parts = [SUMMARY_INSTRUCTION]
        if previous:
            parts.append(f"earlier memory:\n{previous}")
        parts.append(f"chat history:\n{format_turns(turns)}")
        return "\n\n".join(parts)

    async def generate_summary(
        self, chat_id: UUID, turn_count: int, turns: Sequence[Turn]
    ) -> ChatSummary | None:
        """Summarize turns not yet covered, up to ``turn_count - recent_turns``.

        ``turns`` is the chat's full ordered history at ``turn_count``. The
        previous summary is folded into the new one so the latest row always
        describes everything older than the recent window.
        """
        end_turn = turn_count - self.recent_turns
        lock = self._locks.get(chat_id)
        if lock is None:
            lock = self._locks[chat_id] = asyncio.Lock()
        async with lock:
            async with self.session_factory() as db:
                previous = await self._latest(db, chat_id)
                start_turn = previous.end_turn + 1 if previous else 1
                if end_turn < start_turn:
                    logger.debug(f"Chat {chat_id}: turns up to {end_turn} already summarized")
                    return None

                prompt = self._build_prompt(
                    previous.summary if previous else "", turns[start_turn - 1 : end_turn]
                )
                completion = await self.llm.complete(
                    prompt,
                    temperature=self.temperature,
                    max_output_tokens=self.max_tokens,
                    grounded=False,
                )
                summary = ChatSummary(
                    chat_id=chat_id,
                    summary=completion.text.strip() or "No summary generated",
                    start_turn=start_turn,
                    end_turn=end_turn,
                    total_tokens=completion.total_tokens,
                )
                db.add(summary)
                await db.commit()
                logger.info(f"Chat {chat_id}: summarized turns {start_turn}-{end_turn}")
                return summary

    async def refresh_summary(self, chat_id: UUID, turn_count: int, turns: Sequence[Turn]) -> None:
        """Background entry point: a failed summary is logged, never raised."""
        try:
            await self.generate_summary(chat_id, turn_count, turns)
        except Exception as e:
            logger.error(f"Chat {chat_id}: summary at turn {turn_count} failed: {str(e)}")

    def schedule_summary(
        self,
        background_tasks: BackgroundTasks,
        chat_id: UUID,
        turn_count: int,
        turns: Sequence[Turn],
    ) -> bool:
        """Queue regeneration when due; it runs after the response is sent."""
        if not self.should_summarize(turn_count):
            return False
        background_tasks.add_task(self.refresh_summary, chat_id, turn_count, list(turns))
        return True
