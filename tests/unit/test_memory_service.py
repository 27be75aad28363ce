"""Unit tests for conversation memory and rolling summaries."""

import pytest
from fastapi import BackgroundTasks
from sqlalchemy import select

from app.services.memory_service import ConversationMemory
from models import ChatSummary


def make_turns(n):
    return [{"user": f"Question {i}", "assistant": f"Answer {i}"} for i in range(1, n + 1)]


@pytest.fixture
def memory(fake_llm, session_factory, test_settings):
    return ConversationMemory(fake_llm, session_factory, test_settings)


class TestSummaryTrigger:
    @pytest.mark.parametrize("count", [7, 13, 19, 25])
    def test_due_on_interval_past_window(self, memory, count):
        assert memory.should_summarize(count)

    @pytest.mark.parametrize("count", [0, 1, 4, 5, 6, 8, 12, 14])
    def test_not_due(self, memory, count):
        assert not memory.should_summarize(count)


class TestRecentHistory:
    def test_keeps_last_four_turns_in_order(self, memory):
        history = memory.format_recent_history(make_turns(6))

        assert "Question 1" not in history
        assert "Question 2" not in history
        assert history.index("Question 3") < history.index("Question 6")
        assert history.startswith("User: Question 3\nAssistant: Answer 3")

    def test_empty(self, memory):
        assert memory.format_recent_history([]) == ""


class TestGenerateSummary:
    async def test_first_summary_covers_turns_outside_window(self, memory, fake_llm, test_chat):
        summary = await memory.generate_summary(test_chat.id, 7, make_turns(7))

        assert (summary.start_turn, summary.end_turn) == (1, 3)
        assert summary.summary == fake_llm.utility_answer
        assert summary.total_tokens == 42
        prompt = fake_llm.utility_calls[0]["prompt"]
        assert "Question 3" in prompt
        assert "Question 4" not in prompt

    async def test_ranges_are_contiguous_and_fold_previous_summary(
        self, memory, fake_llm, test_chat, test_db
    ):
        await memory.generate_summary(test_chat.id, 7, make_turns(7))
        fake_llm.utility_answer = "Second memory"
        second = await memory.generate_summary(test_chat.id, 13, make_turns(13))

        assert (second.start_turn, second.end_turn) == (4, 9)
        second_prompt = fake_llm.utility_calls[1]["prompt"]
        assert "earlier memory:\nCondensed memory of the conversation." in second_prompt
        assert "Question 4" in second_prompt
        assert "Question 3\n" not in second_prompt

        result = await test_db.execute(
            select(ChatSummary).where(ChatSummary.chat_id == test_chat.id)
        )
        rows = sorted(result.scalars().all(), key=lambda row: row.start_turn)
        assert [(r.start_turn, r.end_turn) for r in rows] == [(1, 3), (4, 9)]

    async def test_already_covered_range_is_skipped(self, memory, fake_llm, test_chat):
        await memory.generate_summary(test_chat.id, 13, make_turns(13))

        assert await memory.generate_summary(test_chat.id, 13, make_turns(13)) is None
        assert len(fake_llm.utility_calls) == 1

    async def test_latest_summary_text(self, memory, test_chat, test_db):
        assert await memory.get_latest_summary(test_db, test_chat.id) == ""

        await memory.generate_summary(test_chat.id, 7, make_turns(7))

        assert await memory.get_latest_summary(test_db, test_chat.id) == (
            "Condensed memory of the conversation."
        )

    async def test_chat_lock_is_released_after_summary(self, memory, test_chat):
        await memory.generate_summary(test_chat.id, 7, make_turns(7))

        assert test_chat.id not in memory._locks


class TestScheduleSummary:
    async def test_schedules_only_when_due(self, memory, test_chat, test_db):
        background_tasks = BackgroundTasks()

        assert not memory.schedule_summary(background_tasks, test_chat.id, 6, make_turns(6))
        assert background_tasks.tasks == []

        assert memory.schedule_summary(background_tasks, test_chat.id, 7, make_turns(7))
        await background_tasks()

        assert await memory.get_latest_summary(test_db, test_chat.id) != ""

    async def test_failure_is_contained(self, memory, fake_llm, test_chat, test_db):
        fake_llm.utility_error = RuntimeError("provider down")
        background_tasks = BackgroundTasks()

        memory.schedule_summary(background_tasks, test_chat.id, 7, make_turns(7))
        await background_tasks()

        assert await memory.get_latest_summary(test_db, test_chat.id) == ""
