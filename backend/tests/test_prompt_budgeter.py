"""
AIGate — PromptBudgeter Unit Tests
==================================

What we test:
    ✅ chars/4 token estimate
    ✅ Prompts that fit are untouched
    ✅ High-priority lines survive, filler is dropped, order is kept
    ✅ History lines are shortened rather than dropped
    ✅ Early stop at 90% of the target
    ✅ Message-level truncation touches only the last user message
"""

from aigate.schemas.invocation import ChatMessage
from aigate.services.prompt_budgeter import TRUNCATION_SUFFIX, PromptBudgeter, estimate_tokens


class TestEstimateTokens:
    def test_rounds_up(self):
        assert estimate_tokens("") == 0
        assert estimate_tokens("abcd") == 1
        assert estimate_tokens("abcde") == 2


class TestTruncate:
    def test_prompt_within_budget_is_unchanged(self):
        prompt = "## Instructions\nShort prompt"
        assert PromptBudgeter().truncate(prompt, 1000) == (prompt, False)

    def test_keeps_high_priority_lines_and_order(self):
        header = "## Instructions: answer briefly"
        question = "User Message: what is X?"
        filler = "x" * 100
        prompt = "\n".join([header] + [filler] * 20 + [question])

        truncated, was_truncated = PromptBudgeter().truncate(prompt, 60)

        assert was_truncated is True
        assert truncated.split("\n") == [header, filler, question]

    def test_history_lines_are_shortened(self):
        history = "Chat History: " + "y" * 400
        prompt = "\n".join(["## Instructions", history, "User Message: hi"])

        truncated, _ = PromptBudgeter().truncate(prompt, 60)

        assert truncated.split("\n") == [
            "## Instructions",
            history[:80] + TRUNCATION_SUFFIX,
            "User Message: hi",
        ]

    def test_stops_once_ninety_percent_reached(self):
        section = "Note Content " + "n" * 300
        prompt = "\n".join([section] * 3)

        truncated, was_truncated = PromptBudgeter().truncate(prompt, 100)

        assert was_truncated is True
        assert truncated.split("\n") == [section, section]

    def test_custom_markers(self):
        budgeter = PromptBudgeter(high_priority_markers=["KEEP"], history_markers=[])
        prompt = "\n".join(["KEEP this", "z" * 400, "KEEP that"])

        truncated, _ = budgeter.truncate(prompt, 20)

        assert truncated.split("\n") == ["KEEP this", "KEEP that"]


class TestTruncateMessages:
    def test_only_last_user_message_is_shortened(self):
        system = ChatMessage(role="system", content="You are a tutor.")
        earlier = ChatMessage(role="user", content="first question")
        reply = ChatMessage(role="assistant", content="first answer")
        last = ChatMessage(role="user", content="\n".join(["User Message: explain"] + ["f" * 100] * 30))

        result, was_truncated = PromptBudgeter().truncate_messages([system, earlier, reply, last], 100)

        assert was_truncated is True
        assert result[:3] == [system, earlier, reply]
        assert result[3].role == "user"
        assert result[3].content.startswith("User Message: explain")
        assert len(result[3].content) < len(last.content)

    def test_fitting_conversation_is_unchanged(self):
        messages = [ChatMessage(role="user", content="hello")]
        result, was_truncated = PromptBudgeter().truncate_messages(messages, 100)
        assert result == messages
        assert was_truncated is False

    def test_no_user_message_is_left_alone(self):
        messages = [ChatMessage(role="system", content="s" * 1000)]
        result, was_truncated = PromptBudgeter().truncate_messages(messages, 10)
        assert result == messages
        assert was_truncated is False
