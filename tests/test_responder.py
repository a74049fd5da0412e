import unittest

from voicepilot.services.context_store import ConversationContext
from voicepilot.services.dispatcher import ActionResult
from voicepilot.services.responder import UNCLEAR_REPLY, ResponseGenerator, describe_error


class _FailingLlm:
    def complete(self, *, messages, temperature, max_tokens):
        raise RuntimeError("provider down")


class _EchoLlm:
    def __init__(self, text: str) -> None:
        self.text = text
        self.messages = None

    def complete(self, *, messages, temperature, max_tokens):
        self.messages = messages
        return self.text


class ResponseGeneratorTests(unittest.TestCase):
    def test_failed_backend_falls_back_to_deterministic_summary(self):
        responder = ResponseGenerator(llm=_FailingLlm())
        result = ActionResult(
            succeeded=True,
            payload={"eventId": "evt-7", "title": "Standup"},
            should_refresh_downstream_data=True,
        )

        with self.assertLogs("voicepilot.services.responder", level="WARNING"):
            reply = responder.action_reply("cancel_event", {}, result)

        self.assertEqual(reply, "I cancelled 'Standup'.")

    def test_failed_action_is_described_without_backend(self):
        llm = _EchoLlm("should not be used")
        reply = ResponseGenerator(llm=llm).action_reply(
            "get_events", {}, ActionResult.failure("rate_limited", "429")
        )
        self.assertIn("slow down", reply)
        self.assertIsNone(llm.messages)

    def test_conversational_reply_includes_user_name(self):
        llm = _EchoLlm("  Hi Sam!  ")
        reply = ResponseGenerator(llm=llm).conversational_reply(
            "hello", ConversationContext(user_id="u1", session_id="s1"), user_name="Sam"
        )

        self.assertEqual(reply, "Hi Sam!")
        self.assertIn("Sam", llm.messages[0]["content"])
        self.assertEqual(llm.messages[-1], {"role": "user", "content": "hello"})

    def test_empty_generation_uses_fallback(self):
        reply = ResponseGenerator(llm=_EchoLlm("")).conversational_reply(
            "hello", ConversationContext(user_id="u1", session_id="s1")
        )
        self.assertEqual(reply, UNCLEAR_REPLY)

    def test_confirmation_prompt_names_the_event(self):
        prompt = ResponseGenerator.confirmation_prompt("cancel_event", {"eventTitle": "Standup"})
        self.assertIn("'Standup'", prompt)

    def test_get_events_summary(self):
        result = ActionResult(
            succeeded=True,
            payload={
                "timeframe": "today",
                "events": [{"title": "Standup", "start": "2026-03-02T09:00:00+00:00"}],
                "count": 1,
            },
        )
        reply = ResponseGenerator(llm=None).action_reply("get_events", {}, result)
        self.assertEqual(reply, "You have 1 event today: Standup at Monday, March 2 at 9:00 AM.")

    def test_unknown_error_kind_has_generic_description(self):
        self.assertEqual(
            describe_error("send_email", "provider_error"),
            "I couldn't send that email right now. Please try again.",
        )


if __name__ == "__main__":
    unittest.main()
