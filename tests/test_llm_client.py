import unittest
from unittest.mock import MagicMock, patch

from voicepilot.services.llm_client import (
    OpenAICompatibleClient,
    OpenAICompatibleConfig,
    extract_first_json_object,
)


def _client(provider: str = "groq") -> OpenAICompatibleClient:
    return OpenAICompatibleClient(
        OpenAICompatibleConfig(provider=provider, model="test-model", api_key="sk-test", timeout_seconds=5)
    )


def _response(status_code: int, payload=None, text: str = "") -> MagicMock:
    response = MagicMock()
    response.status_code = status_code
    response.ok = 200 <= status_code < 300
    response.text = text
    response.json.return_value = payload
    return response


class OpenAICompatibleClientTests(unittest.TestCase):
    @patch("voicepilot.services.llm_client.requests.post")
    def test_tool_call_arguments_are_decoded(self, mock_post):
        mock_post.return_value = _response(
            200,
            {
                "choices": [
                    {
                        "message": {
                            "content": None,
                            "tool_calls": [
                                {
                                    "function": {
                                        "name": "schedule_event",
                                        "arguments": '{"title": "Sync", "confidence": 0.9}',
                                    }
                                }
                            ],
                        }
                    }
                ]
            },
        )

        completion = _client().complete_with_tools(
            messages=[{"role": "user", "content": "hi"}], tools=[{"type": "function"}], temperature=0, max_tokens=50
        )

        self.assertEqual(completion.tool_name, "schedule_event")
        self.assertEqual(completion.arguments, {"title": "Sync", "confidence": 0.9})
        args, kwargs = mock_post.call_args
        self.assertEqual(args[0], "https://api.groq.com/openai/v1/chat/completions")
        self.assertEqual(kwargs["json"]["tool_choice"], "auto")

    @patch("voicepilot.services.llm_client.requests.post")
    def test_plain_text_answer_has_no_tool(self, mock_post):
        mock_post.return_value = _response(200, {"choices": [{"message": {"content": " Hello "}}]})

        completion = _client("openai").complete_with_tools(
            messages=[], tools=[], temperature=0, max_tokens=50
        )

        self.assertIsNone(completion.tool_name)
        self.assertEqual(completion.content, "Hello")
        self.assertNotIn("tools", mock_post.call_args.kwargs["json"])

    @patch("voicepilot.services.llm_client.requests.post")
    def test_http_error_is_redacted(self, mock_post):
        mock_post.return_value = _response(401, text='{"error": "bad key", "access_token": "abc123"}')

        with self.assertRaises(RuntimeError) as ctx:
            _client().complete(messages=[], temperature=0, max_tokens=10)

        self.assertIn("401", str(ctx.exception))
        self.assertNotIn("abc123", str(ctx.exception))

    def test_unknown_provider_is_rejected(self):
        with self.assertRaises(ValueError):
            _client("anthropic-direct")

    def test_extract_json_tolerates_fences_and_prose(self):
        self.assertEqual(extract_first_json_object('```json\n{"a": 1}\n```'), {"a": 1})
        self.assertEqual(extract_first_json_object('Sure: {"a": 2} done'), {"a": 2})
        self.assertIsNone(extract_first_json_object("no json here"))


if __name__ == "__main__":
    unittest.main()
