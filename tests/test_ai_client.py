import json
import unittest
from unittest import mock

import requests

from timboard.ai_client import OpenAICompatibleClient, _extract_json_payload
from timboard.models import AIConfig
from timboard.prompt import build_messages, normalize_classification


def _chat_response(content: str) -> mock.Mock:
    response = mock.Mock()
    response.raise_for_status.return_value = None
    response.json.return_value = {"choices": [{"message": {"content": content}}]}
    return response


class ExtractJsonPayloadTests(unittest.TestCase):
    def test_plain_and_fenced_json(self) -> None:
        self.assertEqual(_extract_json_payload('{"a": 1}'), '{"a": 1}')
        self.assertEqual(_extract_json_payload('```json\n{"a": 1}\n```'), '{"a": 1}')
        self.assertEqual(_extract_json_payload('Sure: {"a": 1} done'), '{"a": 1}')

    def test_no_json_raises(self) -> None:
        with self.assertRaises(ValueError):
            _extract_json_payload("no json here")


class NormalizeClassificationTests(unittest.TestCase):
    def test_camel_case_hints_are_normalized(self) -> None:
        normalized = normalize_classification(
            {
                "category": "hold_fix",
                "holdFixType": "release",
                "demoName": "Blue Moon",
                "targetArtist": "IU",
                "writers": [{"name": "Kim", "percentage": "40"}, "Lee", {"name": ""}],
            }
        )
        self.assertEqual(normalized["category"], "HOLD_FIX")
        self.assertEqual(normalized["hold_fix_type"], "RELEASE")
        self.assertEqual(normalized["demo_name"], "Blue Moon")
        self.assertEqual(normalized["artist"], "IU")
        self.assertEqual(
            normalized["writers"],
            [{"name": "Kim", "percentage": 40.0}, {"name": "Lee", "percentage": None}],
        )

    def test_unknown_category_and_stray_sub_category(self) -> None:
        self.assertIsNone(normalize_classification({"category": "SPORTS"})["category"])
        normalized = normalize_classification({"category": "STOCK", "subCategory": "YOUTUBE"})
        self.assertNotIn("sub_category", normalized)
        personal = normalize_classification({"category": "personal", "subCategory": "youtube"})
        self.assertEqual(personal["sub_category"], "YOUTUBE")

    def test_non_dict_payload(self) -> None:
        self.assertEqual(normalize_classification(["PERSONAL"]), {})


class OpenAICompatibleClientTests(unittest.TestCase):
    def setUp(self) -> None:
        self.config = AIConfig(base_url="https://api.example.com/v1/", api_key="k", model="gpt-4o-mini")

    def test_classify_event_posts_and_parses(self) -> None:
        content = '```json\n{"category": "STOCK", "ticker": "NVDA"}\n```'
        with mock.patch("timboard.ai_client.requests.post", return_value=_chat_response(content)) as post:
            result = OpenAICompatibleClient(self.config).classify_event("NVDA 실적", "")

        self.assertEqual(result["category"], "STOCK")
        self.assertEqual(result["ticker"], "NVDA")
        url = post.call_args.args[0]
        self.assertEqual(url, "https://api.example.com/v1/chat/completions")
        body = post.call_args.kwargs["json"]
        self.assertEqual(body["temperature"], 0)
        self.assertEqual(body["messages"], build_messages("NVDA 실적", ""))
        self.assertEqual(post.call_args.kwargs["timeout"], 30)

    def test_classify_event_propagates_http_errors(self) -> None:
        response = _chat_response("{}")
        response.raise_for_status.side_effect = requests.HTTPError("500 Server Error")
        with mock.patch("timboard.ai_client.requests.post", return_value=response):
            with self.assertRaises(requests.HTTPError):
                OpenAICompatibleClient(self.config).classify_event("x", "")

    def test_non_object_json_raises(self) -> None:
        with mock.patch("timboard.ai_client.requests.post", return_value=_chat_response(json.dumps([1, 2]))):
            with self.assertRaises(ValueError):
                OpenAICompatibleClient(self.config).classify_event("x", "")

    def test_unconfigured_client_returns_empty_without_request(self) -> None:
        client = OpenAICompatibleClient(AIConfig(api_key=""))
        with mock.patch("timboard.ai_client.requests.post") as post:
            self.assertEqual(client.classify_event("x", ""), {})
        post.assert_not_called()
        self.assertFalse(client.is_configured())

    def test_connectivity_reports_transport_errors(self) -> None:
        with mock.patch(
            "timboard.ai_client.requests.post",
            side_effect=requests.ConnectionError("refused"),
        ):
            ok, message = OpenAICompatibleClient(self.config).test_connectivity()
        self.assertFalse(ok)
        self.assertIn("ConnectionError", message)


if __name__ == "__main__":
    unittest.main()
