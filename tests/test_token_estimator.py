import unittest

from chatgpt_bridge.token_estimator import estimate_prompt_tokens, estimate_text_tokens


class TestTokenEstimator(unittest.TestCase):
    def test_text_is_four_chars_per_token(self):
        self.assertEqual(estimate_text_tokens(""), 0)
        self.assertEqual(estimate_text_tokens("abc"), 0)
        self.assertEqual(estimate_text_tokens("abcdefgh"), 2)

    def test_prompt_adds_request_and_message_overhead(self):
        messages = [
            {"role": "system", "content": "12345678"},
            {"role": "user", "content": "1234"},
        ]
        self.assertEqual(estimate_prompt_tokens(messages), 8 + (4 + 2) + (4 + 1))

    def test_prompt_handles_content_parts(self):
        messages = [{"role": "user", "content": [{"type": "text", "text": "12345678"}]}]
        self.assertEqual(estimate_prompt_tokens(messages), 8 + 4 + 2)


if __name__ == "__main__":
    unittest.main()
