"""Unit tests for the summarization pipeline."""

import unittest

from dossier.errors import GenerationFailure, InferenceError
from dossier.services.summarizer import (
    SummarizationPipeline,
    parse_indices,
    strip_tags,
)
from dossier.services.tones import (
    FALLBACK_TONE_PROMPT,
    UNRESTRICTED_SYSTEM_MESSAGE,
    ToneRepository,
)

from fakes import InMemoryStore, ScriptedClient, make_article

STANDARD = "standard-model"
UNRESTRICTED = "unrestricted-model"


def _pipeline(client, store=None):
    return SummarizationPipeline(
        client=client,
        tones=ToneRepository(store or InMemoryStore()),
        standard_model=STANDARD,
        unrestricted_model=UNRESTRICTED,
    )


def _echo_handler(selection_reply="1,2", summary="<p>Final summary</p>"):
    """Answers each stage by looking at the prompt it receives."""

    def handler(request):
        if "select exactly" in request.prompt:
            return selection_reply
        if request.prompt.startswith("Extract the key information"):
            return "<b>Fact</b> sentence."
        return summary

    return handler


class TestParseIndices(unittest.TestCase):
    def test_plain_list(self):
        self.assertEqual(parse_indices("1,3,7,12", 20), [1, 3, 7, 12])

    def test_empty_and_whitespace(self):
        self.assertEqual(parse_indices("", 20), [])
        self.assertEqual(parse_indices("   \n ", 20), [])

    def test_non_numeric(self):
        self.assertEqual(parse_indices("none of them", 20), [])
        self.assertEqual(parse_indices("a, b, c", 20), [])

    def test_out_of_range_and_zero(self):
        self.assertEqual(parse_indices("0, 5, 21, 99", 20), [5])

    def test_duplicates_keep_first_position(self):
        self.assertEqual(parse_indices("4, 2, 4, 2, 9", 20), [4, 2, 9])

    def test_prose_wrapped(self):
        self.assertEqual(parse_indices("Selected articles: 1, 3, 7.", 20), [1, 3, 7])

    def test_no_articles(self):
        self.assertEqual(parse_indices("1,2,3", 0), [])


class TestStripTags(unittest.TestCase):
    def test_strip_tags(self):
        self.assertEqual(strip_tags("<p>Hello <i>there</i></p>"), "Hello there")
        self.assertEqual(strip_tags(None), "")


class TestSelection(unittest.TestCase):
    def test_small_sets_pass_through_without_a_call(self):
        client = ScriptedClient()
        articles = [make_article(i) for i in range(10)]

        selected = _pipeline(client).select_articles(articles)

        self.assertEqual(selected, articles)
        self.assertEqual(client.requests, [])

    def test_large_sets_use_selected_indices(self):
        client = ScriptedClient(replies=["3, 1, 12"])
        articles = [make_article(i) for i in range(15)]

        selected = _pipeline(client).select_articles(articles)

        self.assertEqual(selected, [articles[2], articles[0], articles[11]])
        self.assertEqual(client.requests[0].model, STANDARD)
        self.assertIn("15 articles", client.requests[0].prompt)

    def test_no_valid_indices_falls_back_to_full_set(self):
        client = ScriptedClient(replies=["I cannot decide."])
        articles = [make_article(i) for i in range(15)]

        self.assertEqual(_pipeline(client).select_articles(articles), articles)

    def test_inference_error_falls_back_to_full_set(self):
        client = ScriptedClient(replies=[InferenceError("timeout")])
        articles = [make_article(i) for i in range(12)]

        self.assertEqual(_pipeline(client).select_articles(articles), articles)

    def test_special_instructions_reach_the_prompt(self):
        client = ScriptedClient(replies=["1"])
        articles = [make_article(i) for i in range(11)]

        _pipeline(client).select_articles(articles, "Prefer science stories")

        self.assertIn("Prefer science stories", client.requests[0].prompt)


class TestExtraction(unittest.TestCase):
    def test_reply_is_stripped_of_markup(self):
        client = ScriptedClient(replies=["<p>The council approved the budget.</p>"])

        facts = _pipeline(client).extract_facts([make_article(1)])

        self.assertEqual(facts[0].facts, "The council approved the budget.")

    def test_description_survives_failed_extraction(self):
        article = make_article(1, description="Original description", content="")
        client = ScriptedClient(replies=[InferenceError("model offline")])

        facts = _pipeline(client).extract_facts([article])

        self.assertEqual(facts[0].facts, "Original description")

    def test_empty_reply_falls_back_to_feed_text(self):
        article = make_article(1, description="Original description", content="")
        client = ScriptedClient(replies=["   <br>  "])

        facts = _pipeline(client).extract_facts([article])

        self.assertEqual(facts[0].facts, "Original description")

    def test_failure_is_isolated_per_article(self):
        client = ScriptedClient(replies=[InferenceError("boom"), "Second facts."])
        articles = [make_article(1), make_article(2)]

        facts = _pipeline(client).extract_facts(articles)

        self.assertEqual([f.facts for f in facts], ["Description 1", "Second facts."])

    def test_article_without_text_uses_title(self):
        client = ScriptedClient()
        article = make_article(1, description="", content="")

        facts = _pipeline(client).extract_facts([article])

        self.assertEqual(facts[0].facts, "Story 1")
        self.assertEqual(client.requests, [])


class TestGeneration(unittest.TestCase):
    def test_standard_tone_uses_standard_model(self):
        client = ScriptedClient(handler=_echo_handler())

        summary = _pipeline(client).summarize([make_article(1)], "casual", "English")

        self.assertEqual(summary, "<p>Final summary</p>")
        final = client.requests[-1]
        self.assertEqual(final.model, STANDARD)
        self.assertEqual(final.system, "")
        self.assertIn("friendly, conversational", final.prompt)

    def test_unrestricted_tone_uses_alternate_model(self):
        client = ScriptedClient(handler=_echo_handler())

        _pipeline(client).summarize([make_article(1)], "sweary", "English")

        final = client.requests[-1]
        self.assertEqual(final.model, UNRESTRICTED)
        self.assertEqual(final.system, UNRESTRICTED_SYSTEM_MESSAGE)
        # Earlier stages always run on the standard model
        self.assertTrue(all(r.model == STANDARD for r in client.requests[:-1]))

    def test_unknown_tone_falls_back_and_completes(self):
        client = ScriptedClient(handler=_echo_handler())

        summary = _pipeline(client).summarize(
            [make_article(1)], "no_such_tone", "English"
        )

        self.assertEqual(summary, "<p>Final summary</p>")
        self.assertIn(FALLBACK_TONE_PROMPT, client.requests[-1].prompt)
        self.assertEqual(client.requests[-1].model, STANDARD)

    def test_language_and_instructions_reach_the_prompt(self):
        client = ScriptedClient(handler=_echo_handler())

        _pipeline(client).summarize(
            [make_article(1)], "professional", "Spanish", "Keep it short"
        )

        prompt = client.requests[-1].prompt
        self.assertIn("write the summary in Spanish", prompt)
        self.assertIn("Special instructions: Keep it short", prompt)
        self.assertIn("Source: https://a.example.com/story-1", prompt)

    def test_english_adds_no_language_directive(self):
        client = ScriptedClient(handler=_echo_handler())

        _pipeline(client).summarize([make_article(1)], "professional", "English")

        self.assertNotIn("write the summary in", client.requests[-1].prompt)

    def test_blank_lines_are_collapsed(self):
        client = ScriptedClient(handler=_echo_handler(summary="One\n\n\n\nTwo\n"))

        summary = _pipeline(client).summarize([make_article(1)], "casual", "English")

        self.assertEqual(summary, "One\n\nTwo")

    def test_inference_error_raises_generation_failure(self):
        def handler(request):
            if request.prompt.startswith("Please provide a summary"):
                raise InferenceError("model crashed")
            return "Facts."

        with self.assertRaises(GenerationFailure):
            _pipeline(ScriptedClient(handler=handler)).summarize(
                [make_article(1)], "casual", "English"
            )

    def test_empty_output_raises_generation_failure(self):
        client = ScriptedClient(handler=_echo_handler(summary="  \n\n "))

        with self.assertRaises(GenerationFailure):
            _pipeline(client).summarize([make_article(1)], "casual", "English")

    def test_no_articles_raises_generation_failure(self):
        with self.assertRaises(GenerationFailure):
            _pipeline(ScriptedClient()).summarize([], "casual", "English")

    def test_large_set_with_bad_selection_still_summarizes_everything(self):
        client = ScriptedClient(handler=_echo_handler(selection_reply="nothing useful"))
        articles = [make_article(i) for i in range(12)]

        _pipeline(client).summarize(articles, "professional", "English")

        extraction_calls = [
            r for r in client.requests if r.prompt.startswith("Extract the key information")
        ]
        self.assertEqual(len(extraction_calls), 12)


if __name__ == "__main__":
    unittest.main()
