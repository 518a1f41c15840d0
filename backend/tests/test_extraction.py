import asyncio
import unittest

from app.services.llm.extraction import (
    ExtractionResult,
    delimited_block,
    extract,
    extract_async,
    fallback_record,
    fenced_blocks,
    find_balanced_object,
    parse_json_object,
    run_strategies,
    strip_trailing_commas,
)

MARKERS = ("<<<JSON_START>>>", "<<<JSON_END>>>")


class _CountingRecover:
    def __init__(self, reply=None, error: Exception | None = None) -> None:
        self.reply = reply
        self.error = error
        self.calls: list[str] = []

    def __call__(self, text: str):
        self.calls.append(text)
        if self.error is not None:
            raise self.error
        return self.reply


class TestParseJsonObject(unittest.TestCase):
    def test_strict_object(self):
        self.assertEqual(parse_json_object('{"a": 1}'), {"a": 1})

    def test_surrounding_whitespace(self):
        self.assertEqual(parse_json_object('\n  {"a": [1, 2]}  \n'), {"a": [1, 2]})

    def test_trailing_comma_repair(self):
        self.assertEqual(parse_json_object('{"a": [1, 2,], "b": {"c": 3,},}'), {"a": [1, 2], "b": {"c": 3}})

    def test_single_repair_only(self):
        self.assertIsNone(parse_json_object("{a: 1,}"))

    def test_rejects_non_objects(self):
        self.assertIsNone(parse_json_object("[1, 2]"))
        self.assertIsNone(parse_json_object('"text"'))
        self.assertIsNone(parse_json_object("42"))
        self.assertIsNone(parse_json_object("null"))

    def test_rejects_empty(self):
        self.assertIsNone(parse_json_object("{}"))
        self.assertIsNone(parse_json_object(""))
        self.assertIsNone(parse_json_object(None))

    def test_drops_parse_error_key(self):
        self.assertEqual(parse_json_object('{"parse_error": true, "x": 1}'), {"x": 1})
        self.assertIsNone(parse_json_object('{"parse_error": true}'))

    def test_deep_nesting_does_not_raise(self):
        self.assertIsNone(parse_json_object("[" * 100000 + "]" * 100000))


class TestHelpers(unittest.TestCase):
    def test_strip_trailing_commas(self):
        self.assertEqual(strip_trailing_commas('{"a": 1, \n }'), '{"a": 1}')
        self.assertEqual(strip_trailing_commas("[1, 2, ]"), "[1, 2]")
        self.assertEqual(strip_trailing_commas('{"a": 1, "b": 2}'), '{"a": 1, "b": 2}')

    def test_strip_trailing_commas_leaves_strings_alone(self):
        self.assertEqual(strip_trailing_commas('{"note": "Stripe, ]Adyen", "b": 1,}'), '{"note": "Stripe, ]Adyen", "b": 1}')
        self.assertEqual(strip_trailing_commas('{"q": "say \\"hi, }\\"",}'), '{"q": "say \\"hi, }\\""}')

    def test_repair_keeps_string_values(self):
        result = extract('{"note": "Stripe, ]Adyen", "b": 1,}')
        self.assertTrue(result.succeeded)
        self.assertEqual(result.data, {"note": "Stripe, ]Adyen", "b": 1})

    def test_balanced_object_skips_prose_braces(self):
        text = 'Based on my research {date: 2025}: {"a": 1}'
        self.assertEqual(find_balanced_object(text), '{"a": 1}')

    def test_balanced_object_nested(self):
        text = 'intro {x} then {"a": {"b": {"c": 1}}} done'
        self.assertEqual(find_balanced_object(text), '{"a": {"b": {"c": 1}}}')

    def test_balanced_object_missing(self):
        self.assertIsNone(find_balanced_object("no braces here"))
        self.assertIsNone(find_balanced_object('"a": 1}}'))

    def test_delimited_block(self):
        text = 'notes <<<JSON_START>>>{"a": 1}<<<JSON_END>>> tail'
        self.assertEqual(delimited_block(text, MARKERS), '{"a": 1}')
        self.assertIsNone(delimited_block("<<<JSON_END>>> {} <<<JSON_START>>>", MARKERS))
        self.assertIsNone(delimited_block("<<<JSON_START>>> only start", MARKERS))

    def test_fenced_blocks(self):
        text = 'a\n```json\n{"a": 1}\n```\nb\n```\n{"b": 2}\n```'
        self.assertEqual([b.strip() for b in fenced_blocks(text)], ['{"a": 1}', '{"b": 2}'])


class TestStrategyChain(unittest.TestCase):
    def test_pure_json(self):
        result = extract('{"what_they_do": "Payments"}')
        self.assertEqual(result, ExtractionResult(data={"what_they_do": "Payments"}, succeeded=True, strategy="balanced_braces"))

    def test_delimited_beats_fenced(self):
        text = (
            "Here you go:\n```json\n{\"source\": \"fence\"}\n```\n"
            "<<<JSON_START>>>\n{\"source\": \"markers\"}\n<<<JSON_END>>>"
        )
        result = extract(text, markers=MARKERS)
        self.assertTrue(result.succeeded)
        self.assertEqual(result.data, {"source": "markers"})
        self.assertEqual(result.strategy, "delimited")

    def test_markers_ignored_when_not_supplied(self):
        text = "<<<JSON_START>>>{\"a\": 1}<<<JSON_END>>>\n```json\n{\"b\": 2}\n```"
        result = extract(text)
        self.assertEqual(result.data, {"b": 2})
        self.assertEqual(result.strategy, "fenced")

    def test_broken_delimited_falls_through(self):
        text = "<<<JSON_START>>>{broken<<<JSON_END>>>\n```json\n{\"b\": 2}\n```"
        result = extract(text, markers=MARKERS)
        self.assertEqual(result.data, {"b": 2})
        self.assertEqual(result.strategy, "fenced")

    def test_fenced_trailing_comma(self):
        result = extract('```json\n{"a": 1, "b": 2,}\n```')
        self.assertTrue(result.succeeded)
        self.assertEqual(result.data, {"a": 1, "b": 2})
        self.assertEqual(result.strategy, "fenced")

    def test_fenced_without_language_tag(self):
        result = extract('Result:\n```\n{"a": 1}\n```')
        self.assertEqual(result.data, {"a": 1})

    def test_second_fence_used_when_first_is_not_json(self):
        text = "```python\nprint('hi')\n```\n```json\n{\"a\": 1}\n```"
        result = extract(text)
        self.assertEqual(result.data, {"a": 1})
        self.assertEqual(result.strategy, "fenced")

    def test_outermost_brace_after_prose_braces(self):
        result = extract('Based on my research {date: 2025}: {"a": 1}')
        self.assertTrue(result.succeeded)
        self.assertEqual(result.data, {"a": 1})
        self.assertEqual(result.strategy, "balanced_braces")

    def test_json_wrapped_in_commentary(self):
        text = 'I searched several sources.\n{"psp_count": 2, "detected_psps": [{"name": "Adyen"}]}\nLet me know!'
        result = extract(text)
        self.assertEqual(result.data["psp_count"], 2)

    def test_empty_object_is_not_success(self):
        result = extract("{}")
        self.assertFalse(result.succeeded)
        self.assertEqual(result.data, {"raw_text": "{}", "parse_error": True})

    def test_array_is_not_success(self):
        self.assertFalse(extract("[1, 2]").succeeded)

    def test_object_inside_array_is_found(self):
        result = extract('[{"a": 1}]')
        self.assertEqual(result.data, {"a": 1})
        self.assertEqual(result.strategy, "balanced_braces")

    def test_whole_text_when_brace_scan_misfires(self):
        result = extract('{"a": "{"}')
        self.assertTrue(result.succeeded)
        self.assertEqual(result.data, {"a": "{"})
        self.assertEqual(result.strategy, "whole_text")

    def test_run_strategies_without_match(self):
        self.assertIsNone(run_strategies("plain prose"))

    def test_truncated_output_does_not_crash(self):
        text = 'Sure! ```json\n{"markets": [{"country": "Brazil", "available_methods": ["Pix", "Bol'
        result = extract(text)
        self.assertFalse(result.succeeded)
        self.assertEqual(result.data, fallback_record(text))

    def test_truncation_after_closed_object(self):
        text = '{"a": {"b": 1}} and then the model kept talking about {unfinished'
        result = extract(text)
        self.assertEqual(result.data, {"a": {"b": 1}})


class TestTotalityAndShape(unittest.TestCase):
    INPUTS = [
        "",
        "   \n\t",
        "{",
        "}",
        "}{",
        "{{{{",
        "}}}}",
        "```",
        "``````",
        "```json\n```",
        "<<<JSON_START>>>",
        "null",
        "[]",
        '{"parse_error": true}',
        "just words",
        '{"a": 1}',
        '{"a": NaN}',
        "\x00\x01{",
    ]

    def test_never_raises_and_shapes_hold(self):
        for text in self.INPUTS:
            for markers in (None, MARKERS):
                result = extract(text, recover=lambda _: None, markers=markers)
                self.assertIsInstance(result, ExtractionResult)
                if result.succeeded:
                    self.assertTrue(result.data)
                    self.assertNotIn("parse_error", result.data)
                else:
                    self.assertEqual(result.data, {"raw_text": text, "parse_error": True})
                    self.assertIsNone(result.strategy)

    def test_result_requires_every_field(self):
        with self.assertRaises(TypeError):
            ExtractionResult()  # type: ignore[call-arg]
        with self.assertRaises(TypeError):
            ExtractionResult(data={"a": 1})  # type: ignore[call-arg]

    def test_non_string_input(self):
        result = extract(None)  # type: ignore[arg-type]
        self.assertFalse(result.succeeded)
        self.assertEqual(result.data, {"raw_text": "", "parse_error": True})

    def test_idempotent(self):
        recover = _CountingRecover(reply='{"x": 1}')
        for text in ["prose only", '{"a": 1}', "{}", ""]:
            self.assertEqual(extract(text, recover), extract(text, recover))

    def test_input_not_mutated(self):
        text = '```json\n{"a": 1,}\n```'
        before = str(text)
        extract(text)
        self.assertEqual(text, before)


class TestRecovery(unittest.TestCase):
    def test_recover_success(self):
        recover = _CountingRecover(reply='{"x": 1}')
        result = extract("The company uses Stripe and Adyen.", recover)
        self.assertTrue(result.succeeded)
        self.assertEqual(result.data, {"x": 1})
        self.assertEqual(result.strategy, "recovery")
        self.assertEqual(recover.calls, ["The company uses Stripe and Adyen."])

    def test_recover_returns_nothing(self):
        recover = _CountingRecover(reply=None)
        result = extract("no json", recover)
        self.assertFalse(result.succeeded)
        self.assertEqual(result.data, {"raw_text": "no json", "parse_error": True})
        self.assertEqual(len(recover.calls), 1)

    def test_recover_output_gets_comma_repair(self):
        result = extract("no json", _CountingRecover(reply='{"x": 1,}'))
        self.assertEqual(result.data, {"x": 1})

    def test_recover_output_is_not_run_through_chain(self):
        result = extract("no json", _CountingRecover(reply='Sure: ```json\n{"x": 1}\n```'))
        self.assertFalse(result.succeeded)

    def test_recover_empty_object_is_fallback(self):
        self.assertFalse(extract("no json", _CountingRecover(reply="{}")).succeeded)

    def test_recover_non_string_is_fallback(self):
        self.assertFalse(extract("no json", _CountingRecover(reply={"x": 1})).succeeded)

    def test_recover_exception_is_swallowed(self):
        recover = _CountingRecover(error=TimeoutError("slow"))
        result = extract("no json", recover)
        self.assertFalse(result.succeeded)
        self.assertEqual(result.data, fallback_record("no json"))

    def test_no_recover_on_empty_input(self):
        recover = _CountingRecover(reply='{"x": 1}')
        for text in ["", "   "]:
            result = extract(text, recover)
            self.assertFalse(result.succeeded)
        self.assertEqual(recover.calls, [])

    def test_no_recover_when_local_strategy_wins(self):
        recover = _CountingRecover(reply='{"x": 1}')
        extract('{"a": 1}', recover)
        self.assertEqual(recover.calls, [])

    def test_recover_called_for_empty_object(self):
        recover = _CountingRecover(reply='{"x": 1}')
        result = extract("{}", recover)
        self.assertEqual(result.data, {"x": 1})
        self.assertEqual(recover.calls, ["{}"])


class TestExtractAsync(unittest.IsolatedAsyncioTestCase):
    async def test_local_strategy(self):
        result = await extract_async('<<<JSON_START>>>{"a": 1}<<<JSON_END>>>', markers=MARKERS)
        self.assertEqual(result.strategy, "delimited")

    async def test_async_recover(self):
        calls = []

        async def recover(text: str):
            calls.append(text)
            return '{"x": 1}'

        result = await extract_async("prose", recover)
        self.assertEqual(result.data, {"x": 1})
        self.assertEqual(calls, ["prose"])

    async def test_async_recover_failure(self):
        async def recover(text: str):
            raise asyncio.TimeoutError()

        result = await extract_async("prose", recover)
        self.assertEqual(result.data, fallback_record("prose"))

    async def test_async_empty_input(self):
        async def recover(text: str):
            raise AssertionError("must not be called")

        result = await extract_async("", recover)
        self.assertFalse(result.succeeded)

    async def test_async_matches_sync(self):
        async def recover(text: str):
            return "[1, 2]"

        for text in ["prose", '{"a": "{"}', "{}", "   "]:
            sync = extract(text, lambda _: "[1, 2]")
            self.assertEqual(await extract_async(text, recover), sync)


if __name__ == "__main__":
    unittest.main()
