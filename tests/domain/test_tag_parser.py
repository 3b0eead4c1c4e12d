"""
Unit tests for the streaming tag parser
"""

from typing import Dict, List
import time

import pytest
import structlog

from promptwire.domain.errors import (
    DecodeValidationError, IncompleteStreamWarning,
    ParserConfigurationError, SessionClosedError
)
from promptwire.domain.formatting.record_encoders import format_structured
from promptwire.domain.streaming.handlers import (
    text_handler, structured_output_handler, collecting_handler
)
from promptwire.domain.streaming.tag_parser import (
    create_parser, TagParser, ParserMode
)

SCENARIO = '<think>analyzing</think><json>{"learnings":["x"],"followUpQueries":[]}</json>'


@pytest.fixture
def scenario_parser():
    return create_parser(
        lambda: {},
        {
            "think": text_handler("think"),
            "json": structured_output_handler(Dict[str, List[str]]),
        }
    )


def _chunks(text: str, size: int):
    return [text[i:i + size] for i in range(0, len(text), size)]


class TestDecoding:
    """Test extraction of recognized tags"""

    def test_reasoning_and_structured_output(self, scenario_parser):
        result = scenario_parser.parse(SCENARIO)

        assert result.state == {
            "think": "analyzing",
            "output": {"learnings": ["x"], "followUpQueries": []},
        }
        assert result.ok

    @pytest.mark.parametrize("size", [1, 2, 3, 5, 7, 13])
    def test_chunk_boundaries_do_not_matter(self, scenario_parser, size):
        """Test markers split across chunks are still recognized"""
        assert scenario_parser.parse_stream(_chunks(SCENARIO, size)).state == scenario_parser.parse(SCENARIO).state

    def test_split_markers(self, scenario_parser):
        result = scenario_parser.parse_stream(["<thi", "nk>ana", "lyzing</th", "ink>"])

        assert result.state == {"think": "analyzing"}

    def test_prose_and_unknown_tags_are_ignored(self, scenario_parser):
        text = "Sure! <b>bold</b> < not a tag <thinking>no</thinking> <think>yes</think> bye"

        assert scenario_parser.parse(text).state == {"think": "yes"}

    def test_unknown_markers_inside_tag_are_content(self, scenario_parser):
        result = scenario_parser.parse("<think>a <b>c</b> <json> d</think>")

        assert result.state == {"think": "a <b>c</b> <json> d"}

    def test_typed_output(self, findings_parser):
        result = findings_parser.parse('<json>{"learnings": ["a"], "sources": ["s"]}</json>')

        assert result.state["output"].learnings == ["a"]
        assert result.state["output"].sources == ["s"]

    def test_code_fences_are_tolerated(self, findings_parser):
        result = findings_parser.parse('<json>\n```json\n{"learnings": ["a"]}\n```\n</json>')

        assert result.state["output"].learnings == ["a"]

    def test_attributes_on_opening_marker(self):
        seen = []
        parser = create_parser(lambda: None, {"json": lambda state, element: seen.append(element)})

        parser.parse("""<json name="report" kind='final' q="a &quot;b&quot;">{}</json>""")

        assert seen[0].attributes == {"name": "report", "kind": "final", "q": 'a "b"'}
        assert seen[0].content == "{}"

    def test_formatted_attributes_round_trip(self, findings_parser):
        seen = []
        recorder = create_parser(lambda: None, {"json": lambda state, element: seen.append(element)})
        text = format_structured("json", {"learnings": ["x"]}, {"title": "a>b", "q": 'say "<hi>" & go'})

        recorder.parse(text)

        assert seen[0].attributes == {"title": "a>b", "q": 'say "<hi>" & go'}
        assert seen[0].content == '{"learnings":["x"]}'
        assert findings_parser.parse(text).state["output"].learnings == ["x"]

    def test_quoted_marker_end_in_model_output(self):
        seen = []
        parser = create_parser(lambda: None, {"json": lambda state, element: seen.append(element)})

        parser.parse_stream(_chunks("""<json title="a>b" alt='c>d'>{}</json>""", 3))

        assert seen[0].attributes == {"title": "a>b", "alt": "c>d"}
        assert seen[0].content == "{}"

    def test_self_closing_recognized_tag(self, scenario_parser):
        assert scenario_parser.parse("<think />").state == {"think": ""}
        assert scenario_parser.parse("<think/>").state == {"think": ""}

    def test_object_state(self):
        class State:
            think = None

        parser = create_parser(State, {"think": text_handler()})

        assert parser.parse("<think> hm </think>").state.think == "hm"


class TestOrdering:
    """Test handler ordering guarantees"""

    def test_handlers_fire_in_document_order(self):
        parser = create_parser(
            lambda: {"order": []},
            {
                "think": lambda state, element: state["order"].append("think"),
                "json": lambda state, element: state["order"].append("json"),
            }
        )

        result = parser.parse("<json>{}</json> <think>t</think> <json>{}</json>")

        assert result.state["order"] == ["json", "think", "json"]

    def test_reasoning_available_before_output(self):
        """Test the reasoning field is populated by the time output is decoded"""
        observed = {}

        def on_json(state, element):
            observed["think_at_output"] = state.get("think")
            state["output"] = element.content

        parser = create_parser(lambda: {}, {"think": text_handler("think"), "json": on_json})
        parser.parse("<think>first</think><json>second</json>")

        assert observed["think_at_output"] == "first"

    def test_occurrence_indices(self):
        seen = []
        parser = create_parser(lambda: {}, {"step": lambda state, element: seen.append(element.index)})

        parser.parse("<step>a</step><step>b</step><step>c</step>")

        assert seen == [0, 1, 2]

    def test_collecting_handler(self):
        parser = create_parser(lambda: {}, {"step": collecting_handler("steps")})

        assert parser.parse("<step>a</step>x<step>b</step>").state == {"steps": ["a", "b"]}


class TestDecodeErrors:
    """Test per-occurrence decode failures"""

    def test_malformed_json_does_not_abort_session(self, findings_parser):
        result = findings_parser.parse("<json>not json</json><think>after</think>")

        assert result.state == {"think": "after", "output": None}
        assert len(result.errors) == 1
        error = result.errors[0]
        assert isinstance(error, DecodeValidationError)
        assert error.tag == "json"
        assert error.index == 0
        assert error.content == "not json"

    def test_schema_mismatch(self, findings_parser):
        result = findings_parser.parse('<json>{"learnings": "x"}</json>')

        assert result.state["output"] is None
        assert result.errors[0].details

    def test_later_valid_occurrence_is_kept(self, findings_parser):
        result = findings_parser.parse('<json>{}</json><json>{"learnings": []}</json>')

        assert result.state["output"].learnings == []
        assert [error.index for error in result.errors] == [0]

    def test_value_errors_are_captured(self):
        def handler(state, element):
            raise ValueError("bad number")

        result = create_parser(lambda: {}, {"n": handler}).parse("<n>x</n>")

        assert result.errors[0].tag == "n"
        assert isinstance(result.errors[0].__cause__, ValueError)

    def test_other_exceptions_propagate(self):
        def handler(state, element):
            raise RuntimeError("handler bug")

        with pytest.raises(RuntimeError):
            create_parser(lambda: {}, {"n": handler}).parse("<n>x</n>")


class TestStreamTermination:
    """Test end-of-stream handling"""

    def test_unterminated_tag_is_discarded(self, findings_parser):
        result = findings_parser.parse("<think>done</think><json>{\"learnings\": [")

        assert result.state == {"think": "done", "output": None}
        assert len(result.incomplete) == 1
        warning = result.incomplete[0]
        assert isinstance(warning, IncompleteStreamWarning)
        assert warning.tag == "json"
        assert warning.content == '{"learnings": ['
        assert not result.ok

    def test_unterminated_reasoning(self, scenario_parser):
        result = scenario_parser.parse("<think>never ends")

        assert "think" not in result.state
        assert result.incomplete[0].content == "never ends"

    def test_partial_opening_marker_at_end(self, scenario_parser):
        result = scenario_parser.parse("text <thi")

        assert result.state == {}
        assert result.incomplete == []

    def test_closed_session_rejects_input(self, scenario_parser):
        session = scenario_parser.session()
        session.close()

        with pytest.raises(SessionClosedError):
            session.feed("<think>x</think>")
        with pytest.raises(SessionClosedError):
            session.close()

    def test_long_undecided_marker_falls_back_to_prose(self):
        parser = TagParser(lambda: {}, {"think": text_handler()}, max_marker_length=8)

        result = parser.parse_stream(["<think " + "a" * 20, " <think>ok</think>"])

        assert result.state == {"think": "ok"}

    def test_many_unknown_markers_scan_in_linear_time(self, scenario_parser):
        text = "<b>x</b>" * 100000 + "<think>done</think>"

        started = time.perf_counter()
        result = scenario_parser.parse(text)
        elapsed = time.perf_counter() - started

        assert result.state == {"think": "done"}
        assert elapsed < 2.0


class TestSessions:
    """Test session lifecycle"""

    def test_sessions_do_not_share_state(self, scenario_parser):
        first = scenario_parser.session()
        second = scenario_parser.session()

        first.feed("<think>one</think>")
        second.feed("<think>two</think>")

        assert first.close().state == {"think": "one"}
        assert second.close().state == {"think": "two"}
        assert first.id != second.id

    def test_state_can_be_polled_mid_stream(self, scenario_parser):
        session = scenario_parser.session()

        session.feed('<think>x</think><json>{"learn')

        assert session.state == {"think": "x"}
        assert session.mode == ParserMode.IN_TAG
        assert session.current_tag == "json"

    def test_session_id_is_bound_while_decoding(self):
        seen = []
        parser = create_parser(
            lambda: None,
            {"think": lambda state, element: seen.append(structlog.contextvars.get_contextvars().get("decode_session"))}
        )
        session = parser.session()

        session.feed("<think>x</think>")
        session.close()

        assert seen == [session.id]
        assert "decode_session" not in structlog.contextvars.get_contextvars()

    @pytest.mark.asyncio
    async def test_async_stream(self, scenario_parser):
        async def tokens():
            for chunk in _chunks(SCENARIO, 4):
                yield chunk

        result = await scenario_parser.aparse_stream(tokens())

        assert result.state["think"] == "analyzing"
        assert result.state["output"] == {"learnings": ["x"], "followUpQueries": []}


class TestParserConfiguration:
    """Test setup validation"""

    def test_no_handlers(self):
        with pytest.raises(ParserConfigurationError):
            create_parser(lambda: {}, {})

    def test_handler_not_callable(self):
        with pytest.raises(ParserConfigurationError):
            create_parser(lambda: {}, {"think": "nope"})

    def test_invalid_tag_name(self):
        with pytest.raises(ParserConfigurationError):
            create_parser(lambda: {}, {"not valid": text_handler()})

    def test_state_factory_required(self):
        with pytest.raises(ParserConfigurationError):
            create_parser({}, {"think": text_handler()})

    def test_undeclared_handler(self):
        with pytest.raises(ParserConfigurationError, match="undeclared"):
            create_parser(lambda: {}, {"think": text_handler(), "json": text_handler()}, tags=["think"])

    def test_declared_tag_without_handler(self):
        with pytest.raises(ParserConfigurationError, match="without a handler"):
            create_parser(lambda: {}, {"think": text_handler()}, tags=["think", "json"])

    @pytest.mark.parametrize("length", [0, -5])
    def test_marker_length_must_be_positive(self, length):
        with pytest.raises(ParserConfigurationError, match="max_marker_length"):
            TagParser(lambda: {}, {"think": text_handler()}, max_marker_length=length)
