import pytest

from helpers import char_count, delta_chunk, sse, tool_fragment

from chat_completion_client.contracts import ToolCall
from chat_completion_client.streaming import ChatStreamDecoder, SSELineBuffer
from chat_completion_client.tracing import MarkdownTrace


def _decoder(**kwargs) -> ChatStreamDecoder:
    return ChatStreamDecoder("gpt-4o", char_count, **kwargs)


def _feed_all(decoder: ChatStreamDecoder, chunks) -> list[str]:
    return [decoder.feed(chunk) for chunk in chunks]


MULTIBYTE_STREAM = (
    sse(delta_chunk("héllo "))
    + ": keep-alive comment\n"
    + "\n"
    + sse(delta_chunk("wörld "))
    + sse(delta_chunk("😀", finish_reason="stop"))
    + sse("[DONE]")
).encode("utf-8")


def test_line_buffer_holds_back_incomplete_tail():
    buf = SSELineBuffer()
    assert buf.feed("data: a\ndata: b") == ["data: a"]
    assert buf.pending == "data: b"
    assert buf.feed("c\r\n\r\n") == ["data: bc", ""]
    assert buf.pending == ""


def test_simple_stream_accumulates_text_and_finish_reason():
    decoder = _decoder()
    deltas = _feed_all(
        decoder,
        [
            sse(delta_chunk("Hel")).encode(),
            (sse(delta_chunk("lo", finish_reason="stop")) + sse("[DONE]")).encode(),
        ],
    )
    assert deltas == ["Hel", "lo"]
    assert decoder.state.text == "Hello"
    assert decoder.state.finish_reason == "stop"
    assert decoder.state.terminated is True
    assert decoder.state.tokens == 5


def test_chunk_boundaries_do_not_change_the_result():
    reference = _decoder()
    reference.feed(MULTIBYTE_STREAM)
    assert reference.state.text == "héllo wörld 😀"

    # every split point, including inside multi-byte characters and mid-line
    for cut in range(1, len(MULTIBYTE_STREAM)):
        decoder = _decoder()
        deltas = _feed_all(decoder, [MULTIBYTE_STREAM[:cut], MULTIBYTE_STREAM[cut:]])
        assert decoder.state.text == reference.state.text
        assert decoder.state.finish_reason == "stop"
        assert decoder.state.terminated is True
        assert "".join(deltas) == reference.state.text


def test_byte_at_a_time_stream_matches():
    decoder = _decoder()
    deltas = _feed_all(decoder, [MULTIBYTE_STREAM[i : i + 1] for i in range(len(MULTIBYTE_STREAM))])
    assert decoder.state.text == "héllo wörld 😀"
    assert "".join(deltas) == decoder.state.text
    assert "�" not in decoder.state.text


def test_incomplete_line_is_kept_pending():
    decoder = _decoder()
    decoder.feed(sse(delta_chunk("a")) + 'data: {"choices":[{"delta":{"content":"b')
    assert decoder.state.text == "a"
    assert decoder.state.pending.startswith("data: {")
    decoder.feed('"}}]}\n')
    assert decoder.state.text == "ab"
    assert decoder.state.pending == ""


def test_invalid_json_is_discarded_and_stream_continues():
    decoder = _decoder()
    decoder.feed("data: {not json}\n" + sse(delta_chunk("ok", finish_reason="stop")))
    assert decoder.state.text == "ok"
    assert decoder.state.discarded == 1
    assert decoder.state.terminated is True


def test_multiple_choices_are_discarded():
    decoder = _decoder()
    two = {"choices": [{"delta": {"content": "a"}}, {"delta": {"content": "b"}}]}
    decoder.feed(sse(two) + sse(delta_chunk("c")))
    assert decoder.state.text == "c"
    assert decoder.state.discarded == 1


def test_empty_choices_are_ignored():
    decoder = _decoder()
    decoder.feed(sse({"choices": [], "usage": {"total_tokens": 3}}))
    assert decoder.state.text == ""
    assert decoder.state.discarded == 0


def test_payloads_after_done_are_ignored():
    clean = _decoder()
    clean.feed(sse(delta_chunk("hi", finish_reason="stop")) + sse("[DONE]"))

    noisy = _decoder()
    noisy.feed(
        sse(delta_chunk("hi", finish_reason="stop"))
        + sse("[DONE]")
        + sse(delta_chunk(" extra"))
        + "data: garbage\n"
        + sse("[DONE]")
    )
    assert noisy.state.text == clean.state.text == "hi"
    assert noisy.state.finish_reason == clean.state.finish_reason == "stop"
    assert noisy.state.discarded == 2


def test_tool_call_fragments_merge_by_index():
    decoder = _decoder()
    decoder.feed(
        sse(
            delta_chunk(
                tool_calls=[
                    tool_fragment(0, id="call_a", name="weather", arguments='{"ci'),
                    tool_fragment(1, id="call_b", name="time", arguments=""),
                ]
            )
        )
    )
    decoder.feed(sse(delta_chunk(tool_calls=[tool_fragment(0, arguments='ty": "Par')])))
    decoder.feed(sse(delta_chunk(tool_calls=[tool_fragment(1, arguments='{"tz": "UTC"}')])))
    decoder.feed(sse(delta_chunk(tool_calls=[tool_fragment(0, arguments='is"}')])))
    delta = decoder.feed(sse(delta_chunk(finish_reason="tool_calls")))

    assert delta == ""
    assert decoder.state.finish_reason == "tool_calls"
    assert decoder.state.terminated is True
    assert decoder.state.completed_tool_calls() == [
        ToolCall(id="call_a", name="weather", arguments='{"city": "Paris"}'),
        ToolCall(id="call_b", name="time", arguments='{"tz": "UTC"}'),
    ]


def test_length_finish_reason_warns_but_does_not_terminate():
    trace = MarkdownTrace()
    decoder = _decoder(trace=trace)
    decoder.feed(sse(delta_chunk("partial", finish_reason="length")))
    assert decoder.state.finish_reason == "length"
    assert decoder.state.terminated is False
    assert decoder.state.accepts_end_of_stream is True
    assert "response too long" in trace.content

    decoder.feed(sse("[DONE]"))
    assert decoder.state.terminated is True


def test_unknown_finish_reason_leaves_state_untouched():
    decoder = _decoder()
    decoder.feed(sse(delta_chunk(finish_reason="content_filter")))
    assert decoder.state.finish_reason is None
    assert decoder.state.terminated is False
    assert decoder.state.accepts_end_of_stream is False


@pytest.mark.parametrize("terminator", ["\n", "\r\n", "\r"])
def test_line_terminators(terminator):
    decoder = _decoder()
    text = sse(delta_chunk("x", finish_reason="stop")).replace("\n", terminator)
    decoder.feed(text)
    assert decoder.state.text == "x"
    assert decoder.state.terminated is True


def test_str_chunks_are_accepted():
    decoder = _decoder()
    assert decoder.feed(sse(delta_chunk("plain"))) == "plain"
