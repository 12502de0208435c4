"""Unit tests for streaming primitives."""

from finchat.streaming import ToolCall, ToolCallAccumulator, ToolCallFragment, Usage


class TestToolCallAccumulator:
    def test_arguments_accumulated_across_fragments(self):
        acc = ToolCallAccumulator()
        acc.feed(ToolCallFragment(index=0, call_id="c1", name="getNews", arguments_delta='{"tic'))
        acc.feed(ToolCallFragment(index=0, arguments_delta='ker": "AAPL"}'))
        result = acc.finalize()

        assert result == [ToolCall(id="c1", name="getNews", arguments='{"ticker": "AAPL"}')]

    def test_interleaved_tool_calls(self):
        acc = ToolCallAccumulator()
        acc.feed(ToolCallFragment(index=0, call_id="c1", name="getNews", arguments_delta='{"ticker":'))
        acc.feed(ToolCallFragment(index=1, call_id="c2", name="getStockPrices", arguments_delta='{"ticker":'))
        acc.feed(ToolCallFragment(index=0, arguments_delta=' "AAPL"}'))
        acc.feed(ToolCallFragment(index=1, arguments_delta=' "MSFT"}'))
        result = acc.finalize()

        assert result[0] == ToolCall(id="c1", name="getNews", arguments='{"ticker": "AAPL"}')
        assert result[1] == ToolCall(id="c2", name="getStockPrices", arguments='{"ticker": "MSFT"}')

    def test_finalize_returns_index_order(self):
        acc = ToolCallAccumulator()
        acc.feed(ToolCallFragment(index=2, call_id="c3", name="c"))
        acc.feed(ToolCallFragment(index=0, call_id="c1", name="a"))
        acc.feed(ToolCallFragment(index=1, call_id="c2", name="b"))

        assert [tc.name for tc in acc.finalize()] == ["a", "b", "c"]

    def test_empty_accumulator(self):
        assert ToolCallAccumulator().finalize() == []


class TestUsage:
    def test_addition(self):
        total = Usage(10, 5) + Usage(3, 2)
        assert total == Usage(prompt_tokens=13, completion_tokens=7)

    def test_to_dict_uses_wire_names(self):
        assert Usage(1, 2).to_dict() == {"promptTokens": 1, "completionTokens": 2}
