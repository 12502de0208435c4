import json

from finchat.parser import SENTINEL, format_marker
from finchat.tools import ToolExecutionResult, ToolRegistry

SYSTEM_PROMPT = (
    "You are a financial assistant. Answer questions about public companies, "
    "stocks and markets using the financial data tools available to you. "
    "Be specific with numbers and dates, keep answers concise, and say so "
    "when the data needed to answer is unavailable."
)

LOADING_TASK = "Processing your financial query"

FOLLOW_UP_REQUEST = (
    "Please provide a comprehensive financial analysis using the real data "
    "from the tools you just called."
)

# Example arguments shown to the model for each tool.
_EXAMPLE_ARGUMENTS = {
    "getStockPrices": {"ticker": "AAPL"},
    "getNews": {"ticker": "AAPL", "limit": 5},
    "getIncomeStatements": {"ticker": "AAPL", "period": "ttm", "limit": 5},
    "getBalanceSheets": {"ticker": "AAPL", "period": "ttm", "limit": 5},
    "getCashFlowStatements": {"ticker": "AAPL", "period": "ttm", "limit": 5},
    "getFinancialMetrics": {"ticker": "AAPL", "period": "ttm", "limit": 5},
    "searchStocksByFilters": {
        "filters": [{"field": "revenue", "operator": "gt", "value": 50000000000}],
        "limit": 10,
    },
}


def prompt_tools_system_prompt(base_prompt: str, registry: ToolRegistry) -> str:
    """Extend *base_prompt* with instructions for writing call markers."""
    lines = []
    for definition in registry.list():
        example = _EXAMPLE_ARGUMENTS.get(definition.name)
        if example is None:
            example = {
                name: f"<{name}>"
                for name in definition.parameters_schema.get("required", [])
            }
        lines.append(f"{format_marker(definition.name, example)}\n  {definition.description}")
    examples = "\n".join(lines)
    return f"""{base_prompt}

IMPORTANT: You have access to real-time financial data tools. When users ask about financial information, use this exact format:

{examples}

RULES:
1. Use the exact format above with {SENTINEL} prefix
2. Provide valid JSON arguments
3. Always explain what tool you're calling and why
4. After calling a tool, I will provide real data and you should incorporate it into your response
5. Use real ticker symbols (AAPL, MSFT, TSLA, AMZN, GOOGL, etc.)"""


def follow_up_system_prompt(results: list[ToolExecutionResult]) -> str:
    """System instruction for the single follow-up generation."""
    rendered = "\n\n".join(
        f"Tool: {r.tool_name}({json.dumps(r.arguments)})\n"
        f"Result: {json.dumps(r.output, indent=2, default=str)}"
        for r in results
    )
    return f"""You are a financial assistant. The user asked a question and you called some tools. Here are the real results from those tools:

{rendered}

Now provide a comprehensive response incorporating this real financial data. Be specific with numbers, dates, and analysis. Don't mention the tool calls - just provide the information naturally."""
