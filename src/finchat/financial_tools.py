"""Financial data operations backed by financialdatasets.ai.

Every tool shares one :class:`~finchat.fetch.FetchClient`, so every
request carries the same ``X-API-KEY`` header and timeout budget.
"""

from datetime import date, timedelta
from typing import Literal

from pydantic import BaseModel, Field

from finchat.fetch import FetchClient
from finchat.tools import ToolDefinition, ToolRegistry, tool

DEFAULT_BASE_URL = "https://api.financialdatasets.ai"

FINANCIAL_TOOLS = (
    "getStockPrices",
    "getIncomeStatements",
    "getBalanceSheets",
    "getCashFlowStatements",
    "getFinancialMetrics",
    "searchStocksByFilters",
    "getNews",
)

Period = Literal["annual", "quarterly", "ttm"]
Interval = Literal["second", "minute", "day", "week", "month", "year"]


def _one_month_ago() -> str:
    return (date.today() - timedelta(days=30)).isoformat()


def _today() -> str:
    return date.today().isoformat()


class StockPricesParams(BaseModel):
    ticker: str = Field(
        description="The ticker of the company to get historical prices for"
    )
    start_date: str = Field(
        default_factory=_one_month_ago,
        description="The start date for historical prices (YYYY-MM-DD)",
    )
    end_date: str = Field(
        default_factory=_today,
        description="The end date for historical prices (YYYY-MM-DD)",
    )
    interval: Interval = Field("day", description="The interval between price points")
    interval_multiplier: int = Field(1, description="The multiplier for the interval")


class StatementParams(BaseModel):
    ticker: str = Field(description="The ticker of the company")
    period: Period = Field(
        "ttm", description="The reporting period: annual, quarterly or ttm"
    )
    limit: int = Field(5, description="The number of periods to return")


class ScreenerFilter(BaseModel):
    field: str = Field(description="Financial line item to filter on, e.g. revenue")
    operator: Literal["gt", "gte", "lt", "lte", "eq"] = Field(
        description="Comparison operator"
    )
    value: float = Field(description="Value to compare against")


class ScreenerParams(BaseModel):
    filters: list[ScreenerFilter] = Field(
        description="Filters that every returned company must satisfy"
    )
    limit: int = Field(10, description="The maximum number of companies to return")


def build_financial_tools(client: FetchClient) -> list[ToolDefinition]:
    """Create the seven financial tools bound to *client*."""

    @tool(
        name="getStockPrices",
        parameters=StockPricesParams,
        error_message="Failed to fetch stock price data",
    )
    async def get_stock_prices(
        ticker: str,
        start_date: str,
        end_date: str,
        interval: str,
        interval_multiplier: int,
    ):
        """Use this tool to get stock prices and market cap for a company.
        This tool will return a snapshot of the current price, market cap,
        and the historical prices over a given time period.
        """
        snapshot = await client.fetch_json(
            "/prices/snapshot/", params={"ticker": ticker},
        )
        historical = await client.fetch_json(
            "/prices/",
            params={
                "ticker": ticker,
                "start_date": start_date,
                "end_date": end_date,
                "interval": interval,
                "interval_multiplier": interval_multiplier,
            },
        )
        return {"ticker": ticker, "snapshot": snapshot, "historical": historical}

    def statement(name: str, path: str, description: str, error_message: str):
        @tool(
            name=name,
            description=description,
            parameters=StatementParams,
            error_message=error_message,
        )
        async def fetch(ticker: str, period: str, limit: int):
            return await client.fetch_json(
                path, params={"ticker": ticker, "period": period, "limit": limit},
            )
        return fetch

    @tool(
        name="searchStocksByFilters",
        parameters=ScreenerParams,
        error_message="Failed to search stocks",
    )
    async def search_stocks_by_filters(filters: list[dict], limit: int):
        """Use this tool to screen for stocks whose financials match all
        of the given filters.
        """
        return await client.fetch_json(
            "/financials/search/",
            method="POST",
            json_body={"filters": filters, "limit": limit},
        )

    @tool(name="getNews", error_message="Failed to fetch news data")
    async def get_news(ticker: str, limit: int = 5):
        """Use this tool to get news and latest events for a company.
        This tool will return a list of news articles and events for a
        company. When using this tool, include dates in your output.

        Args:
            ticker: The ticker of the company to get news for
            limit: The number of news articles to return
        """
        return await client.fetch_json(
            "/news/", params={"ticker": ticker, "limit": limit},
        )

    return [
        get_stock_prices,
        statement(
            "getIncomeStatements",
            "/financials/income-statements/",
            "Use this tool to get the income statements for a company, "
            "including revenue, expenses and net income.",
            "Failed to fetch income statements",
        ),
        statement(
            "getBalanceSheets",
            "/financials/balance-sheets/",
            "Use this tool to get the balance sheets for a company, "
            "including assets, liabilities and shareholders' equity.",
            "Failed to fetch balance sheets",
        ),
        statement(
            "getCashFlowStatements",
            "/financials/cash-flow-statements/",
            "Use this tool to get the cash flow statements for a company, "
            "including operating, investing and financing cash flows.",
            "Failed to fetch cash flow statements",
        ),
        statement(
            "getFinancialMetrics",
            "/financial-metrics/",
            "Use this tool to get derived financial metrics for a company, "
            "such as valuation ratios, margins and growth rates.",
            "Failed to fetch financial metrics",
        ),
        search_stocks_by_filters,
        get_news,
    ]


def build_financial_registry(client: FetchClient) -> ToolRegistry:
    return ToolRegistry(build_financial_tools(client))
