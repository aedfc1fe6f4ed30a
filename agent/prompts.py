ANALYST_SYSTEM_PROMPT = """You are a market analyst for a simulated stock-market game.
You only ever see the numbers you are given. Prices are in game currency.
"N/A" means the figure could not be computed (missing data or a zero
denominator); never treat it as zero. Be concise and concrete, and do not
present game stocks as real-world securities."""


STOCK_ANALYSIS_PROMPT = """Analyze the following stock data and recent news for {name} ({symbol}).

Financial Data:
{financials}

Recent News:
{news}

Based on this information:
1. Summarize the stock's current financial health.
2. Call out the most important positive or negative effects of the news.
3. Give a brief, general outlook (e.g. "potentially stable", "volatile outlook", "growth potential").

Keep the analysis under 250 words and focus on actionable insights for an investor."""


STOCK_PICKER_PROMPT = """From the simplified live market data below, recommend 2-3 stocks that look like good investments.
For each pick, explain briefly *why* using its metrics (e.g. low P/E, high dividend yield, strong volume),
and name a general investment theme for it ("growth play", "value pick", "income stock", ...).

Current Market Data (first {count} stocks):
{market}

Keep the answer concise."""


PORTFOLIO_PROMPT = """Given the live market data below, recommend a balanced portfolio of 3-5 stocks.
For each stock give its symbol, name and a one-line reason for including it.
Then explain the overall strategy (e.g. "growth-oriented with diversification across industries",
"value-focused with a strong dividend component", "balanced for moderate risk").

Available Stocks (JSON array, "N/A" = not computable):
{market_json}

Use a clear, structured format."""


MARKET_QA_PROMPT = """Answer the user's question about the market using *only* the live data below.
If the data does not contain what is needed, say that you cannot answer with the current information.

Live market data for all available stocks:
{market}
{news_context}

User's Question: {question}

Answer strictly from the provided data."""
