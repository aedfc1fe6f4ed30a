import asyncio
import time

import anthropic
import openai

from agent import market_digest as digest
from agent.prompts import (
    ANALYST_SYSTEM_PROMPT,
    MARKET_QA_PROMPT,
    PORTFOLIO_PROMPT,
    STOCK_ANALYSIS_PROMPT,
    STOCK_PICKER_PROMPT,
)
from api_budget import daily_budget

MAX_TOKENS = 1024


def _result(text: str = "", error: str | None = None, provider: str | None = None) -> dict:
    return {"text": text, "error": error, "provider": provider}


class MarketAnalyst:
    """
    Forwards pre-derived market data to a generative-language provider
    and returns free text. Anthropic is preferred; OpenAI is used when it
    is the only key configured. Failures come back as {"error": ...};
    nothing here raises into the API layer.
    """

    def __init__(
        self,
        api_key: str = None,
        openai_api_key: str = None,
        model: str = "claude-sonnet-4-20250514",
        openai_model: str = "gpt-4o",
        timeout: float = 60.0,
        budget=None,
    ):
        self.client = anthropic.Anthropic(api_key=api_key, timeout=120.0) if api_key else None
        self.openai_client = openai.OpenAI(api_key=openai_api_key) if openai_api_key else None
        self.model = model
        self.openai_model = openai_model
        self.timeout = timeout
        self.budget = budget or daily_budget

    @property
    def provider(self) -> str | None:
        if self.client is not None:
            return "anthropic"
        if self.openai_client is not None:
            return "openai"
        return None

    def _call_anthropic(self, prompt: str) -> str:
        response = self.client.messages.create(
            model=self.model,
            max_tokens=MAX_TOKENS,
            system=ANALYST_SYSTEM_PROMPT,
            messages=[{"role": "user", "content": prompt}],
        )
        if not response.content:
            return ""
        return response.content[0].text or ""

    def _call_openai(self, prompt: str) -> str:
        response = self.openai_client.chat.completions.create(
            model=self.openai_model,
            max_tokens=MAX_TOKENS,
            messages=[
                {"role": "system", "content": ANALYST_SYSTEM_PROMPT},
                {"role": "user", "content": prompt},
            ],
        )
        if not response.choices:
            return ""
        return response.choices[0].message.content or ""

    async def _complete(self, prompt: str, label: str) -> dict:
        provider = self.provider
        if provider is None:
            return _result(error=f"{label} failed: no generative-language provider is configured.")
        if not self.budget.spend(provider):
            return _result(error=f"{label} failed: daily {provider} budget exhausted. Try again tomorrow.", provider=provider)

        call = self._call_anthropic if provider == "anthropic" else self._call_openai
        start = time.time()
        try:
            text = await asyncio.wait_for(asyncio.to_thread(call, prompt), timeout=self.timeout)
        except asyncio.TimeoutError:
            print(f"[ANALYST] {label}: {provider} timed out ({time.time()-start:.1f}s)")
            return _result(error=f"{label} failed: the model timed out. Please try again.", provider=provider)
        except Exception as e:
            print(f"[ANALYST] {label}: {provider} error: {e}")
            return _result(error=f"{label} failed: {e}. Please try again.", provider=provider)

        text = (text or "").strip()
        print(f"[ANALYST] {label}: {provider} responded {len(text)} chars ({time.time()-start:.1f}s)")
        if not text:
            return _result(error=f"{label} failed: No response from LLM.", provider=provider)
        return _result(text=text, provider=provider)

    async def analyze_stock(self, detail: dict | None) -> dict:
        instrument = (detail or {}).get("instrument")
        if not instrument:
            return _result(error="No stock details available for AI analysis.")
        prompt = STOCK_ANALYSIS_PROMPT.format(
            name=instrument.get("name"),
            symbol=instrument.get("symbol"),
            financials=digest.detail_financials(instrument),
            news=digest.detail_news(detail),
        )
        return await self._complete(prompt, "AI analysis")

    async def pick_stocks(self, instruments: list) -> dict:
        if not instruments:
            return _result(error="No market data to analyze for stock recommendations.")
        market = digest.picker_market_text(instruments)
        prompt = STOCK_PICKER_PROMPT.format(
            count=min(len(instruments), digest.PICKER_STOCK_LIMIT),
            market=market,
        )
        return await self._complete(prompt, "AI stock picker")

    async def recommend_portfolio(self, instruments: list) -> dict:
        if not instruments:
            return _result(error="No market data to analyze for portfolio recommendations.")
        prompt = PORTFOLIO_PROMPT.format(market_json=digest.market_json(instruments))
        return await self._complete(prompt, "AI portfolio recommendation")

    async def answer_question(self, question: str, instruments: list, news: list | None = None) -> dict:
        if not question or not question.strip():
            return _result(error="Please enter a question to ask the AI.")
        if not instruments:
            return _result(error="No market data available to answer questions. Please wait for data to load.")
        prompt = MARKET_QA_PROMPT.format(
            market=digest.qa_market_text(instruments),
            news_context=digest.news_context(news or []),
            question=question.strip(),
        )
        return await self._complete(prompt, "AI market Q&A")
