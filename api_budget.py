"""
Daily budget for generative-language calls.
Counts calls per provider per calendar day (in memory only).
Logs a warning past 70% of the limit and refuses calls past 90%.
"""
from datetime import datetime


class DailyBudgetTracker:
    DAILY_LIMITS = {
        "anthropic": 200,
        "openai": 200,
    }

    WARN_PCT = 0.70
    HARD_STOP_PCT = 0.90

    def __init__(self, limits: dict | None = None):
        self.limits = dict(limits or self.DAILY_LIMITS)
        self._counts: dict[str, int] = {}
        self._day: str = ""
        self._reset_if_new_day()

    def _today(self) -> str:
        return datetime.now().strftime("%Y-%m-%d")

    def _reset_if_new_day(self):
        today = self._today()
        if today != self._day:
            self._day = today
            self._counts = {k: 0 for k in self.limits}

    def _ceiling(self, provider: str) -> float:
        return self.limits[provider] * self.HARD_STOP_PCT

    def spend(self, provider: str, n: int = 1) -> bool:
        """Charge n calls; False (and nothing charged) when over the hard stop."""
        self._reset_if_new_day()
        provider = provider.lower()
        if provider not in self.limits:
            return True

        used = self._counts.get(provider, 0)
        if used + n > self._ceiling(provider):
            print(f"[BUDGET] HARD STOP: {provider} at {used}/{self.limits[provider]}, refusing {n} call(s)")
            return False

        self._counts[provider] = used + n
        if self._counts[provider] > self.limits[provider] * self.WARN_PCT:
            print(f"[BUDGET] WARNING: {provider} at {self._counts[provider]}/{self.limits[provider]}")
        return True

    def remaining(self, provider: str) -> int | None:
        self._reset_if_new_day()
        provider = provider.lower()
        if provider not in self.limits:
            return None
        return max(0, int(self._ceiling(provider)) - self._counts.get(provider, 0))

    def status(self) -> dict:
        self._reset_if_new_day()
        return {
            "day": self._day,
            "providers": {
                provider: {
                    "used": self._counts.get(provider, 0),
                    "limit": limit,
                    "hard_stop_at": int(limit * self.HARD_STOP_PCT),
                }
                for provider, limit in self.limits.items()
            },
        }


daily_budget = DailyBudgetTracker()
