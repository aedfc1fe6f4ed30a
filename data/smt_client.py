import httpx

from data.normalizers import parse_profile, parse_share_detail, parse_share_market


class SMTError(Exception):
    pass


class TransportError(SMTError):
    """Network / connection failure, including transport timeouts."""


class ResponseError(SMTError):
    """Non-success status or a body that is not a JSON object."""

    def __init__(self, message: str, status_code: int | None = None):
        super().__init__(message)
        self.status_code = status_code


class SMTClient:
    """
    Read-only client for the stock-market game service.

    Every call is GET {base_url}?accountid=..&sess=..&f=<function>. The
    account id and session token are opaque strings supplied by the host;
    they are sent as query parameters and never logged.
    """

    def __init__(self, base_url: str, account_id: str, session_token: str, timeout: float = 10.0):
        self.base_url = base_url
        self.account_id = account_id
        self.session_token = session_token
        self.timeout = timeout
        self._client: httpx.AsyncClient | None = None

    async def _get_client(self) -> httpx.AsyncClient:
        if self._client is None or self._client.is_closed:
            self._client = httpx.AsyncClient(
                headers={"Accept": "application/json"},
                timeout=self.timeout,
                follow_redirects=True,
            )
        return self._client

    async def aclose(self):
        if self._client is not None and not self._client.is_closed:
            await self._client.aclose()
        self._client = None

    def _redact(self, text: str) -> str:
        # httpx messages can echo the request URL, which carries the session token
        if self.session_token:
            text = text.replace(self.session_token, "***")
        return text

    async def _fetch(self, function: str, **extra) -> dict:
        params = {
            "accountid": self.account_id,
            "sess": self.session_token,
            "f": function,
        }
        params.update(extra)

        try:
            client = await self._get_client()
            resp = await client.get(self.base_url, params=params)
        except httpx.HTTPError as e:
            detail = self._redact(str(e))
            print(f"[SMT] {function} transport error: {type(e).__name__}: {detail}")
            raise TransportError(f"{function}: {type(e).__name__}: {detail}") from e

        if not 200 <= resp.status_code < 300:
            print(f"[SMT] {function} HTTP {resp.status_code}")
            raise ResponseError(f"HTTP error! Status: {resp.status_code} for {function}", resp.status_code)

        try:
            data = resp.json()
        except ValueError as e:
            print(f"[SMT] {function} returned malformed JSON: {e}")
            raise ResponseError(f"{function}: malformed JSON body", resp.status_code) from e

        if not isinstance(data, dict):
            raise ResponseError(f"{function}: expected a JSON object, got {type(data).__name__}", resp.status_code)
        return data

    async def get_share_market(self) -> dict:
        """Instrument list, portfolio, news summary and player fragment."""
        data = await self._fetch("getsharemarket")
        market = parse_share_market(data)
        print(f"[SMT] getsharemarket: {len(market['instruments'])} instruments, "
              f"{len(market['portfolio'])} holdings, {len(market['news'])} news")
        return market

    async def get_profile_detail(self) -> dict | None:
        data = await self._fetch("getprofiledetail")
        return parse_profile(data)

    async def get_share_detail(self, symbol: str) -> dict:
        data = await self._fetch("getsharedetail", s=symbol)
        return parse_share_detail(data, symbol)
