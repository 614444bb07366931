import asyncio
import random
from decimal import Decimal
from typing import Any, Dict, List, Optional, Tuple

import aiohttp
from pydantic import BaseModel, ConfigDict, Field, ValidationError

from .execution import ExchangeAdapter, ExchangeError, RateLimitExceededError
from .logging_setup import logger
from .models import DataCorruptionError, Fill, OrderSide, Portfolio, TopOfBook
from .order_state import OrderStatus, TrackedOrder
from .secrets import ExchangeCredentials


class _WireModel(BaseModel):
    model_config = ConfigDict(populate_by_name=True, extra="ignore")


class RegisterResponse(_WireModel):
    team_id: str = Field(alias="teamId")
    api_key: str = Field(alias="apiKey")
    initial_cash: Decimal = Field(alias="initialCash")


class PortfolioResponse(_WireModel):
    team_id: str = Field(alias="teamId")
    cash: Decimal
    positions: Dict[str, int] = Field(default_factory=dict)
    equity: Optional[Decimal] = None


class PriceLevel(_WireModel):
    price: Decimal
    quantity: int = 0


class OrderBookResponse(_WireModel):
    symbol: str
    bids: List[PriceLevel] = Field(default_factory=list)
    asks: List[PriceLevel] = Field(default_factory=list)

    def top_of_book(self) -> TopOfBook:
        # levels arrive best first
        return TopOfBook(
            symbol=self.symbol,
            best_bid=self.bids[0].price if self.bids else None,
            best_ask=self.asks[0].price if self.asks else None,
        )


class OrderResponse(_WireModel):
    order_id: str = Field(alias="orderId")
    symbol: str
    side: OrderSide
    quantity: int
    limit_price: Decimal = Field(alias="limitPrice")
    status: OrderStatus = OrderStatus.ACCEPTED


class FillResponse(_WireModel):
    fill_id: str = Field(alias="fillId")
    order_id: str = Field(alias="orderId")
    symbol: str
    side: OrderSide
    quantity: int
    price: Decimal
    timestamp: Optional[int] = None


class FillsResponse(_WireModel):
    fills: List[FillResponse] = Field(default_factory=list)
    next_since: Optional[int] = Field(default=None, alias="nextSince")


class AsyncExchangeClient(ExchangeAdapter):
    """Async client for the exchange REST API using aiohttp.

    Features:
    - Non-blocking async/await with one pooled aiohttp session.
    - Team id / API key headers on every authenticated request.
    - Jittered exponential backoff for 429 (rate-limit) responses.
    - Response bodies validated with pydantic before entering the engine.

    Usage:
        async with AsyncExchangeClient(base_url, credentials) as client:
            book = await client.fetch_top_of_book("🦄")
    """

    def __init__(self, base_url: str = "http://localhost:8080", credentials: Optional[ExchangeCredentials] = None, *, timeout: int = 10, max_retries: int = 5, max_backoff_seconds: float = 30.0):
        self.base_url = base_url.rstrip("/")
        self.credentials = credentials
        self.timeout = timeout
        self.max_retries = max_retries
        self.max_backoff_seconds = max_backoff_seconds
        self.session: Optional[aiohttp.ClientSession] = None

    async def __aenter__(self):
        self.session = aiohttp.ClientSession()
        return self

    async def __aexit__(self, exc_type, exc_val, exc_tb):
        if self.session:
            await self.session.close()

    def _headers(self, authenticated: bool) -> Dict[str, str]:
        headers = {"Content-Type": "application/json"}
        if authenticated:
            if self.credentials is None:
                raise ExchangeError("Not authenticated; register or load credentials first")
            headers["X-Team-Id"] = self.credentials.team_id
            headers["X-Api-Key"] = self.credentials.api_key
        return headers

    @staticmethod
    def _jittered_backoff(attempt: int, base: float = 0.5, max_backoff: float = 30.0) -> float:
        """Compute jittered exponential backoff."""
        delay = base * (2 ** attempt)
        delay = min(delay, max_backoff)
        jitter = delay * 0.25 * (2 * random.random() - 1)
        return max(0, delay + jitter)

    async def _request(self, method: str, path: str, *, body: Optional[dict] = None, params: Optional[dict] = None, authenticated: bool = True) -> Any:
        """Execute a request, backing off on 429 responses."""
        if not self.session:
            raise ExchangeError("Session not initialized; use 'async with' context manager")

        headers = self._headers(authenticated)
        url = f"{self.base_url}{path}"
        attempt = 0
        while True:
            try:
                async with self.session.request(method, url, headers=headers, json=body, params=params, timeout=aiohttp.ClientTimeout(total=self.timeout)) as resp:
                    if resp.status == 429:
                        if attempt >= self.max_retries:
                            raise RateLimitExceededError("Rate limited and max backoff attempts exceeded")
                        backoff = self._jittered_backoff(attempt, max_backoff=self.max_backoff_seconds)
                        logger.warning(f"Rate limited by exchange | path={path} retry_in={backoff:.2f}s")
                        attempt += 1
                        await asyncio.sleep(backoff)
                        continue

                    if not (200 <= resp.status < 300):
                        text = await resp.text()
                        raise ExchangeError(f"{method} {path} failed with {resp.status}: {text}")

                    if resp.status == 204:
                        return None
                    try:
                        return await resp.json(content_type=None)
                    except ValueError as e:
                        raise ExchangeError(f"Malformed response: {method} {path}") from e
            except asyncio.TimeoutError as e:
                raise ExchangeError(f"Request timeout: {method} {path}") from e
            except aiohttp.ClientError as e:
                raise ExchangeError(f"Request failed: {method} {path}: {e}") from e

    @staticmethod
    def _parse(model, payload):
        try:
            return model.model_validate(payload)
        except ValidationError as e:
            raise ExchangeError(f"Malformed {model.__name__}: {e}") from e

    async def register(self, team_id: str) -> RegisterResponse:
        """Register a team and keep the returned credentials for later calls."""
        logger.info(f"Registering team | team_id={team_id}")
        payload = await self._request("POST", "/v1/register", body={"teamId": team_id}, authenticated=False)
        registration = self._parse(RegisterResponse, payload)
        self.credentials = ExchangeCredentials(team_id=registration.team_id, api_key=registration.api_key)
        logger.info(f"Registered team | team_id={registration.team_id} initial_cash={registration.initial_cash}")
        return registration

    async def fetch_top_of_book(self, symbol: str) -> TopOfBook:
        payload = await self._request("GET", "/v1/orderbook", params={"symbol": symbol})
        book = self._parse(OrderBookResponse, payload)
        logger.debug(f"Fetched order book | symbol={symbol} bids={len(book.bids)} asks={len(book.asks)}")
        return book.top_of_book()

    async def fetch_portfolio(self) -> Portfolio:
        team_id = self.credentials.team_id if self.credentials else ""
        payload = await self._request("GET", f"/v1/portfolio/{team_id}")
        portfolio = self._parse(PortfolioResponse, payload)
        return Portfolio(cash=portfolio.cash, positions=dict(portfolio.positions))

    async def submit_limit_order(self, symbol: str, side: OrderSide, quantity: int, limit_price: Decimal) -> TrackedOrder:
        body = {
            "symbol": symbol,
            "side": side.value,
            "quantity": quantity,
            "orderType": "LIMIT",
            "limitPrice": float(limit_price),
        }
        payload = await self._request("POST", "/v1/orders", body=body)
        order = self._parse(OrderResponse, payload)
        try:
            return TrackedOrder(
                order_id=order.order_id,
                symbol=order.symbol,
                side=order.side,
                quantity=order.quantity,
                limit_price=order.limit_price,
                status=order.status,
            )
        except DataCorruptionError as e:
            raise ExchangeError(f"Exchange acknowledged an invalid order: {e}") from e

    async def fetch_fills_since(self, cursor: Optional[int]) -> Tuple[List[Fill], Optional[int]]:
        params = {"since": str(cursor)} if cursor is not None else None
        payload = await self._request("GET", "/v1/fills", params=params)
        response = self._parse(FillsResponse, payload)
        fills = []
        for f in response.fills:
            try:
                fills.append(Fill(
                    fill_id=f.fill_id,
                    order_id=f.order_id,
                    symbol=f.symbol,
                    side=f.side,
                    quantity=f.quantity,
                    price=f.price,
                    cursor=response.next_since,
                ))
            except DataCorruptionError as e:
                # the cursor still moves past it; position reconciliation restores the shares
                logger.warning(
                    f"Skipping malformed fill | fill_id={f.fill_id} cursor={cursor} "
                    f"next_cursor={response.next_since} error={e}"
                )
        return fills, response.next_since
