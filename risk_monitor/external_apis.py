import asyncio
from typing import Any, Dict, List, Optional

import httpx
import structlog

from .config import AAVE_V3_MARKETS, settings
from .error_handling import ConfigurationError, ProviderError, async_retrying
from .normalizer import safe_number

logger = structlog.get_logger()


USER_SUPPLIES_QUERY = """
query UserSupplies($request: UserSuppliesRequest!) {
  userSupplies(request: $request) {
    market { name address chain { name chainId } }
    currency { symbol name address decimals }
    balance { amount { value } usd usdPerToken }
    apy { formatted }
    isCollateral
    canBeCollateral
  }
}
"""

USER_BORROWS_QUERY = """
query UserBorrows($request: UserBorrowsRequest!) {
  userBorrows(request: $request) {
    market { name address chain { name chainId } }
    currency { symbol name address decimals }
    debt { amount { value } usd usdPerToken }
    apy { formatted }
  }
}
"""

USER_MARKET_STATE_QUERY = """
query UserMarketState($request: UserMarketStateRequest!) {
  userMarketState(request: $request) {
    healthFactor
    netWorth
    totalCollateralBase
    totalDebtBase
    availableBorrowsBase
    currentLiquidationThreshold { value }
    ltv { value }
    netAPY { formatted }
    eModeEnabled
    isInIsolationMode
  }
}
"""


class BaseAPIClient:
    def __init__(
        self,
        base_url: str,
        headers: Optional[Dict] = None,
        timeout: float = 30.0,
        max_attempts: int = 3,
        transport: Optional[httpx.AsyncBaseTransport] = None
    ):
        self.base_url = base_url
        self.default_headers = headers or {}
        self.timeout = timeout
        self.max_attempts = max_attempts
        self.transport = transport
        self.client: Optional[httpx.AsyncClient] = None

    async def __aenter__(self):
        await self.open()
        return self

    async def __aexit__(self, exc_type, exc_val, exc_tb):
        await self.close()

    async def open(self):
        if self.client is None:
            self.client = httpx.AsyncClient(
                base_url=self.base_url,
                headers=self.default_headers,
                timeout=self.timeout,
                limits=httpx.Limits(max_keepalive_connections=20, max_connections=100),
                transport=self.transport
            )

    async def close(self):
        if self.client:
            await self.client.aclose()
            self.client = None

    async def _make_request(self, method: str, endpoint: str, **kwargs) -> Any:
        """Make HTTP request, retrying transport failures with backoff"""
        if not self.client:
            raise RuntimeError("Client not initialized. Use 'async with' context.")

        try:
            async for attempt in async_retrying(
                max_attempts=self.max_attempts,
                exceptions=(httpx.TransportError,)
            ):
                with attempt:
                    response = await self.client.request(method, endpoint, **kwargs)
                    response.raise_for_status()
                    return response.json()
        except httpx.HTTPStatusError as e:
            logger.error(f"HTTP error {e.response.status_code} for {method} {endpoint}",
                         error=str(e), status_code=e.response.status_code)
            raise ProviderError(f"API request failed: {e.response.status_code}") from e
        except httpx.TransportError as e:
            logger.error(f"Request error for {method} {endpoint}", error=str(e))
            raise ProviderError(f"Network error: {e}") from e
        except ValueError as e:
            raise ProviderError(f"Invalid JSON response: {e}") from e


class AaveClient(BaseAPIClient):
    """Position provider backed by the Aave v3 GraphQL API"""

    def __init__(
        self,
        api_url: Optional[str] = None,
        market_address: Optional[str] = None,
        chain_id: Optional[int] = None,
        timeout: Optional[float] = None,
        max_attempts: Optional[int] = None,
        transport: Optional[httpx.AsyncBaseTransport] = None
    ):
        super().__init__(
            api_url or settings.AAVE_API_URL,
            headers={"Content-Type": "application/json"},
            timeout=timeout or settings.FETCH_TIMEOUT_SECONDS,
            max_attempts=max_attempts or settings.PROVIDER_MAX_ATTEMPTS,
            transport=transport
        )
        self.market_address = market_address or settings.MARKET_ADDRESS
        self.chain_id = chain_id or settings.CHAIN_ID

    @classmethod
    def for_network(cls, network: str, **kwargs) -> "AaveClient":
        """Client bound to the main Aave v3 market of a known network"""
        market = AAVE_V3_MARKETS.get(network.lower())
        if market is None:
            raise ConfigurationError(f"Unsupported Aave v3 network: {network}")
        return cls(market_address=market["address"], chain_id=market["chain_id"], **kwargs)

    async def query(self, query: str, variables: Optional[Dict] = None) -> Dict[str, Any]:
        """Execute GraphQL query and return its data block"""
        payload = {
            "query": query,
            "variables": variables or {}
        }
        result = await self._make_request("POST", self.base_url, json=payload)

        if not isinstance(result, dict):
            raise ProviderError("Malformed GraphQL response")
        if result.get("errors"):
            messages = "; ".join(str(err.get("message", err)) for err in result["errors"])
            raise ProviderError(f"GraphQL error: {messages}")
        return result.get("data") or {}

    def _markets(self) -> List[Dict[str, Any]]:
        return [{"address": self.market_address, "chainId": self.chain_id}]

    async def get_user_supplies(self, user_address: str) -> List[Dict]:
        data = await self.query(
            USER_SUPPLIES_QUERY,
            {"request": {"markets": self._markets(), "user": user_address}}
        )
        return data.get("userSupplies") or []

    async def get_user_borrows(self, user_address: str) -> List[Dict]:
        data = await self.query(
            USER_BORROWS_QUERY,
            {"request": {"markets": self._markets(), "user": user_address}}
        )
        return data.get("userBorrows") or []

    async def get_user_market_state(self, user_address: str) -> Optional[Dict]:
        data = await self.query(
            USER_MARKET_STATE_QUERY,
            {"request": {"market": self.market_address, "user": user_address, "chainId": self.chain_id}}
        )
        return data.get("userMarketState")

    async def fetch_position(self, wallet_address: str) -> Dict[str, Any]:
        """Fetch supplies, borrows and market state in parallel.

        Supply or borrow failures degrade to empty lists; without market state
        there is no usable snapshot, so that failure propagates.
        """
        await self.open()
        supplies, borrows, state = await asyncio.gather(
            self.get_user_supplies(wallet_address),
            self.get_user_borrows(wallet_address),
            self.get_user_market_state(wallet_address),
            return_exceptions=True
        )

        if isinstance(state, BaseException):
            raise state if isinstance(state, ProviderError) else ProviderError(str(state))
        if state is None:
            raise ProviderError(f"No market state returned for {wallet_address}")

        if "currentLtv" not in state:
            # The market state has no current LTV field; it is debt over collateral
            state = dict(state)
            collateral = safe_number(state.get("totalCollateralBase"))
            if collateral > 0:
                state["currentLtv"] = safe_number(state.get("totalDebtBase")) / collateral

        if isinstance(supplies, BaseException):
            logger.warning("Failed to fetch supplies", wallet=wallet_address, error=str(supplies))
            supplies = []
        if isinstance(borrows, BaseException):
            logger.warning("Failed to fetch borrows", wallet=wallet_address, error=str(borrows))
            borrows = []

        return {"supplies": supplies, "borrows": borrows, "state": state}
