"""Allow-list of tradable symbols, backed by the brokerage asset listing and cached."""

import logging
import time
from typing import Callable, Optional

from equitybridge.domain.models.brokerage import SupportedAsset
from equitybridge.exceptions import DependencyError
from equitybridge.infra.brokerage.alpaca_client import AlpacaClient

logger = logging.getLogger(__name__)

DEFAULT_SUPPORTED_SYMBOLS = ("AAPL", "TSLA", "MSFT")


class CatalogCache:
    """Snapshot holder. Lives longer than any one catalog/client (e.g. across Celery tasks)."""

    def __init__(self) -> None:
        self.assets: Optional[dict[str, SupportedAsset]] = None
        self.fetched_at: float = 0.0


class AssetCatalog:
    def __init__(
        self,
        client: AlpacaClient,
        supported_symbols: tuple[str, ...] | list[str] = DEFAULT_SUPPORTED_SYMBOLS,
        refresh_seconds: float = 900.0,
        cache: CatalogCache | None = None,
        clock: Callable[[], float] = time.monotonic,
    ) -> None:
        self._client = client
        self._symbols = {s.upper() for s in supported_symbols}
        self._refresh_seconds = refresh_seconds
        self._cache = cache or CatalogCache()
        self._clock = clock

    def _is_fresh(self) -> bool:
        return self._cache.assets is not None and self._clock() - self._cache.fetched_at < self._refresh_seconds

    async def refresh(self) -> dict[str, SupportedAsset]:
        assets = await self._client.get_assets(status="active", asset_class="us_equity")
        supported = {
            a.symbol.upper(): SupportedAsset.from_asset(a)
            for a in assets
            if a.symbol.upper() in self._symbols
        }
        self._cache.assets = supported
        self._cache.fetched_at = self._clock()
        logger.info(
            "Catalog refreshed: %d/%d allow-listed symbols listed (%d assets total)",
            len(supported), len(self._symbols), len(assets),
        )
        return supported

    async def _load(self) -> dict[str, SupportedAsset]:
        if self._is_fresh():
            return self._cache.assets  # type: ignore[return-value]
        try:
            return await self.refresh()
        except DependencyError:
            if self._cache.assets is None:
                raise
            logger.warning("Catalog refresh failed, serving stale snapshot", exc_info=True)
            return self._cache.assets

    async def list_supported_assets(self) -> list[SupportedAsset]:
        assets = await self._load()
        return sorted(assets.values(), key=lambda a: a.symbol)

    async def get(self, symbol: str) -> Optional[SupportedAsset]:
        return (await self._load()).get(symbol.upper())

    @property
    def supported_symbols(self) -> list[str]:
        return sorted(self._symbols)
