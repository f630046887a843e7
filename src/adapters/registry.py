# src/adapters/registry.py

"""Adapter lookup by retailer key and by capability."""

import importlib
import logging
from typing import Any

from src.adapters.base_adapter import SCRAPING_ORDER, BaseAdapter, Capability
from src.config.settings import Settings

logger = logging.getLogger("price_engine.adapters")


def load_adapter_class(dotted_path: str) -> type[Any]:
    """Import an adapter class from its dotted module path."""
    module_path, class_name = dotted_path.rsplit(".", 1)
    module = importlib.import_module(module_path)
    cls: type[Any] = getattr(module, class_name)
    return cls


class AdapterRegistry:
    """Holds one instance per adapter.

    API adapters are keyed by ``Retailer.adapter_key``.  Scraping
    adapters are kept in chain order (managed crawler, headless browser,
    HTML), sorted by their ``capability`` tag.
    """

    def __init__(
        self,
        api_adapters: dict[str, BaseAdapter] | None = None,
        scraping_adapters: list[BaseAdapter] | None = None,
    ) -> None:
        self._api: dict[str, BaseAdapter] = dict(api_adapters or {})
        self._scraping: list[BaseAdapter] = []
        for adapter in scraping_adapters or []:
            self.add_scraper(adapter)

    @classmethod
    def from_settings(cls, settings: Settings | None = None) -> "AdapterRegistry":
        """Instantiate every adapter named in the settings registries.

        An adapter whose import or construction fails is logged and left
        out; the rest of the registry still loads.
        """
        cfg = settings or Settings()
        registry = cls()
        for entry in cfg.API_ADAPTERS:
            adapter = _instantiate(entry["adapter"], cfg)
            if adapter is not None:
                registry.add_api(entry["retailer"], adapter)
        for path in cfg.SCRAPING_ADAPTERS:
            adapter = _instantiate(path, cfg)
            if adapter is not None:
                registry.add_scraper(adapter)
        return registry

    def add_api(self, retailer_key: str, adapter: BaseAdapter) -> None:
        if adapter.capability is not Capability.FETCH_BY_API:
            raise ValueError(
                f"{adapter.adapter_name} is not an API adapter"
            )
        self._api[retailer_key.lower()] = adapter

    def add_scraper(self, adapter: BaseAdapter) -> None:
        if adapter.capability not in SCRAPING_ORDER:
            raise ValueError(
                f"{adapter.adapter_name} is not a scraping adapter"
            )
        self._scraping.append(adapter)
        self._scraping.sort(key=lambda a: SCRAPING_ORDER.index(a.capability))

    def api_for(self, retailer_key: str) -> BaseAdapter | None:
        return self._api.get(retailer_key.lower())

    def scraping_chain(self) -> list[BaseAdapter]:
        return list(self._scraping)

    def all_adapters(self) -> list[BaseAdapter]:
        return [*self._api.values(), *self._scraping]


def _instantiate(dotted_path: str, settings: Settings) -> BaseAdapter | None:
    try:
        adapter_cls = load_adapter_class(dotted_path)
        adapter: BaseAdapter = adapter_cls(settings)
    except Exception as exc:
        logger.error(
            "Failed to load adapter %s: %s", dotted_path, exc, exc_info=True,
        )
        return None
    return adapter
