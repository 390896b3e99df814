"""
Fresh item suppliers: where a recrawl gets the products it just observed.

One supplier per retailer; each returns RawProduct records in crawl order.
"""

import json
from abc import ABC, abstractmethod
from pathlib import Path
from typing import Any, Dict, Iterable, List, Optional

from catalog_models import RawProduct
from recrawl_errors import SourceError


class FreshItemSupplier(ABC):
    """
    Abstract base class for fresh item suppliers.
    """

    def __init__(self, store_key: str, config: Optional[Dict[str, Any]] = None):
        """
        Args:
            store_key: Identifier of the store this supplier crawls
            config: Supplier-specific settings
        """
        self.store_key = store_key
        self.config = config or {}

    @abstractmethod
    def fetch_products(self) -> List[RawProduct]:
        """
        Fetch one full catalog pass.

        Returns:
            Raw products in crawl order

        Raises:
            SourceError: If the catalog cannot be fetched
        """
        pass

    def describe(self) -> str:
        return f"{self.__class__.__name__}({self.store_key})"


class JsonFileSupplier(FreshItemSupplier):
    """Reads raw products from a JSON file: {"products": [...]} or a bare list."""

    def __init__(self, path: str, store_key: Optional[str] = None,
                 config: Optional[Dict[str, Any]] = None):
        self.path = Path(path)
        super().__init__(store_key or self.path.stem, config)

    def fetch_products(self) -> List[RawProduct]:
        try:
            with open(self.path, encoding='utf-8') as f:
                data = json.load(f)
        except (OSError, ValueError) as e:
            raise SourceError(f"Cannot read {self.path}: {e}") from e

        if isinstance(data, dict):
            data = data.get('products')
        if not isinstance(data, list):
            raise SourceError(f"{self.path}: expected a list of products")
        return [RawProduct.from_dict(item) for item in data if isinstance(item, dict)]

    def describe(self) -> str:
        return f"JSON file {self.path}"


def dedupe_raw_products(raw_products: Iterable[RawProduct]) -> List[RawProduct]:
    """Keep the first raw product per parent_product_id (crawl order wins)."""
    seen = set()
    unique = []
    for raw in raw_products:
        pid = raw.parent_product_id
        key = str(pid).strip() if pid is not None else None
        if key:
            if key in seen:
                continue
            seen.add(key)
        # Products without an id pass through; key derivation rejects them
        unique.append(raw)
    return unique
