"""In-memory product registry for the API service."""

import asyncio
from collections import defaultdict

from pimflow.domain.models.product import ProductWorkflow


class ProductAlreadyExistsError(Exception):
    """Raised when registering a product id that is already taken."""

    pass


class ProductRegistry:
    """Products keyed by id, with a lock per product.

    Workflow requests for the same product are serialized through
    ``lock(product_id)`` so two transitions never interleave on one record.
    """

    def __init__(self) -> None:
        self._products: dict[str, ProductWorkflow] = {}
        self._locks: defaultdict[str, asyncio.Lock] = defaultdict(asyncio.Lock)

    def add(self, product: ProductWorkflow) -> None:
        """Register a product.

        Raises:
            ProductAlreadyExistsError: If the id is already registered.
        """
        if product.id in self._products:
            raise ProductAlreadyExistsError(f"Product {product.id} already exists")
        self._products[product.id] = product

    def get(self, product_id: str) -> ProductWorkflow | None:
        return self._products.get(product_id)

    def list(self) -> list[ProductWorkflow]:
        return list(self._products.values())

    def lock(self, product_id: str) -> asyncio.Lock:
        return self._locks[product_id]

    def clear(self) -> None:
        self._products.clear()
        self._locks.clear()
