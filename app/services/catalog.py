# app/services/catalog.py
"""
Read-only content catalog.

The gate only needs an item's identifier, price and currency; the content
payload is released to the caller after a successful payment.
"""
import logging
from dataclasses import dataclass
from decimal import Decimal
from typing import Dict, Iterable, List, Optional

from app.core.config import settings
from app.x402.verifier import to_base_units

logger = logging.getLogger(__name__)

PREVIEW_LENGTH = 100


@dataclass(frozen=True)
class Item:
    """A purchasable catalog entry. Prices are in human units of `currency`."""
    item_id: str
    title: str
    price: Decimal
    currency: str
    content: str

    def preview(self, length: int = PREVIEW_LENGTH) -> str:
        return self.content[:length] + "..."


STRIPE_2026 = """# Stripe API Documentation (2026 Edition)

## Payment Intents API

Create a PaymentIntent to initiate a payment flow.

```javascript
const stripe = require('stripe')('sk_test_xxx');

const paymentIntent = await stripe.paymentIntents.create({
  amount: 2000,
  currency: 'usd',
  payment_method_types: ['card'],
});
```

## New in 2026
- Neural payment verification
- Quantum-resistant encryption
- AI-powered fraud detection v3
"""

OPENAI_2026 = """# OpenAI Python SDK Documentation (2026 Edition)

## Chat Completions

```python
from openai import OpenAI

client = OpenAI()

response = client.chat.completions.create(
    model="gpt-5-turbo",
    messages=[
        {"role": "user", "content": "Hello!"}
    ]
)
```

## New in 2026
- Native multimodal input
- Real-time streaming v2
- Context window: 1M tokens
"""

COMBINED_BUNDLE = """# Premium API Bundle

This bundle includes documentation for:
- Stripe API 2026
- OpenAI Python SDK 2026
- Integration patterns and best practices

*Full content delivered upon purchase*
"""

DEFAULT_ITEMS = (
    Item("stripe-2026", "Stripe API Documentation (2026)", Decimal("0.001"), "USDC", STRIPE_2026),
    Item("openai-2026", "OpenAI Python SDK Documentation (2026)", Decimal("0.002"), "USDC", OPENAI_2026),
    Item("combined-bundle", "Premium API Bundle", Decimal("0.005"), "USDC", COMBINED_BUNDLE),
)


class Catalog:
    """
    Immutable mapping of item identifier to Item.

    Every price must be worth at least one base unit of the settlement asset
    (X402_ASSET_DECIMALS unless `decimals` is given).
    """

    def __init__(self, items: Iterable[Item], decimals: Optional[int] = None):
        if decimals is None:
            decimals = settings.X402_ASSET_DECIMALS
        inventory: Dict[str, Item] = {}
        for item in items:
            if item.price <= 0:
                raise ValueError(f"Item '{item.item_id}' must have a positive price, got {item.price}")
            if to_base_units(item.price, decimals) < 1:
                raise ValueError(
                    f"Item '{item.item_id}' price {item.price} is below one base unit at {decimals} decimals"
                )
            if item.item_id in inventory:
                raise ValueError(f"Duplicate catalog item: {item.item_id}")
            inventory[item.item_id] = item
        self._items = inventory
        logger.debug(f"Catalog loaded with {len(inventory)} items")

    def lookup(self, item_id: str) -> Optional[Item]:
        """Return the item, or None when the identifier is unknown."""
        return self._items.get(item_id)

    def item_ids(self) -> List[str]:
        return list(self._items)

    def items(self) -> List[Item]:
        return list(self._items.values())

    def __len__(self) -> int:
        return len(self._items)


_catalog: Optional[Catalog] = None


def get_catalog() -> Catalog:
    """Get the process-wide catalog, loading the default inventory on first use."""
    global _catalog
    if _catalog is None:
        _catalog = Catalog(DEFAULT_ITEMS)
    return _catalog
