"""
DISPATCH App - Synthetic delivery feed

Demo stand-in for the order-management backend: fabricates pending
deliveries with random customers and baskets. Production deployments turn
it off (DISPATCH_SYNTHETIC_DELIVERIES=False) and push real orders through
the intake endpoint instead.
"""

import itertools
import logging
import random
import time
from typing import Callable, List, Optional

from dispatch.models import Delivery

logger = logging.getLogger(__name__)


CUSTOMERS = ['John Doe', 'Jane Smith', 'Bob Johnson', 'Alice Brown', 'Charlie Wilson']

ADDRESSES = [
    '123 Main Street, Apartment 4B, Downtown',
    '456 Oak Avenue, Building C, Floor 2',
    '789 Pine Road, Villa 15',
    '321 Elm Street, Block A, Floor 3',
    '654 Maple Drive, House 12',
]

BASKETS = [
    [{'name': 'Aashirvaad Atta', 'quantity': 2}, {'name': 'Fresh Milk', 'quantity': 1}],
    [{'name': 'Fresh Vegetables', 'quantity': 3}, {'name': 'Milk Pack', 'quantity': 1}],
    [{'name': 'Grocery Items', 'quantity': 2}, {'name': 'Fruit Basket', 'quantity': 1}],
    [{'name': 'Rice Pack', 'quantity': 1}, {'name': 'Cooking Oil', 'quantity': 1}],
    [{'name': 'Snacks Pack', 'quantity': 5}, {'name': 'Soft Drinks', 'quantity': 2}],
]


class SyntheticDeliveryFeed:
    """Generates randomized pending deliveries."""

    def __init__(
        self,
        clock: Callable[[], float] = time.time,
        rng: Optional[random.Random] = None,
    ):
        self.clock = clock
        self.rng = rng or random.Random()
        self._sequence = itertools.count()

    def generate(self, count: int) -> List[Delivery]:
        now = self.clock()
        deliveries = []
        for _ in range(count):
            deliveries.append(Delivery(
                delivery_id=f"ORD{int(now * 1000)}{next(self._sequence)}",
                customer_name=self.rng.choice(CUSTOMERS),
                address=self.rng.choice(ADDRESSES),
                items=[dict(item) for item in self.rng.choice(BASKETS)],
                total=self.rng.randint(100, 399),
                distance_km=self.rng.randint(2, 11),
                customer_phone=f"+91{self.rng.randint(1000000000, 9999999999)}",
                created_at=now,
            ))
        logger.debug(f"[FEED] Generated {count} synthetic deliveries")
        return deliveries
