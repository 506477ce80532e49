"""
In-memory entity store.

Each entity kind lives in its own ``Table``: a dict keyed by an integer id
allocated from a per-table counter. All tables share one re-entrant lock so a
``transaction()`` can hold every table at once and roll all of them back.
"""
import html
import itertools
import logging
import threading
import time
from contextlib import contextmanager
from datetime import datetime
from typing import Callable, Dict, Generic, Iterator, List, Optional, Type, TypeVar

from ecofinds.models import (
    Record, UserDB, CategoryDB, ProductDB, CartItemDB, OrderDB, OrderItemDB
)

logger = logging.getLogger(__name__)

R = TypeVar("R", bound=Record)

# Fields a caller can never patch
IMMUTABLE_FIELDS = {"id", "created_at"}

DEFAULT_CATEGORIES = [
    {"name": "Home & Living", "slug": "home-living"},
    {"name": "Personal Care", "slug": "personal-care"},
    {"name": "Fashion", "slug": "fashion"},
    {"name": "Food & Kitchen", "slug": "food-kitchen"},
]


class Table(Generic[R]):
    def __init__(self, model: Type[R], lock: threading.RLock):
        self.model = model
        self._lock = lock
        self._rows: Dict[int, R] = {}
        self._ids = itertools.count(1)

    def __len__(self) -> int:
        return len(self._rows)

    def get(self, id: int) -> Optional[R]:
        return self._rows.get(id)

    def all(self) -> List[R]:
        with self._lock:
            return list(self._rows.values())

    def find_by(self, predicate: Callable[[R], bool]) -> List[R]:
        return [row for row in self.all() if predicate(row)]

    def find_first(self, predicate: Callable[[R], bool]) -> Optional[R]:
        for row in self.all():
            if predicate(row):
                return row
        return None

    def insert(self, data: dict) -> R:
        values = {k: v for k, v in data.items() if k not in IMMUTABLE_FIELDS}
        with self._lock:
            values["id"] = next(self._ids)
            if "created_at" in self.model.model_fields:
                values["created_at"] = datetime.utcnow()
            # An invalid row burns its id; ids are never handed out twice
            row = self.model.model_validate(values)
            self._rows[row.id] = row
            return row

    def update(self, id: int, partial: dict) -> Optional[R]:
        changes = {k: v for k, v in partial.items() if k not in IMMUTABLE_FIELDS}
        with self._lock:
            existing = self._rows.get(id)
            if existing is None:
                return None
            # Validate the merged row before it replaces the stored one
            row = self.model.model_validate({**existing.model_dump(), **changes})
            self._rows[id] = row
            return row

    def delete(self, id: int) -> bool:
        with self._lock:
            return self._rows.pop(id, None) is not None

    def delete_where(self, predicate: Callable[[R], bool]) -> int:
        with self._lock:
            doomed = [row.id for row in self._rows.values() if predicate(row)]
            for id in doomed:
                del self._rows[id]
            return len(doomed)

    def snapshot(self) -> Dict[int, R]:
        return dict(self._rows)

    def restore(self, rows: Dict[int, R]):
        self._rows = dict(rows)


class MarketplaceStore:
    def __init__(self, seed: bool = True):
        self.lock = threading.RLock()
        self.users: Table[UserDB] = Table(UserDB, self.lock)
        self.categories: Table[CategoryDB] = Table(CategoryDB, self.lock)
        self.products: Table[ProductDB] = Table(ProductDB, self.lock)
        self.cart_items: Table[CartItemDB] = Table(CartItemDB, self.lock)
        self.orders: Table[OrderDB] = Table(OrderDB, self.lock)
        self.order_items: Table[OrderItemDB] = Table(OrderItemDB, self.lock)
        # jti -> exp (epoch seconds); None never expires
        self.revoked_tokens: Dict[str, Optional[int]] = {}

        self._user_locks: Dict[int, threading.RLock] = {}
        self._user_locks_guard = threading.Lock()

        if seed:
            self.seed_categories()

    @property
    def tables(self) -> Dict[str, Table]:
        return {
            "users": self.users,
            "categories": self.categories,
            "products": self.products,
            "cart_items": self.cart_items,
            "orders": self.orders,
            "order_items": self.order_items,
        }

    # --- Concurrency ---

    @contextmanager
    def transaction(self) -> Iterator["MarketplaceStore"]:
        """Hold every table; if the block raises, put every table back."""
        with self.lock:
            snapshots = {name: table.snapshot() for name, table in self.tables.items()}
            try:
                yield self
            except Exception:
                for name, table in self.tables.items():
                    table.restore(snapshots[name])
                logger.warning("Transaction rolled back")
                raise

    def user_lock(self, user_id: int) -> threading.RLock:
        with self._user_locks_guard:
            lock = self._user_locks.get(user_id)
            if lock is None:
                lock = self._user_locks[user_id] = threading.RLock()
            return lock

    # --- Users ---

    def get_user(self, id: int) -> Optional[UserDB]:
        return self.users.get(id)

    def get_user_by_username(self, username: str) -> Optional[UserDB]:
        wanted = username.lower()
        return self.users.find_first(lambda u: u.username.lower() == wanted)

    def get_user_by_email(self, email: str) -> Optional[UserDB]:
        wanted = email.lower()
        return self.users.find_first(lambda u: u.email.lower() == wanted)

    def create_user(self, data: dict) -> UserDB:
        return self.users.insert(data)

    def update_user(self, id: int, data: dict) -> Optional[UserDB]:
        return self.users.update(id, data)

    # --- Categories ---

    def get_categories(self) -> List[CategoryDB]:
        return self.categories.all()

    def get_category(self, id: int) -> Optional[CategoryDB]:
        return self.categories.get(id)

    def get_category_by_slug(self, slug: str) -> Optional[CategoryDB]:
        return self.categories.find_first(lambda c: c.slug == slug)

    def create_category(self, name: str, slug: str) -> CategoryDB:
        return self.categories.insert({"name": name, "slug": slug})

    def seed_categories(self):
        with self.lock:
            for category in DEFAULT_CATEGORIES:
                if self.get_category_by_slug(category["slug"]) is None:
                    self.create_category(**category)

    # --- Products ---

    def get_products(self) -> List[ProductDB]:
        return self.products.all()

    def get_product(self, id: int) -> Optional[ProductDB]:
        return self.products.get(id)

    def get_products_by_category(self, category_id: int) -> List[ProductDB]:
        return self.products.find_by(lambda p: p.category_id == category_id)

    def get_products_by_seller(self, seller_id: int) -> List[ProductDB]:
        return self.products.find_by(lambda p: p.seller_id == seller_id)

    def search_products(self, keyword: str) -> List[ProductDB]:
        # Free text is stored HTML-escaped; match against what the seller typed
        needle = keyword.lower()
        return self.products.find_by(
            lambda p: needle in html.unescape(p.title).lower()
            or needle in html.unescape(p.description).lower()
        )

    def create_product(self, data: dict) -> ProductDB:
        return self.products.insert(data)

    def update_product(self, id: int, data: dict) -> Optional[ProductDB]:
        return self.products.update(id, data)

    def delete_product(self, id: int) -> bool:
        # Cart and order rows keep their product_id; joins resolve it to None
        return self.products.delete(id)

    # --- Tokens ---

    def revoke_token(self, jti: str, expires_at: Optional[int] = None):
        with self.lock:
            self.prune_revoked_tokens()
            self.revoked_tokens[jti] = expires_at

    def prune_revoked_tokens(self, now: Optional[float] = None) -> int:
        """Forget revocations of tokens that have expired anyway."""
        now = time.time() if now is None else now
        with self.lock:
            expired = [
                jti for jti, exp in self.revoked_tokens.items()
                if exp is not None and exp <= now
            ]
            for jti in expired:
                del self.revoked_tokens[jti]
            return len(expired)

    def is_token_revoked(self, jti: str) -> bool:
        return jti in self.revoked_tokens

    def stats(self) -> Dict[str, int]:
        return {name: len(table) for name, table in self.tables.items()}
