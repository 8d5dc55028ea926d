"""
Menu catalog lookup used when an order is submitted.

Only the price, name and department captured here end up on the order
item; later catalog edits never change existing items.
"""
from decimal import Decimal
from typing import Dict, NamedTuple, Optional

from sqlalchemy.orm import Session

import models
from errors import NotFoundError, ValidationError


class CatalogEntry(NamedTuple):
    menu_item_id: int
    name: str
    price: Decimal
    department: Optional[str]


class MenuCatalog:
    def __init__(self, db: Session):
        self.db = db
        self._cache: Dict[int, CatalogEntry] = {}

    def lookup(self, menu_item_id: int) -> CatalogEntry:
        if menu_item_id in self._cache:
            return self._cache[menu_item_id]

        item = self.db.query(models.MenuItem).filter(models.MenuItem.id == menu_item_id).first()
        if not item:
            raise NotFoundError("menu item", menu_item_id)
        if not item.available:
            raise ValidationError(f"Menu item {item.name} is not available", menu_item_id=menu_item_id)

        entry = CatalogEntry(
            menu_item_id=item.id,
            name=item.name,
            price=Decimal(str(item.price)),
            department=item.department.name if item.department else None,
        )
        self._cache[menu_item_id] = entry
        return entry
