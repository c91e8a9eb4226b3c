"""Product record served by the catalog endpoint of the deployed service."""

from __future__ import annotations

from pydantic import BaseModel, ConfigDict, TypeAdapter


class Product(BaseModel):
    model_config = ConfigDict(frozen=True)

    id: int
    name: str
    description: str
    price: float
    category: str


ProductList = TypeAdapter(list[Product])
