from __future__ import annotations

from typing import Optional, Protocol

from shopdesk.domain.models import Customer, ExchangeRate, Product, Sale, SaleItem


class ProductRepository(Protocol):
    def get_product_by_id(self, product_id: int) -> Optional[Product]: ...
    def get_product_stock(self, product_id: int) -> Optional[int]: ...
    def list_products(self) -> list[Product]: ...


class RateRepository(Protocol):
    def get_latest_exchange_rate(self) -> Optional[ExchangeRate]: ...
    def insert_exchange_rate(self, rate: float, created_at: str, actor_user_id: Optional[int] = None) -> int: ...
    def list_exchange_rates(self, limit: int = 30) -> list[ExchangeRate]: ...


class SaleRepository(ProductRepository, Protocol):
    def get_sale(self, sale_id: int) -> Optional[Sale]: ...
    def get_sale_items(self, sale_id: int) -> list[SaleItem]: ...
    def list_sales_between(self, start_iso: str, end_iso: str) -> list[Sale]: ...
    def get_standard_customer(self) -> Optional[Customer]: ...
