from __future__ import annotations

from shopdesk.domain.errors import NotFoundError, ValidationError
from shopdesk.domain.models import Customer


class CustomerService:
    def __init__(self, repo):
        self.repo = repo

    def standard_customer(self) -> Customer:
        c = self.repo.get_standard_customer()
        if not c:
            raise NotFoundError("Standard customer is missing. Run the migrations.")
        return c

    def lookup(self, phone: str | None) -> Customer:
        """Customer with this phone number, or the walk-in 'Standard' customer."""
        phone = (phone or "").strip()
        if phone:
            found = self.repo.get_customer_by_phone(phone)
            if found:
                return found
        return self.standard_customer()

    def add_customer(self, full_name: str, phone: str | None) -> int:
        name = (full_name or "").strip()
        phone = (phone or "").strip() or None
        if not name:
            raise ValidationError("Customer name is required.")
        if phone and self.repo.get_customer_by_phone(phone):
            raise ValidationError(f"A customer with phone {phone} already exists.")
        return self.repo.add_customer(name, phone)

    def list_customers(self) -> list[Customer]:
        return self.repo.list_customers()
