# Overview: Service-layer lookups against the customer directory and price catalog.

from __future__ import annotations

from dataclasses import dataclass

from ..extensions import db
from ..models import Customer, CustomerPrice, Product
from ..validation import ValidationError


@dataclass(frozen=True)
class PriceQuote:
    product_id: int
    product_code: str
    product_name: str
    unit: str
    unit_price_cents: int
    customer_price_id: int


def get_customer(customer_id: int) -> Customer | None:
    return db.session.get(Customer, customer_id)


def get_active_customer(customer_id: int) -> Customer:
    """Return the customer or raise ValidationError when unknown or inactive."""
    customer = db.session.query(Customer).filter_by(id=customer_id, is_active=True).first()
    if not customer:
        raise ValidationError(f"Customer {customer_id} not found or inactive")
    return customer


def resolve_prices(customer_id: int, product_ids: list[int]) -> dict[int, PriceQuote]:
    """
    Price every product for a customer from the customer's catalog.

    A missing/inactive product or a product absent from the customer's catalog
    is a validation error naming the product; prices are never defaulted.
    """
    unique_ids = sorted(set(product_ids))
    products = {
        p.id: p
        for p in db.session.query(Product).filter(Product.id.in_(unique_ids), Product.is_active == True).all()
    }
    prices = {
        cp.product_id: cp
        for cp in db.session.query(CustomerPrice).filter(
            CustomerPrice.customer_id == customer_id,
            CustomerPrice.product_id.in_(unique_ids),
            CustomerPrice.is_active == True,
        ).all()
    }

    quotes: dict[int, PriceQuote] = {}
    for product_id in unique_ids:
        product = products.get(product_id)
        if not product:
            raise ValidationError(f"Product {product_id} not found or inactive")
        price = prices.get(product_id)
        if not price:
            raise ValidationError(
                f"Product {product.code} is not in the price catalog of customer {customer_id}"
            )
        quotes[product_id] = PriceQuote(
            product_id=product.id,
            product_code=product.code,
            product_name=product.name,
            unit=product.unit,
            unit_price_cents=price.unit_price_cents,
            customer_price_id=price.id,
        )
    return quotes
