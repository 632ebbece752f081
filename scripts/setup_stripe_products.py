"""Create the Ghibli AI product and its monthly prices in Stripe.

Usage:
    STRIPE_SECRET_KEY=sk_test_... python scripts/setup_stripe_products.py [--yearly]

Prints the price ids to put in ``STRIPE_PRO_PRICE_ID`` and
``STRIPE_ENTERPRISE_PRICE_ID``.
"""

from __future__ import annotations

import argparse
import sys

import stripe

from ghibli_ai import __version__
from ghibli_ai.core.config import get_settings

MONTHLY_PRICES = {
    "pro": 1900,
    "enterprise": 9900,
}
# Ten months for the price of twelve.
YEARLY_PRICES = {
    "pro": 19000,
    "enterprise": 99000,
}


def _create_price(api_key: str, product_id: str, plan: str, amount: int, interval: str) -> str:
    period = "monthly" if interval == "month" else "yearly"
    price = stripe.Price.create(
        api_key=api_key,
        unit_amount=amount,
        currency="usd",
        recurring={"interval": interval},
        product=product_id,
        nickname=f"{plan.title()} {period.title()}",
        metadata={"plan": plan, "billing_period": period},
    )
    print(f"Created {plan} {period} price: {price.id}")
    return price.id


def main(argv: list[str] | None = None) -> int:
    parser = argparse.ArgumentParser(description=__doc__.splitlines()[0])
    parser.add_argument("--yearly", action="store_true", help="also create discounted yearly prices")
    args = parser.parse_args(argv)

    api_key = get_settings().stripe_secret_key
    if not api_key:
        print("STRIPE_SECRET_KEY is not set", file=sys.stderr)
        return 1

    try:
        product = stripe.Product.create(
            api_key=api_key,
            name="Ghibli AI - Studio Ghibli style image generation",
            description="Generate Studio Ghibli style artwork with AI",
            metadata={"app": "ghibli-ai", "version": __version__},
        )
        print(f"Created product: {product.id}")

        monthly = {
            plan: _create_price(api_key, product.id, plan, amount, "month")
            for plan, amount in MONTHLY_PRICES.items()
        }
        if args.yearly:
            for plan, amount in YEARLY_PRICES.items():
                _create_price(api_key, product.id, plan, amount, "year")
    except stripe.StripeError as exc:
        print(f"Stripe error: {exc}", file=sys.stderr)
        return 1

    print("\nAdd the following to your .env.local:")
    print(f"STRIPE_PRO_PRICE_ID={monthly['pro']}")
    print(f"STRIPE_ENTERPRISE_PRICE_ID={monthly['enterprise']}")
    return 0


if __name__ == "__main__":
    sys.exit(main())
