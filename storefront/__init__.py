"""Storefront Payment Backend.

Payment integration core for a digital-goods storefront. Opens transactions
against a third-party gateway (Midtrans, Duitku) or falls back to manual bank
transfer, selected by a single runtime flag.

Modules:
    - core: Configuration, database, logging, tracing, metrics
    - modules.payment_gateway: Gateway handlers, processor, manual methods,
      status lifecycle, webhooks and admin configuration
"""

__version__ = "0.1.0"
