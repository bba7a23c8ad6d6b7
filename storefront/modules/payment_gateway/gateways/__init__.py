"""Payment gateway implementations.

Contains handlers for Midtrans (Core API) and Duitku (hosted payment page).
"""

from .midtrans import MidtransGateway
from .duitku import DuitkuGateway

__all__ = ["MidtransGateway", "DuitkuGateway"]
