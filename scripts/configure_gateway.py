"""Configure a payment gateway's credentials.

Usage:
    python -m scripts.configure_gateway midtrans
    python -m scripts.configure_gateway duitku --activate

Environment variables read (from .env or the shell):
    MIDTRANS_SERVER_KEY  - Midtrans Server Key (signs charges and notifications)
    MIDTRANS_CLIENT_KEY  - Midtrans Client Key (optional, stored as api_key)
    DUITKU_MERCHANT_CODE - Duitku merchant code
    DUITKU_API_KEY       - Duitku API key (signs inquiries and callbacks)
    PAYMENT_PRODUCTION   - Set to 'true' for production (default: sandbox)
"""

import argparse
import asyncio
import os
import sys
from pathlib import Path

# Add project root to path
sys.path.insert(0, str(Path(__file__).parent.parent))

from dotenv import load_dotenv
load_dotenv()

from storefront.core.config import settings
from storefront.core.database import async_session_maker
from storefront.core.encryption import mask_credential
from storefront.modules.payment_gateway.models import GATEWAY_DEFAULTS, GatewayName
from storefront.modules.payment_gateway.repository import PaymentGatewayRepository
from storefront.modules.payment_gateway.service import GatewayAdminService


def read_credentials(gateway_name: str) -> dict:
    """Map environment variables onto api_key / secret_key / merchant_id."""
    if gateway_name == GatewayName.MIDTRANS.value:
        server_key = os.getenv("MIDTRANS_SERVER_KEY", "")
        return {
            "api_key": os.getenv("MIDTRANS_CLIENT_KEY", "") or server_key,
            "secret_key": server_key,
            "merchant_id": None,
        }
    api_key = os.getenv("DUITKU_API_KEY", "")
    return {
        "api_key": api_key,
        "secret_key": api_key,
        "merchant_id": os.getenv("DUITKU_MERCHANT_CODE", "") or None,
    }


async def configure_gateway(gateway_name: str, activate: bool) -> None:
    """Store credentials from the environment and optionally activate."""
    credentials = read_credentials(gateway_name)
    environment = "production" if os.getenv("PAYMENT_PRODUCTION", "false").lower() == "true" else "sandbox"
    display_name = GATEWAY_DEFAULTS[gateway_name]["display_name"]

    print(f"\n{'='*60}")
    print(f"Configuring {display_name} Payment Gateway")
    print(f"{'='*60}")

    if not credentials["secret_key"]:
        print(f"\n⚠️  No secret key found in environment for {display_name}")
        print(__doc__)
        return

    print(f"\nSecret Key: {mask_credential(credentials['secret_key'])}")
    print(f"Merchant ID: {credentials['merchant_id'] or 'Not set'}")
    print(f"Environment: {environment}")

    async with async_session_maker() as session:
        repo = PaymentGatewayRepository(session)
        service = GatewayAdminService(session)
        existing = await repo.get_config_by_name(gateway_name)

        config = await service.save_gateway_config(
            gateway_name=gateway_name,
            display_name=display_name,
            environment=environment,
            config_id=existing.id if existing else None,
            **credentials,
        )
        print(f"\n✓ {'Updated' if existing else 'Created'} {display_name} configuration")

        if activate:
            await service.activate_gateway(config.id)
            print(f"✓ {display_name} is now the active gateway")

        await session.commit()

    print(f"\n{'='*60}")
    print("Notification Setup")
    print(f"{'='*60}")
    print(f"\nSet the payment notification URL in the {display_name} dashboard to:")
    print(f"  {settings.APP_URL}{settings.API_PREFIX}/webhook/{gateway_name}")


if __name__ == "__main__":
    parser = argparse.ArgumentParser(description="Configure a payment gateway")
    parser.add_argument("gateway", choices=[g.value for g in GatewayName])
    parser.add_argument("--activate", action="store_true", help="Make this the active gateway")
    args = parser.parse_args()
    asyncio.run(configure_gateway(args.gateway, args.activate))
