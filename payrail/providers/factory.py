"""Adapter lookup by provider."""

import httpx

from payrail.exceptions import RoutingUnsupportedError
from payrail.providers.base import ProviderAdapter
from payrail.providers.mtn_momo import MtnMomoAdapter
from payrail.providers.paymentology import PaymentologyAdapter
from payrail.providers.pesapal import PesapalAdapter
from payrail.providers.pesepay import PesepayAdapter
from payrail.providers.paystack import PaystackAdapter
from payrail.providers.registry import Provider


ADAPTERS: dict[Provider, type[ProviderAdapter]] = {
    Provider.PESAPAL: PesapalAdapter,
    Provider.PAYSTACK: PaystackAdapter,
    Provider.PESEPAY: PesepayAdapter,
    Provider.MTN_MOMO: MtnMomoAdapter,
    Provider.PAYMENTOLOGY: PaymentologyAdapter,
}


def get_adapter(provider: Provider | str, http_client: httpx.AsyncClient) -> ProviderAdapter:
    """
    Raises:
        RoutingUnsupportedError: for "manual" and unknown providers.
    """
    try:
        adapter_cls = ADAPTERS[Provider(provider)]
    except (KeyError, ValueError):
        raise RoutingUnsupportedError(f"No integration available for provider {provider}")
    return adapter_cls(http_client)
