"""Thin HTTP clients for the card payment providers.

Checkout only needs three things from a provider: open a hosted payment
session, authorize an amount for an order and, optionally, exchange the
one-time transaction token for a reusable card token.
"""
from __future__ import annotations

import base64
import logging
from abc import ABC, abstractmethod
from dataclasses import dataclass, field
from typing import Any

import httpx

from lingowow.config import settings


logger = logging.getLogger(__name__)

NIUBIZ_APPROVED_CODE = '000'
PAYPAL_LIVE_URL = 'https://api-m.paypal.com'
PAYPAL_SANDBOX_URL = 'https://api-m.sandbox.paypal.com'


class GatewayError(RuntimeError):
    pass


class GatewayNotConfiguredError(GatewayError):
    pass


@dataclass
class GatewaySession:
    provider: str
    order_id: str
    amount: float
    currency: str
    session_key: str
    extra: dict[str, Any] = field(default_factory=dict)

    def as_dict(self) -> dict:
        return {
            'provider': self.provider,
            'order_id': self.order_id,
            'amount': self.amount,
            'currency': self.currency,
            'session_key': self.session_key,
            **self.extra,
        }


@dataclass
class AuthorizationResult:
    approved: bool
    transaction_id: str = ''
    action_code: str = ''
    message: str = ''
    raw: dict[str, Any] = field(default_factory=dict)


class PaymentGateway(ABC):
    name = 'base'

    def __init__(self, *, transport: httpx.BaseTransport | None = None, timeout: float | None = None):
        self._transport = transport
        self._timeout = timeout if timeout is not None else settings.gateway_timeout_seconds

    def _client(self) -> httpx.Client:
        return httpx.Client(timeout=self._timeout, transport=self._transport)

    @abstractmethod
    def create_session(self, amount: float, order_id: str) -> GatewaySession:
        raise NotImplementedError

    @abstractmethod
    def authorize(self, token: str, amount: float, order_id: str) -> AuthorizationResult:
        raise NotImplementedError

    def register_card(self, token: str) -> str | None:
        return None


def _basic_auth(user: str, password: str) -> str:
    return 'Basic ' + base64.b64encode(f'{user}:{password}'.encode('utf-8')).decode('ascii')


class NiubizGateway(PaymentGateway):
    name = 'niubiz'

    def __init__(
        self,
        *,
        api_url: str | None = None,
        merchant_id: str | None = None,
        user: str | None = None,
        password: str | None = None,
        currency: str | None = None,
        transport: httpx.BaseTransport | None = None,
        timeout: float | None = None,
    ):
        super().__init__(transport=transport, timeout=timeout)
        self.api_url = (api_url or settings.niubiz_api_url).rstrip('/')
        self.merchant_id = merchant_id if merchant_id is not None else settings.niubiz_merchant_id
        self.user = user if user is not None else settings.niubiz_user
        self.password = password if password is not None else settings.niubiz_password
        self.currency = currency or settings.currency

    def _require_config(self) -> None:
        if not self.merchant_id or not self.user or not self.password:
            raise GatewayNotConfiguredError('Niubiz no está configurado')

    def access_token(self, client: httpx.Client) -> str:
        self._require_config()
        response = client.post(
            f'{self.api_url}/api.security/v1/security',
            headers={'Authorization': _basic_auth(self.user, self.password)},
        )
        if response.status_code >= 300:
            raise GatewayError(f'Niubiz auth error: {response.status_code} {response.text[:200]}')
        return response.text.strip()

    def create_session(self, amount: float, order_id: str) -> GatewaySession:
        with self._client() as client:
            token = self.access_token(client)
            response = client.post(
                f'{self.api_url}/api.ecommerce/v2/ecommerce/token/session/{self.merchant_id}',
                headers={'Authorization': token},
                json={
                    'channel': 'web',
                    'amount': amount,
                    'antifraud': {'clientIp': '127.0.0.1', 'merchantDefineData': {'MDD4': self.user}},
                },
            )
        if response.status_code >= 300:
            raise GatewayError(f'Niubiz session error: {response.status_code} {response.text[:200]}')
        body = response.json()
        return GatewaySession(
            provider=self.name,
            order_id=order_id,
            amount=amount,
            currency=self.currency,
            session_key=str(body.get('sessionKey') or ''),
            extra={'merchant_id': self.merchant_id, 'expiration_time': body.get('expirationTime')},
        )

    def authorize(self, token: str, amount: float, order_id: str) -> AuthorizationResult:
        with self._client() as client:
            access = self.access_token(client)
            response = client.post(
                f'{self.api_url}/api.authorization/v3/authorization/ecommerce/{self.merchant_id}',
                headers={'Authorization': access},
                json={
                    'channel': 'web',
                    'captureType': 'manual',
                    'countable': True,
                    'order': {
                        'tokenId': token,
                        'purchaseNumber': order_id,
                        'amount': amount,
                        'currency': self.currency,
                    },
                },
            )
        try:
            body = response.json()
        except ValueError:
            body = {}
        if response.status_code >= 500:
            raise GatewayError(f'Niubiz authorization error: {response.status_code}')
        data_map = body.get('dataMap') or body.get('data') or {}
        header = body.get('header') or {}
        action_code = str(data_map.get('ACTION_CODE') or '')
        return AuthorizationResult(
            approved=response.status_code < 300 and action_code == NIUBIZ_APPROVED_CODE,
            transaction_id=str(header.get('ecoreTransactionUUID') or data_map.get('TRANSACTION_ID') or ''),
            action_code=action_code,
            message=str(data_map.get('ACTION_DESCRIPTION') or ''),
            raw=body,
        )

    def register_card(self, token: str) -> str | None:
        with self._client() as client:
            access = self.access_token(client)
            response = client.get(
                f'{self.api_url}/api.ecommerce/v2/ecommerce/token/card/{self.merchant_id}/{token}',
                headers={'Authorization': access},
            )
        if response.status_code >= 300:
            raise GatewayError(f'Niubiz card token error: {response.status_code} {response.text[:200]}')
        body = response.json()
        return body.get('token') or body.get('cardToken') or body.get('alias')


class PayPalGateway(PaymentGateway):
    name = 'paypal'

    def __init__(
        self,
        *,
        client_id: str | None = None,
        client_secret: str | None = None,
        mode: str | None = None,
        currency: str | None = None,
        transport: httpx.BaseTransport | None = None,
        timeout: float | None = None,
    ):
        super().__init__(transport=transport, timeout=timeout)
        self.client_id = client_id if client_id is not None else settings.paypal_client_id
        self.client_secret = client_secret if client_secret is not None else settings.paypal_client_secret
        self.base_url = PAYPAL_LIVE_URL if (mode or settings.paypal_mode) == 'live' else PAYPAL_SANDBOX_URL
        self.currency = currency or settings.currency

    def access_token(self, client: httpx.Client) -> str:
        if not self.client_id or not self.client_secret:
            raise GatewayNotConfiguredError('PayPal no está configurado')
        response = client.post(
            f'{self.base_url}/v1/oauth2/token',
            headers={'Authorization': _basic_auth(self.client_id, self.client_secret)},
            data={'grant_type': 'client_credentials'},
        )
        if response.status_code >= 300:
            raise GatewayError(f'PayPal auth error: {response.status_code} {response.text[:200]}')
        return str(response.json().get('access_token') or '')

    def create_session(self, amount: float, order_id: str) -> GatewaySession:
        with self._client() as client:
            token = self.access_token(client)
            response = client.post(
                f'{self.base_url}/v2/checkout/orders',
                headers={'Authorization': f'Bearer {token}'},
                json={
                    'intent': 'CAPTURE',
                    'purchase_units': [
                        {
                            'reference_id': order_id,
                            'custom_id': order_id,
                            'amount': {'currency_code': self.currency, 'value': f'{amount:.2f}'},
                        }
                    ],
                },
            )
        if response.status_code >= 300:
            raise GatewayError(f'PayPal order error: {response.status_code} {response.text[:200]}')
        body = response.json()
        approve_url = next((link.get('href') for link in body.get('links', []) if link.get('rel') == 'approve'), None)
        return GatewaySession(
            provider=self.name,
            order_id=order_id,
            amount=amount,
            currency=self.currency,
            session_key=str(body.get('id') or ''),
            extra={'approve_url': approve_url},
        )

    def authorize(self, token: str, amount: float, order_id: str) -> AuthorizationResult:
        # ``token`` is the PayPal order id approved by the buyer.
        with self._client() as client:
            access = self.access_token(client)
            response = client.post(
                f'{self.base_url}/v2/checkout/orders/{token}/capture',
                headers={'Authorization': f'Bearer {access}', 'Content-Type': 'application/json'},
            )
        try:
            body = response.json()
        except ValueError:
            body = {}
        if response.status_code >= 500:
            raise GatewayError(f'PayPal capture error: {response.status_code}')
        status = str(body.get('status') or '')
        return AuthorizationResult(
            approved=response.status_code < 300 and status == 'COMPLETED',
            transaction_id=str(body.get('id') or token),
            action_code=status,
            message=str(body.get('message') or status),
            raw=body,
        )


_GATEWAYS: dict[str, type[PaymentGateway]] = {
    NiubizGateway.name: NiubizGateway,
    PayPalGateway.name: PayPalGateway,
}


def get_gateway(name: str, **kwargs) -> PaymentGateway:
    key = str(name or '').strip().lower()
    gateway_cls = _GATEWAYS.get(key)
    if gateway_cls is None:
        raise ValueError('Método de pago no soportado')
    return gateway_cls(**kwargs)
