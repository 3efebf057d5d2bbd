"""
Google Sheets access and order sinks.

The product sheet is read as a grid of strings; orders are appended to the
order sheet one row per order. The Google client is blocking, so every call
runs in the threadpool.
"""
from __future__ import annotations
import logging
from typing import Any, Optional

import httpx
from fastapi.concurrency import run_in_threadpool
from google.oauth2 import service_account
from googleapiclient.discovery import build

from database import Settings, create_document, database_configured, settings as default_settings
from schemas import Order, OrderResult

logger = logging.getLogger(__name__)

SCOPES = ["https://www.googleapis.com/auth/spreadsheets"]


class SheetsConfigError(RuntimeError):
    pass


def order_row(order: Order) -> list[Any]:
    return [
        order.order_id,
        order.customer.name,
        order.customer.contact,
        order.customer.address,
        order.customer.delivery_method,
        order.total,
        order.date,
        "; ".join(f"{item.name} (x{item.quantity})" for item in order.items),
    ]


class SheetsClient:
    def __init__(self, settings: Settings = default_settings):
        self.settings = settings
        self._service = None

    def _get_service(self):
        if self._service is None:
            s = self.settings
            if not s.GOOGLE_CLIENT_EMAIL or not s.private_key:
                raise SheetsConfigError("Google service account credentials are not set")
            credentials = service_account.Credentials.from_service_account_info(
                {
                    "type": "service_account",
                    "client_email": s.GOOGLE_CLIENT_EMAIL,
                    "private_key": s.private_key,
                    "token_uri": "https://oauth2.googleapis.com/token",
                },
                scopes=SCOPES,
            )
            self._service = build("sheets", "v4", credentials=credentials, cache_discovery=False)
        return self._service

    def _get_values(self) -> list[list[str]]:
        if not self.settings.SHEET_ID:
            raise SheetsConfigError("SHEET_ID is not set")
        result = self._get_service().spreadsheets().values().get(
            spreadsheetId=self.settings.SHEET_ID,
            range=self.settings.SHEET_RANGE,
        ).execute()
        return result.get("values", [])

    def _append(self, row: list[Any]) -> None:
        sheet_id = self.settings.ORDERS_SHEET_ID or self.settings.SHEET_ID
        if not sheet_id:
            raise SheetsConfigError("ORDERS_SHEET_ID is not set")
        self._get_service().spreadsheets().values().append(
            spreadsheetId=sheet_id,
            range=self.settings.ORDERS_RANGE,
            valueInputOption="USER_ENTERED",
            body={"values": [row]},
        ).execute()

    async def fetch_rows(self) -> list[list[str]]:
        return await run_in_threadpool(self._get_values)

    async def append_order(self, order: Order) -> None:
        await run_in_threadpool(self._append, order_row(order))


class OrderSink:
    async def submit(self, order: Order) -> OrderResult:
        raise NotImplementedError


class SheetOrderSink(OrderSink):
    """Appends orders to the order sheet (and the ``order`` collection when a
    database is configured)."""

    def __init__(self, client: SheetsClient):
        self.client = client

    async def submit(self, order: Order) -> OrderResult:
        logger.info("Order received: %s", order.order_id)
        try:
            await self.client.append_order(order)
        except Exception as e:
            logger.exception("Error saving order %s to Google Sheets", order.order_id)
            return OrderResult(success=False, error=str(e) or "Failed to save order to Google Sheets")
        if database_configured():
            try:
                await create_document("order", order.model_dump())
            except Exception:
                logger.exception("Order %s saved to sheet but not recorded in database", order.order_id)
        return OrderResult(success=True, order_id=order.order_id, message="Order saved successfully")


class HttpOrderSink(OrderSink):
    """Posts orders to the storefront's ``/api/orders`` endpoint."""

    def __init__(self, endpoint: str, client: Optional[httpx.AsyncClient] = None, timeout: float = 15.0):
        self.endpoint = endpoint
        self._client = client
        self.timeout = timeout

    async def submit(self, order: Order) -> OrderResult:
        payload = order.model_dump(mode="json")
        if self._client is not None:
            response = await self._client.post(self.endpoint, json=payload)
        else:
            async with httpx.AsyncClient(timeout=self.timeout) as client:
                response = await client.post(self.endpoint, json=payload)
        try:
            return OrderResult.model_validate(response.json())
        except ValueError:
            return OrderResult(success=False, error=f"Unexpected response ({response.status_code})")
