"""HTTP surface for the sales order UI.

Every response uses the envelope ``{status, data, message?, page_context?}``.
"""

from __future__ import annotations

import logging
from contextlib import asynccontextmanager
from dataclasses import dataclass
from typing import Any, AsyncGenerator, Optional

from fastapi import Body, Depends, FastAPI, Query, Request
from fastapi.exceptions import RequestValidationError
from fastapi.responses import JSONResponse

from ..config.runtime_config import load_runtime_config
from ..logs import log_error, log_system
from ..orders.schema import parse_draft
from ..orders.service import OrderService
from ..zoho.client import ZohoClient
from ..zoho.errors import (
    CredentialError,
    CustomerBindingMismatchError,
    OrderCreationAmbiguousError,
    RemoteApiError,
    SalesDeskError,
    ValidationError,
)
from ..zoho.queries import InventoryQueries

logger = logging.getLogger(__name__)


@dataclass
class Services:
    client: ZohoClient
    queries: InventoryQueries
    orders: OrderService

    @classmethod
    def from_client(cls, client: ZohoClient) -> Services:
        cfg = load_runtime_config()
        return cls(
            client=client,
            queries=InventoryQueries(client, cfg.orders),
            orders=OrderService(client, cfg),
        )


def envelope(data: Any = None, status: str = "ok", message: Optional[str] = None, **extra: Any) -> dict[str, Any]:
    body: dict[str, Any] = {"status": status, "data": data}
    if message is not None:
        body["message"] = message
    body.update({k: v for k, v in extra.items() if v is not None})
    return body


def error_response(status_code: int, message: str, data: Any = None, **extra: Any) -> JSONResponse:
    return JSONResponse(envelope(data, status="error", message=message, **extra), status_code=status_code)


def _not_found(what: str) -> JSONResponse:
    return error_response(404, f"{what} not found.")


def _order_error(exc: SalesDeskError) -> JSONResponse:
    if isinstance(exc, OrderCreationAmbiguousError):
        return error_response(
            422, exc.user_message, data={"reference_number": exc.reference_number}, code=exc.code
        )
    if isinstance(exc, CustomerBindingMismatchError):
        return error_response(422, exc.user_message, data={"order_id": exc.order_id}, code=exc.code)
    return error_response(422, exc.user_message)


def get_services(request: Request) -> Services:
    return request.app.state.services


def create_app(services: Optional[Services] = None) -> FastAPI:
    """Build the app; without ``services`` the Zoho client is built from settings at startup."""

    @asynccontextmanager
    async def lifespan(app: FastAPI) -> AsyncGenerator[None, None]:
        if getattr(app.state, "services", None) is None:
            app.state.services = Services.from_client(ZohoClient.from_settings())
        log_system("Sales Desk API started")
        yield
        log_system("Sales Desk API stopped")

    app = FastAPI(title="Sales Desk API", version="0.1.0", lifespan=lifespan)
    app.state.services = services

    @app.exception_handler(ValidationError)
    async def _validation(request: Request, exc: ValidationError):
        return error_response(422, exc.user_message)

    @app.exception_handler(RequestValidationError)
    async def _request_validation(request: Request, exc: RequestValidationError):
        fields = ", ".join(".".join(str(p) for p in e["loc"]) for e in exc.errors())
        return error_response(422, f"Invalid request parameters: {fields}")

    @app.exception_handler(RemoteApiError)
    async def _remote(request: Request, exc: RemoteApiError):
        logger.error(f"{request.method} {request.url.path} failed upstream: {exc!r}")
        return error_response(502, exc.user_message)

    @app.exception_handler(CredentialError)
    async def _credentials(request: Request, exc: CredentialError):
        log_error(f"{request.method} {request.url.path}: {exc.message}")
        return error_response(502, exc.user_message)

    @app.exception_handler(SalesDeskError)
    async def _domain(request: Request, exc: SalesDeskError):
        return error_response(422, exc.user_message)

    @app.exception_handler(Exception)
    async def _unexpected(request: Request, exc: Exception):
        log_error(f"Unhandled error on {request.method} {request.url.path}", exc)
        return error_response(500, "Unexpected server error.")

    @app.get("/health")
    async def health(svc: Services = Depends(get_services)):
        org = await svc.queries.healthcheck()
        return envelope({"organization": org})

    @app.get("/items")
    async def items(
        q: str = "",
        page: int = Query(1, ge=1),
        per_page: int = Query(50, ge=1, le=200),
        svc: Services = Depends(get_services),
    ):
        q = q.strip()
        if not q:
            return error_response(400, "Missing query parameter q")
        res = await svc.queries.search_items(q, page, per_page)
        return envelope(res["items"], query=q, page_context=res["page_context"])

    @app.get("/items/{item_id}")
    async def item(item_id: str, svc: Services = Depends(get_services)):
        found = await svc.queries.get_item(item_id)
        if not found:
            return _not_found("Item")
        return envelope(found)

    @app.get("/contacts")
    async def contacts(
        q: str = "",
        page: int = Query(1, ge=1),
        per_page: int = Query(20, ge=1, le=200),
        svc: Services = Depends(get_services),
    ):
        res = await svc.queries.search_contacts(q.strip(), page, per_page)
        return envelope(res["contacts"], page_context=res["page_context"])

    @app.get("/contacts/{contact_id}")
    async def contact(contact_id: str, svc: Services = Depends(get_services)):
        found = await svc.queries.get_contact(contact_id)
        if not found:
            return _not_found("Contact")
        return envelope(found)

    @app.get("/salesorders")
    async def list_sales_orders(
        page: int = Query(1, ge=1),
        per_page: int = Query(25, ge=1, le=200),
        q: str = "",
        sort_column: str = "date",
        sort_order: str = Query("D", pattern="^[AD]$"),
        svc: Services = Depends(get_services),
    ):
        res = await svc.queries.list_sales_orders(page, per_page, q, sort_column, sort_order)
        return envelope(res["salesorders"], filters=res["filters"], page_context=res["page_context"])

    @app.get("/salesorders/{salesorder_id}")
    async def sales_order(salesorder_id: str, svc: Services = Depends(get_services)):
        found = await svc.queries.get_sales_order(salesorder_id)
        if not found:
            return _not_found("Sales Order")
        return envelope(found)

    @app.post("/salesorders", status_code=201)
    async def create_sales_order(payload: Any = Body(None), svc: Services = Depends(get_services)):
        draft = parse_draft(payload)
        try:
            result = await svc.orders.create_order(draft)
        except SalesDeskError as e:
            logger.error(
                f"Sales order creation failed for {draft.customer.name!r} "
                f"({len(draft.lines)} lines): {e.message}"
            )
            return _order_error(e)
        return envelope(result.model_dump(), message=result.message)

    return app
