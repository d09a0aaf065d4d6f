# Copyright 2025 Gowtham Rao <rao@ohdsi.org>
#
# Licensed under the Apache License, Version 2.0 (the "License");
# you may not use this file except in compliance with the License.
# You may obtain a copy of the License at
#
#     http://www.apache.org/licenses/LICENSE-2.0
#
# Unless required by applicable law or agreed to in writing, software
# distributed under the License is distributed on an "AS IS" BASIS,
# WITHOUT WARRANTIES OR CONDITIONS OF ANY KIND, either express or implied.
# See the License for the specific language governing permissions and
# limitations under the License.
"""FastAPI application exposing the inbound webhook endpoints."""

import logging
from collections.abc import AsyncIterator
from contextlib import asynccontextmanager
from datetime import datetime, timezone
from typing import Any

import httpx
from fastapi import APIRouter, Depends, FastAPI, Request
from fastapi.responses import JSONResponse

from .client import USER_AGENT, PortalClient, ResourceKind
from .config import Settings
from .errors import PortalBridgeError
from .loader.base import BaseLoader
from .loader.postgres import PostgresLoader
from .models import WebhookError
from .pipeline import SYNC_HANDLERS

logger = logging.getLogger(__name__)

router = APIRouter()


@asynccontextmanager
async def lifespan(app: FastAPI) -> AsyncIterator[None]:
    """Own the process-wide HTTP client and database pool."""
    settings = Settings()
    loader = PostgresLoader(settings)
    async with httpx.AsyncClient(
        headers={"User-Agent": USER_AGENT},
        follow_redirects=True,
        timeout=settings.http_timeout,
    ) as http_client:
        try:
            if settings.database_url:
                await loader.open()
            else:
                logger.warning("database_url is not set; resource webhooks will fail.")

            app.state.settings = settings
            app.state.portal_client = PortalClient(settings, client=http_client)
            app.state.loader = loader
            yield
        finally:
            await loader.close()


def get_settings(request: Request) -> Settings:
    return request.app.state.settings


def get_portal_client(request: Request) -> PortalClient:
    return request.app.state.portal_client


def get_loader(request: Request) -> BaseLoader:
    return request.app.state.loader


def _now() -> str:
    return datetime.now(timezone.utc).isoformat()


async def _read_body(request: Request) -> Any:
    """Return the JSON body if there is one; bodies are optional."""
    try:
        return await request.json()
    except ValueError:
        return None


async def _run(
    kind: ResourceKind,
    settings: Settings,
    client: PortalClient,
    loader: BaseLoader,
) -> JSONResponse:
    try:
        result = await SYNC_HANDLERS[kind](settings, client, loader)
    except PortalBridgeError as e:
        logger.error("Error in %s webhook: %s", kind.value, e)
        return JSONResponse(
            status_code=500, content=WebhookError(error=str(e)).model_dump(),
        )
    return JSONResponse(content=result.model_dump(mode="json"))


@router.get("/health")
async def health() -> dict[str, str]:
    return {"status": "ok", "service": "py-load-portal"}


@router.post("/webhook/sync-users")
async def sync_users(request: Request) -> dict[str, Any]:
    """Acknowledge a sync trigger; no external service is called."""
    body = await _read_body(request)
    logger.info("Webhook received for Sync Users: %s", body)
    return {
        "message": "Successfully Called and Responded",
        "timestamp": _now(),
        "status": "success",
        "received": body,
    }


@router.post("/webhook/get-facility-signups")
async def get_facility_signups(
    request: Request,
    settings: Settings = Depends(get_settings),
    client: PortalClient = Depends(get_portal_client),
    loader: BaseLoader = Depends(get_loader),
) -> JSONResponse:
    logger.info("Webhook received for Get Facility Signups: %s", await _read_body(request))
    return await _run(ResourceKind.FACILITY_SIGNUPS, settings, client, loader)


@router.post("/webhook/get-elearning-codes")
async def get_elearning_codes(
    request: Request,
    settings: Settings = Depends(get_settings),
    client: PortalClient = Depends(get_portal_client),
    loader: BaseLoader = Depends(get_loader),
) -> JSONResponse:
    logger.info("Webhook received for Get E-Learning Codes: %s", await _read_body(request))
    return await _run(ResourceKind.ELEARNING_CODES, settings, client, loader)


def create_app() -> FastAPI:
    app = FastAPI(
        title="py-load-portal",
        description="Loads facility signups and e-learning codes from the portal.",
        version="0.1.0",
        lifespan=lifespan,
    )
    app.include_router(router)
    return app


app = create_app()
