"""forkchat FastAPI application entry point."""

import os
from collections.abc import AsyncIterator
from contextlib import asynccontextmanager
from pathlib import Path

from anthropic import AsyncAnthropic
from dotenv import load_dotenv
from fastapi import FastAPI, Request
from fastapi.middleware.cors import CORSMiddleware
from fastapi.responses import JSONResponse

from forkchat.catalog import load_catalog
from forkchat.generation.service import GenerationService
from forkchat.providers.anthropic import AnthropicProvider
from forkchat.providers.openai import OpenAIProvider
from forkchat.providers.openrouter import OpenRouterProvider
from forkchat.providers.registry import (
    clear_providers,
    get_all_providers,
    list_providers,
    preferred_provider,
    register_provider,
)
from forkchat.providers.simulated import SimulatedProvider
from forkchat.store import StoreUnavailableError, open_store
from forkchat.trees.index import CorruptTreeError
from forkchat.trees.router import get_generation_service, get_tree_service
from forkchat.trees.router import router as trees_router
from forkchat.trees.service import TreeService

DEFAULT_LOCAL_STORE = "forkchat-sessions.json"


@asynccontextmanager
async def lifespan(app: FastAPI) -> AsyncIterator[None]:
    """Select the node store, register providers, and wire services."""
    # Load .env from the project directory (secrets stay out of shell profile)
    load_dotenv(Path(__file__).resolve().parent.parent / ".env")

    store = await open_store(
        os.environ.get("FORKCHAT_DATABASE"),
        os.environ.get("FORKCHAT_LOCAL_STORE", DEFAULT_LOCAL_STORE),
    )

    # Providers are discovered from env vars; simulated is always registered
    register_provider(SimulatedProvider())

    if os.environ.get("OPENROUTER_API_KEY"):
        register_provider(OpenRouterProvider(
            api_key=os.environ["OPENROUTER_API_KEY"],
            app_url=os.environ.get("FORKCHAT_APP_URL", "http://localhost:5173"),
        ))

    if os.environ.get("OPENAI_API_KEY"):
        register_provider(OpenAIProvider(api_key=os.environ["OPENAI_API_KEY"]))

    if os.environ.get("ANTHROPIC_API_KEY"):
        register_provider(AnthropicProvider(AsyncAnthropic()))

    default_provider = preferred_provider(os.environ.get("FORKCHAT_DEFAULT_PROVIDER"))

    catalog = load_catalog()
    service = TreeService(
        store,
        default_model=os.environ.get("FORKCHAT_DEFAULT_MODEL") or catalog.default_model,
        default_provider=default_provider,
    )
    app.dependency_overrides[get_tree_service] = lambda: service

    gen_service = GenerationService(service)
    app.dependency_overrides[get_generation_service] = lambda: gen_service

    app.state.store = store
    app.state.catalog = catalog
    yield

    await gen_service.aclose()
    clear_providers()
    await store.close()


app = FastAPI(
    title="forkchat",
    description="Branching chat backend: every exchange is a node in a conversation tree",
    version="0.1.0",
    lifespan=lifespan,
)

app.add_middleware(
    CORSMiddleware,
    allow_origins=os.environ.get("FORKCHAT_CORS_ORIGINS", "http://localhost:5173").split(","),
    allow_methods=["*"],
    allow_headers=["*"],
)

app.include_router(trees_router)


@app.exception_handler(StoreUnavailableError)
async def store_unavailable(request: Request, exc: StoreUnavailableError) -> JSONResponse:
    return JSONResponse(status_code=503, content={"detail": str(exc)})


@app.exception_handler(CorruptTreeError)
async def corrupt_tree(request: Request, exc: CorruptTreeError) -> JSONResponse:
    return JSONResponse(
        status_code=500, content={"detail": str(exc), "node_id": exc.node_id}
    )


@app.get("/api/health")
async def health() -> dict:
    return {"status": "ok", "version": "0.1.0"}


@app.get("/api/providers")
async def providers() -> list[dict]:
    return [
        {"name": p.name, "available": True, "models": p.suggested_models}
        for p in get_all_providers()
    ]


@app.get("/api/models")
async def models(request: Request) -> dict:
    catalog = getattr(request.app.state, "catalog", None) or load_catalog()
    registered = set(list_providers())
    usable = {m.id for m in catalog.available(registered)}
    return {
        "default_model": catalog.default_model,
        "models": [
            {**m.model_dump(), "available": m.id in usable or "simulated" in registered}
            for m in catalog.models
        ],
    }
