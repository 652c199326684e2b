"""
POS Agent - Main Entry Point

A local FastAPI application exposing the agent's machine identity, its
encrypted configuration and the encrypted settings store.
Runs on http://127.0.0.1:8080 by default.
"""

import logging
from contextlib import asynccontextmanager
from datetime import datetime, timezone
from typing import Any, Optional

from fastapi import FastAPI, HTTPException, Request
from fastapi.exceptions import RequestValidationError
from fastapi.responses import JSONResponse
from starlette.exceptions import HTTPException as StarletteHTTPException

from config import VERSION, Config, config
from logging_config import configure_logging
from responses import (
    CODE_CONFIG_UPDATED,
    CODE_DATA_DELETED,
    CODE_DATA_RETRIEVED,
    CODE_DATA_UPDATED,
    CODE_ERROR_CONFIG,
    CODE_ERROR_DATABASE,
    CODE_ERROR_ENCRYPTION,
    CODE_ERROR_INTERNAL,
    CODE_ERROR_NOT_FOUND,
    CODE_SUCCESS,
    HTTP_ERROR_CODES,
    error_response,
    success_response,
)
from security import MachineIdentityResolver, server_key_from_text
from security.errors import (
    AgentError,
    AuthError,
    ConfigError,
    FormatError,
    KeyMaterialError,
    NotFoundError,
    StorageError,
)
from security.machine_id import default_store
from storage import AgentConfig, ConfigManager, SettingsStore

__version__ = VERSION

logger = logging.getLogger(__name__)

# Fields clients may change through PUT /api/config
EDITABLE_CONFIG_FIELDS = ("server_url", "store_id", "port", "sync_interval", "max_offline_hours", "log_level")


class AppState:
    """Application state container."""
    resolver: Optional[MachineIdentityResolver] = None
    machine_id: Optional[str] = None
    config_manager: Optional[ConfigManager] = None
    settings_store: Optional[SettingsStore] = None

    def startup(self, cfg: Config) -> None:
        """
        Bring up identity, configuration and settings.

        Each subsystem fails closed: if its key material is missing or
        invalid it stays down instead of running unencrypted.
        """
        if self.resolver is None:
            self.resolver = MachineIdentityResolver(store=default_store(cfg.STORAGE_DIR))

        # No identity means no config key; let startup fail
        self.machine_id = self.resolver.resolve()

        manager = ConfigManager(self.machine_id, cfg.config_path)
        try:
            manager.load()
            self.config_manager = manager
        except (AuthError, ConfigError, StorageError) as e:
            logger.error(f"Configuration unavailable: {e}")

        try:
            key_text = cfg.read_server_key_text()
        except OSError as e:
            logger.error(f"Failed to read server key, settings store disabled: {e}")
            return
        if not key_text:
            logger.error("No server key provisioned, settings store disabled")
            return

        try:
            self.settings_store = SettingsStore(server_key_from_text(key_text), cfg.STORAGE_DIR)
        except (FormatError, KeyMaterialError) as e:
            logger.error(f"Invalid server key, settings store disabled: {e}")
        except StorageError as e:
            logger.error(f"Settings store unavailable: {e}")

    def shutdown(self) -> None:
        """Close the store and drop references to key-bearing objects."""
        if self.settings_store is not None:
            self.settings_store.close()
        self.settings_store = None
        self.config_manager = None


app_state = AppState()


@asynccontextmanager
async def lifespan(app: FastAPI):
    """Application lifespan handler."""
    # Startup
    app_state.startup(config)
    logger.info(f"POS Agent {__version__} started on http://{config.HOST}:{config.PORT}")

    yield

    # Shutdown
    app_state.shutdown()
    logger.info("POS Agent stopped")


# Create FastAPI app
app = FastAPI(
    title="POS Agent",
    description="Offline-first POS agent with encrypted local storage",
    version=__version__,
    lifespan=lifespan,
)


# ============================================================================
# Error Handlers
# ============================================================================

@app.exception_handler(StarletteHTTPException)
async def http_exception_handler(request: Request, exc: StarletteHTTPException):
    code = HTTP_ERROR_CODES.get(exc.status_code, CODE_ERROR_INTERNAL)
    return JSONResponse(status_code=exc.status_code, content=error_response(code, str(exc.detail)))


@app.exception_handler(RequestValidationError)
async def validation_exception_handler(request: Request, exc: RequestValidationError):
    return JSONResponse(
        status_code=400,
        content=error_response(HTTP_ERROR_CODES[400], "Invalid request parameters"),
    )


@app.exception_handler(AgentError)
async def agent_error_handler(request: Request, exc: AgentError):
    if isinstance(exc, NotFoundError):
        status, code, message = 404, CODE_ERROR_NOT_FOUND, str(exc)
    elif isinstance(exc, ConfigError):
        status, code, message = 400, CODE_ERROR_CONFIG, str(exc)
    elif isinstance(exc, AuthError):
        # Never tell the caller why decryption failed
        status, code, message = 500, CODE_ERROR_ENCRYPTION, "Stored data could not be decrypted"
    elif isinstance(exc, StorageError):
        status, code, message = 500, CODE_ERROR_DATABASE, "Database error"
    else:
        status, code, message = 500, CODE_ERROR_INTERNAL, "Internal server error"

    if status >= 500:
        logger.error(f"{request.method} {request.url.path} failed: {exc}")
    return JSONResponse(status_code=status, content=error_response(code, message))


def _require_store() -> SettingsStore:
    if app_state.settings_store is None:
        raise HTTPException(status_code=503, detail="Settings store unavailable")
    return app_state.settings_store


def _require_config() -> ConfigManager:
    if app_state.config_manager is None:
        raise HTTPException(status_code=503, detail="Configuration unavailable")
    return app_state.config_manager


async def _json_object(request: Request) -> dict[str, Any]:
    try:
        data = await request.json()
    except ValueError:
        raise HTTPException(status_code=400, detail="Request body must be JSON")
    if not isinstance(data, dict):
        raise HTTPException(status_code=400, detail="Request body must be a JSON object")
    return data


# ============================================================================
# Health & Identity
# ============================================================================

@app.get("/health")
async def health():
    """Health check."""
    database_ok = app_state.settings_store is not None and app_state.settings_store.ping()
    config_ok = app_state.config_manager is not None and app_state.config_manager.is_loaded

    healthy = database_ok and config_ok

    return success_response(CODE_SUCCESS, "Service is healthy" if healthy else "Service is degraded", {
        "healthy": healthy,
        "version": __version__,
        "timestamp": datetime.now(timezone.utc).isoformat(),
        "database_ok": database_ok,
        "config_ok": config_ok,
    })


@app.get("/api/machine-id")
async def machine_id():
    """Get this machine's fingerprint."""
    return success_response(CODE_DATA_RETRIEVED, "Machine ID retrieved", {"machine_id": app_state.machine_id})


# ============================================================================
# Configuration API
# ============================================================================

@app.get("/api/config")
async def get_config():
    """Get the current agent configuration."""
    agent_config = _require_config().get()
    return success_response(CODE_DATA_RETRIEVED, "Configuration retrieved successfully", agent_config.to_dict())


@app.put("/api/config")
async def update_config(request: Request):
    """Update configuration fields and save them encrypted."""
    data = await _json_object(request)

    unknown = sorted(set(data) - set(EDITABLE_CONFIG_FIELDS))
    if unknown:
        raise HTTPException(status_code=400, detail=f"Unknown config field(s): {', '.join(unknown)}")

    def apply(agent_config: AgentConfig) -> None:
        for name, value in data.items():
            expected = type(getattr(agent_config, name))
            if type(value) is not expected:
                raise ConfigError(f"{name} must be of type {expected.__name__}")
            setattr(agent_config, name, value)
        agent_config.validate()

    updated = _require_config().update(apply)

    logger.info(f"Configuration updated: {', '.join(sorted(data))}")
    return success_response(CODE_CONFIG_UPDATED, "Configuration updated", updated.to_dict())


# ============================================================================
# Settings API
# ============================================================================

@app.get("/api/settings")
async def list_settings():
    """Get all readable settings."""
    snapshot = _require_store().list_all_detailed()
    return success_response(
        CODE_DATA_RETRIEVED,
        "Settings retrieved successfully",
        snapshot.values,
        meta={"count": len(snapshot.values), "skipped": snapshot.skipped},
    )


@app.get("/api/settings/{key}")
async def get_setting(key: str):
    """Get one setting."""
    value = _require_store().get(key)
    return success_response(CODE_DATA_RETRIEVED, "Setting retrieved successfully", {"key": key, "value": value})


@app.put("/api/settings/{key}")
async def put_setting(key: str, request: Request):
    """Insert or replace one setting."""
    data = await _json_object(request)
    value = data.get("value")
    if not isinstance(value, str):
        raise HTTPException(status_code=400, detail="'value' must be a string")

    _require_store().set(key, value)
    return success_response(CODE_DATA_UPDATED, "Setting saved", {"key": key})


@app.delete("/api/settings/{key}")
async def delete_setting(key: str):
    """Delete one setting."""
    _require_store().delete(key)
    return success_response(CODE_DATA_DELETED, "Setting deleted", {"key": key})


# ============================================================================
# Main Entry Point
# ============================================================================

if __name__ == "__main__":
    import uvicorn

    configure_logging(config.LOG_LEVEL, log_file=config.logs_dir / "agent.log")

    uvicorn.run(
        app,
        host=config.HOST,
        port=config.PORT,
        log_level="info",
    )
