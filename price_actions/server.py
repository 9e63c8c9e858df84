"""
Serveur HTTP du moteur Price Actions (aiohttp.web).

Routes :
- POST /price-actions/watchlist/start           → démarre un job de watchlist
- GET  /price-actions/watchlist/status/{job_id} → progression du job
- POST /price-actions/watchlist/cancel/{job_id} → annulation (idempotente)
- GET  /price-actions/watchlist/result/{job_id} → page triée/filtrée du résultat
- POST /price-actions/simulator                 → simulation d'un changement de prix
- GET  /health

Les erreurs métier sont traduites en codes HTTP par le middleware :
introuvable → 404, pas encore prêt → 409, entrée invalide → 400.
"""

import json
import logging
from typing import Any, Dict, List, Optional

from aiohttp import web

from .config.config_provider import ConfigProvider
from .config.settings import Settings
from .errors import (
    InvalidJobParameters,
    JobNotFoundError,
    JobNotReadyError,
    PriceActionsError,
    ProductNotFoundError,
    SimulationInputError,
)
from .interfaces.config_store import ConfigStore, SupabaseConfigStore
from .interfaces.data_access import SalesDataSource, SupabaseSalesDataSource
from .jobs.watchlist_job import WatchlistJobManager
from .simulator import PriceSimulationService

logger = logging.getLogger(__name__)

MANAGER_KEY = web.AppKey("manager", WatchlistJobManager)
DATA_SOURCE_KEY = web.AppKey("data_source", SalesDataSource)
CONFIG_STORE_KEY = web.AppKey("config_store", ConfigStore)
SETTINGS_KEY = web.AppKey("settings", Settings)


def _error(status: int, message: str, **extra: Any) -> web.Response:
    return web.json_response({"error": message, **extra}, status=status)


@web.middleware
async def error_middleware(request: web.Request, handler):
    try:
        return await handler(request)
    except web.HTTPException:
        raise
    except (JobNotFoundError, ProductNotFoundError) as e:
        return _error(404, e.message)
    except JobNotReadyError as e:
        return _error(409, e.message, jobStatus=e.status)
    except (InvalidJobParameters, SimulationInputError) as e:
        return _error(400, e.message)
    except PriceActionsError as e:
        logger.error(f"{request.method} {request.path} failed: {e.message}")
        return _error(500, e.message)
    except Exception as e:
        logger.error(f"Unhandled error on {request.method} {request.path}: {e}", exc_info=True)
        return _error(500, "Internal Server Error")


async def _json_body(request: web.Request) -> Dict[str, Any]:
    if not request.can_read_body:
        return {}
    try:
        body = await request.json()
    except json.JSONDecodeError:
        raise InvalidJobParameters("Request body must be valid JSON")
    if not isinstance(body, dict):
        raise InvalidJobParameters("Request body must be a JSON object")
    return body


def _query_int(request: web.Request, name: str, default: Optional[int]) -> Optional[int]:
    raw = request.query.get(name)
    if raw is None or raw == "":
        return default
    try:
        return int(raw)
    except ValueError:
        raise InvalidJobParameters(f"{name} must be an integer, got {raw!r}")


def _query_list(request: web.Request, name: str) -> Optional[List[str]]:
    values: List[str] = []
    for raw in request.query.getall(name, []):
        values.extend(v.strip() for v in raw.split(",") if v.strip())
    return values or None


async def start_watchlist(request: web.Request) -> web.Response:
    body = await _json_body(request)
    job = await request.app[MANAGER_KEY].start_job(body)
    return web.json_response(
        {"jobId": job.job_id, "status": job.status.value, "message": "Job creado"},
        status=202,
    )


async def job_status(request: web.Request) -> web.Response:
    status = request.app[MANAGER_KEY].get_status(request.match_info["job_id"])
    return web.json_response(status)


async def cancel_job(request: web.Request) -> web.Response:
    outcome = request.app[MANAGER_KEY].cancel_job(request.match_info["job_id"])
    return web.json_response({"success": True, **outcome})


async def job_result(request: web.Request) -> web.Response:
    result = request.app[MANAGER_KEY].get_result(
        request.match_info["job_id"],
        page=_query_int(request, "page", 1),
        page_size=_query_int(request, "pageSize", None),
        sort_column=request.query.get("sortColumn", "score"),
        sort_direction=request.query.get("sortDirection", "desc"),
        severidad=request.query.get("severidad") or None,
        motivos=_query_list(request, "motivo"),
        price_bands=_query_list(request, "priceBand"),
    )
    return web.json_response(result)


def _number(body: Dict[str, Any], name: str, required: bool = True) -> Optional[float]:
    value = body.get(name)
    if value is None:
        if required:
            raise SimulationInputError(f"{name} is required")
        return None
    if isinstance(value, bool):
        raise SimulationInputError(f"{name} must be a number")
    try:
        return float(value)
    except (TypeError, ValueError):
        raise SimulationInputError(f"{name} must be a number, got {value!r}")


async def simulate(request: web.Request) -> web.Response:
    body = await _json_body(request)
    # Le client web envoie { input: {...} }
    payload = body.get("input", body)
    if not isinstance(payload, dict):
        raise SimulationInputError("input must be an object")

    product_code = payload.get("productCode") or payload.get("baseCol")
    if not product_code or not isinstance(product_code, str):
        raise SimulationInputError("productCode is required")

    precio_actual = _number(payload, "precioActual")
    precio_propuesto = _number(payload, "precioPropuesto")
    if precio_propuesto <= 0:
        raise SimulationInputError("precioPropuesto must be positive")
    elasticidad = _number(payload, "elasticidad", required=False)

    horizonte = _number(payload, "horizonteDias", required=False)
    if horizonte is not None:
        if horizonte < 1 or not float(horizonte).is_integer():
            raise SimulationInputError("horizonteDias must be a positive integer")
        horizonte = int(horizonte)

    settings = request.app[SETTINGS_KEY]
    service = PriceSimulationService(
        ConfigProvider(request.app[CONFIG_STORE_KEY]),
        request.app[DATA_SOURCE_KEY],
        settings.default_timezone,
    )
    result = await service.simulate(
        product_code,
        precio_actual,
        precio_propuesto,
        horizonte_dias=horizonte,
        elasticidad=elasticidad,
    )
    return web.json_response(result.to_dict())


async def health(request: web.Request) -> web.Response:
    return web.json_response({"status": "ok"})


async def _shutdown_manager(app: web.Application) -> None:
    await app[MANAGER_KEY].shutdown()


def create_app(
    data_source: SalesDataSource,
    config_store: ConfigStore,
    settings: Optional[Settings] = None,
    manager: Optional[WatchlistJobManager] = None,
) -> web.Application:
    settings = settings or Settings.from_env()
    app = web.Application(middlewares=[error_middleware])
    app[SETTINGS_KEY] = settings
    app[DATA_SOURCE_KEY] = data_source
    app[CONFIG_STORE_KEY] = config_store
    app[MANAGER_KEY] = manager or WatchlistJobManager(data_source, config_store, settings)

    app.router.add_post("/price-actions/watchlist/start", start_watchlist)
    app.router.add_get("/price-actions/watchlist/status/{job_id}", job_status)
    app.router.add_post("/price-actions/watchlist/cancel/{job_id}", cancel_job)
    app.router.add_get("/price-actions/watchlist/result/{job_id}", job_result)
    app.router.add_post("/price-actions/simulator", simulate)
    app.router.add_get("/health", health)

    app.on_cleanup.append(_shutdown_manager)
    return app


def main() -> None:
    settings = Settings.from_env()
    logging.basicConfig(
        level=getattr(logging, settings.log_level.upper(), logging.INFO),
        format="%(asctime)s - %(name)s - %(levelname)s - %(message)s",
    )

    if not settings.supabase_configured:
        logger.error("SUPABASE_URL and SUPABASE_SERVICE_ROLE_KEY/SUPABASE_KEY must be set")
        raise SystemExit(1)

    data_source = SupabaseSalesDataSource(settings=settings)
    config_store = SupabaseConfigStore(settings=settings)

    async def _app_factory() -> web.Application:
        # Le manager crée son sémaphore dans la boucle du serveur
        return create_app(data_source, config_store, settings)

    logger.info(f"Starting Price Actions server on {settings.server_host}:{settings.server_port}")
    web.run_app(_app_factory(), host=settings.server_host, port=settings.server_port)


if __name__ == "__main__":
    main()
