"""
HTTP Trigger Endpoints for the Envelope Ledger

Thin FastAPI layer in front of the scheduled runs. A cron job (or the app's
"apply now" button) calls these; all the work happens in the ledger
services.

DESIGN PRINCIPLES:
1. Request bodies are validated before any ledger mutation
2. Batch endpoints return 200 with a per-item status; callers inspect the
   results array, not just the status code
3. A CompensationFailure is the one batch outcome that returns 500: the
   ledger needs an integrity fix
"""

import secrets
from contextlib import asynccontextmanager
from typing import Optional
from uuid import UUID

import structlog
from fastapi import Depends, FastAPI, Header, HTTPException, Request, status
from fastapi.responses import JSONResponse
from pydantic import field_validator, model_validator

from envelope_ledger import __version__
from envelope_ledger.audit import configure_logging
from envelope_ledger.config import ApiSettings, get_settings, validate_all_settings
from envelope_ledger.errors import CompensationFailure, ValidationError
from envelope_ledger.models.ledger import Owner, OwnerScope
from envelope_ledger.models.period import PeriodKey
from envelope_ledger.models.results import (
    CamelModel,
    ContributionRunResult,
    IntegrityCheckResult,
    RecurringBatchResult,
)
from envelope_ledger.orchestrator import LedgerComponents, create_app_components
from envelope_ledger.services.storage import StorageError


logger = structlog.get_logger(__name__)


# =============================================================================
# REQUEST SCHEMAS
# =============================================================================

class SavingsRunRequest(CamelModel):
    household_id: Optional[UUID] = None
    user_id: Optional[UUID] = None
    month_key: Optional[str] = None

    @field_validator("month_key")
    @classmethod
    def validate_month_key(cls, v: Optional[str]) -> Optional[str]:
        return PeriodKey.parse(v).key if v is not None else None

    @model_validator(mode="after")
    def validate_single_scope(self) -> "SavingsRunRequest":
        if self.household_id is not None and self.user_id is not None:
            raise ValueError("Pass either userId or householdId, not both")
        return self

    @property
    def period(self) -> PeriodKey:
        return PeriodKey.parse(self.month_key) if self.month_key else PeriodKey.current()

    @property
    def scope(self) -> OwnerScope:
        return OwnerScope(user_id=self.user_id, household_id=self.household_id)


class IntegrityRequest(CamelModel):
    user_id: Optional[UUID] = None
    household_id: Optional[UUID] = None
    month_key: str
    fix: bool = False

    @field_validator("month_key")
    @classmethod
    def validate_month_key(cls, v: Optional[str]) -> Optional[str]:
        return PeriodKey.parse(v).key if v is not None else None

    @model_validator(mode="after")
    def validate_has_owner(self) -> "IntegrityRequest":
        if self.user_id is None and self.household_id is None:
            raise ValueError("userId or householdId is required")
        return self

    @property
    def owner(self) -> Owner:
        return Owner(user_id=self.user_id, household_id=self.household_id)


# =============================================================================
# DEPENDENCIES
# =============================================================================

def get_components(request: Request) -> LedgerComponents:
    return request.app.state.components


def verify_api_key(
    request: Request,
    x_api_key: Optional[str] = Header(default=None, alias="X-API-Key"),
) -> None:
    """Validate the X-API-Key header when an API key is configured."""
    expected_key = request.app.state.api_key
    if not expected_key:
        return
    if x_api_key is None or not secrets.compare_digest(x_api_key, expected_key):
        raise HTTPException(
            status_code=status.HTTP_401_UNAUTHORIZED,
            detail="Invalid API key",
        )


# =============================================================================
# APPLICATION
# =============================================================================

def create_app(
    components: Optional[LedgerComponents] = None,
    api_settings: Optional[ApiSettings] = None,
) -> FastAPI:
    """
    Build the FastAPI app.

    Components are created from the environment at startup unless given.
    """
    api_settings = api_settings or get_settings().api

    @asynccontextmanager
    async def lifespan(app: FastAPI):
        app_settings = get_settings().app
        configure_logging(app_settings.log_level, app_settings.json_logs)
        settings_status = validate_all_settings()
        invalid = [name for name, ok in settings_status.items() if ok is False]
        if invalid:
            logger.warning(
                "settings_invalid",
                groups=invalid,
                errors={name: settings_status[f"{name}_error"] for name in invalid},
            )
        if app.state.components is None:
            app.state.components = create_app_components()
        await app.state.components.startup()
        logger.info("ledger_api_started", environment=app_settings.app_environment)
        yield
        await app.state.components.shutdown()

    app = FastAPI(
        title=api_settings.title,
        version=__version__,
        lifespan=lifespan,
    )
    app.state.components = components
    app.state.api_key = api_settings.api_key

    @app.exception_handler(CompensationFailure)
    async def compensation_failure_handler(request: Request, exc: CompensationFailure):
        logger.error("compensation_failure", path=request.url.path, error=str(exc))
        return JSONResponse(
            status_code=status.HTTP_500_INTERNAL_SERVER_ERROR,
            content={
                "error": "compensation_failure",
                "message": str(exc),
                "action": "Run /check-integrity with fix=true for the affected budget",
            },
        )

    @app.exception_handler(ValidationError)
    async def validation_error_handler(request: Request, exc: ValidationError):
        return JSONResponse(
            status_code=422,
            content={"error": "validation_error", "message": str(exc), "field": exc.field},
        )

    @app.exception_handler(StorageError)
    async def storage_error_handler(request: Request, exc: StorageError):
        logger.error("storage_error", path=request.url.path, error=str(exc))
        return JSONResponse(
            status_code=status.HTTP_503_SERVICE_UNAVAILABLE,
            content={"error": "storage_error", "message": str(exc)},
        )

    @app.get("/", tags=["Health"])
    async def health():
        return {"status": "ok", "service": api_settings.title, "version": __version__}

    @app.post(
        "/process-recurring",
        response_model=RecurringBatchResult,
        dependencies=[Depends(verify_api_key)],
        tags=["Scheduled runs"],
    )
    async def process_recurring(components: LedgerComponents = Depends(get_components)):
        return await components.recurring.apply_all_due()

    @app.post(
        "/process-savings-contributions",
        response_model=ContributionRunResult,
        dependencies=[Depends(verify_api_key)],
        tags=["Scheduled runs"],
    )
    async def process_savings_contributions(
        body: Optional[SavingsRunRequest] = None,
        components: LedgerComponents = Depends(get_components),
    ):
        body = body or SavingsRunRequest()
        return await components.savings.run(period=body.period, scope=body.scope)

    @app.post(
        "/check-integrity",
        response_model=IntegrityCheckResult,
        dependencies=[Depends(verify_api_key)],
        tags=["Integrity"],
    )
    async def check_integrity(
        body: IntegrityRequest,
        components: LedgerComponents = Depends(get_components),
    ):
        period = PeriodKey.parse(body.month_key)
        if body.fix:
            return await components.integrity.fix(body.owner, period)
        return await components.integrity.check(body.owner, period)

    return app


app = create_app()
