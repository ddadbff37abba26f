from typing import Optional

from fastapi import Depends, FastAPI, Query, Request, status
from fastapi.exceptions import RequestValidationError
from fastapi.middleware.cors import CORSMiddleware
from fastapi.responses import JSONResponse

from .auth import Identity, IdentityVerifier, JWTIdentityVerifier, require_admin, require_identity
from .config import Settings, settings
from .errors import ReferralServiceError
from .logging_config import get_logger, setup_logging
from .models import (
    Account,
    AdminEditRequest,
    RedemptionRequest,
    RedemptionResponse,
    ReferralCodeResponse,
    ReferralListResponse,
    ReferrerPreview,
    RewardSettings,
    RewardSettingsUpdate,
    SettingsUpdateResponse,
    SuccessResponse,
)
from .service import ReferralService
from .storage import InMemoryStorage, StorageError

logger = get_logger(__name__)


def get_service(request: Request) -> ReferralService:
    return request.app.state.referral_service


def create_app(
    config: Optional[Settings] = None,
    storage: Optional[InMemoryStorage] = None,
    verifier: Optional[IdentityVerifier] = None,
) -> FastAPI:
    config = config or settings

    app = FastAPI(
        title="Referral Ledger API",
        description="Referral codes, exactly-once redemption and coin awards",
        version="1.0.0",
    )

    app.add_middleware(
        CORSMiddleware,
        allow_origins=[o.strip() for o in config.allowed_origins.split(",") if o.strip()],
        allow_credentials=True,
        allow_methods=["*"],
        allow_headers=["*"],
    )

    app.state.config = config
    app.state.referral_service = ReferralService(storage=storage, config=config)
    app.state.identity_verifier = verifier or JWTIdentityVerifier(
        config.jwt_secret_key,
        algorithm=config.jwt_algorithm,
        audience=config.jwt_audience,
    )

    @app.exception_handler(ReferralServiceError)
    async def service_error_handler(request: Request, exc: ReferralServiceError):
        return JSONResponse(status_code=exc.status_code, content={"error": exc.code, "detail": str(exc)})

    @app.exception_handler(StorageError)
    async def storage_error_handler(request: Request, exc: StorageError):
        logger.error("storage_failure", path=request.url.path, error=str(exc))
        return JSONResponse(status_code=500, content={"error": "Internal", "detail": "Storage failure, retry later"})

    @app.exception_handler(RequestValidationError)
    async def validation_error_handler(request: Request, exc: RequestValidationError):
        return JSONResponse(
            status_code=status.HTTP_400_BAD_REQUEST,
            content={"error": "InvalidRequest", "detail": jsonable_errors(exc)},
        )

    @app.get("/health", tags=["System"])
    def health_check():
        return {"status": "healthy", "service": config.app_name}

    @app.post("/generateReferral", response_model=ReferralCodeResponse, tags=["Referrals"])
    def generate_referral(
        identity: Identity = Depends(require_identity),
        service: ReferralService = Depends(get_service),
    ) -> ReferralCodeResponse:
        code = service.ensure_code(identity.uid, display_name=identity.display_name)
        return ReferralCodeResponse(referral_code=code)

    @app.get("/referral/{code}", response_model=ReferrerPreview, tags=["Referrals"])
    def get_referral(code: str, service: ReferralService = Depends(get_service)) -> ReferrerPreview:
        return service.preview_referrer(code)

    @app.post("/applyReferral", response_model=RedemptionResponse, tags=["Referrals"])
    def apply_referral(
        request: RedemptionRequest,
        identity: Identity = Depends(require_identity),
        service: ReferralService = Depends(get_service),
    ) -> RedemptionResponse:
        result = service.redeem(
            identity.uid, request.new_uid, request.used_referral_code, display_name=identity.display_name,
        )
        return RedemptionResponse(awarded=result)

    @app.get("/account", response_model=Account, tags=["Users"])
    def get_account(
        identity: Identity = Depends(require_identity),
        service: ReferralService = Depends(get_service),
    ) -> Account:
        return service.get_account(identity.uid)

    @app.get("/admin/referrals", response_model=ReferralListResponse, tags=["Admin"])
    def list_referrals(
        limit: int = Query(default=config.default_list_limit),
        _admin: Identity = Depends(require_admin),
        service: ReferralService = Depends(get_service),
    ) -> ReferralListResponse:
        return ReferralListResponse(data=service.list_recent(limit))

    @app.patch("/admin/edit", response_model=SuccessResponse, tags=["Admin"])
    def admin_edit(
        request: AdminEditRequest,
        _admin: Identity = Depends(require_admin),
        service: ReferralService = Depends(get_service),
    ) -> SuccessResponse:
        service.apply_admin_edit(request.type, request.id, request.changes)
        return SuccessResponse()

    @app.get("/admin/settings/referral", response_model=RewardSettings, tags=["Admin"])
    def get_referral_settings(
        _admin: Identity = Depends(require_admin),
        service: ReferralService = Depends(get_service),
    ) -> RewardSettings:
        return service.get_settings()

    @app.post("/admin/settings/referral", response_model=SettingsUpdateResponse, tags=["Admin"])
    def update_referral_settings(
        request: RewardSettingsUpdate,
        _admin: Identity = Depends(require_admin),
        service: ReferralService = Depends(get_service),
    ) -> SettingsUpdateResponse:
        _, effective = service.update_settings(request)
        return SettingsUpdateResponse(
            saved=request.model_dump(by_alias=True, exclude_none=True),
            settings=effective,
        )

    return app


def jsonable_errors(exc: RequestValidationError) -> list[dict]:
    return [
        {"loc": list(err.get("loc", ())), "msg": err.get("msg", "")}
        for err in exc.errors()
    ]


setup_logging()
app = create_app()


if __name__ == "__main__":
    import uvicorn
    uvicorn.run(app, host="0.0.0.0", port=4000)
