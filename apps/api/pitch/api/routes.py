from fastapi import APIRouter, Depends, HTTPException, Request, status
from fastapi.responses import JSONResponse, Response
from sqlalchemy.orm import Session

from pitch.core.auth import get_auth_context
from pitch.core.config import get_settings
from pitch.core.database import get_db
from pitch.crm.api import contacts_router, error_response, jobs_router, pipeline_entries_router
from pitch.crm.schemas import MaintenanceResult, NormalizeStatusesRequest
from pitch.crm.status import PipelineStatus, normalize_pipeline_statuses
from pitch.metrics import generate_metrics_payload, metrics_content_type
from pitch.numbering.allocator import repair_composites
from pitch.platform.security.context import AuthContext
from pitch.platform.security.errors import AuthorizationError
from pitch.platform.security.rls import has_role, is_platform_principal
from pitch.platform.security.roles import ORG_ADMIN_ROLES
from pitch.tenancy.schemas import AccessSummary, ActiveTenantSwitch
from pitch.tenancy.service import summarize_access, switch_active_tenant

router = APIRouter()
router.include_router(contacts_router)
router.include_router(pipeline_entries_router)
router.include_router(jobs_router)


def require_org_admin(ctx: AuthContext) -> None:
    if not has_role(ctx, ORG_ADMIN_ROLES):
        raise HTTPException(status_code=status.HTTP_403_FORBIDDEN, detail="Organization admin role required")


@router.get("/health", tags=["system"])
def health() -> dict[str, str]:
    settings = get_settings()
    return {
        "status": "ok",
        "service": settings.app_name,
        "environment": settings.app_env,
    }


@router.get("/metrics", tags=["system"])
def metrics(ctx: AuthContext = Depends(get_auth_context)) -> Response:
    settings = get_settings()
    if not settings.metrics_enabled:
        raise HTTPException(status_code=status.HTTP_404_NOT_FOUND, detail="not found")
    require_org_admin(ctx)
    return Response(content=generate_metrics_payload(), media_type=metrics_content_type())


@router.get("/api/me/access", response_model=AccessSummary, tags=["auth"])
def me_access(ctx: AuthContext = Depends(get_auth_context)) -> AccessSummary:
    return summarize_access(ctx)


@router.post("/api/me/active-tenant", response_model=AccessSummary, tags=["auth"])
def me_switch_active_tenant(
    request: Request,
    dto: ActiveTenantSwitch,
    db: Session = Depends(get_db),
    ctx: AuthContext = Depends(get_auth_context),
) -> AccessSummary | JSONResponse:
    try:
        return summarize_access(switch_active_tenant(db, ctx, dto.tenant_id))
    except AuthorizationError as exc:
        return error_response(
            request,
            status_code=status.HTTP_403_FORBIDDEN,
            code="tenancy_switch_failed",
            message=str(exc),
        )


@router.post(
    "/api/admin/pipeline-entries/normalize-statuses",
    response_model=MaintenanceResult,
    tags=["admin"],
)
def admin_normalize_statuses(
    request: Request,
    dto: NormalizeStatusesRequest,
    db: Session = Depends(get_db),
    ctx: AuthContext = Depends(get_auth_context),
) -> MaintenanceResult | JSONResponse:
    try:
        require_org_admin(ctx)
        try:
            default = PipelineStatus(dto.default_status) if dto.default_status else None
        except ValueError:
            raise HTTPException(
                status_code=status.HTTP_422_UNPROCESSABLE_ENTITY,
                detail=f"'{dto.default_status}' is not a recognized pipeline status",
            )
        tenant_id = None if is_platform_principal(ctx) else ctx.tenant_id
        repaired = normalize_pipeline_statuses(db, default, tenant_id=tenant_id, actor_user_id=ctx.user_id)
    except HTTPException as exc:
        return error_response(
            request,
            status_code=exc.status_code,
            code="admin_normalize_statuses_failed",
            message=str(exc.detail),
            details=exc.detail,
        )
    return MaintenanceResult(repaired=repaired, details={"tenant_id": str(tenant_id) if tenant_id else None})


@router.post("/api/admin/numbering/repair-composites", response_model=MaintenanceResult, tags=["admin"])
def admin_repair_composites(
    request: Request,
    db: Session = Depends(get_db),
    ctx: AuthContext = Depends(get_auth_context),
) -> MaintenanceResult | JSONResponse:
    try:
        require_org_admin(ctx)
    except HTTPException as exc:
        return error_response(
            request,
            status_code=exc.status_code,
            code="admin_repair_composites_failed",
            message=str(exc.detail),
            details=exc.detail,
        )
    tenant_id = None if is_platform_principal(ctx) else ctx.tenant_id
    repaired = repair_composites(db, tenant_id, actor_user_id=ctx.user_id)
    return MaintenanceResult(repaired=repaired, details={"tenant_id": str(tenant_id) if tenant_id else None})
