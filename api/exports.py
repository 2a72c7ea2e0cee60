"""GET /api/export/invoices: CSV or FEC download."""

from datetime import date

from fastapi import APIRouter, Query, Request
from starlette.responses import Response

from auth.rate_limiter import RateLimiter


def create_exports_router(services: dict, export_limiter: RateLimiter | None = None) -> APIRouter:
    router = APIRouter(prefix="/export")

    export_svc = services["export"]

    @router.get("/invoices")
    def export_invoices(
        request: Request,
        format: str = Query("csv"),
        start: date | None = Query(None),
        end: date | None = Query(None),
        status: str | None = Query(None),
    ):
        org_id = request.state.organization_id
        if export_limiter is not None:
            export_limiter.check(str(org_id))

        export = export_svc.export_invoices(org_id, export_format=format, start=start, end=end, status=status)
        return Response(
            content=export.content,
            media_type=export.content_type,
            headers={"Content-Disposition": f'attachment; filename="{export.filename}"'},
        )

    return router
