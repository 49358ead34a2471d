"""Read-only API over the uploaded sites."""
import math
from typing import Optional

from fastapi import APIRouter, Depends, HTTPException, Query
from sqlalchemy.orm import Session

from site_importer.database import get_db
from site_importer.models.site import Site
from site_importer.schemas.site import SiteListResponse, SiteResponse
from site_importer.services.transformer import days_until_expiration, format_date

router = APIRouter(prefix="/api/sites", tags=["sites"])


def _to_response(site: Site) -> SiteResponse:
    response = SiteResponse.model_validate(site)
    if site.exp_date is not None:
        response.exp_date_display = format_date(site.exp_date)
        response.days_until_expiration = days_until_expiration(site.exp_date)
    return response


@router.get("", response_model=SiteListResponse)
def list_sites(
    page: int = Query(1, ge=1, description="Page number"),
    page_size: int = Query(50, ge=1, le=100, description="Items per page"),
    search: Optional[str] = Query(None, description="Partial match on SITE ID"),
    upload_job_id: Optional[str] = Query(None, description="Sites last written by this job"),
    include_cancelled: bool = Query(True, description="Include sites tagged by a cancelled job"),
    db: Session = Depends(get_db),
):
    """
    List sites with pagination and filtering.

    Query Parameters:
    - page: Page number (default: 1)
    - page_size: Items per page (default: 50, max: 100)
    - search: Partial, case-insensitive match on SITE ID
    - upload_job_id: Only sites last written by this upload job
    - include_cancelled: Include sites tagged by a cancelled upload
    """
    query = db.query(Site)

    if search:
        query = query.filter(Site.site_id.ilike(f"%{search}%"))
    if upload_job_id:
        query = query.filter(Site.upload_job_id == upload_job_id)
    if not include_cancelled:
        query = query.filter(Site.cancelled.is_(False))

    total = query.count()
    offset = (page - 1) * page_size
    items = query.order_by(Site.site_id).offset(offset).limit(page_size).all()

    return SiteListResponse(
        items=[_to_response(site) for site in items],
        total=total,
        page=page,
        page_size=page_size,
        pages=math.ceil(total / page_size) if total > 0 else 1,
    )


@router.get("/{site_id}", response_model=SiteResponse)
def get_site(site_id: str, db: Session = Depends(get_db)):
    """Get a single site by its SITE ID."""
    site = db.query(Site).filter(Site.site_id == site_id).first()
    if not site:
        raise HTTPException(status_code=404, detail="Site not found")
    return _to_response(site)
