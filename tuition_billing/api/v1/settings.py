"""GET /v1/settings/effective and PUT /v1/settings/batch - settings administration"""

import logging
from typing import Dict, Optional
from fastapi import APIRouter, Depends, HTTPException, Query, Request
from sqlalchemy.orm import Session

from tuition_billing.api.v1.schemas import EffectiveSettingSchema, EffectiveSettingsResponse, SettingsBatchRequest
from tuition_billing.api.dependencies import get_request_id
from tuition_billing.infrastructure.database.session import get_db
from tuition_billing.domain.exceptions import SettingValidationError, UnknownSettingError
from tuition_billing.domain.models import EffectiveSetting
from tuition_billing.domain.settings import keys_for_category
from tuition_billing.services.settings import SettingsResolver

router = APIRouter()


def _response(branch_id: Optional[int], effective: Dict[str, EffectiveSetting]) -> EffectiveSettingsResponse:
    return EffectiveSettingsResponse(
        branch_id=branch_id,
        settings={
            key: EffectiveSettingSchema(
                value=item.value,
                scope=item.scope,
                type=item.type,
                category=item.category,
                description=item.description,
            )
            for key, item in effective.items()
        },
    )


@router.get("/settings/effective", response_model=EffectiveSettingsResponse)
def get_effective_settings(
    branch_id: Optional[int] = Query(None, description="Branch to resolve for; global when omitted"),
    category: Optional[str] = Query(None, description="Only settings in this category"),
    db: Session = Depends(get_db),
):
    """Resolve settings through branch -> global -> default precedence"""
    effective = SettingsResolver(db).get_effective_settings(keys_for_category(category), branch_id)
    return _response(branch_id, effective)


@router.put("/settings/batch", response_model=EffectiveSettingsResponse)
def update_settings(
    request_body: SettingsBatchRequest,
    request: Request,
    db: Session = Depends(get_db),
):
    """
    Validate and upsert settings for the global or a branch scope.

    Nothing is written when any value fails validation.
    """
    request_id = get_request_id(request)

    try:
        effective = SettingsResolver(db).update_settings(
            scope=request_body.scope,
            branch_id=request_body.branch_id,
            values=request_body.settings,
            updated_by=request_body.updated_by,
        )
        db.commit()
    except (SettingValidationError, UnknownSettingError) as e:
        db.rollback()
        logging.warning(f"Settings rejected: {e}", extra={"request_id": request_id})
        raise HTTPException(status_code=400, detail=str(e))
    except Exception as e:
        db.rollback()
        logging.error(f"Unexpected error: {e}", extra={"request_id": request_id})
        raise HTTPException(status_code=500, detail="Internal server error")

    branch_id = request_body.branch_id if request_body.scope == "branch" else None
    return _response(branch_id, effective)
