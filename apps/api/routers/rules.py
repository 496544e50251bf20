"""
Recurrence Rules API Router

Coach-facing management of recurring schedules. Create and edit reconcile the
rule's forward window immediately; the nightly job keeps it rolling.
"""
from fastapi import APIRouter, Depends, Query
from sqlalchemy.orm import Session
from uuid import UUID
from typing import List, Optional
from core.database import get_db
from core.auth import Actor, require_coach
from core.clock import schedule_today
from core.config import settings
from schemas import (
    GenerateRequest,
    RecurrenceRuleCreate,
    RecurrenceRuleResponse,
    RecurrenceRuleUpdate,
    RecurrenceRuleWriteResponse,
)
from services import rule_service
from services.reconciliation import forward_window, reconcile_rule_by_id
from services.rule_service import RuleWriteResult

router = APIRouter(prefix="/v1/rules", tags=["recurrence-rules"])


def _write_response(result: RuleWriteResult) -> dict:
    reconcile = None
    if result.reconcile is not None:
        r = result.reconcile
        reconcile = {
            "window_from": r.window_from,
            "window_to": r.window_to,
            "created": r.created,
            "updated": r.updated,
            "unchanged": r.unchanged,
            "customized_skipped": r.customized_skipped,
            "failed_instances": r.failed_instances,
        }
    return {
        "rule": RecurrenceRuleResponse.model_validate(result.rule),
        "reconcile": reconcile,
        "pruned": result.pruned,
    }


@router.post("", response_model=RecurrenceRuleWriteResponse, status_code=201)
def create_rule_endpoint(
    payload: RecurrenceRuleCreate,
    actor: Actor = Depends(require_coach),
    db: Session = Depends(get_db),
):
    """
    Create a recurring schedule and materialize its forward window.

    Validates:
    - exactly one of assignee_id / group_id
    - weekly needs days_of_week (0=Sunday .. 6=Saturday)
    - custom_interval needs a positive interval_days
    - end_date not before start_date
    """
    data = payload.model_dump(exclude_unset=True)
    result = rule_service.create_rule(
        db, actor.id, data, schedule_today(), settings.RECONCILE_WINDOW_DAYS,
    )
    return _write_response(result)


@router.get("", response_model=List[RecurrenceRuleResponse])
def list_rules_endpoint(
    active_only: bool = Query(False),
    limit: int = Query(100, ge=1, le=500),
    offset: int = Query(0, ge=0),
    actor: Actor = Depends(require_coach),
    db: Session = Depends(get_db),
):
    return rule_service.list_rules(db, actor.id, active_only=active_only, limit=limit, offset=offset)


@router.get("/{rule_id}", response_model=RecurrenceRuleResponse)
def get_rule_endpoint(
    rule_id: UUID,
    actor: Actor = Depends(require_coach),
    db: Session = Depends(get_db),
):
    return rule_service.get_owned_rule(db, rule_id, actor.id)


@router.patch("/{rule_id}", response_model=RecurrenceRuleWriteResponse)
def update_rule_endpoint(
    rule_id: UUID,
    payload: RecurrenceRuleUpdate,
    actor: Actor = Depends(require_coach),
    db: Session = Depends(get_db),
):
    """
    Edit a rule. Only provided fields change.

    Schedule changes follow RULE_EDIT_POLICY for already-materialized future
    instances; customized instances are never touched.
    """
    rule = rule_service.get_owned_rule(db, rule_id, actor.id)
    changes = payload.model_dump(exclude_unset=True)
    result = rule_service.update_rule(
        db,
        rule,
        changes,
        schedule_today(),
        settings.RECONCILE_WINDOW_DAYS,
        edit_policy=settings.RULE_EDIT_POLICY,
    )
    return _write_response(result)


@router.post("/{rule_id}/deactivate", response_model=RecurrenceRuleWriteResponse)
def deactivate_rule_endpoint(
    rule_id: UUID,
    actor: Actor = Depends(require_coach),
    db: Session = Depends(get_db),
):
    """Stop generating new instances. History is kept."""
    rule = rule_service.get_owned_rule(db, rule_id, actor.id)
    result = rule_service.deactivate_rule(
        db, rule, schedule_today(), edit_policy=settings.RULE_EDIT_POLICY,
    )
    return _write_response(result)


@router.delete("/{rule_id}")
def delete_rule_endpoint(
    rule_id: UUID,
    actor: Actor = Depends(require_coach),
    db: Session = Depends(get_db),
):
    rule = rule_service.get_owned_rule(db, rule_id, actor.id)
    removed = rule_service.delete_rule(
        db, rule, schedule_today(), edit_policy=settings.RULE_EDIT_POLICY,
    )
    return {"success": True, "rule_id": str(rule_id), "instances_removed": removed}


@router.post("/{rule_id}/generate")
def generate_rule_instances_endpoint(
    rule_id: UUID,
    payload: Optional[GenerateRequest] = None,
    actor: Actor = Depends(require_coach),
    db: Session = Depends(get_db),
):
    """
    Materialize a rule over an explicit window (defaults to the forward window).

    Safe to call repeatedly: existing instances are not duplicated.
    """
    rule_service.get_owned_rule(db, rule_id, actor.id)
    default_from, default_to = forward_window(schedule_today(), settings.RECONCILE_WINDOW_DAYS)
    from_date = payload.from_date if payload and payload.from_date else default_from
    to_date = payload.to_date if payload and payload.to_date else default_to

    result = reconcile_rule_by_id(db, rule_id, from_date, to_date)
    return {
        "success": True,
        "task_count": result.created,
        "message": f"Generated {result.created} tasks ({result.updated} refreshed)",
        **result.to_dict(),
    }
