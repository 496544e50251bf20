"""
Reconciliation Scheduler

Keeps the instance store populated for a rolling forward window
(today .. today + RECONCILE_WINDOW_DAYS) for every active rule.

Contract:
- Idempotent: re-running over the same window creates nothing new and never
  changes status or customized content.
- Partial-failure tolerant: a failed candidate is logged and skipped; a failed
  rule is rolled back and skipped. The materializer is deterministic, so the
  next run regenerates whatever is missing.
- Rules are independent; each rule's writes are committed on their own.
"""

from __future__ import annotations

import logging
import time
from dataclasses import dataclass, field
from datetime import date, timedelta
from typing import Dict, List
from uuid import UUID

from sqlalchemy import or_
from sqlalchemy.exc import SQLAlchemyError
from sqlalchemy.orm import Session

from core.exceptions import InvalidRuleError, NotFoundError, SchedulingError
from core.logging import log_job_run
from models import GroupMember, RecurrenceRule, TaskTemplate
from services.instance_store import (
    UPSERT_CREATED,
    UPSERT_CUSTOMIZED,
    UPSERT_UNCHANGED,
    UPSERT_UPDATED,
    InstanceCandidate,
    translate_store_errors,
    upsert_instance,
)
from services.job_result import JobRunResult, elapsed_ms
from services.materializer import materialize
from services.recurrence import RulePattern, validate_rule

logger = logging.getLogger(__name__)

JOB_NAME = "reconcile-recurring-tasks"

# Explicit on-demand windows larger than this are rejected.
MAX_WINDOW_DAYS = 366


@dataclass
class ReconcileResult:
    window_from: date
    window_to: date
    rules_processed: int = 0
    rules_failed: int = 0
    created: int = 0
    updated: int = 0
    unchanged: int = 0
    customized_skipped: int = 0
    failed_instances: int = 0
    failed_rule_ids: List[str] = field(default_factory=list)

    def record(self, outcome: str) -> None:
        if outcome == UPSERT_CREATED:
            self.created += 1
        elif outcome == UPSERT_UPDATED:
            self.updated += 1
        elif outcome == UPSERT_UNCHANGED:
            self.unchanged += 1
        elif outcome == UPSERT_CUSTOMIZED:
            self.customized_skipped += 1

    def merge(self, other: "ReconcileResult") -> None:
        self.rules_processed += other.rules_processed
        self.rules_failed += other.rules_failed
        self.created += other.created
        self.updated += other.updated
        self.unchanged += other.unchanged
        self.customized_skipped += other.customized_skipped
        self.failed_instances += other.failed_instances
        self.failed_rule_ids.extend(other.failed_rule_ids)

    def to_dict(self) -> Dict:
        return {
            "windowFrom": self.window_from.isoformat(),
            "windowTo": self.window_to.isoformat(),
            "rulesProcessed": self.rules_processed,
            "rulesFailed": self.rules_failed,
            "created": self.created,
            "updated": self.updated,
            "unchanged": self.unchanged,
            "customizedSkipped": self.customized_skipped,
            "failedInstances": self.failed_instances,
        }


def forward_window(today: date, days: int) -> tuple[date, date]:
    return today, today + timedelta(days=max(0, days))


def check_window(window_from: date, window_to: date) -> None:
    if window_to < window_from:
        raise InvalidRuleError("to_date must not be before from_date", field="to_date")
    if (window_to - window_from).days > MAX_WINDOW_DAYS:
        raise InvalidRuleError(
            f"Generation window is limited to {MAX_WINDOW_DAYS} days", field="to_date"
        )


def resolve_assignees(db: Session, rule: RecurrenceRule) -> List[UUID]:
    """Assignee ids a rule targets; group membership is read at call time."""
    if rule.assignee_id is not None:
        return [rule.assignee_id]
    if rule.group_id is None:
        return []
    rows = (
        db.query(GroupMember.user_id)
        .filter(GroupMember.group_id == rule.group_id)
        .order_by(GroupMember.joined_at.asc(), GroupMember.user_id.asc())
        .all()
    )
    return [r[0] for r in rows]


def load_pattern(db: Session, rule: RecurrenceRule) -> RulePattern:
    template = None
    if rule.template_id is not None:
        template = db.query(TaskTemplate).filter(TaskTemplate.id == rule.template_id).first()
    return RulePattern.from_rule(rule, template)


def reconcile_rule(
    db: Session,
    rule: RecurrenceRule,
    window_from: date,
    window_to: date,
) -> ReconcileResult:
    """
    Materialize one rule over the window and upsert every candidate.

    Does not commit; callers own the transaction boundary.
    """
    result = ReconcileResult(window_from=window_from, window_to=window_to)

    with translate_store_errors("reconcile_rule"):
        pattern = validate_rule(load_pattern(db, rule))
        assignees = resolve_assignees(db, rule)

    tasks = materialize(pattern, window_from, window_to)
    for task in tasks:
        for assignee_id in assignees:
            candidate = InstanceCandidate(
                recurrence_rule_id=rule.id,
                assignee_id=assignee_id,
                scheduled_date=task.scheduled_date,
                content=task.content,
                owner_id=rule.owner_id,
            )
            try:
                result.record(upsert_instance(db, candidate))
            except (SQLAlchemyError, SchedulingError) as e:
                result.failed_instances += 1
                logger.error(
                    f"Failed to upsert instance for rule {rule.id}: {e}",
                    exc_info=True,
                    extra={"extra_fields": {
                        "recurrence_rule_id": str(rule.id),
                        "assignee_id": str(assignee_id),
                        "scheduled_date": task.scheduled_date.isoformat(),
                    }},
                )

    result.rules_processed = 1
    return result


def reconcile_rule_by_id(
    db: Session,
    rule_id: UUID,
    window_from: date,
    window_to: date,
) -> ReconcileResult:
    """On-demand generation for a single rule over an explicit window."""
    check_window(window_from, window_to)
    rule = db.query(RecurrenceRule).filter(RecurrenceRule.id == rule_id).first()
    if rule is None:
        raise NotFoundError("Recurrence rule", rule_id)
    return reconcile_rule(db, rule, window_from, window_to)


def _active_rule_ids(db: Session, window_from: date, window_to: date) -> List[UUID]:
    rows = (
        db.query(RecurrenceRule.id)
        .filter(
            RecurrenceRule.is_active.is_(True),
            RecurrenceRule.start_date <= window_to,
            or_(RecurrenceRule.end_date.is_(None), RecurrenceRule.end_date >= window_from),
        )
        .order_by(RecurrenceRule.created_at.asc(), RecurrenceRule.id.asc())
        .all()
    )
    return [r[0] for r in rows]


def reconcile_active_rules(
    db: Session,
    today: date,
    window_days: int,
) -> ReconcileResult:
    """
    Batch reconciliation over every active rule.

    Commits after each rule; a rule that fails is rolled back, logged, and
    counted, and the batch moves on.
    """
    window_from, window_to = forward_window(today, window_days)
    total = ReconcileResult(window_from=window_from, window_to=window_to)

    with translate_store_errors("list_active_rules"):
        rule_ids = _active_rule_ids(db, window_from, window_to)

    for rule_id in rule_ids:
        try:
            rule = db.query(RecurrenceRule).filter(RecurrenceRule.id == rule_id).first()
            if rule is None:
                continue  # deleted since the listing
            total.merge(reconcile_rule(db, rule, window_from, window_to))
            db.commit()
        except (SQLAlchemyError, SchedulingError) as e:
            total.rules_failed += 1
            total.failed_rule_ids.append(str(rule_id))
            logger.error(
                f"Reconciliation failed for rule {rule_id}: {e}",
                exc_info=True,
                extra={"extra_fields": {"recurrence_rule_id": str(rule_id)}},
            )
            try:
                db.rollback()
            except SQLAlchemyError:
                logger.warning("Rollback after rule failure also failed", exc_info=True)

    return total


def run_reconciliation_job(
    db: Session,
    today: date,
    window_days: int,
) -> JobRunResult:
    """
    Job wrapper used by the cron entrypoint and the Celery beat task.

    Per-rule failures are reported in the counts; only a failure to read the
    rule set at all marks the run as failed.
    """
    started = time.monotonic()
    logger.info(
        "Reconciliation job started",
        extra={"extra_fields": {"job": JOB_NAME, "today": today.isoformat(), "window_days": window_days}},
    )
    try:
        result = reconcile_active_rules(db, today, window_days)
    except (SQLAlchemyError, SchedulingError) as e:
        logger.warning("Reconciliation job aborted", exc_info=True)
        try:
            db.rollback()
        except SQLAlchemyError:
            logger.warning("Rollback after job failure also failed", exc_info=True)
        run = JobRunResult(
            job=JOB_NAME, success=False, execution_time_ms=elapsed_ms(started), run_date=today, error=str(e),
        )
        log_job_run(logger, run)
        return run

    run = JobRunResult(
        job=JOB_NAME,
        success=True,
        affected_count=result.created + result.updated,
        execution_time_ms=elapsed_ms(started),
        run_date=today,
        details=result.to_dict(),
    )
    log_job_run(
        logger, run,
        f"Reconciliation job finished: {result.created} created, {result.updated} updated "
        f"in {run.execution_time_ms} ms",
    )
    return run
