"""
Progress analytics over task instances.

Completion rate is completed / (completed + missed): pending instances are
undecided and excluded, which is why the nightly sweep matters.
"""
from datetime import date
from typing import Dict, List
from uuid import UUID

from sqlalchemy import func
from sqlalchemy.orm import Session

from models import GroupMember, TaskGroup, STATUS_COMPLETED, STATUS_MISSED, STATUS_PENDING, TaskInstance
from services.instance_store import translate_store_errors


def _rate(completed: int, missed: int) -> float:
    decided = completed + missed
    if decided == 0:
        return 0.0
    return round(completed / decided * 100, 1)


def get_completion_stats(
    db: Session,
    assignee_id: UUID,
    date_from: date,
    date_to: date,
) -> Dict:
    """
    Status counts for one assignee over an inclusive date range.

    Returns:
        {
            "assignee_id": str,
            "total": int,
            "completed": int,
            "missed": int,
            "pending": int,
            "completion_rate": float  # percent of decided instances
        }
    """
    with translate_store_errors("get_completion_stats"):
        rows = (
            db.query(TaskInstance.status, func.count(TaskInstance.id))
            .filter(
                TaskInstance.assignee_id == assignee_id,
                TaskInstance.scheduled_date >= date_from,
                TaskInstance.scheduled_date <= date_to,
            )
            .group_by(TaskInstance.status)
            .all()
        )
    counts = {status: count for status, count in rows}
    completed = counts.get(STATUS_COMPLETED, 0)
    missed = counts.get(STATUS_MISSED, 0)
    pending = counts.get(STATUS_PENDING, 0)
    return {
        "assignee_id": str(assignee_id),
        "date_from": date_from.isoformat(),
        "date_to": date_to.isoformat(),
        "total": completed + missed + pending,
        "completed": completed,
        "missed": missed,
        "pending": pending,
        "completion_rate": _rate(completed, missed),
    }


def get_group_progress(db: Session, group: TaskGroup, target_date: date) -> Dict:
    """
    Per-member completed/total for a single day.

    Only tasks the group's coach assigned are counted; members may also
    have tasks from other coaches.
    """
    with translate_store_errors("get_group_progress"):
        member_ids: List[UUID] = [
            r[0]
            for r in db.query(GroupMember.user_id)
            .filter(GroupMember.group_id == group.id)
            .order_by(GroupMember.joined_at.asc())
            .all()
        ]
        if not member_ids:
            return {"date": target_date.isoformat(), "completed": 0, "total": 0, "members": []}

        rows = (
            db.query(TaskInstance.assignee_id, TaskInstance.status, func.count(TaskInstance.id))
            .filter(
                TaskInstance.assignee_id.in_(member_ids),
                TaskInstance.scheduled_date == target_date,
                TaskInstance.owner_id == group.coach_id,
            )
            .group_by(TaskInstance.assignee_id, TaskInstance.status)
            .all()
        )

    per_member: Dict[UUID, Dict[str, int]] = {m: {"completed": 0, "total": 0} for m in member_ids}
    for assignee_id, status, count in rows:
        per_member[assignee_id]["total"] += count
        if status == STATUS_COMPLETED:
            per_member[assignee_id]["completed"] += count

    members = [
        {"assignee_id": str(m), "completed_today": s["completed"], "total_today": s["total"]}
        for m, s in per_member.items()
    ]
    return {
        "date": target_date.isoformat(),
        "completed": sum(s["completed"] for s in per_member.values()),
        "total": sum(s["total"] for s in per_member.values()),
        "members": members,
    }
