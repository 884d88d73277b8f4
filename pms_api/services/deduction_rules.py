from __future__ import annotations
from datetime import date
from typing import List, Optional

from pms_api.models.payroll.stat_config import StatConfig
from pms_api.services.payroll_engine import DeductionRules


def resolve_configs(cfg_type: str, department_id: int | None, on_date: date) -> List[StatConfig]:
    """
    Return StatConfig records of a given type that are effective on `on_date`, ordered by resolution:
    1) department-scoped
    2) global (no scope)

    Within each tier, lower `priority` wins; tie-breaker is most-recent `effective_from`.
    """
    q = (
        StatConfig.query
        .filter(StatConfig.type == cfg_type)
        .filter(StatConfig.effective_from <= on_date)
        .filter((StatConfig.effective_to.is_(None)) | (StatConfig.effective_to >= on_date))
        .filter(StatConfig.closed_at.is_(None))
    )

    def _ordered(subq):
        return (
            subq.order_by(StatConfig.priority.asc(), StatConfig.effective_from.desc(), StatConfig.id.desc()).all()
        )

    out: List[StatConfig] = []
    if department_id is not None:
        out.extend(_ordered(q.filter(StatConfig.scope_department_id == department_id)))
    out.extend(_ordered(q.filter(StatConfig.scope_department_id.is_(None))))
    return out


def resolve_one(cfg_type: str, department_id: int | None, on_date: date) -> Optional[StatConfig]:
    found = resolve_configs(cfg_type, department_id, on_date)
    return found[0] if found else None


def load_rules(department_id: int | None, on_date: date) -> Optional[DeductionRules]:
    """Rule set effective on `on_date`; None when no PAYE table is configured at all."""
    paye = resolve_one("PAYE", department_id, on_date)
    if paye is None:
        return None
    pension = resolve_one("PENSION", department_id, on_date)
    nhf = resolve_one("NHF", department_id, on_date)
    relief = resolve_one("RELIEF", department_id, on_date)
    return DeductionRules.from_config(
        paye.value_json,
        pension.value_json if pension else None,
        nhf.value_json if nhf else None,
        relief.value_json if relief else None,
    )
