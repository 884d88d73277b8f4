from datetime import date, datetime
from decimal import Decimal

from pms_api.models.payroll.stat_config import StatConfig
from pms_api.services.deduction_rules import resolve_configs, resolve_one, load_rules


def _add(session, **kw):
    kw.setdefault("key", f"TEST_{kw['type']}")
    kw.setdefault("value_json", {})
    sc = StatConfig(**kw)
    session.add(sc)
    session.commit()
    return sc


def test_department_tier_comes_before_global(session, make):
    dept = make.department()
    on = date(2025, 6, 1)
    g = _add(session, type="PENSION", priority=1, effective_from=date(2025, 1, 1))
    d = _add(session, type="PENSION", priority=50, effective_from=date(2025, 1, 1), scope_department_id=dept.id)

    assert [c.id for c in resolve_configs("PENSION", dept.id, on)] == [d.id, g.id]
    assert [c.id for c in resolve_configs("PENSION", None, on)] == [g.id]


def test_priority_then_latest_effective_from(session):
    on = date(2025, 6, 1)
    old = _add(session, type="NHF", priority=10, effective_from=date(2024, 1, 1))
    new = _add(session, type="NHF", priority=10, effective_from=date(2025, 3, 1))
    low = _add(session, type="NHF", priority=5, effective_from=date(2023, 1, 1))

    assert [c.id for c in resolve_configs("NHF", None, on)] == [low.id, new.id, old.id]


def test_window_and_closed_records_are_ignored(session):
    on = date(2025, 6, 1)
    _add(session, type="PAYE", effective_from=date(2025, 7, 1))
    _add(session, type="PAYE", effective_from=date(2024, 1, 1), effective_to=date(2025, 5, 31))
    _add(session, type="PAYE", effective_from=date(2024, 1, 1), closed_at=datetime(2025, 2, 1))
    live = _add(session, type="PAYE", effective_from=date(2024, 1, 1), effective_to=date(2025, 6, 1))

    assert resolve_one("PAYE", None, on).id == live.id
    assert resolve_one("PAYE", None, date(2025, 6, 2)) is None


def test_load_rules_needs_a_tax_table(session):
    _add(session, type="PENSION", effective_from=date(2025, 1, 1), value_json={"rate": 8})
    assert load_rules(None, date(2025, 6, 30)) is None


def test_load_rules_mixes_tiers(session, make):
    dept = make.department()
    make.rules()
    _add(session, type="PENSION", effective_from=date(2025, 1, 1), scope_department_id=dept.id,
         value_json={"rate": 10, "pensionable_components": ["Housing"]})

    rules = load_rules(dept.id, date(2025, 6, 30))
    assert rules.pension_rate == Decimal("10")
    assert rules.pensionable_components == frozenset({"housing"})
    assert rules.nhf_rate == Decimal("2.5")
    assert len(rules.tax_brackets) == 5

    assert load_rules(None, date(2025, 6, 30)).pension_rate == Decimal("8")
