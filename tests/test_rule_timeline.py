"""
Tests for guest-list rule timeline classification.

Run with: pytest tests/test_rule_timeline.py -v
"""
from datetime import date, datetime
from decimal import Decimal
from types import SimpleNamespace

from services.guest_list.services.rule_timeline import (
    ACTIVE,
    EXPIRED,
    deadline_minutes,
    format_rule_value,
    rule_label,
    rule_status,
    sort_rules_by_timeline,
)


def make_rule(deadline=None, benefit_type="VIP", gender_scope="F", area="Pista", value=0, name=None):
    return SimpleNamespace(
        deadline=deadline,
        benefit_type=benefit_type,
        gender_scope=gender_scope,
        area=area,
        value=value,
        name=name or deadline or "open",
    )


class TestRuleStatus:
    """Tests for the ACTIVE / EXPIRED boundary."""

    def test_one_minute_before_deadline_is_active(self):
        """A rule until 22:00 is still active at 21:59."""
        assert rule_status(make_rule("22:00"), datetime(2026, 5, 1, 21, 59)) == ACTIVE

    def test_deadline_minute_is_expired(self):
        """The deadline minute itself is already expired."""
        assert rule_status(make_rule("22:00"), datetime(2026, 5, 1, 22, 0)) == EXPIRED

    def test_after_deadline_is_expired(self):
        """Past the deadline the rule stays expired until midnight."""
        assert rule_status(make_rule("22:00"), datetime(2026, 5, 1, 23, 45)) == EXPIRED

    def test_rule_without_deadline_is_always_active(self):
        """A whole-night rule never expires."""
        assert rule_status(make_rule(None), datetime(2026, 5, 1, 23, 59)) == ACTIVE

    def test_event_day_in_future_keeps_rule_active(self):
        """Before the event day, a late clock time does not expire the rule."""
        now = datetime(2026, 4, 30, 23, 30)
        assert rule_status(make_rule("22:00"), now, event_day=date(2026, 5, 1)) == ACTIVE

    def test_event_day_in_past_expires_rule(self):
        """After the event day, an early clock time does not revive the rule."""
        now = datetime(2026, 5, 2, 10, 0)
        assert rule_status(make_rule("22:00"), now, event_day=date(2026, 5, 1)) == EXPIRED

    def test_on_event_day_uses_clock_time(self):
        """On the event day the comparison falls back to the clock."""
        day = date(2026, 5, 1)
        assert rule_status(make_rule("22:00"), datetime(2026, 5, 1, 21, 0), event_day=day) == ACTIVE
        assert rule_status(make_rule("22:00"), datetime(2026, 5, 1, 22, 30), event_day=day) == EXPIRED


class TestTimelineOrdering:
    """Tests for sort_rules_by_timeline."""

    def test_active_first_then_by_deadline(self):
        """Active rules come first by ascending deadline; no deadline sorts last among active."""
        rules = [make_rule("23:00"), make_rule(None), make_rule("21:00"), make_rule("22:00")]

        ordered = sort_rules_by_timeline(rules, datetime(2026, 5, 1, 21, 30))

        assert [r.deadline for r in ordered] == ["22:00", "23:00", None, "21:00"]

    def test_expired_rules_ordered_by_deadline(self):
        """Expired rules keep ascending deadline order after the active ones."""
        rules = [make_rule("20:00"), make_rule("19:00"), make_rule(None)]

        ordered = sort_rules_by_timeline(rules, datetime(2026, 5, 1, 21, 0))

        assert [r.deadline for r in ordered] == [None, "19:00", "20:00"]

    def test_sort_is_stable_for_equal_deadlines(self):
        """Rules with the same deadline keep their input order."""
        first = make_rule("23:00", name="first")
        second = make_rule("23:00", name="second")

        ordered = sort_rules_by_timeline([first, second], datetime(2026, 5, 1, 20, 0))

        assert [r.name for r in ordered] == ["first", "second"]

    def test_deadline_minutes_without_deadline_is_end_of_day(self):
        """A missing deadline counts as 24:00."""
        assert deadline_minutes(None) == 24 * 60
        assert deadline_minutes("01:30") == 90


class TestRuleLabel:
    """Tests for display formatting."""

    def test_integer_value_keeps_cents(self):
        """Whole amounts are still shown with two decimals."""
        assert format_rule_value(Decimal("50")) == "R$ 50,00"

    def test_value_uses_brazilian_separators(self):
        """Thousands use dots and cents use a comma."""
        assert format_rule_value(1234.5) == "R$ 1.234,50"

    def test_label_with_deadline(self):
        """The label joins benefit, gender, area, deadline and value."""
        rule = make_rule("23:00", benefit_type="VIP", gender_scope="F", area="Pista", value=50)
        assert rule_label(rule) == "VIP FEMININO (PISTA) ATÉ 23:00 R$ 50,00"

    def test_label_without_deadline(self):
        """A whole-night rule says so instead of a time."""
        rule = make_rule(None, benefit_type="DISCOUNT", gender_scope="Unisex", area="Camarote", value=0)
        assert rule_label(rule) == "DISCOUNT UNISEX (CAMAROTE) NOITE TODA R$ 0,00"
