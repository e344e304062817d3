"""Tests for goal coercion, joining and upsert merging."""

from decimal import Decimal

from models.report_models import Goal, GoalUpsert
from reporting.goals import BEHIND, ON_TARGET, classify, index_goals, join_goal, merge_goal_update
from reporting.quarters import QuarterlyBucket


def goal(**quarters):
    return Goal(hubspot_account_id="acc", goal_type="metric", target_id="new_deals", year=2025, **quarters)


class TestClassify:
    def test_equal_is_on_target(self):
        assert classify(10, 10) == ON_TARGET

    def test_below_is_behind(self):
        assert classify(9, 10) == BEHIND

    def test_no_goal_has_no_status(self):
        assert classify(5, None) is None
        assert classify(5, 0) is None


class TestGoalModel:
    def test_garbage_quarter_goals_are_coerced(self):
        g = goal(q1_goal="1,200", q2_goal=-5, q3_goal="abc", q4_goal=12.9)
        assert (g.q1_goal, g.q2_goal, g.q3_goal, g.q4_goal) == (1200, 0, 0, 12)

    def test_value_goals_are_decimal(self):
        g = goal(q1_value_goal="2500.50")
        assert g.q1_value_goal == Decimal("2500.50")
        assert g.quarter_value_goal("Q1") == Decimal("2500.50")


class TestJoinGoal:
    def test_year_goal_is_sum_of_quarters(self):
        actual = QuarterlyBucket(5, 10, 0, 0)
        row = join_goal("new_deals", "New Deals", actual, goal(q1_goal=5, q2_goal=12, q3_goal=None),
                        projection=999)
        assert row.year_goal == 17
        assert row.year_goal_source == "quarterly_goals"
        assert row.status("Q1") == ON_TARGET
        assert row.status("Q2") == BEHIND
        assert row.status("Q3") is None
        assert row.year_status == BEHIND

    def test_projection_fallback(self):
        row = join_goal("new_deals", "New Deals", QuarterlyBucket(50, 0, 0, 0), projection="40")
        assert row.year_goal == 40
        assert row.year_goal_source == "projection"
        assert row.year_status == ON_TARGET
        assert row.goals == {"Q1": None, "Q2": None, "Q3": None, "Q4": None}

    def test_no_goal_no_projection(self):
        row = join_goal("new_deals", "New Deals", QuarterlyBucket())
        data = row.to_dict()
        assert data["yearGoal"] is None
        assert data["yearStatus"] is None
        assert "valueActual" not in data

    def test_value_goals_on_deal_rows(self):
        value = QuarterlyBucket.money()
        value.add("Q1", Decimal("300"))
        row = join_goal("closed_won", "Closed Won", QuarterlyBucket(1, 0, 0, 0),
                        goal(q1_value_goal="250"), value_actual=value)
        data = row.to_dict()
        assert data["valueGoals"]["Q1"] == 250.0
        assert data["valueStatus"]["Q1"] == ON_TARGET
        assert data["valueStatus"]["Q2"] is None

    def test_index_goals_filters_year(self):
        other_year = Goal(hubspot_account_id="acc", target_id="new_deals", year=2024)
        index = index_goals([goal(q1_goal=1), other_year], 2025)
        assert list(index) == [("metric", "new_deals")]


class TestMergeGoalUpdate:
    def test_new_row(self):
        update = GoalUpsert(target_id="new_deals", year=2025, q1_goal="10")
        merged = merge_goal_update(None, update, "acc")
        assert merged.hubspot_account_id == "acc"
        assert merged.q1_goal == 10
        assert merged.q2_goal is None

    def test_omitted_quarters_keep_stored_values(self):
        existing = goal(q1_goal=10, q2_goal=20, q1_value_goal="100")
        update = GoalUpsert(target_id="new_deals", year=2025, q2_goal=-3, q3_goal=7.5)
        merged = merge_goal_update(existing, update, "acc")
        assert (merged.q1_goal, merged.q2_goal, merged.q3_goal) == (10, 0, 7)
        assert merged.q1_value_goal == Decimal("100")
        assert merged.key == ("acc", "metric", "new_deals", 2025)
