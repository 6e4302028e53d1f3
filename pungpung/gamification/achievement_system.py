"""
Achievement Evaluation

Decides which of today's exercise goals are met.

Evaluation is a pure function of (goals, skipped, records, catalog, today) and
is always re-run in full: a later record can satisfy a goal an earlier pass
missed, and a goal set after some of the day's activity counts that activity.
"""

from datetime import date
from typing import Iterable, Mapping

from pungpung.models.activity import ActivityRecord
from pungpung.models.exercise import Exercise, Metric
from pungpung.models.goal import ExerciseGoal


def _goal_for(
    exercise: Exercise,
    goals: Mapping[str, ExerciseGoal],
    skipped: set[str]
):
    """The exercise's goal if it is active today, else None"""
    if exercise.id in skipped:
        return None
    goal = goals.get(exercise.id)
    if goal is None or goal.target <= 0:
        return None
    if goal.metric not in exercise.applicable_metrics():
        return None
    return goal


def achieved_totals(
    goals: Mapping[str, ExerciseGoal],
    skipped: Iterable[str],
    records: Iterable[ActivityRecord],
    catalog: Iterable[Exercise],
    today: date
) -> dict[str, int]:
    """
    Summed measurement per exercise with an active goal

    Only records dated today count. The summed metric is the goal's metric,
    so a plank goal sums seconds and a squat goal sums repetitions.

    Returns:
        exercise_id -> achieved amount, for every exercise with an active goal
    """
    skipped = set(skipped)
    todays_records = [r for r in records if r.recorded_on == today]

    totals: dict[str, int] = {}
    for exercise in catalog:
        goal = _goal_for(exercise, goals, skipped)
        if goal is None:
            continue
        totals[exercise.id] = sum(
            r.value_for(goal.metric) for r in todays_records if r.exercise_id == exercise.id
        )
    return totals


def evaluate(
    goals: Mapping[str, ExerciseGoal],
    skipped: Iterable[str],
    records: Iterable[ActivityRecord],
    catalog: Iterable[Exercise],
    today: date
) -> set[str]:
    """
    Exercise IDs whose goal for today is met

    An exercise is met when it is not skipped, has a positive target in a
    metric it declares a unit for, and today's summed amount reaches the target.

    Example:
        goals = {"squat": CountGoal(target=20)}
        records = [record(squat, count_value=20, recorded_on=today)]
        evaluate(goals, set(), records, DEFAULT_EXERCISES, today)  # {'squat'}
    """
    totals = achieved_totals(goals, skipped, records, catalog, today)
    return {
        exercise_id for exercise_id, achieved in totals.items()
        if achieved >= goals[exercise_id].target
    }


def measured_totals(records: Iterable[ActivityRecord]) -> dict[str, dict[str, int]]:
    """
    Everything measured, summed per exercise and metric (no goals involved)

    Example:
        measured_totals([squat(count=10), squat(count=5), plank(time=30)])
        # {'squat': {'count': 15}, 'plank': {'time': 30}}
    """
    totals: dict[str, dict[str, int]] = {}
    for record in records:
        by_metric = totals.setdefault(record.exercise_id, {})
        measured = {
            Metric.COUNT: record.count_value,
            Metric.TIME: record.time_value,
            Metric.STEPS: record.steps_value,
        }
        for metric, value in measured.items():
            if value is not None:
                by_metric[metric.value] = by_metric.get(metric.value, 0) + value
    return totals
