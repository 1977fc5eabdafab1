import pytest
from click.testing import CliRunner

import cli.points_cmd as points_cmd
from core.store import GOALS, HABITS, LocalStore


@pytest.fixture
def data_dir(tmp_path, monkeypatch):
    monkeypatch.setattr(points_cmd, "setup_logging", lambda: None)
    store = LocalStore(tmp_path)
    store.write_records(GOALS, [{"id": "g1", "title": "Fit", "currentPoints": 30}], notify=False)
    store.write_records(HABITS, [{"id": "h1", "title": "Walk", "goalIds": ["g1"], "pointValue": 1}], notify=False)
    return tmp_path


def test_status_lists_goals(data_dir):
    result = CliRunner().invoke(points_cmd.points, ["--data-dir", str(data_dir), "status"])
    assert result.exit_code == 0
    # stale stored points are recomputed on load
    assert "Fit  0/50 (0.0%)" in result.output


def test_status_unknown_goal_fails(data_dir):
    result = CliRunner().invoke(points_cmd.points, ["--data-dir", str(data_dir), "status", "nope"])
    assert result.exit_code == 1


def test_toggle_habit_then_recompute(data_dir):
    runner = CliRunner()
    result = runner.invoke(points_cmd.points, ["--data-dir", str(data_dir), "toggle-habit", "h1"])
    assert result.exit_code == 0
    assert "Completed for today" in result.output

    result = runner.invoke(points_cmd.points, ["--data-dir", str(data_dir), "recompute"])
    assert "Fit: 1" in result.output
