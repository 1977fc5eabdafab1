"""
CLI 命令：tiny-giant points
查看与重算目标积分、习惯打卡
"""
from pathlib import Path
from typing import Optional

import click

from core.exceptions import TinyGiantError
from core.goal_service import GoalService
from core.logger import setup_logging
from core.store import LocalStore


def _service(data_dir: Optional[str]) -> GoalService:
    store = LocalStore(Path(data_dir) if data_dir else None)
    return GoalService(store=store)


@click.group()
@click.option("--data-dir", envvar="TINY_GIANT_DATA_DIR", default=None, help="数据目录")
@click.pass_context
def points(ctx, data_dir):
    """目标积分管理命令"""
    setup_logging()
    ctx.obj = {"data_dir": data_dir}


@points.command()
@click.argument("goal_id", required=False)
@click.pass_context
def status(ctx, goal_id):
    """显示目标积分（不指定 GOAL_ID 时显示全部）"""
    service = _service(ctx.obj["data_dir"])
    goal_ids = [goal_id] if goal_id else [g.id for g in service.list_goals()]
    try:
        rows = [service.goal_status(gid) for gid in goal_ids]
    except TinyGiantError as e:
        click.echo(f"Error: {e.get_user_message()}", err=True)
        raise SystemExit(1)

    if not rows:
        click.echo("No goals yet.")
        return

    for row in rows:
        click.echo(
            f"{row['title']}  {row['current_points']}/{row['total_points']} ({row['percentage']}%)"
        )
        click.echo(
            f"  tasks {row['task_points']} | steps {row['step_points']} | "
            f"milestones {row['milestone_bonus']} | habits {row['habit_points']}"
        )


@points.command()
@click.pass_context
def recompute(ctx):
    """重算所有目标积分并保存"""
    service = _service(ctx.obj["data_dir"])
    try:
        result = service.recompute_all()
    except TinyGiantError as e:
        click.echo(f"Error: {e.get_user_message()}", err=True)
        raise SystemExit(1)
    for goal in service.list_goals():
        click.echo(f"{goal.title}: {result.get(goal.id, goal.current_points)}")


@points.command("toggle-habit")
@click.argument("habit_id")
@click.pass_context
def toggle_habit(ctx, habit_id):
    """今日打卡 / 取消打卡"""
    service = _service(ctx.obj["data_dir"])
    try:
        completed = service.toggle_habit(habit_id)
    except TinyGiantError as e:
        click.echo(f"Error: {e.get_user_message()}", err=True)
        raise SystemExit(1)
    click.echo("Completed for today" if completed else "Unmarked for today")


if __name__ == "__main__":
    points()
