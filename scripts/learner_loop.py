# ABOUTME: Provides a CLI that exercises the learner-modeling loop and the score forecaster.
# ABOUTME: Simulates answer streams, forecasts feature tables, and inspects saved snapshots.

import json
from pathlib import Path
from typing import Optional

import numpy as np
import pandas as pd
import typer
from rich.console import Console
from rich.markup import escape
from rich.table import Table

from src.common.config import load_config
from src.common.errors import SnapshotValidationError
from src.common.learning_loop import LearningLoop
from src.forecast.engine import ForecastEngine

console = Console()
app = typer.Typer(help="Knowledge tracing, action policies, and score forecasts for one learner.")

RISK_COLORS = {"low": "green", "medium": "yellow", "high": "red"}


def _default_config() -> Path:
    return Path("configs/learner_core.yaml")


def _load_loop(config: Path, seed: Optional[int] = None) -> LearningLoop:
    try:
        cfg = load_config(config if config.exists() else None)
    except ValueError as exc:
        raise typer.BadParameter(str(exc), param_hint="--config") from exc
    rng = np.random.default_rng(seed) if seed is not None else None
    return LearningLoop(cfg, rng=rng)


def _print_system_report(loop: LearningLoop) -> None:
    skills_table = Table(show_header=True, header_style="bold magenta")
    skills_table.add_column("Skill")
    skills_table.add_column("Mastery")
    skills_table.add_column("Attempts")
    skills_table.add_column("Status")
    for skill_id, summary in loop.tracer.get_all_knowledge_states().items():
        skills_table.add_row(skill_id, f"{summary['mastery']}%", str(summary["attempts"]), summary["status"])
    console.print("[bold green]Knowledge[/bold green]")
    console.print(skills_table)

    policy_table = Table(show_header=True, header_style="bold magenta")
    policy_table.add_column("Policy")
    policy_table.add_column("Epsilon")
    policy_table.add_column("Avg reward")
    policy_table.add_column("Samples")
    policy_table.add_column("Convergence")
    performance = loop.policy_engine.get_policy_performance()
    for policy in loop.policy_engine.get_policies():
        stats = performance.get(policy.policy_id)
        trajectory = loop.policy_engine.analyze_trajectory(policy.policy_id)
        policy_table.add_row(
            policy.policy_id,
            f"{policy.epsilon:.3f}",
            f"{stats['average_reward']:.2f}" if stats else "-",
            str(stats["sample_count"]) if stats else "0",
            trajectory.convergence,
        )
    console.print("[bold yellow]Policies[/bold yellow]")
    console.print(policy_table)


@app.command()
def simulate(
    skill: str = typer.Option("algebra", "--skill", help="Skill identifier to practice."),
    answers: int = typer.Option(20, "--answers", min=1, help="Number of simulated answers."),
    accuracy: float = typer.Option(0.7, "--accuracy", min=0.0, max=1.0, help="Probability each answer is correct."),
    learning_style: str = typer.Option("visual", "--learning-style", help="Learning style label from the profiler."),
    motivation: str = typer.Option("high", "--motivation", help="Motivation label from the profiler."),
    time_of_day: str = typer.Option("morning", "--time-of-day", help="Time-of-day bucket."),
    seed: int = typer.Option(42, "--seed", help="Random seed for answers and exploration."),
    config: Path = typer.Option(_default_config(), "--config", help="Engine config YAML."),
    snapshot_out: Path = typer.Option(None, "--snapshot-out", help="Optional JSON path for the final snapshot."),
) -> None:
    """
    Run a synthetic answer stream through the loop and summarize the engines.
    """
    console.rule("[bold blue]Learner Loop Simulation[/bold blue]")
    loop = _load_loop(config, seed)
    answer_rng = np.random.default_rng(seed + 1)

    for _ in range(answers):
        is_correct = bool(answer_rng.random() < accuracy)
        step = loop.record_answer(
            skill,
            is_correct,
            learning_style=learning_style,
            motivation_level=motivation,
            time_of_day=time_of_day,
        )
        mark = "✅" if is_correct else "❌"
        console.print(
            f"{mark} {step.trace.previous_knowledge:.2f} → {step.trace.updated_knowledge:.2f} "
            f"[dim]({step.trace.recommended_action})[/dim] next: {step.decision.recommended_action}"
        )

    console.print()
    _print_system_report(loop)

    days = loop.tracer.estimate_time_to_mastery(skill)
    console.print(f"[bold]Estimated days to mastery:[/] {days}")

    if snapshot_out:
        snapshot_out.parent.mkdir(parents=True, exist_ok=True)
        snapshot_out.write_text(loop.export_state(), encoding="utf-8")
        console.print(f"[bold]Snapshot written to {snapshot_out}[/bold]")


@app.command()
def forecast(
    features_path: Path = typer.Option(..., "--features", exists=True, dir_okay=False, help="CSV or JSON table of learner features."),
    output: Path = typer.Option(None, "--output", help="Optional CSV path for predictions."),
) -> None:
    """
    Forecast scores and risk tiers for every row of a feature table.
    """
    if features_path.suffix.lower() == ".json":
        features_df = pd.DataFrame(json.loads(features_path.read_text(encoding="utf-8")))
    else:
        features_df = pd.read_csv(features_path)

    predictions = ForecastEngine().batch_predict_frame(features_df)

    table = Table(show_header=True, header_style="bold magenta")
    table.add_column("Row")
    table.add_column("Score")
    table.add_column("Interval")
    table.add_column("Risk")
    table.add_column("Top factor")
    for index, row in predictions.iterrows():
        color = RISK_COLORS.get(row["risk_level"], "white")
        table.add_row(
            str(index),
            f"{row['predicted_score']:.0f}",
            f"{row['lower_bound']:.0f}-{row['upper_bound']:.0f}",
            f"[{color}]{row['risk_level']}[/{color}]",
            row["top_factor"] or "-",
        )
    console.print(table)

    for index, row in predictions[predictions["risk_level"] == "high"].iterrows():
        console.print(f"[red]Row {index}:[/red] → {row['recommended_intervention']}")

    if output:
        output.parent.mkdir(parents=True, exist_ok=True)
        predictions.to_csv(output)
        console.print(f"[bold]Predictions saved to {output}[/bold]")


@app.command("inspect-snapshot")
def inspect_snapshot(
    snapshot: Path = typer.Option(..., "--snapshot", exists=True, dir_okay=False, help="Snapshot JSON written by simulate."),
    config: Path = typer.Option(_default_config(), "--config", help="Engine config YAML."),
) -> None:
    """
    Load a saved snapshot and print the restored engine state.
    """
    loop = _load_loop(config)
    try:
        loop.import_state(snapshot.read_text(encoding="utf-8"))
    except SnapshotValidationError as exc:
        console.print(f"[red]Invalid snapshot: {escape(str(exc))}[/red]")
        raise typer.Exit(code=1)
    _print_system_report(loop)


if __name__ == "__main__":
    app()
