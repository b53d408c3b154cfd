#!/usr/bin/env python
"""
Bayesian bagging demo on a synthetic league.

Simulates a round-robin league where each team scores Poisson(rate) per
match, fits Poisson-Gamma attribute models, bags a logistic regression
over the posterior draws and prints the prediction grid summary for a few
fixtures. The learner comes from scikit-learn:

    pip install -e ".[examples]"

Usage:
    python scripts/run_example.py                      # Defaults
    python scripts/run_example.py --teams 8 --models 20
    python scripts/run_example.py --transformation sample --seed 7
"""

import argparse
import sys
from pathlib import Path

import numpy as np
import pandas as pd
from rich.console import Console
from rich.panel import Panel
from rich.table import Table
from sklearn.linear_model import LogisticRegression

# Add project root to path
sys.path.insert(0, str(Path(__file__).parent.parent))

from bayesbag import BayesianBagger, Match, ParticipantSlot
from bayesbag.bagging import summarize_predictions
from bayesbag.config import settings
from bayesbag.utils import setup_logging

console = Console()


# =============================================================================
# Synthetic data
# =============================================================================

def simulate_league(n_teams: int, rounds: int, rng: np.random.Generator) -> tuple[list[Match], dict]:
    """Double round-robin repeated `rounds` times; y = 1 when slot 1 outscores slot 2."""
    teams = [f"T{i + 1:02d}" for i in range(n_teams)]
    rates = dict(zip(teams, rng.gamma(shape=6.0, scale=0.25, size=n_teams)))

    matches = []
    day = 0
    for _ in range(rounds):
        for home in teams:
            for away in teams:
                if home == away:
                    continue
                day += 1
                home_goals = int(rng.poisson(rates[home]))
                away_goals = int(rng.poisson(rates[away]))
                matches.append(Match(
                    slots=(
                        ParticipantSlot(home, {"GOALS": home_goals}),
                        ParticipantSlot(away, {"GOALS": away_goals}),
                    ),
                    y=int(home_goals > away_goals),
                    time=day,
                    match_id=f"M{day:04d}",
                ))
    return matches, rates


# =============================================================================
# Downstream learner
# =============================================================================

def train_logistic(table: pd.DataFrame) -> LogisticRegression:
    """Logistic regression on every feature column of one bagged table."""
    features = table.drop(columns=["y"])
    model = LogisticRegression(C=1.0, max_iter=1000)
    model.fit(features, table["y"].astype(int))
    return model


def predict_logistic(model: LogisticRegression, features: pd.DataFrame) -> float:
    return float(model.predict_proba(features)[0, 1])


# =============================================================================
# Display
# =============================================================================

def display_rates(rates: dict, bagger: BayesianBagger) -> None:
    """True vs posterior scoring rates."""
    table = Table(title="Scoring Rates")
    table.add_column("Team", style="cyan")
    table.add_column("True", justify="right")
    table.add_column("Posterior mean", justify="right")
    table.add_column("Posterior sd", justify="right")

    for team, rate in rates.items():
        draws = np.array([m["GOALS"].mean() for m in bagger.bagged.ensembles[team]])
        table.add_row(team, f"{rate:.2f}", f"{draws.mean():.2f}", f"{draws.std():.2f}")

    console.print(table)


def display_predictions(rows: list[tuple[str, str, dict]]) -> None:
    table = Table(title="P(slot 1 outscores slot 2)")
    table.add_column("Fixture", style="cyan")
    table.add_column("Mean", justify="right")
    table.add_column("90% CI", justify="right")
    table.add_column("Model var", justify="right")
    table.add_column("Draw var", justify="right")

    for home, away, summary in rows:
        low, high = summary["ci"]
        table.add_row(
            f"{home} vs {away}",
            f"{summary['mean']:.3f}",
            f"[{low:.3f}, {high:.3f}]",
            f"{summary['between_model_var']:.2e}",
            f"{summary['between_draw_var']:.2e}",
        )

    console.print(table)


def main():
    parser = argparse.ArgumentParser(description="Bayesian bagging demo")
    parser.add_argument("--teams", type=int, default=6, help="Number of teams")
    parser.add_argument("--rounds", type=int, default=2, help="Round-robin repetitions")
    parser.add_argument("--models", type=int, default=settings.num_models, help="Bagged models")
    parser.add_argument("--test-draws", type=int, default=None, help="Test draws per fixture")
    parser.add_argument(
        "--transformation",
        type=str,
        default=settings.transformation,
        help="means, sample or quantile[:q]",
    )
    parser.add_argument("--seed", type=int, default=settings.random_seed, help="Random seed")
    parser.add_argument("--workers", type=int, default=settings.max_workers, help="Thread pool width")

    args = parser.parse_args()

    setup_logging(level=settings.log_level, log_file=settings.log_file)
    rng = np.random.default_rng(args.seed)

    matches, rates = simulate_league(args.teams, args.rounds, rng)
    console.print(Panel(
        f"Teams: {args.teams}\n"
        f"Matches: {len(matches)}\n"
        f"Models: {args.models}\n"
        f"Transformation: {args.transformation}",
        title="Bayesian Bagging",
    ))

    bagger = BayesianBagger(
        "poisson",
        num_models=args.models,
        transformation=args.transformation,
        rng=rng,
        max_workers=args.workers,
    )

    console.print("[blue]Fitting ensembles and training models...[/blue]")
    bagger.build(matches, train_logistic)
    display_rates(rates, bagger)

    teams = sorted(rates, key=rates.get)
    fixtures = [(teams[-1], teams[0]), (teams[0], teams[-1]), (teams[1], teams[-2])]

    rows = []
    for home, away in fixtures:
        records = bagger.predict(Match.new(home, away), predict_logistic, num_test_draws=args.test_draws)
        rows.append((home, away, summarize_predictions(records)))
    display_predictions(rows)

    console.print("[green]Done.[/green]")


if __name__ == "__main__":
    main()
