"""
SignalCraft
Copyright (c) 2026 Chris Menendez.
All Rights Reserved.
See LICENSE for permitted use.
"""

from __future__ import annotations

import argparse
import asyncio
import json
import logging
import random
import sys
from pathlib import Path
from typing import Any, List, Optional

from jr_engine import config
from jr_engine.bandit.sampler import Sampler
from jr_engine.bandit.simulate import simulate
from jr_engine.behavior.decay import (
    DEFAULT_LAMBDA,
    LAMBDA_PRESETS,
    half_life_for_lambda,
    lambda_for_half_life,
    simulate_decay,
)
from jr_engine.errors import RecommendationError
from jr_engine.models import Arm
from jr_engine.stores.base import update_arm_with_retry
from jr_engine.stores.sqlite import SqlitePolicyStore
from jr_engine.utils.atomic_write import atomic_write_json

logger = logging.getLogger(__name__)


def _setup_logging() -> None:
    if logging.getLogger().hasHandlers():
        return
    logging.basicConfig(
        level=logging.INFO,
        format="%(asctime)s %(levelname)s %(message)s",
        datefmt="%Y-%m-%d %H:%M:%S",
    )


def _print_json(payload: Any) -> None:
    print(json.dumps(payload, indent=2, sort_keys=True))


def _parse_probabilities(value: str) -> List[float]:
    probabilities = [float(item) for item in value.split(",") if item.strip()]
    if not probabilities:
        raise SystemExit("--probabilities must list at least one value")
    for probability in probabilities:
        if probability < 0 or probability > 1:
            raise SystemExit(f"probability out of range [0, 1]: {probability}")
    return probabilities


def _policy_db(args: argparse.Namespace) -> Path:
    return Path(args.db) if args.db else config.POLICY_DB_PATH


def _simulate(args: argparse.Namespace) -> int:
    probabilities = _parse_probabilities(args.probabilities)
    rng = random.Random(args.seed)

    def reward_fn(index: int) -> float:
        return 1.0 if rng.random() < probabilities[index] else 0.0

    result = simulate(len(probabilities), args.iterations, reward_fn, sampler=Sampler(seed=args.seed))
    counts = [result.selections.count(index) for index in range(len(probabilities))]
    _print_json(
        {
            "iterations": args.iterations,
            "total_reward": result.total_reward,
            "regret": round(result.regret, 6),
            "selections": counts,
            "arms": [
                {**arm.to_dict(), "expected_value": round(arm.expected_value, 6), "probability": probabilities[i]}
                for i, arm in enumerate(sorted(result.arms, key=lambda a: int(a.arm_id.split("-", 1)[1])))
            ],
        }
    )
    return 0


def _resolve_lambda(args: argparse.Namespace) -> float:
    if args.preset:
        return LAMBDA_PRESETS[args.preset]
    if args.lam is not None:
        return args.lam
    return DEFAULT_LAMBDA


def _decay_table(args: argparse.Namespace) -> int:
    lam = _resolve_lambda(args)
    rows = simulate_decay(args.weight, lam, args.days)
    if args.json:
        _print_json({"lambda": lam, "half_life_days": half_life_for_lambda(lam), "rows": rows})
        return 0
    print(f"lambda={lam:g} half_life_days={half_life_for_lambda(lam):.2f}")
    for row in rows:
        print(f"{int(row['day']):>4}  {row['weight']:.6f}")
    return 0


def _lambda(args: argparse.Namespace) -> int:
    lam = lambda_for_half_life(args.half_life, args.ratio)
    print(f"{lam:.6f}")
    return 0


def _export_policy(args: argparse.Namespace) -> int:
    _setup_logging()
    user_id = config.sanitize_user_id(args.user)
    store = SqlitePolicyStore(_policy_db(args))
    records = store.load_policy_sync(user_id)
    payload = {
        "user_id": user_id,
        "arms": [records[job_id].to_dict() for job_id in sorted(records)],
    }
    if args.out:
        atomic_write_json(Path(args.out), payload)
        logger.info("[export_policy] user=%s arms=%s out=%s", user_id, len(records), args.out)
    else:
        _print_json(payload)
    return 0


async def _import_arms(store: SqlitePolicyStore, user_id: str, arms: List[Arm]) -> int:
    for arm in arms:
        await update_arm_with_retry(store, user_id, arm.arm_id, lambda bandit, key, arm=arm: bandit.hydrate(key, arm))
    return len(arms)


def _import_policy(args: argparse.Namespace) -> int:
    _setup_logging()
    user_id = config.sanitize_user_id(args.user)
    source = Path(args.input)
    try:
        payload = json.loads(source.read_text(encoding="utf-8"))
    except (OSError, json.JSONDecodeError) as exc:
        raise SystemExit(f"cannot read policy file {source}: {exc}") from exc
    rows = payload.get("arms") if isinstance(payload, dict) else payload
    if not isinstance(rows, list):
        raise SystemExit("policy file must be a JSON list of arms or an object with an 'arms' list")
    try:
        arms = [Arm.from_dict(row) for row in rows]
        for arm in arms:
            config.sanitize_job_id(arm.arm_id)
    except (RecommendationError, ValueError, TypeError) as exc:
        raise SystemExit(f"invalid policy file {source}: {exc}") from exc

    store = SqlitePolicyStore(_policy_db(args))
    imported = asyncio.run(_import_arms(store, user_id, arms))
    logger.info("[import_policy] user=%s arms=%s db=%s", user_id, imported, store.db_path)
    return 0


def _serve(args: argparse.Namespace) -> int:
    _setup_logging()
    try:
        import uvicorn
    except ModuleNotFoundError as exc:  # pragma: no cover - exercised in environments without api extras
        raise RuntimeError("API dependencies are not installed. Install with: pip install -e '.[api]'") from exc
    uvicorn.run("jobrec.api.app:app", host=args.host, port=args.port, log_level="info")
    return 0


def build_parser() -> argparse.ArgumentParser:
    parser = argparse.ArgumentParser(
        prog="jobrec",
        description="Job recommendation decision core (Thompson Sampling + behavior decay).",
    )
    subparsers = parser.add_subparsers(dest="command", required=True)

    sim = subparsers.add_parser("simulate", help="Replay Thompson Sampling against Bernoulli arms")
    sim.add_argument("--probabilities", required=True, help="Comma-separated success probability per arm.")
    sim.add_argument("--iterations", type=int, default=1000)
    sim.add_argument("--seed", type=int, default=0)
    sim.set_defaults(func=_simulate)

    table = subparsers.add_parser("decay-table", help="Print a day-by-day decay table")
    table.add_argument("--weight", type=float, default=1.0)
    table.add_argument("--lambda", dest="lam", type=float, default=None)
    table.add_argument("--preset", choices=sorted(LAMBDA_PRESETS))
    table.add_argument("--days", type=int, default=30)
    table.add_argument("--json", action="store_true")
    table.set_defaults(func=_decay_table)

    lam = subparsers.add_parser("lambda", help="Decay rate for a half-life")
    lam.add_argument("--half-life", type=float, required=True, help="Days until the weight reaches --ratio.")
    lam.add_argument("--ratio", type=float, default=0.5)
    lam.set_defaults(func=_lambda)

    export_cmd = subparsers.add_parser("export-policy", help="Export a user's bandit policy as JSON")
    export_cmd.add_argument("--user", required=True)
    export_cmd.add_argument("--db", help="Policy SQLite path (default: JOBREC_POLICY_DB).")
    export_cmd.add_argument("--out", help="Output JSON path (default: stdout).")
    export_cmd.set_defaults(func=_export_policy)

    import_cmd = subparsers.add_parser("import-policy", help="Load arms from a JSON export into the policy store")
    import_cmd.add_argument("--user", required=True)
    import_cmd.add_argument("--db", help="Policy SQLite path (default: JOBREC_POLICY_DB).")
    import_cmd.add_argument("--in", dest="input", required=True, help="JSON file produced by export-policy.")
    import_cmd.set_defaults(func=_import_policy)

    serve = subparsers.add_parser("serve", help="Run the recommendation API with uvicorn")
    serve.add_argument("--host", default="127.0.0.1")
    serve.add_argument("--port", type=int, default=8000)
    serve.set_defaults(func=_serve)

    return parser


def main(argv: Optional[List[str]] = None) -> int:
    parser = build_parser()
    args = parser.parse_args(argv)
    try:
        return args.func(args)
    except (RecommendationError, ValueError) as exc:
        print(f"error: {exc}", file=sys.stderr)
        return 2


if __name__ == "__main__":
    raise SystemExit(main())
