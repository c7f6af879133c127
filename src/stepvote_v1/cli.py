from __future__ import annotations

import asyncio
import shlex
from pathlib import Path
from typing import Any, Dict, Optional

import orjson
import typer
from pydantic import ValidationError
from rich.console import Console
from rich.table import Table

from .calibrate import calibrate
from .config import Settings
from .domain.hanoi import TowersOfHanoi
from .errors import ConfigError
from .ledger.ledger import Ledger
from .observability import configure_logging
from .orchestrator.run import RunHandle, RunStatus, run_task
from .proposer_api import (
    BaseProposer,
    NoisyProposer,
    OracleProposer,
    ReplayProposer,
    SubprocessProposer,
)
from .utils import canonical_dumps, read_json

app = typer.Typer(help="stepvote: voted execution of long sequential tasks")
console = Console()

DISKS_OPTION = typer.Option(3, "--disks", min=1)
CONFIG_OPTION = typer.Option(None, "--config", exists=True, dir_okay=False)
PROPOSER_OPTION = typer.Option("oracle", "--proposer")
P_CORRECT_OPTION = typer.Option(0.6, "--p-correct", min=0.0, max=1.0)
P_MALFORMED_OPTION = typer.Option(0.0, "--p-malformed", min=0.0, max=1.0)
SEED_OPTION = typer.Option(None, "--seed")
REPLAY_FILE_OPTION = typer.Option(None, "--replay-file", exists=True, dir_okay=False)
CMD_OPTION = typer.Option(None, "--cmd")
K_OPTION = typer.Option(None, "--k", min=1)
BATCH_OPTION = typer.Option(None, "--batch-size", min=1)
MAX_ROUNDS_OPTION = typer.Option(None, "--max-rounds", min=1)
LEDGER_OPTION = typer.Option(None, "--ledger", dir_okay=False)
JSON_OPTION = typer.Option(False, "--json")
SAMPLES_OPTION = typer.Option(200, "--samples", min=1)
TARGET_OPTION = typer.Option(0.99, "--target")
ALTERNATIVES_OPTION = typer.Option(1, "--alternatives", min=1)
LEDGER_PATH_OPTION = typer.Option(..., "--path", exists=True, dir_okay=False)

ledger_app = typer.Typer(help="Ledger commands")


@app.callback()
def main() -> None:
    pass


def _load_settings(config: Optional[Path], overrides: Dict[str, Any]) -> Settings:
    data: Dict[str, Any] = {}
    if config is not None:
        try:
            loaded = read_json(config)
        except orjson.JSONDecodeError as exc:
            raise typer.BadParameter(f"config file is not valid JSON: {exc}") from exc
        if not isinstance(loaded, dict):
            raise typer.BadParameter("config file must hold a JSON object")
        data.update(loaded)
    data.update({key: value for key, value in overrides.items() if value is not None})
    try:
        return Settings(**data)
    except ValidationError as exc:
        raise typer.BadParameter(str(exc)) from exc


def _build_proposer(
    proposer_kind: str,
    system: TowersOfHanoi,
    settings: Settings,
    p_correct: float,
    p_malformed: float,
    seed: Optional[int],
    replay_file: Optional[Path],
    cmd: Optional[str],
) -> BaseProposer:
    if proposer_kind == "oracle":
        return OracleProposer(system)
    if proposer_kind == "noisy":
        if seed is None:
            seed = settings.seed_for(f"{system.name}-{system.disks}")
        try:
            return NoisyProposer(
                system,
                p_correct=p_correct,
                p_malformed=p_malformed,
                seed=seed,
            )
        except ValueError as exc:
            raise typer.BadParameter(str(exc)) from exc
    if proposer_kind == "replay":
        if replay_file is None:
            raise typer.BadParameter("missing --replay-file for replay proposer")
        return ReplayProposer(replay_file)
    if proposer_kind == "subprocess":
        if not cmd:
            raise typer.BadParameter("missing --cmd for subprocess proposer")
        return SubprocessProposer(shlex.split(cmd), system)
    raise typer.BadParameter(f"unknown proposer {proposer_kind!r}")


def _summary_table(handle: RunHandle) -> Table:
    run_state = handle.run_state
    table = Table(title=f"run {handle.run_id}")
    table.add_column("metric")
    table.add_column("value", justify="right")
    table.add_row("status", handle.status.value)
    table.add_row("steps", str(len(handle.records)))
    table.add_row("rounds", str(run_state.cumulative_rounds))
    table.add_row("mean rounds/step", f"{run_state.mean_rounds_per_step():.3f}")
    table.add_row("samples", str(run_state.cumulative_samples))
    table.add_row("discarded", str(run_state.cumulative_discards))
    table.add_row("discard rate", f"{run_state.discard_rate():.4f}")
    table.add_row("timeouts", str(run_state.cumulative_timeouts))
    table.add_row("undecided steps", str(run_state.undecided_steps))
    if handle.diagnostic is not None:
        table.add_row("abort step", str(handle.diagnostic.step_index))
        table.add_row("abort reason", handle.diagnostic.reason)
    return table


@app.command("run")
def run_cmd(
    disks: int = DISKS_OPTION,
    config: Optional[Path] = CONFIG_OPTION,
    proposer: str = PROPOSER_OPTION,
    p_correct: float = P_CORRECT_OPTION,
    p_malformed: float = P_MALFORMED_OPTION,
    seed: Optional[int] = SEED_OPTION,
    replay_file: Optional[Path] = REPLAY_FILE_OPTION,
    cmd: Optional[str] = CMD_OPTION,
    k: Optional[int] = K_OPTION,
    batch_size: Optional[int] = BATCH_OPTION,
    max_rounds: Optional[int] = MAX_ROUNDS_OPTION,
    ledger: Optional[Path] = LEDGER_OPTION,
    json_output: bool = JSON_OPTION,
) -> None:
    settings = _load_settings(
        config, {"k": k, "round_batch_size": batch_size, "max_rounds": max_rounds}
    )
    configure_logging(settings.log_environment)
    system = TowersOfHanoi(disks=disks)
    chosen = _build_proposer(
        proposer, system, settings, p_correct, p_malformed, seed, replay_file, cmd
    )
    sink = Ledger(ledger) if ledger is not None else None
    handle = run_task(system, chosen, settings=settings, sink=sink)
    if json_output:
        print(canonical_dumps(handle.report()).decode("utf-8"))
    else:
        console.print(_summary_table(handle))
    if handle.status != RunStatus.COMPLETED:
        raise typer.Exit(code=1)


@app.command("calibrate")
def calibrate_cmd(
    disks: int = DISKS_OPTION,
    proposer: str = PROPOSER_OPTION,
    p_correct: float = P_CORRECT_OPTION,
    p_malformed: float = P_MALFORMED_OPTION,
    seed: Optional[int] = SEED_OPTION,
    replay_file: Optional[Path] = REPLAY_FILE_OPTION,
    cmd: Optional[str] = CMD_OPTION,
    samples: int = SAMPLES_OPTION,
    target: float = TARGET_OPTION,
    alternatives: int = ALTERNATIVES_OPTION,
) -> None:
    settings = Settings()
    configure_logging(settings.log_environment)
    system = TowersOfHanoi(disks=disks)
    chosen = _build_proposer(
        proposer, system, settings, p_correct, p_malformed, seed, replay_file, cmd
    )
    try:
        result = asyncio.run(
            calibrate(
                chosen,
                system,
                samples=samples,
                target_success=target,
                alternatives=alternatives,
                token_ceiling=settings.flag_token_ceiling,
            )
        )
    except ConfigError as exc:
        console.print({"ok": False, "message": str(exc)})
        raise typer.Exit(code=1) from exc
    console.print(result.report())


@ledger_app.command("verify")
def ledger_verify_cmd(path: Path = LEDGER_PATH_OPTION) -> None:
    ok, message = Ledger.verify(path)
    console.print({"ok": ok, "message": message, "events": Ledger.summarize(path)})
    if not ok:
        raise typer.Exit(code=1)


app.add_typer(ledger_app, name="ledger")


if __name__ == "__main__":
    app()
