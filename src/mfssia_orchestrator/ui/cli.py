"""Command-line interface router for mfssia-orchestrator."""

from __future__ import annotations

import argparse
import asyncio
import json
import sys
from collections.abc import Awaitable, Callable, Mapping, Sequence
from dataclasses import dataclass
from pathlib import Path
from typing import Any, Final, TypeVar

from mfssia_orchestrator.config import (
    ConfigLoadError,
    ConfigValidationError,
    load_config,
    redact_config,
)
from mfssia_orchestrator.control_plane import ChallengeFlowController
from mfssia_orchestrator.domain.ids import generate_run_id
from mfssia_orchestrator.domain.models import AttestationFound, ChallengeSet, TestResult
from mfssia_orchestrator.lifecycle.catalog import CatalogError
from mfssia_orchestrator.observability.logging import setup_logging, shutdown_logging
from mfssia_orchestrator.oracle.fingerprint import FingerprintAlgorithm, get_encoder
from mfssia_orchestrator.oracle.transport import OracleTransport
from mfssia_orchestrator.ui.render import CLIRenderer, create_renderer

EXIT_FLOW_NEGATIVE: Final[int] = 1
EXIT_CONFIG_ERROR: Final[int] = 2
EXIT_ORACLE_ERROR: Final[int] = 3

_T = TypeVar("_T")


@dataclass(frozen=True, slots=True)
class CLIError(RuntimeError):
    """Typed CLI failure with an explicit process exit code."""

    message: str
    exit_code: int = EXIT_FLOW_NEGATIVE

    def __str__(self) -> str:
        return self.message


# ---------------------------------------------------------------------------
# Parser
# ---------------------------------------------------------------------------


def build_parser() -> argparse.ArgumentParser:
    """Build the argparse command router for all supported CLI workflows."""

    parser = argparse.ArgumentParser(
        prog="mfssia",
        description=(
            "mfssia-orchestrator — drive DIDs through the MFSSIA attestation oracle.\n\n"
            "Common workflows:\n"
            "  mfssia run mfssia:Example-A            Run one challenge flow\n"
            "  mfssia submit-batch <id> ev.json       Submit a batch of evidence\n"
            "  mfssia poll <did>                      Look for an attestation\n"
            "  mfssia sets --role ADMIN               List challenge sets for a role\n"
        ),
        formatter_class=argparse.RawDescriptionHelpFormatter,
    )
    common = argparse.ArgumentParser(add_help=False)
    common.add_argument(
        "--config",
        dest="config_path",
        default=None,
        help="Path to mfssia TOML config (default: ./mfssia.toml if present).",
    )
    common.add_argument(
        "--profile",
        default=None,
        help="Optional config profile overlay name (smoke, production).",
    )
    common.add_argument(
        "--verbose",
        "-v",
        action="store_true",
        default=False,
        help="Show detailed output.",
    )
    common.add_argument(
        "--no-color",
        action="store_true",
        default=False,
        help="Disable colored output (also respects NO_COLOR env var).",
    )
    common.add_argument("--json", action="store_true", help="Emit deterministic JSON output")

    subparsers = parser.add_subparsers(dest="command", required=True)

    # run -----------------------------------------------------------------
    run_parser = subparsers.add_parser(
        "run",
        parents=[common],
        help="Run the challenge flow for one or more challenge sets",
        description=(
            "Register a fresh DID, open an instance, submit evidence and poll for an\n"
            "attestation, once per challenge set.\n\n"
            "Examples:\n"
            "  mfssia run mfssia:Example-A\n"
            "  mfssia run mfssia:Example-A mfssia:Example-D --max-concurrency 2\n"
            "  mfssia run mfssia:Example-D --profile smoke --json\n"
        ),
        formatter_class=argparse.RawDescriptionHelpFormatter,
    )
    run_parser.add_argument("codes", nargs="+", help="Challenge-set codes to run")
    run_parser.add_argument(
        "--first-n",
        type=int,
        default=None,
        help="Submit only the first N mandatory challenges",
    )
    run_parser.add_argument(
        "--submission-mode",
        choices=("single", "batch"),
        default=None,
        help="Override evidence.submission_mode",
    )
    run_parser.add_argument(
        "--max-concurrency",
        type=int,
        default=None,
        help="Override runner.max_concurrency",
    )
    run_parser.set_defaults(handler=_cmd_run)

    # submit-batch --------------------------------------------------------
    batch_parser = subparsers.add_parser(
        "submit-batch",
        parents=[common],
        help="Submit a JSON array of evidence responses to an existing instance",
    )
    batch_parser.add_argument("instance_id", help="Challenge instance id")
    batch_parser.add_argument(
        "responses_path",
        help="JSON file holding a responses array or an object with a 'responses' key",
    )
    batch_parser.set_defaults(handler=_cmd_submit_batch)

    # poll ----------------------------------------------------------------
    poll_parser = subparsers.add_parser(
        "poll", parents=[common], help="Poll for an attestation for a DID"
    )
    poll_parser.add_argument("did", help="DID to look up")
    poll_parser.add_argument("--attempts", type=int, default=None, help="Max GET attempts")
    poll_parser.add_argument(
        "--interval", type=float, default=None, help="Seconds to wait before each attempt"
    )
    poll_parser.add_argument(
        "--timeout", type=float, default=None, help="Overall deadline in seconds"
    )
    poll_parser.set_defaults(handler=_cmd_poll)

    # fingerprint ---------------------------------------------------------
    fingerprint_parser = subparsers.add_parser(
        "fingerprint", parents=[common], help="Encode text as a 0x-prefixed 64-hex fingerprint"
    )
    fingerprint_parser.add_argument("text", help="Text to encode")
    fingerprint_parser.add_argument(
        "--algorithm",
        choices=tuple(item.value for item in FingerprintAlgorithm),
        default=FingerprintAlgorithm.HEX.value,
        help="Fingerprint algorithm (default: hex)",
    )
    fingerprint_parser.set_defaults(handler=_cmd_fingerprint)

    # sets ----------------------------------------------------------------
    sets_parser = subparsers.add_parser(
        "sets", parents=[common], help="List known challenge sets"
    )
    sets_parser.add_argument(
        "--role",
        default=None,
        help="Only active built-in/local sets applicable to this role",
    )
    sets_parser.set_defaults(handler=_cmd_sets)

    # health --------------------------------------------------------------
    health_parser = subparsers.add_parser(
        "health", parents=[common], help="Call the oracle healthcheck endpoint"
    )
    health_parser.set_defaults(handler=_cmd_health)

    # config --------------------------------------------------------------
    config_parser = subparsers.add_parser(
        "config", parents=[common], help="Show the redacted effective configuration"
    )
    config_parser.set_defaults(handler=_cmd_config)

    return parser


def run_cli(
    argv: Sequence[str] | None = None,
    *,
    transport: OracleTransport | None = None,
) -> int:
    """Parse argv, route to a command handler, and return process exit code."""

    parser = build_parser()
    namespace = parser.parse_args(list(argv) if argv is not None else None)
    namespace.transport = transport
    handler = getattr(namespace, "handler", None)
    if not callable(handler):
        parser.print_help(sys.stderr)
        return EXIT_CONFIG_ERROR

    try:
        result = handler(namespace)
    except CLIError as exc:
        print(f"error: {exc}", file=sys.stderr)
        return exc.exit_code
    return int(result)


def main(argv: Sequence[str] | None = None) -> int:
    return run_cli(argv)


# ---------------------------------------------------------------------------
# Command handlers
# ---------------------------------------------------------------------------


def _cmd_run(args: argparse.Namespace) -> int:
    overrides: dict[str, object] = {}
    first_n = getattr(args, "first_n", None)
    if first_n is not None:
        overrides["evidence.challenges_to_submit"] = "first-n"
        overrides["evidence.first_n"] = first_n
    submission_mode = _optional_str(getattr(args, "submission_mode", None))
    if submission_mode is not None:
        overrides["evidence.submission_mode"] = submission_mode
    max_concurrency = getattr(args, "max_concurrency", None)
    if max_concurrency is not None:
        overrides["runner.max_concurrency"] = max_concurrency

    config = _load_effective_config(args, overrides)
    codes = _string_sequence(getattr(args, "codes", None))
    if not codes:
        raise CLIError("at least one challenge-set code is required", exit_code=EXIT_CONFIG_ERROR)

    results = _run_with_controller(
        args, config, lambda controller: controller.run_many(list(codes))
    )
    all_passed = all(result.succeeded for result in results)

    if _flag(args, "json"):
        _emit_json({"command": "run", "results": [result.to_dict() for result in results]})
    else:
        _render_results(_get_renderer(args), results)
    return 0 if all_passed else EXIT_FLOW_NEGATIVE


def _cmd_submit_batch(args: argparse.Namespace) -> int:
    config = _load_effective_config(args)
    instance_id = _require_str(getattr(args, "instance_id", None), "instance_id")
    responses = _read_responses(Path(_require_str(args.responses_path, "responses_path")))

    result = _run_with_controller(
        args,
        config,
        lambda controller: controller.submit_evidence_batch(instance_id, responses),
    )
    payload = result.to_dict()

    if _flag(args, "json"):
        _emit_json({"command": "submit-batch", **payload})
    else:
        renderer = _get_renderer(args)
        renderer.heading(f"Evidence batch for {instance_id}")
        if result.success:
            renderer.ok(f"{len(result.submitted)} responses accepted")
        else:
            renderer.fail(str(payload.get("error", "submission failed")))
            hint = payload.get("hint")
            if isinstance(hint, str) and hint:
                renderer.kv("Hint", hint)
    return 0 if result.success else EXIT_FLOW_NEGATIVE


def _cmd_poll(args: argparse.Namespace) -> int:
    config = _load_effective_config(args)
    did = _require_str(getattr(args, "did", None), "did")

    outcome = _run_with_controller(
        args,
        config,
        lambda controller: controller.poll_attestation(
            did,
            max_attempts=getattr(args, "attempts", None),
            interval_seconds=getattr(args, "interval", None),
            timeout_seconds=getattr(args, "timeout", None),
        ),
    )
    found = isinstance(outcome, AttestationFound)
    payload: dict[str, object] = {
        "command": "poll",
        "did": did,
        "found": found,
        "attempts": outcome.attempts,
    }
    if isinstance(outcome, AttestationFound):
        payload["attestations"] = [dict(item) for item in outcome.attestations]
    else:
        payload["message"] = outcome.message

    if _flag(args, "json"):
        _emit_json(payload)
    else:
        renderer = _get_renderer(args)
        if isinstance(outcome, AttestationFound):
            renderer.ok(f"{len(outcome.attestations)} attestation(s) after {outcome.attempts} attempts")
            if renderer.verbose:
                for item in outcome.attestations:
                    renderer.text(json.dumps(dict(item), sort_keys=True, ensure_ascii=False))
        else:
            renderer.fail(outcome.describe())
    return 0 if found else EXIT_FLOW_NEGATIVE


def _cmd_fingerprint(args: argparse.Namespace) -> int:
    text = getattr(args, "text", None)
    if not isinstance(text, str):
        raise CLIError("invalid text: expected string", exit_code=EXIT_CONFIG_ERROR)
    algorithm = FingerprintAlgorithm(getattr(args, "algorithm", FingerprintAlgorithm.HEX.value))
    fingerprint = get_encoder(algorithm)(text)

    if _flag(args, "json"):
        _emit_json(
            {"command": "fingerprint", "algorithm": algorithm.value, "fingerprint": fingerprint}
        )
    else:
        print(fingerprint)
    return 0


def _cmd_sets(args: argparse.Namespace) -> int:
    config = _load_effective_config(args)
    role = _optional_str(getattr(args, "role", None))

    async def _collect(controller: ChallengeFlowController) -> tuple[ChallengeSet, ...]:
        if role is not None:
            return controller.resolver.sets_for_role(role)
        return await controller.list_challenge_sets()

    sets = _run_with_controller(args, config, _collect)

    if _flag(args, "json"):
        _emit_json(
            {
                "command": "sets",
                "role": role,
                "challenge_sets": [challenge_set.to_dict() for challenge_set in sets],
            }
        )
        return 0

    renderer = _get_renderer(args)
    if not sets:
        renderer.text("No challenge sets found.")
        return 0
    renderer.table(
        ("Code", "Name", "Status", "Mandatory", "Confidence"),
        [
            (
                item.code,
                item.name,
                item.status.value,
                ", ".join(item.mandatory_challenges),
                f"{item.required_confidence:.2f}",
            )
            for item in sets
        ],
        title=f"Challenge sets for role {role}" if role else "Challenge sets",
    )
    return 0


def _cmd_health(args: argparse.Namespace) -> int:
    config = _load_effective_config(args)
    report = _run_with_controller(args, config, lambda controller: controller.healthcheck())
    healthy = report.get("status") == "ok"

    if _flag(args, "json"):
        _emit_json({"command": "health", **report})
    else:
        renderer = _get_renderer(args)
        if healthy:
            renderer.ok(f"oracle healthy at {report['timestamp']}")
        else:
            renderer.fail(f"oracle unhealthy: {report.get('error')}")
    return 0 if healthy else EXIT_ORACLE_ERROR


def _cmd_config(args: argparse.Namespace) -> int:
    config = _load_effective_config(args)
    profile = _optional_str(getattr(args, "profile", None))
    redacted = redact_config(config)

    payload: dict[str, object] = {
        "command": "config",
        "active_profile": profile,
        "config": redacted,
    }

    if _flag(args, "json"):
        _emit_json(payload)
        return 0

    renderer = _get_renderer(args)
    renderer.kv("Active profile", profile or "(default)")
    renderer.text(json.dumps(redacted, indent=2, sort_keys=True, ensure_ascii=False))
    return 0


# ---------------------------------------------------------------------------
# Helpers: controller, output
# ---------------------------------------------------------------------------


def _run_with_controller(
    args: argparse.Namespace,
    config: Mapping[str, Any],
    action: Callable[[ChallengeFlowController], Awaitable[_T]],
) -> _T:
    """Run ``action`` against a controller built from ``config``, with logging active."""

    handle = setup_logging(config["observability"], run_id=generate_run_id())
    try:
        try:
            controller = ChallengeFlowController.from_config(
                config, transport=getattr(args, "transport", None)
            )
        except CatalogError as exc:
            raise CLIError(str(exc), exit_code=EXIT_CONFIG_ERROR) from exc

        async def _drive() -> _T:
            async with controller:
                return await action(controller)

        return asyncio.run(_drive())
    finally:
        shutdown_logging(handle)


def _render_results(renderer: CLIRenderer, results: Sequence[TestResult]) -> None:
    for result in results:
        renderer.section(f"Challenge set {result.challenge_set}")
        renderer.kv("DID", result.did or "-")
        stages = (
            ("DID registered", result.did_registered),
            ("Instance created", result.instance_created),
            ("Evidence submitted", result.evidence_submitted),
            ("Attestation found", result.attestation_found),
        )
        for label, passed in stages:
            (renderer.ok if passed else renderer.fail)(label)
        if result.instance_id is not None:
            renderer.kv("Instance", f"{result.instance_id} ({result.instance_state})")
        if renderer.verbose and result.submitted_challenges:
            renderer.kv("Submitted", ", ".join(result.submitted_challenges))
        if result.error is not None:
            renderer.warning(result.error)


def _emit_json(payload: Mapping[str, object]) -> None:
    """Emit a JSON payload to stdout with deterministic formatting."""

    print(json.dumps(payload, sort_keys=True, separators=(",", ":"), ensure_ascii=False))


def _get_renderer(args: argparse.Namespace) -> CLIRenderer:
    return create_renderer(no_color=_flag(args, "no_color"), verbose=_flag(args, "verbose"))


# ---------------------------------------------------------------------------
# Helpers: config, input files
# ---------------------------------------------------------------------------


def _load_effective_config(
    args: argparse.Namespace, overrides: Mapping[str, object] | None = None
) -> dict[str, Any]:
    config_path = _optional_str(getattr(args, "config_path", None))
    profile = _optional_str(getattr(args, "profile", None))

    try:
        return load_config(config_path, profile=profile, cli_overrides=overrides)
    except (ConfigLoadError, ConfigValidationError) as exc:
        raise CLIError(str(exc), exit_code=EXIT_CONFIG_ERROR) from exc


def _read_responses(path: Path) -> list[Any]:
    try:
        payload = json.loads(path.read_text(encoding="utf-8"))
    except OSError as exc:
        raise CLIError(f"unable to read {path}: {exc}", exit_code=EXIT_CONFIG_ERROR) from exc
    except json.JSONDecodeError as exc:
        raise CLIError(f"invalid JSON in {path}: {exc}", exit_code=EXIT_CONFIG_ERROR) from exc

    if isinstance(payload, Mapping):
        payload = payload.get("responses")
    if not isinstance(payload, list):
        # An empty list reaches the submitter and is reported as a validation error.
        return []
    return payload


# ---------------------------------------------------------------------------
# Helpers: argument parsing
# ---------------------------------------------------------------------------


def _require_str(value: object, name: str) -> str:
    if not isinstance(value, str):
        raise CLIError(f"invalid {name}: expected string", exit_code=EXIT_CONFIG_ERROR)
    cleaned = value.strip()
    if not cleaned:
        raise CLIError(f"invalid {name}: value cannot be empty", exit_code=EXIT_CONFIG_ERROR)
    return cleaned


def _optional_str(value: object) -> str | None:
    if value is None:
        return None
    if not isinstance(value, str):
        raise CLIError("invalid optional string argument", exit_code=EXIT_CONFIG_ERROR)
    cleaned = value.strip()
    return cleaned or None


def _flag(args: argparse.Namespace, name: str) -> bool:
    return bool(getattr(args, name, False))


def _string_sequence(value: object) -> tuple[str, ...]:
    if value is None:
        return ()
    if isinstance(value, str):
        cleaned = value.strip()
        return () if not cleaned else (cleaned,)
    if not isinstance(value, Sequence):
        raise CLIError("invalid sequence argument", exit_code=EXIT_CONFIG_ERROR)

    parsed: list[str] = []
    for item in value:
        if not isinstance(item, str):
            raise CLIError("invalid sequence argument", exit_code=EXIT_CONFIG_ERROR)
        cleaned = item.strip()
        if cleaned:
            parsed.append(cleaned)
    return tuple(parsed)


__all__ = [
    "CLIError",
    "build_parser",
    "main",
    "run_cli",
]
