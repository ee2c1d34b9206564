from __future__ import annotations

import argparse
import contextlib
import logging
import os
import sys

from .config import FailurePolicy, HeaderPolicy, SweepParameters, expected_iterations, iter_specs
from .docker_control import REGISTRY_IMAGE, LocalRegistry
from .driver import SweepDriver
from .errors import LoadlineError
from .registry import RegistryClient

LOGGER = logging.getLogger("loadline")


def parse_args(argv: list[str] | None = None) -> argparse.Namespace:
    parser = argparse.ArgumentParser(
        prog="loadline",
        description="Generate random images and time their push/pull against a registry",
    )
    parser.add_argument(
        "registry",
        help="Registry repository to push into, e.g. gcr.io/my-project/bench",
    )
    parser.add_argument(
        "-S",
        "--size_scale",
        type=int,
        default=os.environ.get("LOADLINE_SIZE_SCALE", "10"),
        help="Initial size = 1k and the scale is applied until reaching 1G",
    )
    parser.add_argument(
        "-L",
        "--layer_scale",
        type=int,
        default=os.environ.get("LOADLINE_LAYER_SCALE", "2"),
        help="Initial number of layers = 1 and the scale is applied until reaching 32 layers",
    )
    parser.add_argument(
        "-R",
        "--repeat_factor",
        type=int,
        default=os.environ.get("LOADLINE_REPEAT_FACTOR", "1"),
        help="For each size+layer combination, how many repeats",
    )
    parser.add_argument(
        "-O",
        "--output",
        default=os.environ.get("LOADLINE_OUTPUT", "output"),
        help="The result output file (appended to)",
    )
    parser.add_argument(
        "--header",
        choices=[policy.value for policy in HeaderPolicy],
        default=os.environ.get("LOADLINE_HEADER", HeaderPolicy.ALWAYS.value),
        help="Write the CSV header on every run, or only into a new/empty file",
    )
    parser.add_argument(
        "--on-error",
        choices=[policy.value for policy in FailurePolicy],
        default=os.environ.get("LOADLINE_ON_ERROR", FailurePolicy.ABORT.value),
        help="Abort the sweep on the first failed iteration, or log it and continue",
    )
    parser.add_argument(
        "--insecure",
        action="store_true",
        help="Talk plain HTTP to the registry",
    )
    parser.add_argument(
        "--local-registry",
        action="store_true",
        help="Start a throwaway registry container and treat REGISTRY as a repository inside it",
    )
    parser.add_argument(
        "--registry-image",
        default=os.environ.get("LOADLINE_REGISTRY_IMAGE", REGISTRY_IMAGE),
        help="Docker image used by --local-registry",
    )
    parser.add_argument(
        "--dry-run",
        action="store_true",
        help="Only print the planned iterations without executing them",
    )
    parser.add_argument(
        "--log-level",
        default=os.environ.get("LOADLINE_LOG_LEVEL", "INFO"),
        help="Logging level",
    )
    args = parser.parse_args(argv)
    # argparse only checks choices on values given on the command line.
    for flag, value, policy in (
        ("--header", args.header, HeaderPolicy),
        ("--on-error", args.on_error, FailurePolicy),
    ):
        allowed = [item.value for item in policy]
        if value not in allowed:
            parser.error(f"argument {flag}: invalid choice: {value!r} (choose from {', '.join(allowed)})")
    return args


def setup_logging(level: str) -> None:
    logging.basicConfig(
        level=getattr(logging, level.upper(), logging.INFO),
        format="%(asctime)s [%(levelname)s] %(name)s: %(message)s",
    )


def build_parameters(args: argparse.Namespace, registry_target: str) -> SweepParameters:
    return SweepParameters(
        registry_target=registry_target,
        size_scale_factor=args.size_scale,
        layer_scale_factor=args.layer_scale,
        repeat_count=args.repeat_factor,
        output_path=args.output,
        header_policy=HeaderPolicy(args.header),
        failure_policy=FailurePolicy(args.on_error),
    )


def main(argv: list[str] | None = None) -> int:
    args = parse_args(argv)
    setup_logging(args.log_level)

    try:
        if args.dry_run:
            _print_plan(build_parameters(args, args.registry))
            return 0

        with contextlib.ExitStack() as stack:
            target = args.registry
            if args.local_registry:
                address = stack.enter_context(LocalRegistry(image=args.registry_image).run())
                target = f"{address}/{args.registry.strip('/')}"
            params = build_parameters(args, target)

            LOGGER.info("Registry target: %s", params.registry_target)
            LOGGER.info("Output file: %s", params.output_path)

            client = RegistryClient(insecure=args.insecure)
            stack.callback(client.close)
            summary = SweepDriver(client).run(params)
    except LoadlineError as exc:
        LOGGER.critical("%s", exc)
        return 1

    LOGGER.info(
        "Recorded %d iterations in %s (%d failed)",
        summary.completed,
        summary.output_path,
        summary.failed,
    )
    return 1 if summary.failed else 0


def _print_plan(params: SweepParameters) -> None:
    print(
        f"Sweep: {params.registry_target} size_scale={params.size_scale_factor} "
        f"layer_scale={params.layer_scale_factor} repeats={params.repeat_count} "
        f"iterations={expected_iterations(params)}"
    )
    for spec in iter_specs(params):
        print(f"  - {spec.iteration_index}: size={spec.size_bytes} layers={spec.layer_count}")


if __name__ == "__main__":
    sys.exit(main())
