"""
Conformance Test Runner

Loads a kinematics plugin, runs every validation category and exits with
0 when all categories passed, 1 when any failed, 2 when the run could not
start.

Usage:
    kinconf-test --params robots/gantry_params.json
    kinconf-test --params robots/gantry_params.json --num-ik-tests 20 --seed 0
"""

import argparse
import logging
import sys
from typing import List, Optional

import torch

from .errors import HarnessError
from .harness.config import HarnessConfig
from .harness.context import KinematicsTestContext
from .harness.runner import ValidationRunner, all_passed, format_summary
from .kinematics.loader import list_plugins

EXIT_OK = 0
EXIT_FAILED = 1
EXIT_FATAL = 2

# command-line option -> HarnessConfig field
OVERRIDES = (
    "ik_plugin_name", "group", "root_link", "tip_link", "joint_names",
    "robot_description", "urdf", "srdf",
    "num_fk_tests", "num_ik_tests", "num_ik_cb_tests", "num_ik_multiple_tests",
    "timeout", "tolerance", "success_ratio", "seed",
)


def build_parser() -> argparse.ArgumentParser:
    parser = argparse.ArgumentParser(description="Kinematics plugin conformance test")
    parser.add_argument("--params", type=str, default=None,
                        help="JSON parameter file")
    parser.add_argument("--plugin", dest="ik_plugin_name", type=str, default=None,
                        help="Plugin name (entry point or module:Class)")
    parser.add_argument("--group", type=str, default=None, help="Planning group")
    parser.add_argument("--root-link", type=str, default=None, help="Root link of the chain")
    parser.add_argument("--tip-link", type=str, default=None, help="Tip link of the chain")
    parser.add_argument("--joint-names", type=str, nargs="+", default=None,
                        help="Expected joint names, in order")
    parser.add_argument("--robot-description", type=str, default=None,
                        help="Robot description identifier")
    parser.add_argument("--urdf", type=str, default=None, help="Path to robot URDF")
    parser.add_argument("--srdf", type=str, default=None, help="Path to robot SRDF")
    parser.add_argument("--num-fk-tests", type=int, default=None)
    parser.add_argument("--num-ik-tests", type=int, default=None)
    parser.add_argument("--num-ik-cb-tests", type=int, default=None)
    parser.add_argument("--num-ik-multiple-tests", type=int, default=None)
    parser.add_argument("--timeout", type=float, default=None,
                        help="IK search timeout in seconds")
    parser.add_argument("--tolerance", type=float, default=None,
                        help="Per-component pose tolerance")
    parser.add_argument("--success-ratio", type=float, default=None,
                        help="Required fraction of successful IK trials")
    parser.add_argument("--seed", type=int, default=None, help="Random seed")
    parser.add_argument("--progress", action="store_true", help="Show progress bars")
    parser.add_argument("--list-plugins", action="store_true",
                        help="List registered plugins and exit")
    parser.add_argument("-v", "--verbose", action="count", default=0,
                        help="-v for INFO, -vv for DEBUG")
    return parser


def load_config(args: argparse.Namespace) -> HarnessConfig:
    """Parameter file first, then command-line overrides."""
    params = {}
    if args.params:
        params = HarnessConfig.from_file(args.params).__dict__.copy()
        params.update(params.pop("extra"))

    for name in OVERRIDES:
        value = getattr(args, name, None)
        if value is not None:
            params[name] = value

    return HarnessConfig.from_params(params)


def main(argv: Optional[List[str]] = None) -> int:
    args = build_parser().parse_args(argv)

    level = logging.WARNING
    if args.verbose == 1:
        level = logging.INFO
    elif args.verbose > 1:
        level = logging.DEBUG
    logging.basicConfig(level=level, format="[%(levelname)s] %(name)s: %(message)s")

    if args.list_plugins:
        for name in list_plugins():
            print(name)
        return EXIT_OK

    try:
        config = load_config(args)
        if config.seed is not None:
            torch.manual_seed(config.seed)

        context = KinematicsTestContext(config)
        context.initialize()
    except HarnessError as e:
        print(f"✗ {e}", file=sys.stderr)
        return EXIT_FATAL

    print("=" * 60)
    print(f"Kinematics plugin conformance: {config.ik_plugin_name}")
    print(f"Group: {config.group} ({config.root_link} -> {config.tip_link})")
    print("=" * 60)

    reports = ValidationRunner(context, progress=args.progress).run_all()

    print(format_summary(reports))
    for report in reports:
        for failure in report.failures:
            print(f"  [{report.name}] {failure}")

    if all_passed(reports):
        print("\n✓ All categories passed")
        return EXIT_OK
    print("\n✗ Some categories failed")
    return EXIT_FAILED


if __name__ == "__main__":
    sys.exit(main())
