from __future__ import annotations

import argparse
from pathlib import Path

from stack_provisioner.config import apply, load, outputs, plan


def _progress(change: object, event: str) -> None:
    address = getattr(change, "address", "unknown")
    if event == "start":
        print(f"[apply:start] {address}")
    else:
        print(f"[apply:done]  {address}")


def main() -> None:
    parser = argparse.ArgumentParser(description="Plan/apply a stack via the Python API")
    parser.add_argument(
        "--config",
        default="examples/web-stack/stack.yaml",
        help="Path to config file",
    )
    parser.add_argument("--apply", action="store_true", help="Apply the generated plan")
    parser.add_argument("--destroy", action="store_true", help="Plan a teardown instead")
    parser.add_argument(
        "--no-refresh",
        action="store_true",
        help="Skip refresh during plan",
    )
    args = parser.parse_args()

    config = load(Path(args.config))

    plan_obj = plan(config, destroy=args.destroy, refresh=not args.no_refresh)
    print("Plan summary:", plan_obj.summary())
    for operation in plan_obj.operations():
        print(f"- {operation}")

    if args.apply:
        result = apply(plan_obj, config, progress=_progress)
        print("Apply summary:", result.summary())
        for key, value in outputs(config).items():
            print(f"{key} = {value}")


if __name__ == "__main__":
    main()
