"""Manage the operator-supplied parameter bridge keys for one environment.

The ECS services read WebAuthn, SES and mail settings from SSM; these are not
produced by any stack, so an operator sets them once per environment and
checks them before deploying.

Usage:
    python scripts/manage_params.py get dev
    python scripts/manage_params.py set dev --rp-id dev.example.com --origin https://dev.example.com/
    python scripts/manage_params.py set prod --strict-verify true --from-address no-reply@example.com
    python scripts/manage_params.py delete staging
    python scripts/manage_params.py preflight prod     # exit 1 when any key is missing
"""
import argparse
import sys

from stacks import parameter_names
from stacks.config import ENVIRONMENTS
from stacks.parameter_store import ParameterNotFoundError, ParameterStore, ParameterStoreError

from config import ENVIRONMENT, PROJECT, REGION

# option name -> (label, key builder)
MANAGED_KEYS = {
    "rp_id": ("WEBAUTHN_RP_ID", parameter_names.webauthn_rp_id),
    "origin": ("WEBAUTHN_ORIGIN", parameter_names.webauthn_origin),
    "strict_verify": ("STRICT_WEBAUTHN_VERIFY", parameter_names.webauthn_strict_verify),
    "from_address": ("SES_FROM_ADDRESS", parameter_names.ses_from_address),
    "sender_name": ("SES_SENDER_NAME", parameter_names.ses_sender_name),
    "reply_to": ("MAIL_REPLY_TO_ADDRESS", parameter_names.mail_reply_to),
}


def managed_keys(project: str, environment: str) -> dict:
    return {option: (label, build(project, environment)) for option, (label, build) in MANAGED_KEYS.items()}


def get_params(store: ParameterStore, project: str, environment: str):
    print(f"=== {project} {environment}: operator parameters ===\n")
    for label, key in managed_keys(project, environment).values():
        try:
            value = store.resolve(key)
        except ParameterNotFoundError:
            value = "(not set)"
        print(f"  {label:<24} {key}")
        print(f"  {'':<24} {value}\n")


def set_params(store: ParameterStore, project: str, environment: str, values: dict) -> int:
    keys = managed_keys(project, environment)
    updates = {option: value for option, value in values.items() if option in keys and value is not None}
    if not updates:
        print("ERROR: nothing to set. Pass at least one of: "
              + ", ".join(f"--{option.replace('_', '-')}" for option in keys))
        return 0

    if "strict_verify" in updates and updates["strict_verify"] not in ("true", "false"):
        raise ValueError("--strict-verify must be 'true' or 'false'")

    for option, value in updates.items():
        label, key = keys[option]
        version = store.publish(key, value, f"{label} for {project} {environment}")
        print(f"  {key} = {value} (version {version})")
    print(f"\nUpdated {len(updates)} parameter(s).")
    return len(updates)


def delete_params(store: ParameterStore, project: str, environment: str):
    for label, key in managed_keys(project, environment).values():
        removed = store.delete(key)
        print(f"  {key}: {'deleted' if removed else 'not found'}")


def preflight(store: ParameterStore, project: str, environment: str) -> bool:
    keys = [key for _, key in managed_keys(project, environment).values()]
    try:
        store.require(keys)
    except ParameterNotFoundError as error:
        print(f"Preflight FAILED for {project} {environment}: {len(error.keys)} key(s) missing")
        for key in error.keys:
            print(f"  - {key}")
        return False
    print(f"Preflight OK for {project} {environment}: {len(keys)} key(s) present")
    return True


def build_parser() -> argparse.ArgumentParser:
    parser = argparse.ArgumentParser(description="Manage operator-supplied SSM parameters.")
    parser.add_argument("command", choices=("get", "set", "delete", "preflight"))
    parser.add_argument("environment", nargs="?", default=ENVIRONMENT, choices=ENVIRONMENTS)
    parser.add_argument("--project", default=PROJECT)
    parser.add_argument("--region", default=REGION)
    for option in MANAGED_KEYS:
        parser.add_argument(f"--{option.replace('_', '-')}", dest=option)
    return parser


def main(argv=None) -> int:
    args = build_parser().parse_args(argv)
    store = ParameterStore(region=args.region)

    try:
        if args.command == "get":
            get_params(store, args.project, args.environment)
        elif args.command == "set":
            if set_params(store, args.project, args.environment, vars(args)) == 0:
                return 1
        elif args.command == "delete":
            delete_params(store, args.project, args.environment)
        elif not preflight(store, args.project, args.environment):
            return 1
    except (ParameterStoreError, ValueError) as error:
        print(f"ERROR: {error}")
        return 1
    return 0


if __name__ == "__main__":
    sys.exit(main())
