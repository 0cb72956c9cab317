"""Apply Runbook manifests to the Firestore store (declarant side).

Reads one or more YAML files (multi-document allowed), validates each
`Runbook` document and upserts its metadata/spec. With `--delete` the listed
resources are marked for deletion instead. `--reconcile` then runs passes for
every touched resource until nothing asks for an immediate requeue, rendering
with any `RunbookTemplate` documents found in the same files.

Usage:
    python -m scripts.apply_runbooks manifests/*.yaml
    python -m scripts.apply_runbooks --delete manifests/high-cpu.yaml
    python -m scripts.apply_runbooks --reconcile manifests/high-cpu.yaml
"""

from __future__ import annotations

import argparse
import asyncio
import sys

import yaml
from pydantic import ValidationError

from src.common.config import ConfigError, load_controller_settings
from src.runbooks.manifests import load_manifests
from src.runbooks.models import RunbookIdentity
from src.runbooks.reconciler import Reconciler, ReconcilerDeps
from src.runbooks.store import NotFoundError, StoreError
from src.runbooks.store.firestore_store import FirestoreRunbookStore

MAX_IMMEDIATE_PASSES = 5


async def _reconcile_until_settled(reconciler: Reconciler, identity: RunbookIdentity) -> None:
    for _ in range(MAX_IMMEDIATE_PASSES):
        result = await reconciler.reconcile(identity)
        if not result.requeue:
            after = f", next pass in {result.requeue_after:.0f}s" if result.requeue_after else ""
            print(f"reconciled {identity}{after}")
            return
    print(f"reconciled {identity}: still requeueing after {MAX_IMMEDIATE_PASSES} passes")


async def run(args: argparse.Namespace) -> int:
    settings = load_controller_settings()
    store = FirestoreRunbookStore(settings.firestore)
    manifests = load_manifests(args.manifests)
    if not manifests.runbooks:
        print("No Runbook documents found")
        return 1

    for runbook in manifests.runbooks:
        identity = runbook.identity
        if args.delete:
            try:
                await store.request_deletion(identity)
            except NotFoundError:
                print(f"{identity} not found")
                continue
            print(f"deletion requested for {identity}")
        else:
            stored = await store.apply(runbook)
            print(f"applied {identity} (resourceVersion {stored.metadata.resource_version})")

    if args.reconcile:
        deps = ReconcilerDeps.from_settings(settings, store=store, templates=manifests.templates)
        for template in manifests.templates:
            print(f"using template {template.name}")
        reconciler = Reconciler(deps)
        for runbook in manifests.runbooks:
            await _reconcile_until_settled(reconciler, runbook.identity)
    elif manifests.templates:
        names = ", ".join(t.name for t in manifests.templates)
        print(f"templates {names} only apply with --reconcile; the service reads them from RUNBOOK_TEMPLATE_DIR")
    return 0


def main() -> None:
    parser = argparse.ArgumentParser(description="Apply Runbook manifests to Firestore")
    parser.add_argument("manifests", nargs="+", help="YAML files containing Runbook documents")
    parser.add_argument("--delete", action="store_true", help="Mark the listed Runbooks for deletion")
    parser.add_argument("--reconcile", action="store_true", help="Run reconcile passes after applying")
    args = parser.parse_args()

    try:
        exit_code = asyncio.run(run(args))
    except (ConfigError, StoreError, ValidationError, yaml.YAMLError) as exc:
        print(f"error: {exc}", file=sys.stderr)
        exit_code = 1
    sys.exit(exit_code)


if __name__ == "__main__":
    main()
