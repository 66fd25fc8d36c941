#!/usr/bin/env python3
"""
Model catalog inspection

Shows which registered models are ready to load and which files are missing.
"""

import argparse
import sys

from modelhub.config import Settings, configure_logging
from modelhub.registry import default_registry
from modelhub.scanner import ArtifactScanner


def list_models(scanner: ArtifactScanner, registry) -> int:
    print("Available models:")
    print()
    for descriptor in registry.list():
        status = scanner.scan(descriptor)
        marker = "[x]" if status.is_available else "[ ]"
        vision = " (vision)" if descriptor.is_vision else ""
        print(f"  {marker} {descriptor.id}{vision}")
        print(f"      {descriptor.name}")
        print(f"      Format: {descriptor.packaging_kind.value} | Size: {descriptor.size_estimate or '?'}")
        if not status.is_available:
            print(f"      Unavailable: {status.reason}")
    return 0


def show_model_info(scanner: ArtifactScanner, registry, model_id: str) -> int:
    if model_id not in registry:
        print(f"Model not found: {model_id}")
        return 1

    descriptor = registry.get(model_id)
    status = scanner.scan(descriptor)
    print(f"Model information: {descriptor.id}")
    print()
    print(f"  Name: {descriptor.name}")
    print(f"  Description: {descriptor.description}")
    print(f"  Repository: {descriptor.repo or '-'}")
    print(f"  Format: {descriptor.packaging_kind.value}")
    print(f"  Estimated size: {descriptor.size_estimate or '?'}")
    print(f"  Vision: {'yes' if descriptor.is_vision else 'no'}")
    directory = scanner.artifact_dir(descriptor)
    if directory is not None:
        print(f"  Local directory: {directory}")
    print(f"  Status: {'available' if status.is_available else status.reason}")
    print()
    if descriptor.files:
        print("  Required files:")
        for filename in descriptor.files:
            flag = "missing" if filename in status.missing_files else "ok"
            print(f"     - {filename} ({flag})")
    return 0


def main():
    parser = argparse.ArgumentParser(description="Inspect the local model catalog")
    subparsers = parser.add_subparsers(dest="command", required=True)
    subparsers.add_parser("list", help="List registered models and their availability")
    info = subparsers.add_parser("info", help="Show details and missing files for one model")
    info.add_argument("model_id", help="Model identifier")
    parser.add_argument("--env-file", default=None, help="Path to a .env file")

    args = parser.parse_args()

    settings = Settings.from_env(args.env_file)
    configure_logging("WARNING")
    scanner = ArtifactScanner(settings.models_dir, settings.hf_token)
    registry = default_registry()

    if args.command == "list":
        sys.exit(list_models(scanner, registry))
    elif args.command == "info":
        sys.exit(show_model_info(scanner, registry, args.model_id))


if __name__ == "__main__":
    main()
