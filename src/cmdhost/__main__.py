"""CLI entry point: `cmdhost list|import|test-manifest|new-manifest ...` or `python -m cmdhost ...`."""

import logging
import os
import sys


def _print_module(module, verbose: bool = False) -> None:
    version = str(module.version) if module.version is not None else "0.0"
    commands = ", ".join(module.exported_command_names())
    marker = " (errors)" if module.had_errors_loading else ""
    sys.stdout.write(f"{module.module_type.value:<9} {version:<12} {module.name}{marker}\n")
    if verbose:
        sys.stdout.write(f"          path: {module.path}\n")
        if commands:
            sys.stdout.write(f"          commands: {commands}\n")


def main(argv=None) -> int:
    import argparse
    from .host import ModuleManager

    parser = argparse.ArgumentParser(prog="cmdhost", description="Resolve and inspect command-host modules.")
    parser.add_argument("--module-path", action="append", default=None,
                        help="Module search path (repeatable; default: $CMDHOST_MODULE_PATH)")
    parser.add_argument("--verbose", "-v", action="store_true", help="Show resolution trace and details")
    sub = parser.add_subparsers(dest="command", required=True)

    list_cmd = sub.add_parser("list", help="List modules available on the search path")
    list_cmd.add_argument("name", nargs="*", help="Name filters (wildcards allowed)")

    import_cmd = sub.add_parser("import", help="Import a module and show what it bound")
    import_cmd.add_argument("name", help="Module name or path")
    import_cmd.add_argument("--prefix", default=None, help="Command noun prefix")
    import_cmd.add_argument("--required-version", default=None)
    import_cmd.add_argument("--minimum-version", default=None)
    import_cmd.add_argument("--maximum-version", default=None)
    import_cmd.add_argument("--strict", action="store_true", help="Stop at the first manifest error")

    test_cmd = sub.add_parser("test-manifest", help="Validate a module manifest")
    test_cmd.add_argument("path", help="Path to a .psd1 manifest")

    new_cmd = sub.add_parser("new-manifest", help="Write a new module manifest")
    new_cmd.add_argument("path", help="Path of the .psd1 file to create")
    new_cmd.add_argument("--root-module", default=None)
    new_cmd.add_argument("--module-version", default="0.0.1")
    new_cmd.add_argument("--description", default=None)

    args = parser.parse_args(argv)
    if args.verbose:
        logging.basicConfig(level=logging.DEBUG, format="%(name)s: %(message)s")

    search_paths = None
    if args.module_path:
        search_paths = [p for entry in args.module_path for p in entry.split(os.pathsep) if p]
    manager = ModuleManager(search_paths=search_paths)

    if args.command == "list":
        for module in manager.get_module(args.name or None, list_available=True):
            _print_module(module, args.verbose)
        return 0

    if args.command == "import":
        try:
            result = manager.import_module(
                args.name,
                prefix=args.prefix,
                strict=args.strict,
                required_version=args.required_version,
                minimum_version=args.minimum_version,
                maximum_version=args.maximum_version,
            )
        except ValueError as e:
            sys.stderr.write(f"cmdhost: error: {e}\n")
            return 2
        if result.has_errors() or result.reporter.warnings:
            result.reporter.print_diagnostics(verbose=args.verbose)
        if not result.success:
            return 1
        _print_module(result.module, args.verbose)
        for name in result.report.imported:
            sys.stdout.write(f"  {name}\n")
        return 0

    if args.command == "test-manifest":
        if not os.path.isfile(args.path):
            sys.stderr.write(f"cmdhost: error: file not found: {args.path}\n")
            return 1
        result = manager.test_manifest(args.path)
        if result.has_errors():
            result.reporter.print_diagnostics(verbose=args.verbose)
            return 1
        _print_module(result.module, args.verbose)
        return 0

    if args.command == "new-manifest":
        fields = {"ModuleVersion": args.module_version}
        if args.root_module:
            fields["RootModule"] = args.root_module
        if args.description:
            fields["Description"] = args.description
        manager.new_manifest(args.path, **fields)
        sys.stdout.write(f"{args.path}\n")
        return 0

    return 2


if __name__ == "__main__":
    sys.exit(main())
