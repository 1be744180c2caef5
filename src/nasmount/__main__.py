#!/usr/bin/env python3
"""
Command-line interface for nas-mount

This program is free software: you can redistribute it and/or modify
it under the terms of the GNU Affero General Public License as published by
the Free Software Foundation, either version 3 of the License, or
(at your option) any later version.

This program is distributed in the hope that it will be useful,
but WITHOUT ANY WARRANTY; without even the implied warranty of
MERCHANTABILITY or FITNESS FOR A PARTICULAR PURPOSE.  See the
GNU Affero General Public License for more details.

You should have received a copy of the GNU Affero General Public License
along with this program.  If not, see <https://www.gnu.org/licenses/>.
"""

import os
import sys
import argparse
import textwrap
import logging
from typing import List, Optional

from nasmount import __version__
from nasmount.errors import NasMountError
from nasmount.main import MountOrchestrator
from nasmount.models import MountOutcome, MountSummary, RepairOutcome, UnitState
from nasmount.utils.config import load_config, MountConfig
from nasmount.utils.credentials import install_signal_handlers

logger = logging.getLogger(__name__)

LOG_DIR = os.path.expanduser("~/.local/share/nas-mount")

COMMAND_ALIASES = {
    'm': 'mount',
    'r': 'remount',
    'u': 'unmount',
    'umount': 'unmount',
    's': 'status',
    'd': 'discover',
    'f': 'fstab',
}

OUTCOME_MARKS = {
    MountOutcome.MOUNTED: "✓",
    MountOutcome.ALREADY_MOUNTED: "✓",
    MountOutcome.SKIPPED: "⊘",
    MountOutcome.EXCLUDED: "⊘",
    MountOutcome.DENIED: "✗",
    MountOutcome.TIMED_OUT: "✗",
    MountOutcome.FAILED: "✗",
}


def configure_logging(verbose: bool = False) -> None:
    """Log everything to a file and warnings (or everything with -v) to stderr"""
    console = logging.StreamHandler()
    console.setLevel(logging.DEBUG if verbose else logging.WARNING)
    console.setFormatter(logging.Formatter('%(levelname)s: %(message)s'))
    handlers: List[logging.Handler] = [console]

    try:
        os.makedirs(LOG_DIR, exist_ok=True)
        file_handler = logging.FileHandler(os.path.join(LOG_DIR, "nas-mount.log"))
        file_handler.setLevel(logging.DEBUG if verbose else logging.INFO)
        file_handler.setFormatter(logging.Formatter('%(asctime)s - %(name)s - %(levelname)s - %(message)s'))
        handlers.append(file_handler)
    except OSError as e:
        print(f"Warning: cannot write log file in {LOG_DIR}: {e}", file=sys.stderr)

    logging.basicConfig(level=logging.DEBUG if verbose else logging.INFO, handlers=handlers)


def add_common_arguments(parser: argparse.ArgumentParser, suppress: bool = False) -> None:
    """Options accepted both before and after the command

    Subcommand copies use SUPPRESS defaults so they do not overwrite a
    value given before the command.
    """
    default = argparse.SUPPRESS if suppress else None
    flag_default = argparse.SUPPRESS if suppress else False

    parser.add_argument('-i', '--ip', default=default, help='NAS IP address or hostname')
    parser.add_argument('-P', '--protocol', choices=['smb', 'nfs'], default=default,
                        help='Share protocol (default: smb)')
    parser.add_argument('-u', '--user', default=default, help='SMB username')
    parser.add_argument('-p', '--pass', dest='password', default=default, help='SMB password')
    parser.add_argument('-m', '--mount', default=default, help='Mount base directory (default: ~/nas)')
    parser.add_argument('-s', '--shares', default=default, help='Comma-separated share names')
    parser.add_argument('-e', '--exclude', default=default,
                        help='Comma-separated shares to skip (e.g. homes,photo)')
    parser.add_argument('-t', '--timeout', type=int, default=default,
                        help='Timeout in seconds for each external command (default: 30)')
    parser.add_argument('--smb-version', default=default, help='SMB protocol version (default: 3.0)')
    parser.add_argument('--nfs-version', default=default,
                        help='First NFS version to try (default: 4.2, falls back to 4.1, 4.0, 3)')
    parser.add_argument('--rsize', type=int, default=default, help='Read buffer size in bytes')
    parser.add_argument('--wsize', type=int, default=default, help='Write buffer size in bytes')
    parser.add_argument('--actimeo', type=int, default=default, help='Attribute cache timeout in seconds')
    parser.add_argument('--soft', action='store_true', default=flag_default,
                        help='Use soft NFS mounts instead of hard')
    parser.add_argument('--nconnect', type=int, default=default, help='NFS connections per mount')
    parser.add_argument('--dry-run', action='store_true', default=flag_default,
                        help='Show what would be done without doing it')
    parser.add_argument('-y', '--yes', action='store_true', default=flag_default,
                        help='Answer yes to every confirmation')
    parser.add_argument('--config', default=default, help='Path to config file')
    parser.add_argument('-v', '--verbose', action='store_true', default=flag_default,
                        help='Show debug output')


def setup_argparse() -> argparse.ArgumentParser:
    """Set up command-line argument parser"""
    parser = argparse.ArgumentParser(
        prog='nas-mount',
        description="nas-mount - mount, persist and repair NAS shares",
        formatter_class=argparse.RawDescriptionHelpFormatter,
        epilog=textwrap.dedent("""\
            Examples:
              nas-mount mount                          # Mount with defaults/config
              nas-mount -i 10.0.0.5 discover           # Discover shares on another NAS
              nas-mount -i 10.0.0.5 -u admin mount     # Mount with a specific IP and user
              nas-mount -s media,backups mount         # Mount specific shares only
              nas-mount -e homes,photo mount           # Mount all except excluded shares
              nas-mount -P nfs -s /volume1/media mount # Mount an NFS export
              nas-mount fstab                          # Generate on-demand fstab entries
              nas-mount fstab-remove 12 14             # Remove fstab lines 12 and 14
              nas-mount migrate /mnt/nas ~/nas         # Move fstab mount points

            Environment variables:
              NAS_IP, NAS_PROTOCOL, NAS_USER, NAS_PASS, NAS_MOUNT_BASE, NAS_SHARES,
              NAS_EXCLUDE_SHARES, NAS_TIMEOUT, NAS_SMB_VERSION, NAS_NFS_VERSION,
              NAS_MOUNT_OPTS, NAS_FSTAB, NAS_CONFIG
        """)
    )
    parser.add_argument('--version', action='version', version=f"%(prog)s {__version__}")
    add_common_arguments(parser)

    subparsers = parser.add_subparsers(dest='command', help='Command to execute')

    def add_command(name: str, help_text: str, aliases: Optional[List[str]] = None) -> argparse.ArgumentParser:
        command_parser = subparsers.add_parser(name, aliases=aliases or [], help=help_text)
        add_common_arguments(command_parser, suppress=True)
        return command_parser

    add_command('mount', 'Mount NAS shares', ['m'])
    add_command('remount', 'Unmount and re-mount all NAS shares', ['r'])
    add_command('unmount', 'Unmount all NAS shares', ['umount', 'u'])
    add_command('repair', 'Check fstab-managed shares and fix stale ones')
    add_command('status', 'Show current mount status', ['s'])
    add_command('discover', 'Discover available shares', ['d'])

    fstab_parser = add_command('fstab', 'Generate (and optionally install) fstab entries', ['f'])
    fstab_parser.add_argument('--auto', action='store_true',
                              help='Mount at boot instead of on first access')

    add_command('fstab-list', 'List fstab entries for this NAS')

    remove_parser = add_command('fstab-remove', 'Remove fstab entries by line number')
    remove_parser.add_argument('lines', nargs='+', type=int, metavar='LINE', help='fstab line number')

    edit_parser = add_command('fstab-edit', 'Change one field of an fstab entry')
    edit_parser.add_argument('line', type=int, metavar='LINE', help='fstab line number')
    edit_parser.add_argument('field', metavar='FIELD',
                             help='source, mount_point, fstype, options, dump or pass')
    edit_parser.add_argument('value', metavar='VALUE', help='New value')

    migrate_parser = add_command('migrate', 'Move fstab mount points to a new base directory')
    migrate_parser.add_argument('old_base', metavar='OLD', help='Current base directory')
    migrate_parser.add_argument('new_base', metavar='NEW', help='New base directory')

    return parser


def build_config(args: argparse.Namespace) -> MountConfig:
    """Merge config file, environment and command-line flags"""
    return load_config(
        path=args.config,
        host=args.ip,
        protocol=args.protocol,
        username=args.user,
        password=args.password,
        mount_base=args.mount,
        shares=args.shares,
        exclude=args.exclude,
        timeout=args.timeout,
        smb_version=args.smb_version,
        nfs_version=args.nfs_version,
        rsize=args.rsize,
        wsize=args.wsize,
        actimeo=args.actimeo,
        nfs_soft=True if args.soft else None,
        nfs_nconnect=args.nconnect,
        dry_run=True if args.dry_run else None,
        assume_yes=True if args.yes else None,
    )


def _report_mount(app: MountOrchestrator, summary: MountSummary) -> int:
    print()
    for result in summary.results:
        line = f"  {OUTCOME_MARKS[result.outcome]} {result.share}"
        if result.outcome in (MountOutcome.MOUNTED, MountOutcome.ALREADY_MOUNTED):
            line += f" -> {result.mount_point}"
            if result.outcome == MountOutcome.ALREADY_MOUNTED:
                line += " (already mounted)"
        elif result.reason:
            line += f" ({result.reason})"
        print(line)

    print()
    print(f"Mounted: {summary.mounted}  Failed: {summary.failed}  Denied: {summary.denied}  "
          f"Skipped: {summary.skipped}  Excluded: {summary.excluded}")
    if summary.planned:
        print(f"Dry run: {summary.planned} share(s) would be mounted")
    if summary.nfs_version:
        print(f"NFS version: {summary.nfs_version}")

    if summary.migration_candidates and not app.config.dry_run:
        for report in app.offer_migration(summary):
            if not report.aborted:
                print(f"Moved {len(report.moved)} mount point(s) from {report.old_base} to {report.new_base}")

    return 0 if summary.success else 1


def handle_mount(app: MountOrchestrator, args: argparse.Namespace) -> int:
    return _report_mount(app, app.mount_all())


def handle_unmount(app: MountOrchestrator, args: argparse.Namespace) -> int:
    summary = app.unmount_all()
    for path in summary.unmounted:
        print(f"  ✓ Unmounted {path}")
    for path in summary.failed:
        print(f"  ✗ Could not unmount {path}")
    if not summary.unmounted and not summary.failed:
        print("No shares mounted")
    return 0 if summary.success else 1


def handle_remount(app: MountOrchestrator, args: argparse.Namespace) -> int:
    return _report_mount(app, app.remount_all())


def handle_repair(app: MountOrchestrator, args: argparse.Namespace) -> int:
    summary = app.repair_engine().repair()
    if summary.total == 0:
        print(f"No fstab entries for {app.config.host}")
        return 0

    for result in summary.results:
        if result.outcome == RepairOutcome.HEALTHY:
            print(f"  ✓ {result.mount_point} healthy")
        elif result.outcome == RepairOutcome.REPAIRED:
            print(f"  ✓ {result.mount_point} repaired")
        else:
            print(f"  ✗ {result.mount_point} failed ({result.reason})")

    print()
    print(f"Total: {summary.total}  Healthy: {summary.healthy}  Repaired: {summary.repaired}  "
          f"Failed: {summary.failed}")
    return 0 if summary.failed == 0 else 1


def handle_status(app: MountOrchestrator, args: argparse.Namespace) -> int:
    report = app.status()
    print("NAS Mount Status")
    print("=" * 40)
    print(f"  NAS:         {report.host} ({'reachable' if report.reachable else 'not reachable'})")
    print(f"  Protocol:    {app.adapter.name}")
    print(f"  Mount base:  {report.mount_base}")
    print()

    if report.entries:
        print(f"  fstab entries for {report.host}:")
        for entry, state in report.entries:
            unit = "" if state == UnitState.UNKNOWN else f", unit {state.value}"
            print(f"    [{entry.line_number}] {entry.source} -> {entry.mount_point} ({entry.mode}{unit})")
    else:
        print(f"  No fstab entries for {report.host}")
    print()

    print("  Active mounts:")
    for mount in report.mounts:
        if mount.mounted:
            print(f"    ● {mount.name}  {mount.usage}")
        else:
            print(f"    ○ {mount.name}  (not mounted)")
    if report.mounted_count == 0:
        print("    No shares currently mounted")
    return 0


def handle_discover(app: MountOrchestrator, args: argparse.Namespace) -> int:
    shares = app.discover()
    print(f"Available shares on {app.config.host}:")
    for share in shares:
        line = f"  • {share.name}"
        if share.in_fstab:
            line += "  (fstab)"
        if share.comment:
            line += f"  - {share.comment}"
        print(line)
    return 0


def handle_fstab(app: MountOrchestrator, args: argparse.Namespace) -> int:
    entries = app.generate_fstab(on_demand=not args.auto)
    if not entries:
        print("No shares to generate entries for")
        return 1

    print(f"Generated {app.config.fstab_path} entries:")
    print("-" * 44)
    for entry in entries:
        print(entry.to_line())
    print("-" * 44)
    if not args.auto:
        print(f"On-demand: shares mount on first access and disconnect after "
              f"{app.config.idle_timeout}s idle.")

    if app.config.dry_run:
        return 0
    try:
        install = app.prompter.confirm("Install these fstab entries now?")
    except EOFError:
        install = False
    if not install:
        return 0

    report = app.install_fstab(entries)
    for mount_point in report.added:
        print(f"  ✓ Added {mount_point}")
    for mount_point in report.skipped:
        print(f"  ⊘ {mount_point} already in fstab, skipped")
    if report.added:
        print(f"Activated {report.activated} automount unit(s)")
    if app.fstab.last_backup:
        print(f"Backup: {app.fstab.last_backup}")
    return 0


def handle_fstab_list(app: MountOrchestrator, args: argparse.Namespace) -> int:
    entries = app.fstab_list()
    if not entries:
        print(f"No fstab entries for {app.config.host}")
        return 0
    print(f"{'LINE':>5}  {'SOURCE':<30} {'MOUNT POINT':<30} {'TYPE':<6} MODE")
    for entry in entries:
        print(f"{entry.line_number:>5}  {entry.source:<30} {entry.mount_point:<30} {entry.fstype:<6} {entry.mode}")
    return 0


def handle_fstab_remove(app: MountOrchestrator, args: argparse.Namespace) -> int:
    lines = ', '.join(str(number) for number in args.lines)
    try:
        confirmed = app.prompter.confirm(f"Remove fstab line(s) {lines}?")
    except EOFError:
        confirmed = False
    if not confirmed:
        print("Nothing removed")
        return 0

    for entry in app.fstab_remove(args.lines):
        print(f"  ✓ Removed line {entry.line_number}: {entry.source} -> {entry.mount_point}")
    if app.fstab.last_backup:
        print(f"Backup: {app.fstab.last_backup}")
    return 0


def handle_fstab_edit(app: MountOrchestrator, args: argparse.Namespace) -> int:
    old, new = app.fstab_edit(args.line, args.field, args.value)
    print(f"  - {old.to_line()}")
    print(f"  + {new.to_line()}")
    return 0


def handle_migrate(app: MountOrchestrator, args: argparse.Namespace) -> int:
    report = app.migration_engine().migrate(args.old_base, args.new_base, assume_yes=app.config.assume_yes)
    if report.aborted:
        print("Migration cancelled")
        return 0
    if not report.moved:
        print(f"No fstab entries under {report.old_base}")
        return 0
    for old, new in report.moved:
        print(f"  ✓ {old} -> {new}")
    print(f"Activated {report.activated} automount unit(s)")
    if report.symlinked:
        print(f"Linked {report.old_base} -> {report.new_base}")
    return 0


HANDLERS = {
    'mount': handle_mount,
    'remount': handle_remount,
    'unmount': handle_unmount,
    'repair': handle_repair,
    'status': handle_status,
    'discover': handle_discover,
    'fstab': handle_fstab,
    'fstab-list': handle_fstab_list,
    'fstab-remove': handle_fstab_remove,
    'fstab-edit': handle_fstab_edit,
    'migrate': handle_migrate,
}


def main(argv: Optional[List[str]] = None) -> int:
    """Main entry point for the application"""
    parser = setup_argparse()
    args = parser.parse_args(argv)

    if args.command is None:
        parser.print_help()
        return 0

    configure_logging(args.verbose)
    install_signal_handlers()

    command = COMMAND_ALIASES.get(args.command, args.command)
    try:
        config = build_config(args)
        app = MountOrchestrator(config)
        return HANDLERS[command](app, args)
    except (NasMountError, ValueError) as e:
        logger.debug(f"{command} failed", exc_info=True)
        print(f"Error: {e}", file=sys.stderr)
        return 1
    except KeyboardInterrupt:
        print("\nInterrupted", file=sys.stderr)
        return 1


if __name__ == "__main__":
    sys.exit(main())
