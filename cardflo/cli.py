"""Command-line interface for scanning cards and managing contacts.

Environment variables:
    CARDFLO_CLASSIFIER_URL: Base URL of the image classifier (required for scan/import)
    CARDFLO_CLASSIFIER_KEY: Optional API key for authentication
    CARDFLO_DB_PATH: SQLite database path (default: data/cardflo.db)
    See cardflo.config for the remaining CARDFLO_* settings.
"""

import argparse
import asyncio
import sys
from pathlib import Path

from dotenv import load_dotenv
from tqdm import tqdm

from .api.classifier_api import ClassifierAPI
from .config import Settings, load_settings
from .core.camera import OpenCVVideoSource
from .core.capture import AutoCaptureEngine, CaptureConfig
from .core.errors import CardfloError, QuotaExceededError
from .core.imaging import ensure_jpeg
from .core.matcher import DuplicateMatcher
from .core.models import Account, SubscriptionTier, parse_timestamp
from .core.pipeline import ScanPipeline, ScanResult
from .core.quota import QuotaGate
from .core.sampler import FrameSampler
from .logger import setup_logging
from .storage.database import RecordStore

IMAGE_EXTENSIONS = {".jpg", ".jpeg", ".png", ".webp", ".bmp"}


# ---------------------------------------------------------------------------
# Helpers
# ---------------------------------------------------------------------------

def get_api_client(settings: Settings) -> ClassifierAPI:
    """Create API client from settings."""
    if not settings.classifier_url:
        print("Error: CARDFLO_CLASSIFIER_URL environment variable is required")
        sys.exit(1)
    return ClassifierAPI(
        base_url=settings.classifier_url,
        api_key=settings.classifier_key,
        timeout=settings.request_timeout,
    )


def build_pipeline(settings: Settings, store: RecordStore, api: ClassifierAPI) -> ScanPipeline:
    matcher = DuplicateMatcher(store, max_records=settings.max_duplicate_scan)
    quota = QuotaGate(store, warning_ratio=settings.warning_ratio, cycle_days=settings.cycle_days)
    return ScanPipeline(api, store, matcher, quota, image_dir=settings.image_dir)


def print_fields(result: ScanResult) -> None:
    fields = result.fields
    print(f"  Name:    {fields.first_name} {fields.last_name}".rstrip())
    print(f"  Title:   {fields.job_title}")
    print(f"  Company: {fields.company}")
    print(f"  Email:   {fields.email}")
    print(f"  Phone:   {fields.phone}")
    print(f"  Website: {fields.website}")
    if result.is_partial:
        print("  Note: some details could not be read from the card")
    if result.is_duplicate:
        print("  Warning: this contact looks like one you already saved")


def _save_result(pipeline: ScanPipeline, result: ScanResult, allow_duplicate: bool) -> str:
    """Save a processed scan. Returns 'added', 'duplicate', or 'denied'."""
    try:
        record = pipeline.save(result, allow_duplicate=allow_duplicate)
    except QuotaExceededError:
        return "denied"
    return "added" if record else "duplicate"


async def _capture_still(engine: AutoCaptureEngine, manual: bool, timeout: float) -> bytes | None:
    if not manual:
        try:
            session = await engine.run(timeout=timeout)
        except asyncio.TimeoutError:
            return None
        return session.still if session else None

    await engine.start(poll=False)
    try:
        await asyncio.to_thread(input, "Press Enter to capture...")
        engine.capture_now()
        return engine.handoff().still
    finally:
        await engine.close()


def _make_engine(settings: Settings, api: ClassifierAPI, camera_index: int) -> AutoCaptureEngine:
    sampler = FrameSampler(
        OpenCVVideoSource(camera_index),
        snapshot_scale=settings.snapshot_scale,
        snapshot_quality=settings.snapshot_quality,
        still_quality=settings.still_quality,
    )
    return AutoCaptureEngine(
        sampler,
        api,
        CaptureConfig(poll_interval=settings.poll_interval),
        on_state=lambda state: print(f"[{state.value}]"),
    )


# ---------------------------------------------------------------------------
# Commands
# ---------------------------------------------------------------------------

def scan(args):
    """Scan a card with the camera, review and save it."""
    settings = args.settings
    store = RecordStore(settings.db_path)
    api = get_api_client(settings)
    pipeline = build_pipeline(settings, store, api)

    decision = pipeline.check_quota(args.owner)
    if not decision.allowed:
        print("Scan limit reached for this billing cycle. Upgrade your plan to keep scanning.")
        sys.exit(1)

    camera_index = args.camera if args.camera is not None else settings.camera_index
    print("Hold the card in front of the camera...")
    front = asyncio.run(_capture_still(_make_engine(settings, api, camera_index), args.manual, args.timeout))
    if front is None:
        print("No card captured")
        sys.exit(1)

    result = pipeline.process(args.owner, front)
    if args.back:
        print("Flip the card to capture the back side...")
        back = asyncio.run(_capture_still(_make_engine(settings, api, camera_index), args.manual, args.timeout))
        if back is not None:
            pipeline.enrich(result, back)

    print_fields(result)
    status = _save_result(pipeline, result, args.allow_duplicate)
    if status == "added":
        print("Contact saved")
    elif status == "duplicate":
        print("Not saved (duplicate). Use --allow-duplicate to save anyway.")
    else:
        print("Scan limit reached for this billing cycle")
        sys.exit(1)
    if decision.warning:
        print("You have used over 80% of your scans for this cycle")


def import_images(args):
    """Run recognition on image files and save the contacts."""
    settings = args.settings
    store = RecordStore(settings.db_path)
    pipeline = build_pipeline(settings, store, get_api_client(settings))

    path = Path(args.path)
    if path.is_file():
        files = [path]
    elif path.is_dir():
        files = sorted(p for p in path.rglob("*") if p.suffix.lower() in IMAGE_EXTENSIONS)
    else:
        print(f"Error: {path} does not exist")
        sys.exit(1)

    counts = {"added": 0, "duplicate": 0, "denied": 0, "error": 0}
    for filepath in tqdm(files, desc="Importing", unit="card", disable=len(files) < 2):
        try:
            image_bytes = ensure_jpeg(filepath.read_bytes(), settings.still_quality)
            result = pipeline.process(args.owner, image_bytes)
            status = _save_result(pipeline, result, args.allow_duplicate)
        except QuotaExceededError:
            status = "denied"
        except CardfloError as e:
            tqdm.write(f"Warning: Could not import {filepath.name}: {e.message}")
            status = "error"
        except OSError as e:
            tqdm.write(f"Warning: Could not read image {filepath.name}: {e}")
            status = "error"
        counts[status] += 1
        if status == "denied":
            tqdm.write("Scan limit reached, stopping import")
            break

    print(
        f"\nImported {counts['added']} card(s), skipped {counts['duplicate']} duplicate(s), "
        f"{counts['error']} error(s). Total contacts: {store.count_contacts(args.owner)}"
    )


def list_contacts(args):
    """List an owner's contacts."""
    store = RecordStore(args.settings.db_path)
    records = store.list_contacts(args.owner)

    if not records:
        print("No contacts saved")
        return

    print(f"{'Id':<10} {'Name':<24} {'Company':<20} {'Email':<28} {'Scanned':<12}")
    print("-" * 96)
    for r in records:
        scanned = r.scanned_at.strftime('%Y-%m-%d') if r.scanned_at else 'N/A'
        print(f"{r.id[:8]:<10} {r.display_name[:23]:<24} {r.company[:19]:<20} {r.email[:27]:<28} {scanned:<12}")
    stats = store.stats(args.owner)
    print(f"\nTotal: {stats.total} contact(s), {stats.today} today")


def _resolve_id(store: RecordStore, owner_id: str, prefix: str) -> str:
    matches = [r.id for r in store.list_contacts(owner_id) if r.id.startswith(prefix)]
    if len(matches) != 1:
        print(f"Error: '{prefix}' matches {len(matches)} contact(s)")
        sys.exit(1)
    return matches[0]


def duplicates(args):
    """Report duplicate pairs, or dismiss / merge one."""
    settings = args.settings
    store = RecordStore(settings.db_path)
    matcher = DuplicateMatcher(store, max_records=settings.max_duplicate_scan)
    report = matcher.find_duplicate_pairs(args.owner)

    if args.dismiss:
        a, b = (_resolve_id(store, args.owner, p) for p in args.dismiss)
        matcher.dismiss_pair(report, a, b)
        print(f"Dismissed pair {a[:8]} / {b[:8]}")
    elif args.merge:
        keep, drop = (_resolve_id(store, args.owner, p) for p in args.merge)
        try:
            merged = matcher.merge_pair(report, keep, drop)
        except KeyError:
            print("Error: those contacts are not a pending duplicate pair")
            sys.exit(1)
        print(f"Merged {drop[:8]} into {merged.id[:8]} ({merged.display_name})")

    if not report.pairs:
        print("No duplicates found")
        return

    print(f"{len(report)} possible duplicate(s):")
    for pair in report:
        reasons = ", ".join(pair.reasons)
        print(
            f"  {pair.first.id[:8]} {pair.first.display_name:<24} <-> "
            f"{pair.second.id[:8]} {pair.second.display_name:<24} [{reasons}]"
        )


def usage(args):
    """Show the owner's scan allowance for the current cycle."""
    settings = args.settings
    store = RecordStore(settings.db_path)
    gate = QuotaGate(store, warning_ratio=settings.warning_ratio, cycle_days=settings.cycle_days)

    account = store.get_account(args.owner) or Account(owner_id=args.owner)
    counter = store.latest_usage(args.owner)
    decision = gate.can_scan(args.owner)

    print(f"Plan:    {account.tier.value}{' (admin)' if account.is_admin else ''}")
    if counter is None:
        print("Usage:   no scans yet")
    else:
        limit = gate.total_limit(account, counter)
        ends = counter.cycle_end.strftime('%Y-%m-%d') if counter.cycle_end else 'N/A'
        print(f"Usage:   {counter.scans_count}/{limit} (bonus {counter.bonus_scans}), cycle ends {ends}")
    status = "allowed" if decision.allowed else f"denied ({decision.reason})"
    print(f"Scan:    {status}{' - approaching limit' if decision.warning else ''}")


def account(args):
    """Create or update an owner's account."""
    settings = args.settings
    store = RecordStore(settings.db_path)
    current = store.get_account(args.owner) or Account(owner_id=args.owner)

    if args.tier:
        current.tier = SubscriptionTier(args.tier)
    if args.admin is not None:
        current.is_admin = args.admin
    if args.custom_limit is not None:
        current.custom_scan_limit = args.custom_limit if args.custom_limit >= 0 else None
    if args.cycle_end:
        current.billing_cycle_end = parse_timestamp(args.cycle_end)
    store.save_account(current)

    if args.bonus:
        gate = QuotaGate(store, warning_ratio=settings.warning_ratio, cycle_days=settings.cycle_days)
        gate.grant_bonus_scans(args.owner, args.bonus)
        print(f"Granted {args.bonus} bonus scan(s)")

    limits = current.limits
    scan_limit = limits.scan_limit if current.custom_scan_limit is None else current.custom_scan_limit
    print(
        f"Account {current.owner_id}: {current.tier.value}, "
        f"{scan_limit} scans/cycle, "
        f"export {'on' if limits.allow_export else 'off'}, "
        f"{limits.team_member_cap} member(s){', admin' if current.is_admin else ''}"
    )


def health_check(args):
    """Check classifier API connectivity."""
    api = get_api_client(args.settings)
    if api.health_check():
        print(f"Classifier API at {api.base_url} is reachable")
    else:
        print(f"Classifier API at {api.base_url} is NOT reachable")
        sys.exit(1)


# ---------------------------------------------------------------------------
# Main
# ---------------------------------------------------------------------------

def main():
    load_dotenv()
    parser = argparse.ArgumentParser(
        description="Cardflo - scan business cards, detect duplicates, track scan quotas",
        epilog="Environment variables: CARDFLO_CLASSIFIER_URL, CARDFLO_CLASSIFIER_KEY, CARDFLO_DB_PATH",
    )
    parser.add_argument(
        "--database", "-d",
        help="Path to SQLite database (default: data/cardflo.db)",
    )
    parser.add_argument(
        "--config", "-c",
        help="Optional YAML settings file",
    )

    subparsers = parser.add_subparsers(dest="command", required=True)

    # --- scan ---
    scan_parser = subparsers.add_parser("scan", help="Capture a card with the camera and save it")
    scan_parser.add_argument("--owner", "-u", required=True, help="Owner id")
    scan_parser.add_argument("--camera", type=int, help="Camera index (default: from settings)")
    scan_parser.add_argument("--manual", action="store_true", help="Capture on Enter instead of automatically")
    scan_parser.add_argument("--back", action="store_true", help="Also capture the back side")
    scan_parser.add_argument("--timeout", type=float, default=60.0, help="Seconds to wait for a card (default: 60)")
    scan_parser.add_argument("--allow-duplicate", action="store_true", help="Save even if a duplicate is found")
    scan_parser.set_defaults(func=scan)

    # --- import ---
    import_parser = subparsers.add_parser("import", help="Recognize card images from files")
    import_parser.add_argument("path", help="Image file or directory")
    import_parser.add_argument("--owner", "-u", required=True, help="Owner id")
    import_parser.add_argument("--allow-duplicate", action="store_true", help="Save even if a duplicate is found")
    import_parser.set_defaults(func=import_images)

    # --- list ---
    list_parser = subparsers.add_parser("list", help="List saved contacts")
    list_parser.add_argument("--owner", "-u", required=True, help="Owner id")
    list_parser.set_defaults(func=list_contacts)

    # --- duplicates ---
    dup_parser = subparsers.add_parser("duplicates", help="Find, dismiss or merge duplicate contacts")
    dup_parser.add_argument("--owner", "-u", required=True, help="Owner id")
    dup_group = dup_parser.add_mutually_exclusive_group()
    dup_group.add_argument("--dismiss", nargs=2, metavar=("ID_A", "ID_B"), help="Mark a pair as not duplicates")
    dup_group.add_argument("--merge", nargs=2, metavar=("KEEP", "DROP"), help="Merge DROP into KEEP")
    dup_parser.set_defaults(func=duplicates)

    # --- usage ---
    usage_parser = subparsers.add_parser("usage", help="Show scan allowance")
    usage_parser.add_argument("--owner", "-u", required=True, help="Owner id")
    usage_parser.set_defaults(func=usage)

    # --- account ---
    account_parser = subparsers.add_parser("account", help="Create or update an account")
    account_parser.add_argument("--owner", "-u", required=True, help="Owner id")
    account_parser.add_argument("--tier", choices=[t.value for t in SubscriptionTier], help="Subscription tier")
    account_parser.add_argument("--admin", action=argparse.BooleanOptionalAction, default=None, help="Administrator flag")
    account_parser.add_argument("--custom-limit", type=int, help="Custom scans per cycle (-1 to clear)")
    account_parser.add_argument("--cycle-end", help="Billing cycle end (ISO date)")
    account_parser.add_argument("--bonus", type=int, help="Grant bonus scans for the current cycle")
    account_parser.set_defaults(func=account)

    # --- health ---
    health_parser = subparsers.add_parser("health", help="Check classifier API connectivity")
    health_parser.set_defaults(func=health_check)

    args = parser.parse_args()
    settings = load_settings(args.config)
    if args.database:
        settings.db_path = args.database
    args.settings = settings
    setup_logging(settings.log_dir, settings.log_level)

    try:
        args.func(args)
    except CardfloError as e:
        print(f"Error: {e.message}")
        sys.exit(1)


if __name__ == "__main__":
    main()
