"""
Command line entry point.

Usage:
    canvas-course-sync upload course.md [--dry-run] [--yes] [--reset-token]
    canvas-course-sync preview course.md
    canvas-course-sync download [course.md] [--url URL] [--course-id ID]
    canvas-course-sync template assignment "Homework 1" --points 10
"""

import argparse
import logging
import sys
from typing import Optional

from . import templates
from .api import CanvasAPI, CanvasAPIError
from .config import CourseMetadata, resolve_config, split_course_url
from .errors import CourseSyncError
from .formatter import CourseExporter
from .models import Action, ModulePreview, UploadStats
from .parser import parse_course
from .uploader import CourseUploader

log = logging.getLogger(__name__)

BANNER = "=" * 60

ACTION_SYMBOLS = {
    Action.CREATE: "+",
    Action.UPDATE: "~",
    Action.SKIP: "•",
}


def _prompt(message: str) -> str:
    return input(message).strip()


def _read_document(path: str) -> Optional[str]:
    try:
        with open(path, 'r', encoding='utf-8') as f:
            return f.read()
    except FileNotFoundError:
        print(f"\nError: File '{path}' not found.")
        return None


# =============================================================================
# Reporting
# =============================================================================

def print_preview(previews: list[ModulePreview]):
    """Show what an upload would do, module by module."""
    print("\n" + BANNER)
    print("PREVIEW")
    print(BANNER)

    counts = {action: 0 for action in Action}
    for i, module in enumerate(previews, start=1):
        counts[module.action] += 1
        changed = f": {', '.join(module.changed_fields)}" if module.changed_fields else ""
        print(f"\n[Module {i}] {module.title} ({module.action.value}{changed})")

        for item in module.items:
            counts[item.action] += 1
            changed = f": {', '.join(item.changed_fields)}" if item.changed_fields else ""
            print(f"  {ACTION_SYMBOLS[item.action]} [{item.kind.value}] {item.title} ({item.action.value}{changed})")
            if item.metadata:
                details = ", ".join(f"{key}: {value}" for key, value in item.metadata.items())
                print(f"      {details}")

    print(f"\n{counts[Action.CREATE]} to create, {counts[Action.UPDATE]} to update, "
          f"{counts[Action.SKIP]} unchanged")


def print_report(stats: UploadStats):
    print("\n" + BANNER)
    print("COMPLETE!" if stats.succeeded else "COMPLETED WITH ERRORS")
    print(BANNER)
    print(stats.summary())
    if stats.link_updates:
        print(f"Resolved internal links in {stats.link_updates} item(s)")
    if stats.errors:
        print("\nErrors:")
        for error in stats.errors:
            print(f"  ✗ {error}")


# =============================================================================
# Commands
# =============================================================================

def cmd_upload(args) -> int:
    content = _read_document(args.file)
    if content is None:
        return 1

    print(f"\nParsing {args.file}...")
    parsed = parse_course(content)
    item_count = sum(len(m.items) for m in parsed.modules)
    print(f"Found {len(parsed.modules)} modules with {item_count} items.")
    if parsed.warnings:
        print(f"  ({len(parsed.warnings)} warning(s) while parsing, see above)")

    config = resolve_config(parsed.metadata, prompt=_prompt, reset_token=args.reset_token)

    print("\n" + BANNER)
    print("Canvas Course Sync")
    print(f"Course: {config.course_url}")
    print(BANNER)

    api = CanvasAPI(config.canvas_url, config.course_id, config.api_token)
    uploader = CourseUploader(api)

    print_preview(uploader.generate_preview(parsed.modules))

    if args.dry_run:
        print("\n" + BANNER)
        print("This was a dry run. No changes were made.")
        print("Remove --dry-run to apply these changes to Canvas.")
        print(BANNER)
        return 0

    if not args.yes:
        confirm = input("\nProceed? (yes/no): ").strip().lower()
        if confirm not in ("yes", "y"):
            print("Aborted.")
            return 0

    stats = uploader.upload(parsed.modules)
    print_report(stats)
    if stats.created:
        # New ids are only recorded in Canvas; a fresh download picks them up
        print("\nNew items were created. Run 'canvas-course-sync download' before the next upload")
        print("so the document carries their Canvas ids.")
    return 0 if stats.succeeded else 1


def cmd_download(args) -> int:
    canvas_url, url_course_id = split_course_url(args.url) if args.url else (None, None)
    metadata = CourseMetadata(course_id=args.course_id or url_course_id, canvas_url=canvas_url)
    config = resolve_config(metadata, prompt=_prompt, reset_token=args.reset_token)

    print(f"\nCourse: {config.course_url}")
    print(f"Output: {args.output}")
    print(BANNER)

    api = CanvasAPI(config.canvas_url, config.course_id, config.api_token)
    markdown = CourseExporter(api).export()

    with open(args.output, 'w', encoding='utf-8') as f:
        f.write(markdown)

    print("\n" + BANNER)
    print(f"SUCCESS! Course exported to: {args.output}")
    print(BANNER)
    print("\nYou can now:")
    print(f"  1. Edit {args.output} in Obsidian or any text editor")
    print(f"  2. Re-upload with: canvas-course-sync upload {args.output}")
    return 0


def cmd_template(args) -> int:
    kind = args.kind
    if kind == "module":
        snippet = templates.build_module(args.title)
    elif kind == "header":
        snippet = templates.build_header(args.title)
    elif kind == "page":
        snippet = templates.build_page(args.title)
    elif kind == "link":
        snippet = templates.build_link(args.title, args.url or "")
    elif kind == "file":
        snippet = templates.build_file(args.title, args.filename or args.title)
    elif kind == "assignment":
        snippet = templates.build_assignment(
            args.title,
            points=args.points,
            due_date=args.due_date,
            due_time=args.due_time,
            grade_display=args.grade_display,
            submission_types=args.submission_types,
        )
    elif kind == "discussion":
        snippet = templates.build_discussion(
            args.title,
            require_initial_post=args.require_initial_post,
            threaded=False if args.not_threaded else None,
            graded=args.graded,
            points=args.points,
            due_date=args.due_date,
            due_time=args.due_time,
            grade_display=args.grade_display,
        )
    else:
        snippet = templates.build_internal_link(args.target_type, args.title)

    print(snippet, end="" if snippet.endswith("\n") else "\n")
    return 0


def build_parser() -> argparse.ArgumentParser:
    parser = argparse.ArgumentParser(
        prog="canvas-course-sync",
        description="Synchronize a markdown course document with Canvas LMS.",
    )
    parser.add_argument("-v", "--verbose", action="store_true", help="Show debug output")
    subparsers = parser.add_subparsers(dest="command", required=True)

    upload = subparsers.add_parser("upload", help="Create/update Canvas content from a markdown file")
    upload.add_argument("file")
    upload.add_argument("--dry-run", action="store_true", help="Preview changes without applying them")
    upload.add_argument("-y", "--yes", action="store_true", help="Do not ask for confirmation")
    upload.add_argument("--reset-token", action="store_true",
                        help="Force re-prompt for API token and update Keychain")
    upload.set_defaults(func=cmd_upload)

    preview = subparsers.add_parser("preview", help="Same as upload --dry-run")
    preview.add_argument("file")
    preview.add_argument("--reset-token", action="store_true")
    preview.set_defaults(func=cmd_upload, dry_run=True, yes=False)

    download = subparsers.add_parser("download", help="Export a Canvas course to markdown")
    download.add_argument("output", nargs="?", default="course_content.md")
    download.add_argument("--url", help="Canvas URL or course URL")
    download.add_argument("--course-id")
    download.add_argument("--reset-token", action="store_true")
    download.set_defaults(func=cmd_download)

    template = subparsers.add_parser("template", help="Print a snippet for a new module or item")
    template.add_argument("kind", choices=[
        "module", "header", "page", "link", "file", "assignment", "discussion", "internal-link",
    ])
    template.add_argument("title")
    template.add_argument("--url")
    template.add_argument("--filename")
    template.add_argument("--points", type=float)
    template.add_argument("--due-date", help="YYYY-MM-DD")
    template.add_argument("--due-time", help="e.g. 11:59pm")
    template.add_argument("--grade-display")
    template.add_argument("--submission-types")
    template.add_argument("--require-initial-post", action="store_true", default=None)
    template.add_argument("--not-threaded", action="store_true")
    template.add_argument("--graded", action="store_true", default=None)
    template.add_argument("--target-type", default="Page",
                          help="Item type for internal-link (Page, Assignment, Discussion, File)")
    template.set_defaults(func=cmd_template)

    return parser


def main(argv: Optional[list[str]] = None) -> int:
    args = build_parser().parse_args(argv)

    logging.basicConfig(
        level=logging.DEBUG if args.verbose else logging.INFO,
        format="%(message)s",
    )
    # requests/urllib3 chatter is only useful when debugging
    logging.getLogger("urllib3").setLevel(logging.WARNING)

    try:
        return args.func(args)
    except CanvasAPIError as e:
        print(f"\nError: API request failed: {e}")
        return 1
    except CourseSyncError as e:
        print(f"\nError: {e}")
        return 1
    except KeyboardInterrupt:
        print("\nAborted.")
        return 130


if __name__ == "__main__":
    sys.exit(main())
