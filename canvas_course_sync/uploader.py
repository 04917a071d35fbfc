"""
Upload orchestrator: pushes a parsed course document to Canvas.

A run goes through four strictly sequential phases:

1. Snapshot: fetch the Canvas copy of every module and item whose identity
   the document already carries. A failed fetch means "treat as new".
2. Materialize: walk modules and items in document order, classify each one
   with the ContentComparator and issue only the create/update calls needed.
   Every content item registers its address for cross-reference resolution.
3. Resolve links: re-render content that contains [[Type:Title]] markers now
   that every target has an address, and push it again if anything changed.
4. Reconcile ordering: currently nothing to do; items are created in
   document order.

A failure on one item is recorded in UploadStats and the run moves on.
"""

import logging
from dataclasses import dataclass, field
from typing import Any, Optional, Union

from .api import CanvasAPI, format_timestamp
from .comparator import ContentComparator
from .errors import MissingCourseIdError
from .link_resolver import LINK_PATTERN, LinkResolver
from .models import (
    Action,
    Assignment,
    ChangeDetection,
    Discussion,
    ExternalLink,
    File,
    ItemKind,
    ItemPreview,
    Module,
    ModulePreview,
    Page,
    TextHeader,
    UploadStats,
    remote_id,
    rich_text,
)
from .normalizer import markdown_to_html

log = logging.getLogger(__name__)

MODULE = "module"

# Canvas module item types by kind
MODULE_ITEM_TYPES = {
    ItemKind.PAGE: "Page",
    ItemKind.ASSIGNMENT: "Assignment",
    ItemKind.DISCUSSION: "Discussion",
    ItemKind.HEADER: "SubHeader",
    ItemKind.LINK: "ExternalUrl",
    ItemKind.FILE: "File",
}

# Comparator field names that differ from the Canvas parameter
DISCUSSION_FIELDS = {"points": "points_possible"}


def cleared_fields(result: ChangeDetection, **local_values) -> list[str]:
    """Changed fields the document no longer sets; Canvas must be told to empty them."""
    return [name for name, value in local_values.items()
            if value is None and name in result.changed_fields]


class RemoteSnapshot:
    """Canvas data fetched at the start of a run, keyed by (kind, id)."""

    def __init__(self):
        self.entries: dict[tuple[str, str], dict] = {}
        self.failures: list[tuple[str, str, str]] = []  # (kind, title, error)

    @staticmethod
    def _key(kind: Union[ItemKind, str], identity) -> tuple[str, str]:
        if isinstance(kind, ItemKind):
            kind = kind.value
        return kind, str(identity)

    def put(self, kind: Union[ItemKind, str], identity, data: dict):
        self.entries[self._key(kind, identity)] = data

    def get(self, kind: Union[ItemKind, str], identity) -> Optional[dict]:
        if identity is None:
            return None
        return self.entries.get(self._key(kind, identity))

    def __len__(self):
        return len(self.entries)


@dataclass
class PendingLinks:
    """A created/updated item whose content still holds cross-reference markers."""
    kind: ItemKind
    title: str
    identity: Any
    content: str


@dataclass
class SyncRun:
    """State owned by a single upload or preview run."""
    snapshot: RemoteSnapshot = field(default_factory=RemoteSnapshot)
    resolver: LinkResolver = field(default_factory=LinkResolver)
    pending: list[PendingLinks] = field(default_factory=list)
    stats: UploadStats = field(default_factory=UploadStats)


def _needs_course_files(modules: list[Module]) -> bool:
    """True when the document has File items or [[File:...]] markers."""
    for module in modules:
        for item in module.items:
            if item.kind is ItemKind.FILE:
                return True
            for match in LINK_PATTERN.finditer(rich_text(item)):
                if match.group(1).lower() == ItemKind.FILE.value:
                    return True
    return False


class CourseUploader:
    """Synchronizes parsed modules with a Canvas course."""

    def __init__(self, api: CanvasAPI):
        self.api = api
        self.comparator = ContentComparator()

    def _require_course(self):
        if not self.api.course_id:
            raise MissingCourseIdError()

    # =========================================================================
    # Public entry points
    # =========================================================================

    def generate_preview(self, modules: list[Module]) -> list[ModulePreview]:
        """Classify everything without mutating Canvas (dry run)."""
        self._require_course()
        run = SyncRun()
        self._fetch_snapshot(modules, run)

        previews = []
        for module in modules:
            module_result = self.comparator.compare_module(
                module, run.snapshot.get(MODULE, module.canvas_module_id)
            )
            items = []
            for item in module.items:
                result = self._classify(item, run.snapshot)
                items.append(ItemPreview(
                    kind=item.kind,
                    title=item.title,
                    action=result.action,
                    changed_fields=result.changed_fields,
                    metadata=self._preview_metadata(item),
                ))
            previews.append(ModulePreview(
                title=module.title,
                action=module_result.action,
                changed_fields=module_result.changed_fields,
                items=items,
            ))
        return previews

    def upload(self, modules: list[Module]) -> UploadStats:
        """Run all phases and return the aggregate result.

        Only a missing course id aborts the run; every other failure ends up
        in ``stats.errors``.
        """
        self._require_course()
        run = SyncRun()

        self._fetch_snapshot(modules, run)
        self._materialize(modules, run)
        self._resolve_links(run)
        self._reconcile_ordering(modules, run)

        log.info(run.stats.summary())
        return run.stats

    # =========================================================================
    # Phase 1: Snapshot
    # =========================================================================

    def _fetch_snapshot(self, modules: list[Module], run: SyncRun):
        """Fetch existing Canvas data for all items with IDs."""
        run.resolver.clear()
        snapshot = run.snapshot

        if _needs_course_files(modules):
            self._register_course_files(run)

        for module in modules:
            if module.canvas_module_id:
                self._fetch_one(snapshot, MODULE, module.title, module.canvas_module_id,
                                self.api.get_module)

            for item in module.items:
                identity = remote_id(item)
                if identity is None:
                    continue
                if item.kind is ItemKind.PAGE:
                    self._fetch_one(snapshot, item.kind, item.title, identity, self.api.get_page)
                elif item.kind is ItemKind.ASSIGNMENT:
                    self._fetch_one(snapshot, item.kind, item.title, identity, self.api.get_assignment)
                elif item.kind is ItemKind.DISCUSSION:
                    self._fetch_one(snapshot, item.kind, item.title, identity, self.api.get_discussion)

        log.info(f"Fetched {len(snapshot)} existing Canvas object(s) for comparison")
        if snapshot.failures:
            log.warning(f"Failed to fetch {len(snapshot.failures)} object(s); they will be created:")
            for kind, title, error in snapshot.failures:
                log.warning(f"  - [{kind}] \"{title}\": {error}")

    @staticmethod
    def _fetch_one(snapshot: RemoteSnapshot, kind, title: str, identity, fetch):
        try:
            snapshot.put(kind, identity, fetch(identity))
        except Exception as e:
            # Stale or unreachable id: the comparator will see no data and create
            kind_name = kind.value if isinstance(kind, ItemKind) else kind
            snapshot.failures.append((kind_name, title, str(e)))

    def _register_course_files(self, run: SyncRun):
        """Make course files available to [[File:...]] markers."""
        try:
            files = self.api.get_files()
        except Exception as e:
            log.warning(f"Could not fetch course files, file links will not resolve: {e}")
            return

        log.info(f"Found {len(files)} files in course")
        for file_data in files:
            address = self.api.file_url(file_data["id"])
            for name in (file_data.get("display_name"), file_data.get("filename")):
                if name:
                    run.resolver.register(ItemKind.FILE, name, address)

    # =========================================================================
    # Phase 2: Materialize
    # =========================================================================

    def _classify(self, item, snapshot: RemoteSnapshot) -> ChangeDetection:
        if item.kind in (ItemKind.PAGE, ItemKind.ASSIGNMENT, ItemKind.DISCUSSION):
            return self.comparator.compare_item(item, snapshot.get(item.kind, remote_id(item)))
        return self.comparator.compare_item(item, None)

    def _materialize(self, modules: list[Module], run: SyncRun):
        for position, module in enumerate(modules, start=1):
            log.info(f"[Module {position}] {module.title}")
            try:
                module_id = self._upload_module(module, position, run)
            except Exception as e:
                # Without a module id there is nowhere to attach its items
                log.error(f"  ✗ Module failed: {e}")
                run.stats.add_error(MODULE, module.title, e)
                continue

            for item in module.items:
                try:
                    self._upload_item(item, module_id, run)
                except Exception as e:
                    log.error(f"  ✗ [{item.kind.value}] {item.title}: {e}")
                    run.stats.add_error(item.kind.value, item.title, e)

    def _upload_module(self, module: Module, position: int, run: SyncRun) -> int:
        result = self.comparator.compare_module(module, run.snapshot.get(MODULE, module.canvas_module_id))

        if result.action is Action.CREATE:
            created = self.api.create_module(module.title, position=position)
            module_id = created["id"]
            log.info(f"  ✓ Created module (ID: {module_id})")
        elif result.action is Action.UPDATE:
            module_id = module.canvas_module_id
            self.api.update_module(module_id, name=module.title)
            log.info(f"  ✓ Updated module (ID: {module_id}, changed: {', '.join(result.changed_fields)})")
        else:
            module_id = module.canvas_module_id
            log.info(f"  • Module (ID: {module_id}, no changes, skipped)")

        run.stats.record(result.action)
        return module_id

    def _upload_item(self, item, module_id: int, run: SyncRun):
        if item.kind is ItemKind.PAGE:
            self._upload_page(item, module_id, run)
        elif item.kind is ItemKind.ASSIGNMENT:
            self._upload_assignment(item, module_id, run)
        elif item.kind is ItemKind.DISCUSSION:
            self._upload_discussion(item, module_id, run)
        elif item.kind is ItemKind.HEADER:
            self._upload_header(item, module_id, run)
        elif item.kind is ItemKind.LINK:
            self._upload_link(item, module_id, run)
        elif item.kind is ItemKind.FILE:
            self._upload_file(item, run)
        else:
            raise ValueError(f"Unknown item kind: {item.kind!r}")

    def _after_write(self, item, identity, address: str, run: SyncRun):
        """Register the item's address and queue it if its content has links."""
        run.resolver.register(item.kind, item.title, address)
        content = rich_text(item)
        if run.resolver.has_links(content):
            run.pending.append(PendingLinks(item.kind, item.title, identity, content))

    def _attach(self, item, module_id: int, **kwargs):
        """Add a newly created content object to its module."""
        if item.canvas_module_item_id:
            return
        self.api.create_module_item(module_id, MODULE_ITEM_TYPES[item.kind], title=item.title, **kwargs)

    def _report(self, item, result: ChangeDetection, extra: str = ""):
        if result.action is Action.CREATE:
            log.info(f"  ✓ [{item.kind.value}] {item.title}{extra} (created)")
        elif result.action is Action.UPDATE:
            log.info(f"  ✓ [{item.kind.value}] {item.title}{extra} (updated: {', '.join(result.changed_fields)})")
        else:
            log.info(f"  • [{item.kind.value}] {item.title}{extra} (no changes, skipped)")

    def _upload_page(self, page: Page, module_id: int, run: SyncRun):
        result = self._classify(page, run.snapshot)

        if result.action is Action.CREATE:
            created = self.api.create_page(page.title, markdown_to_html(page.body))
            slug = created["url"]
            self._after_write(page, slug, created.get("html_url") or self.api.page_url(slug), run)
            self._attach(page, module_id, page_url=slug)
        elif result.action is Action.UPDATE:
            slug = page.canvas_page_id
            updated = self.api.update_page(slug, body=markdown_to_html(page.body), title=page.title)
            self._after_write(page, slug, updated.get("html_url") or self.api.page_url(slug), run)
        else:
            existing = run.snapshot.get(ItemKind.PAGE, page.canvas_page_id) or {}
            run.resolver.register(page.kind, page.title,
                                  existing.get("html_url") or self.api.page_url(page.canvas_page_id))

        run.stats.record(result.action)
        self._report(page, result)

    def _upload_assignment(self, assignment: Assignment, module_id: int, run: SyncRun):
        result = self._classify(assignment, run.snapshot)
        grading_type = assignment.grading_type.value if assignment.grading_type else None

        if result.action is Action.CREATE:
            submission_types = [st.value for st in assignment.submission_types or []] or None
            created = self.api.create_assignment(
                name=assignment.title,
                description=markdown_to_html(assignment.description),
                points_possible=assignment.points,
                due_at=assignment.due_at,
                grading_type=grading_type,
                submission_types=submission_types,
            )
            assignment_id = created["id"]
            self._after_write(assignment, assignment_id,
                              created.get("html_url") or self.api.assignment_url(assignment_id), run)
            self._attach(assignment, module_id, content_id=assignment_id)
        elif result.action is Action.UPDATE:
            assignment_id = assignment.canvas_assignment_id
            updated = self.api.update_assignment(
                assignment_id,
                name=assignment.title,
                description=markdown_to_html(assignment.description),
                points_possible=assignment.points,
                due_at=assignment.due_at,
                grading_type=grading_type,
                clear=cleared_fields(result, points_possible=assignment.points, due_at=assignment.due_at),
            )
            self._after_write(assignment, assignment_id,
                              updated.get("html_url") or self.api.assignment_url(assignment_id), run)
        else:
            existing = run.snapshot.get(ItemKind.ASSIGNMENT, assignment.canvas_assignment_id) or {}
            run.resolver.register(assignment.kind, assignment.title,
                                  existing.get("html_url")
                                  or self.api.assignment_url(assignment.canvas_assignment_id))

        run.stats.record(result.action)
        due_str = f" (due: {assignment.due_at.strftime('%b %d')})" if assignment.due_at else ""
        self._report(assignment, result, due_str)

    def _discussion_fields(self, discussion: Discussion) -> dict:
        return dict(
            title=discussion.title,
            message=markdown_to_html(discussion.message),
            require_initial_post=discussion.require_initial_post,
            discussion_type="threaded" if discussion.threaded else "side_comment",
            graded=discussion.graded,
            points_possible=discussion.points if discussion.graded else None,
            due_at=discussion.due_at if discussion.graded else None,
        )

    def _upload_discussion(self, discussion: Discussion, module_id: int, run: SyncRun):
        result = self._classify(discussion, run.snapshot)

        if result.action is Action.CREATE:
            created = self.api.create_discussion(**self._discussion_fields(discussion))
            topic_id = created["id"]
            self._after_write(discussion, topic_id,
                              created.get("html_url") or self.api.discussion_url(topic_id), run)
            self._attach(discussion, module_id, content_id=topic_id)
        elif result.action is Action.UPDATE:
            topic_id = discussion.canvas_discussion_id
            clear = cleared_fields(result, points=discussion.points, due_at=discussion.due_at)
            updated = self.api.update_discussion(
                topic_id,
                clear=[DISCUSSION_FIELDS.get(name, name) for name in clear],
                **self._discussion_fields(discussion),
            )
            self._after_write(discussion, topic_id,
                              updated.get("html_url") or self.api.discussion_url(topic_id), run)
        else:
            existing = run.snapshot.get(ItemKind.DISCUSSION, discussion.canvas_discussion_id) or {}
            run.resolver.register(discussion.kind, discussion.title,
                                  existing.get("html_url")
                                  or self.api.discussion_url(discussion.canvas_discussion_id))

        run.stats.record(result.action)
        self._report(discussion, result)

    def _upload_header(self, header: TextHeader, module_id: int, run: SyncRun):
        result = self._classify(header, run.snapshot)
        if result.action is Action.CREATE:
            self.api.create_module_item(module_id, MODULE_ITEM_TYPES[header.kind], title=header.title)
        run.stats.record(result.action)
        self._report(header, result)

    def _upload_link(self, link: ExternalLink, module_id: int, run: SyncRun):
        result = self._classify(link, run.snapshot)
        if result.action is Action.CREATE:
            self.api.create_module_item(
                module_id,
                MODULE_ITEM_TYPES[link.kind],
                title=link.title,
                external_url=link.url,
                new_tab=True,
            )
        run.stats.record(result.action)
        self._report(link, result, f" → {link.url}")

    def _upload_file(self, file: File, run: SyncRun):
        # Canvas file content cannot be uploaded through this tool
        if file.canvas_file_id:
            run.resolver.register(file.kind, file.title, self.api.file_url(file.canvas_file_id))
        run.stats.record(Action.SKIP)
        log.info(f"  • [file] {file.title} (files are never uploaded, skipped)")

    # =========================================================================
    # Phase 3: Resolve links
    # =========================================================================

    def _resolve_links(self, run: SyncRun):
        """Push content again with [[Type:Title]] markers turned into links."""
        if not run.pending:
            log.info("No internal links to resolve.")
            return

        for pending in run.pending:
            try:
                resolved, rewritten = run.resolver.resolve(markdown_to_html(pending.content))
                if not rewritten:
                    continue

                if pending.kind is ItemKind.PAGE:
                    self.api.update_page(pending.identity, body=resolved)
                elif pending.kind is ItemKind.ASSIGNMENT:
                    self.api.update_assignment(pending.identity, description=resolved)
                elif pending.kind is ItemKind.DISCUSSION:
                    self.api.update_discussion(pending.identity, message=resolved)
                run.stats.link_updates += 1
                log.info(f"  ✓ Updated links in {pending.kind.value}: {pending.title}")
            except Exception as e:
                log.error(f"  ✗ Link resolution failed for {pending.kind.value} {pending.title}: {e}")
                run.stats.add_error(pending.kind.value, f"Link resolution for {pending.title}", e)

    # =========================================================================
    # Phase 4: Reconcile ordering
    # =========================================================================

    def _reconcile_ordering(self, modules: list[Module], run: SyncRun):
        """Items are attached in document order, so there is nothing to move yet."""
        return None

    # =========================================================================
    # Preview helpers
    # =========================================================================

    @staticmethod
    def _preview_metadata(item) -> dict:
        metadata = {}
        if item.kind is ItemKind.ASSIGNMENT:
            if item.points is not None:
                metadata["points"] = item.points
            if item.due_at:
                metadata["due"] = format_timestamp(item.due_at)
            if item.grading_type:
                metadata["grading_type"] = item.grading_type.value
        elif item.kind is ItemKind.DISCUSSION:
            if item.require_initial_post is not None:
                metadata["require_initial_post"] = item.require_initial_post
            if item.graded and item.points is not None:
                metadata["points"] = item.points
        elif item.kind is ItemKind.LINK:
            metadata["url"] = item.url
        elif item.kind is ItemKind.FILE and item.filename:
            metadata["filename"] = item.filename
        return metadata
