"""Read-only content tree snapshot: pages, their elements, and task lookup.

A ContentTree is loaded once per evaluation and never mutated afterwards, so
it can be shared by concurrent status workers without locking.
"""

import sqlite3
from collections.abc import Callable, Iterator

from task_engine.core import pages as pages_mod
from task_engine.core import tasks as tasks_mod
from task_engine.core.errors import (
    DependencyNotFound,
    DependencyTypeMismatch,
    UnstableDependencyReference,
)
from task_engine.db.models import Element, ElementRef, Page, Task


class ContentTree:
    def __init__(self, root: Page):
        self.root = root
        self._pages: dict[str, Page] = {}
        self._index(root)

    def _index(self, page: Page):
        stack = [page]
        while stack:
            current = stack.pop()
            if current.path in self._pages:
                raise ValueError(f"Duplicate page in content tree: {current.path}")
            self._pages[current.path] = current
            stack.extend(reversed(current.children))

    def get_page(self, path: str) -> Page | None:
        return self._pages.get(pages_mod.normalize_path(path))

    @property
    def pages(self) -> list[Page]:
        return list(self._pages.values())

    def resolve_element(self, ref: ElementRef) -> Element:
        page = self.get_page(ref.page)
        element = page.element(ref.id) if page is not None else None
        if element is None:
            raise DependencyNotFound(f"doBefore not found: {ref}")
        return element

    def resolve_task(self, ref: ElementRef) -> Task:
        """Resolve a doBefore/doAfter reference to a task by its explicit id."""
        element = self.resolve_element(ref)
        if not isinstance(element, Task):
            raise DependencyTypeMismatch(
                f"doBefore is not a task: {ref} is {type(element).__name__}"
            )
        if self.is_generated(element):
            raise UnstableDependencyReference(
                f"Not allowed to reference task by generated id, set an explicit id on the task: {ref}"
            )
        return element

    def is_generated(self, element: Element) -> bool:
        page = self.get_page(element.page)
        return page is not None and element.id in page.generated_ids

    def traverse_depth_first(
        self,
        root: Page | None = None,
        accessible: Callable[[Page], bool] | None = None,
    ) -> Iterator[Page]:
        """Yield pages depth-first, pre-order, skipping inaccessible child subtrees.

        The starting page itself is always yielded.
        """
        if accessible is None:
            accessible = _is_accessible
        start = root if root is not None else self.root
        stack = [start]
        while stack:
            page = stack.pop()
            yield page
            stack.extend(child for child in reversed(page.children) if accessible(child))

    def iter_tasks(self, root: Page | None = None) -> Iterator[Task]:
        for page in self.traverse_depth_first(root):
            yield from page.tasks

    def users(self) -> list[str]:
        """All users any task in the accessible tree is assigned to, sorted."""
        found = set()
        for task in self.iter_tasks():
            found.update(a.user for a in task.assignments)
        return sorted(found)


def _is_accessible(page: Page) -> bool:
    return page.accessible


def load_tree(db: sqlite3.Connection) -> ContentTree:
    """Build a content tree snapshot from the database."""
    pages_mod.ensure_root_page(db)
    elements = tasks_mod.load_elements(db)
    generated = tasks_mod.generated_ids(db)

    pages: dict[str, Page] = {}
    for row in pages_mod.list_pages(db):
        pages[row.path] = Page(
            path=row.path,
            title=row.title,
            accessible=row.accessible,
            parent=row.parent_path,
            elements=elements.get(row.path, []),
            generated_ids=generated.get(row.path, set()),
        )
    for page in pages.values():
        if page.parent is not None and page.parent in pages:
            pages[page.parent].children.append(page)
    return ContentTree(pages[pages_mod.ROOT_PATH])
