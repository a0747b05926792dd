"""
Batch reveal over a computed result list.

Search pages show the first batch of results and let the user load more in
fixed-size steps, so only the visible prefix has to be rendered.
"""

from typing import Generic, List, Sequence, TypeVar

DEFAULT_ITEMS_PER_PAGE = 24

T = TypeVar('T')


class ResultPaginator(Generic[T]):
    """
    Growing visible window over an ordered result list.

    The window starts at one page, grows by one page per reveal_more()
    call up to the list length, and shrinks back to one page on collapse().
    """

    def __init__(self, results: Sequence[T], items_per_page: int = DEFAULT_ITEMS_PER_PAGE):
        if isinstance(items_per_page, bool) or not isinstance(items_per_page, int) or items_per_page <= 0:
            raise ValueError(f"items_per_page must be a positive integer, got {items_per_page!r}")
        self.items_per_page = items_per_page
        self._results: List[T] = []
        self.visible_count = 0
        self.reset(results)

    def reset(self, results: Sequence[T]):
        """Install a new result list and go back to the first page."""
        self._results = list(results)
        self.visible_count = min(self.items_per_page, len(self._results))

    @property
    def total_results(self) -> int:
        return len(self._results)

    @property
    def has_more(self) -> bool:
        return self.visible_count < self.total_results

    @property
    def can_collapse(self) -> bool:
        """True once more than one page has been revealed."""
        return self.visible_count > self.items_per_page

    @property
    def next_batch_size(self) -> int:
        """How many items the next reveal_more() call would add."""
        return min(self.items_per_page, self.total_results - self.visible_count)

    def reveal_more(self) -> int:
        """Show one more page. Returns the new visible count."""
        self.visible_count = min(self.visible_count + self.items_per_page, self.total_results)
        return self.visible_count

    def collapse(self) -> int:
        """Go back to a single page. Returns the new visible count."""
        self.visible_count = min(self.items_per_page, self.total_results)
        return self.visible_count

    def visible_slice(self) -> List[T]:
        return self._results[:self.visible_count]

    def __len__(self) -> int:
        return self.visible_count
