"""View state reconciliation for the message list."""

from dataclasses import dataclass, field, replace
from typing import Awaitable, Callable, List, Optional, Sequence

from termail.core.models.message import CachedMessage

MIN_PAGE_SIZE = 5
# Rows taken by the header, status line and borders
RESERVED_ROWS = 4

FetchPage = Callable[[str, int, int], Awaitable[Sequence[CachedMessage]]]


def page_size_for_height(height: int) -> int:
    """Number of messages that fit on one screen of the given height."""
    return max(height - RESERVED_ROWS, MIN_PAGE_SIZE)


@dataclass
class ViewState:
    """In-memory projection of one label's message list.

    Attributes:
        label_id: Label the list belongs to
        messages: Messages in display order
        selected: Index of the selected message, None when the list is empty
        scroll_offset: Index of the first visible row
        page_size: Rows per screen, also the load_more batch size
        exhausted: True once a load_more returned nothing new
    """

    label_id: str
    messages: List[CachedMessage] = field(default_factory=list)
    selected: Optional[int] = None
    scroll_offset: int = 0
    page_size: int = 20
    exhausted: bool = False

    @property
    def selected_message(self) -> Optional[CachedMessage]:
        if self.selected is None or not self.messages:
            return None
        return self.messages[self.selected]

    @property
    def selected_id(self) -> Optional[str]:
        message = self.selected_message
        return message.id if message else None

    @property
    def can_load_more(self) -> bool:
        return len(self.messages) >= self.page_size and not self.exhausted

    def visible(self) -> List[CachedMessage]:
        """Messages currently on screen."""
        return self.messages[self.scroll_offset : self.scroll_offset + self.page_size]


def _scroll_for(selected: Optional[int], scroll_offset: int, page_size: int) -> int:
    """Smallest adjustment of scroll_offset that keeps selected on screen."""
    if selected is None:
        return 0
    if selected < scroll_offset:
        return selected
    if selected >= scroll_offset + page_size:
        return selected - page_size + 1
    return scroll_offset


def reconcile(view: ViewState, new_messages: Sequence[CachedMessage]) -> ViewState:
    """Replace the list while keeping the selection on the same message.

    The selected message is found again by id. If it is gone the first
    message is selected, or nothing when the new list is empty.
    """
    selected_id = view.selected_id
    items = list(new_messages)

    if not items:
        selected = None
    else:
        selected = 0
        if selected_id is not None:
            for index, message in enumerate(items):
                if message.id == selected_id:
                    selected = index
                    break

    return replace(
        view,
        messages=items,
        selected=selected,
        scroll_offset=_scroll_for(selected, view.scroll_offset, view.page_size),
        exhausted=False,
    )


def extend(view: ViewState, page: Sequence[CachedMessage]) -> ViewState:
    """Append a further page, skipping messages already in the list.

    A page that adds nothing marks the view exhausted.
    """
    known = {message.id for message in view.messages}
    fresh = [message for message in page if message.id not in known]

    if not fresh:
        return replace(view, exhausted=True)

    items = view.messages + fresh
    selected = view.selected if view.selected is not None else 0

    return replace(view, messages=items, selected=selected, exhausted=False)


async def load_more(view: ViewState, fetch_page: FetchPage) -> ViewState:
    """Fetch the page following the current list and append it."""
    if view.exhausted:
        return view

    page = await fetch_page(view.label_id, len(view.messages), view.page_size)
    return extend(view, page)


def select_next(view: ViewState) -> ViewState:
    if view.selected is None or view.selected + 1 >= len(view.messages):
        return view
    selected = view.selected + 1
    return replace(
        view,
        selected=selected,
        scroll_offset=_scroll_for(selected, view.scroll_offset, view.page_size),
    )


def select_previous(view: ViewState) -> ViewState:
    if not view.selected:
        return view
    selected = view.selected - 1
    return replace(
        view,
        selected=selected,
        scroll_offset=_scroll_for(selected, view.scroll_offset, view.page_size),
    )


def resize(view: ViewState, height: int) -> ViewState:
    """Adapt the page size to a new terminal height."""
    page_size = page_size_for_height(height)
    return replace(
        view,
        page_size=page_size,
        scroll_offset=_scroll_for(view.selected, view.scroll_offset, page_size),
    )


def select_id(view: ViewState, message_id: str) -> ViewState:
    """Select the message with ``message_id``; unknown ids leave the view as is."""
    for index, message in enumerate(view.messages):
        if message.id == message_id:
            return replace(
                view,
                selected=index,
                scroll_offset=_scroll_for(index, view.scroll_offset, view.page_size),
            )
    return view
