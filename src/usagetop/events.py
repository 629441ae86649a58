import enum
from collections.abc import Collection, Sequence

from usagetop import navigation
from usagetop.models import Provider, Selection


class Action(enum.Enum):
    NONE = "none"
    REFRESH = "refresh"
    QUIT = "quit"


def handle_key(
    selection: "Selection",
    key: "str",
    candidates: "Sequence[str]" = (),
    fetched: "Collection[Provider]" = (),
) -> "tuple[Selection, Action]":
    """
    maps a key name to a navigation transition. `candidates` are the
    drill-down targets of the current grouping and `fetched` the
    providers that already have data; switching to any other
    provider asks for a refresh.
    """
    key = key.lower()

    if key in ("left", "right"):
        delta = -1 if key == "left" else 1
        return navigation.move_column(selection, delta), Action.NONE

    if key in ("up", "down"):
        delta = -1 if key == "up" else 1
        updated = navigation.move_cursor(selection, delta, candidates)
        if updated.provider is not selection.provider and updated.provider not in fetched:
            return updated, Action.REFRESH
        return updated, Action.NONE

    if key == "enter":
        return navigation.toggle_expanded(selection), Action.NONE
    if key == "d":
        return navigation.toggle_values(selection), Action.NONE
    if key in ("h", "l"):
        delta = -1 if key == "h" else 1
        return navigation.scroll_chart(selection, delta), Action.NONE
    if key == "r":
        return selection, Action.REFRESH
    if key in ("q", "esc"):
        return selection, Action.QUIT

    return selection, Action.NONE
