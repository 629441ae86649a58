import pytest

from usagetop.events import Action, handle_key
from usagetop.models import Column, DateRange, GroupBy, Provider, Selection


class TestHandleKey:
    def test_arrows_move_focus_and_cursor(self) -> "None":
        selection, action = handle_key(Selection(), "right")
        assert selection.focused_column is Column.METRIC
        assert action is Action.NONE

        selection, _ = handle_key(selection, "right")
        selection, action = handle_key(selection, "down")
        assert selection.date_range is DateRange.THIRTY_DAYS
        assert action is Action.NONE

    def test_switching_to_unfetched_provider_requests_refresh(self) -> "None":
        selection, action = handle_key(
            Selection(), "down", fetched={Provider.OPENAI}
        )

        assert selection.provider is Provider.ANTHROPIC
        assert action is Action.REFRESH

    def test_switching_to_fetched_provider_uses_store(self) -> "None":
        _, action = handle_key(
            Selection(), "down", fetched={Provider.OPENAI, Provider.ANTHROPIC}
        )

        assert action is Action.NONE

    def test_enter_expands_and_cursor_drills_down(self) -> "None":
        selection = Selection(focused_column=Column.GROUP_BY, group_by=GroupBy.MODEL)

        selection, _ = handle_key(selection, "enter")
        selection, _ = handle_key(selection, "down", candidates=["gpt-4o"])

        assert selection.expanded
        assert selection.drill_down == "gpt-4o"

    @pytest.mark.parametrize("key", ["q", "Q", "esc"])
    def test_quit_keys(self, key: "str") -> "None":
        selection = Selection()

        assert handle_key(selection, key) == (selection, Action.QUIT)

    def test_refresh_key(self) -> "None":
        assert handle_key(Selection(), "r")[1] is Action.REFRESH

    def test_detail_and_scroll_keys(self) -> "None":
        selection, _ = handle_key(Selection(), "d")
        assert selection.show_values

        selection, _ = handle_key(selection, "l")
        selection, _ = handle_key(selection, "l")
        selection, _ = handle_key(selection, "h")
        assert selection.scroll == 1

    def test_unknown_key_is_ignored(self) -> "None":
        selection = Selection()

        assert handle_key(selection, "x") == (selection, Action.NONE)
