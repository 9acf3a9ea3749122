import json

from conftest import sample_options
from shopagent.session import (
    Option,
    Session,
    get_checkout_url_for_option,
    normalize_ships_to,
    summarize_options_for_planner,
    update_session_from_search_result,
)


def _options_json(n=2):
    return [o.model_dump() for o in sample_options(n)]


def test_wrapped_result_updates_session():
    raw = json.dumps({"ok": True, "data": {"ships_to": "usa", "query": "widget", "options": _options_json(2)}})
    session = Session()

    assert update_session_from_search_result(session, raw) is True
    assert session.last_ships_to == "US"
    assert session.last_query == "widget"
    assert [o.option_index for o in session.last_options] == [1, 2]
    assert session.last_options[1].checkout_url == "https://shop.example.com/cart/2002:1"


def test_flat_result_updates_session():
    raw = json.dumps({"ok": True, "ships_to": "FR", "query": "livre", "options": _options_json(1)})
    session = Session()
    assert update_session_from_search_result(session, raw) is True
    assert session.last_ships_to == "FR"
    assert len(session.last_options) == 1


def test_new_search_clears_selection(session_with_options):
    session_with_options.selected_option_index = 2
    session_with_options.selected_quantity = 3

    raw = json.dumps({"ok": True, "data": {"query": "other", "options": _options_json(1)}})
    update_session_from_search_result(session_with_options, raw)

    assert session_with_options.selected_option_index is None
    assert session_with_options.selected_quantity is None
    # ships_to missing from the result keeps the previous destination
    assert session_with_options.last_ships_to == "US"


def test_empty_options_replace_previous_results(session_with_options):
    session_with_options.selected_option_index = 1
    raw = json.dumps({"ok": True, "data": {"query": "nothing", "options": []}})

    assert update_session_from_search_result(session_with_options, raw) is True
    assert session_with_options.last_options == []
    assert session_with_options.selected_option_index is None


def test_failures_and_garbage_leave_session_untouched(session_with_options):
    before = session_with_options.model_copy(deep=True)
    failure = json.dumps({"ok": False, "error": {"code": "MCP_ERROR", "message": "down"}})

    assert update_session_from_search_result(session_with_options, failure) is False
    assert update_session_from_search_result(session_with_options, "not json") is False
    assert update_session_from_search_result(session_with_options, json.dumps({"ok": True, "data": {}})) is False
    assert update_session_from_search_result(session_with_options, json.dumps({"options": []})) is False
    assert session_with_options == before


def test_malformed_options_are_dropped():
    options = _options_json(2) + [{"title": "no index"}, {"option_index": 0, "title": "zero"}]
    raw = json.dumps({"ok": True, "data": {"query": "q", "options": options}})
    session = Session()
    update_session_from_search_result(session, raw)
    assert [o.title for o in session.last_options] == ["Widget 1", "Widget 2"]


def test_checkout_url_lookup(session_with_options):
    assert get_checkout_url_for_option(session_with_options, 3) == "https://shop.example.com/cart/2003:1"
    assert get_checkout_url_for_option(session_with_options, 9) is None
    assert get_checkout_url_for_option(session_with_options, None) is None
    assert get_checkout_url_for_option(Session(), 1) is None


def test_normalize_ships_to():
    assert normalize_ships_to(" france ") == "FR"
    assert normalize_ships_to("United States") == "US"
    assert normalize_ships_to("uk") == "GB"
    assert normalize_ships_to("es") == "ES"


def test_summary_format():
    option = Option(
        option_index=1,
        title="Widget",
        price="$10.00",
        seller="shop.com",
        bullets=("color: red", "size: M", "style: plain"),
    )
    assert summarize_options_for_planner([option]) == "Option 1: Widget — $10.00 — seller: shop.com — color: red; size: M"
    bare = Option(option_index=2, title="Bare", price="$1.00")
    assert summarize_options_for_planner([bare]) == "Option 2: Bare — $1.00"
    assert summarize_options_for_planner([]) == "(none)"


def test_summary_dedupes_and_caps():
    options = [
        Option(option_index=i, title="Same" if i <= 3 else f"Item {i}", price="$5.00", bullets=("a: b",))
        for i in range(1, 15)
    ]
    lines = summarize_options_for_planner(options).splitlines()
    assert len(lines) == 8
    assert lines[0].startswith("Option 1: Same")
    assert lines[1].startswith("Option 4: Item 4")
