from delhivery_sync.services.tracking_service import build_event, repeats_last_event, should_append


def test_duplicate_status_and_timestamp_is_not_appended():
    history = [{"status": "Picked Up", "mapped_status": "picked_up", "timestamp": "T1"}]
    assert should_append(history, {"status": "Picked Up", "timestamp": "T1"}) is False


def test_new_timestamp_is_appended():
    history = [{"status": "Picked Up", "mapped_status": "picked_up", "timestamp": "T1"}]
    assert should_append(history, {"status": "Picked Up", "timestamp": "T2"}) is True


def test_same_timestamp_different_raw_status_is_appended():
    history = [{"status": "Pending", "mapped_status": "in_transit", "timestamp": "T1"}]
    assert should_append(history, {"status": "In Transit", "timestamp": "T1"}) is True


def test_timestamp_comparison_is_string_equality():
    history = [{"status": "Picked Up", "timestamp": "2024-01-01T10:00:00Z"}]
    assert should_append(history, {"status": "Picked Up", "timestamp": "2024-01-01T10:00:00+00:00"}) is True


def test_empty_or_missing_history_appends():
    assert should_append([], {"status": "Picked Up", "timestamp": "T1"}) is True
    assert should_append(None, {"status": "Picked Up", "timestamp": "T1"}) is True


def test_build_event_uses_courier_time_when_given():
    event = build_event("Picked Up", "picked_up", occurred_at="2024-01-01T10:00:00Z", location="Delhi Hub", received_at="R")
    assert event == {
        "status": "Picked Up",
        "mapped_status": "picked_up",
        "timestamp": "2024-01-01T10:00:00Z",
        "location": "Delhi Hub",
        "remarks": None,
    }


def test_build_event_falls_back_to_receipt_time():
    event = build_event("Picked Up", "picked_up", received_at="2024-02-02T00:00:00+00:00")
    assert event["timestamp"] == "2024-02-02T00:00:00+00:00"

    event = build_event("Picked Up", "picked_up")
    assert event["timestamp"]


def test_repeats_last_event_compares_only_the_newest_entry():
    older = build_event("Picked Up", "picked_up", location="Hub", received_at="T1")
    newer = build_event("In Transit", "in_transit", location="Hub", received_at="T2")
    retry = build_event("In Transit", "in_transit", location="Hub", received_at="T3")

    assert repeats_last_event([older, newer], retry) is True
    assert repeats_last_event([newer, older], retry) is False
    assert repeats_last_event([], retry) is False
    assert repeats_last_event([newer], build_event("In Transit", "in_transit", location="Other", received_at="T3")) is False
