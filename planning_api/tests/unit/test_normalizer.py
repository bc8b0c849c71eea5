from planning_api.core.normalizer import normalize_event, normalize_events
from planning_api.models.models import RawCalendarEntry


def _entry(**kwargs) -> RawCalendarEntry:
    return RawCalendarEntry.model_validate(kwargs)


def test_normalize_event_end_to_end():
    entry = _entry(
        id=1042,
        title="Algorithmique\nTD\nM. Dupont\nB201",
        start="2024-03-04T08:00:00",
        end="2024-03-04T10:00:00",
        className="",
    )
    event = normalize_event(entry)

    assert event.id == "1042"
    assert event.type == "td"
    assert event.room == "B201"
    assert event.professor == "M. Dupont"
    assert event.title == "Algorithmique"
    assert event.group == "TD"
    assert event.start == "2024-03-04T08:00:00"
    assert event.end == "2024-03-04T10:00:00"
    assert event.raw_title == "Algorithmique\nTD\nM. Dupont\nB201"
    assert event.all_day is False


def test_missing_id_gets_synthetic_one():
    event = normalize_event(_entry(title="Anglais"))
    assert event.id
    assert len(event.id) == 9


def test_empty_title_becomes_placeholder():
    event = normalize_event(_entry(id="1", title=""))
    assert event.title == "Sans titre"
    assert event.type == "cours"


def test_epoch_millisecond_boundaries():
    event = normalize_event(_entry(id="1", title="Cours", start=0, end=3_600_000))
    assert event.start == "1970-01-01T00:00:00+00:00"
    assert event.end == "1970-01-01T01:00:00+00:00"


def test_class_names_drive_type():
    event = normalize_event(_entry(id="1", title="Algèbre", className=["fc-event", "epreuve"]))
    assert event.type == "exam"


def test_empty_and_break_entries_are_dropped_in_order():
    entries = [
        _entry(id="a", title="Premier"),
        _entry(id="b", title="", is_empty=True),
        _entry(id="c", title="Pause", is_break=True),
        _entry(id="d", title="Second"),
    ]
    events = normalize_events(entries)
    assert [e.id for e in events] == ["a", "d"]


def test_normalize_events_empty_input():
    assert normalize_events([]) == []


def test_serialized_shape_uses_public_names():
    event = normalize_event(_entry(id="7", title="Physique\nB201", allDay=True))
    data = event.model_dump(by_alias=True)
    assert data["rawTitle"] == "Physique\nB201"
    assert data["allDay"] is True
    assert data["professor"] is None
    assert set(data) == {"id", "title", "room", "professor", "group", "start", "end", "type", "rawTitle", "allDay"}
