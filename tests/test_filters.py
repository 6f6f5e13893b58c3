from conftest import T0, make_event
from tagbox_feeder.filters import EventFilter


class FakeLookup:
    def __init__(self, types):
        self.types = types  # globjid -> gtid
        self.calls = []

    def globjids_of_types(self, globjids, gtids):
        self.calls.append((set(globjids), set(gtids)))
        return {g for g in globjids if self.types.get(g) in set(gtids)}


def test_unset_filter_keeps_everything():
    events = [make_event(1, 10), make_event(2, 11, inactivated=T0)]
    assert EventFilter().apply(events) == events


def test_active_only_keeps_only_active_tags():
    active = make_event(1, 10)
    inactive = make_event(2, 10, inactivated=T0)
    deactivation = make_event(3, 10, inactivated=T0, deactivation_id=5)
    kept = EventFilter(active_only=True).apply([active, inactive, deactivation])
    assert kept == [active]


def test_tag_name_allow_list():
    events = [make_event(1, 10, tag_name_id=1), make_event(2, 10, tag_name_id=2), make_event(3, 10, tag_name_id=3)]
    kept = EventFilter.from_params({"filter_tagnameid": [1, 3]}).apply(events)
    assert [e.tag_id for e in kept] == [1, 3]
    kept = EventFilter.from_params({"filter_tagnameid": 2}).apply(events)
    assert [e.tag_id for e in kept] == [2]


def test_entity_type_filter_uses_one_batched_lookup():
    lookup = FakeLookup({10: 1, 11: 2, 12: 1})
    events = [make_event(1, 10), make_event(2, 11), make_event(3, 12), make_event(4, 10)]
    f = EventFilter.from_params({"filter_gtid": "1"}, lookup)
    assert [e.tag_id for e in f.apply(events)] == [1, 3, 4]
    assert lookup.calls == [({10, 11, 12}, {1})]


def test_entity_type_filter_with_no_events_skips_lookup():
    lookup = FakeLookup({})
    assert EventFilter.from_params({"filter_gtid": [1]}, lookup).apply([]) == []
    assert lookup.calls == []


def test_tag_name_and_entity_type_stages_commute():
    lookup = FakeLookup({10: 1, 11: 2})
    events = [
        make_event(1, 10, tag_name_id=1),
        make_event(2, 10, tag_name_id=2),
        make_event(3, 11, tag_name_id=1),
    ]
    both = EventFilter.from_params({"filter_tagnameid": [1], "filter_gtid": [1]}, lookup)
    by_name = EventFilter.from_params({"filter_tagnameid": [1]})
    by_type = EventFilter.from_params({"filter_gtid": [1]}, lookup)
    expected = [e.tag_id for e in both.apply(events)]
    assert expected == [1]
    assert [e.tag_id for e in by_type.apply(by_name.apply(events))] == expected
    assert [e.tag_id for e in by_name.apply(by_type.apply(events))] == expected


def test_filter_is_idempotent():
    lookup = FakeLookup({10: 1, 11: 2})
    f = EventFilter.from_params({"filter_activeonly": 1, "filter_tagnameid": [1], "filter_gtid": [1]}, lookup)
    events = [make_event(1, 10), make_event(2, 11), make_event(3, 10, inactivated=T0)]
    once = f.apply(events)
    assert f.apply(once) == once
