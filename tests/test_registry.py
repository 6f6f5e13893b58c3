import logging

from sqlalchemy import update

from conftest import RecordingScorer, STORY, COMMENT
from tagbox_feeder.config import Settings
from tagbox_feeder.models.tables import Tagbox as TagboxRow
from tagbox_feeder.tagbox import Tagbox

WATERMARKS = {"last_run_completed", "last_tagid_logged", "last_tdid_logged", "last_tuid_logged"}


def test_load_all_returns_records_with_objects(seed, make_context):
    a = seed.tagbox("Despam", weight=2.0, nosy=f"{STORY} {COMMENT}", regexes=["^karma$"])
    b = seed.tagbox("Top", affected_type="user")
    ctx = make_context({"Despam": RecordingScorer, "Top": RecordingScorer})

    records = ctx.registry.load()
    assert [r["tbid"] for r in records] == [a, b]
    despam = records[0]
    assert despam["name"] == "Despam"
    assert despam["weight"] == 2.0
    assert despam["nosy_gtids"] == {STORY, COMMENT}
    assert despam["userkeyregexes"] == ["^karma$"]
    assert isinstance(despam["object"], Tagbox)
    assert WATERMARKS <= set(despam)
    assert records[1]["affected_type"] == "user"


def test_load_one_by_id_or_name_and_not_found(seed, make_context):
    tbid = seed.tagbox("Despam")
    ctx = make_context({"Despam": RecordingScorer})

    assert ctx.registry.load(tbid)["name"] == "Despam"
    assert ctx.registry.load(str(tbid))["name"] == "Despam"
    assert ctx.registry.load("Despam")["tbid"] == tbid
    assert ctx.registry.load("Nope") is None
    assert ctx.registry.load(tbid + 100) is None


def test_watermarks_are_read_fresh(seed, make_context, session_factory):
    tbid = seed.tagbox("Despam")
    ctx = make_context({"Despam": RecordingScorer})
    assert ctx.registry.load(tbid)["last_tagid_logged"] == 0

    with session_factory() as s:
        s.execute(update(TagboxRow).where(TagboxRow.tbid == tbid).values(last_tagid_logged=42))
        s.commit()

    assert ctx.registry.load(tbid)["last_tagid_logged"] == 42
    assert ctx.registry.load(tbid, ["last_tagid_logged"]) == {"last_tagid_logged": 42}


def test_projection_without_watermarks_omits_them(seed, make_context):
    tbid = seed.tagbox("Despam", weight=3.0)
    ctx = make_context({"Despam": RecordingScorer})

    rec = ctx.registry.load(tbid, ["tbid", "weight"])
    assert rec == {"tbid": tbid, "weight": 3.0}
    for rec in ctx.registry.load(fields="name"):
        assert set(rec) == {"name"}


def test_returned_records_are_copies(seed, make_context):
    tbid = seed.tagbox("Despam", nosy=str(STORY), regexes=["^karma$"], params={"filter_tagnameid": [1]})
    ctx = make_context({"Despam": RecordingScorer})

    rec = ctx.registry.load(tbid)
    rec["weight"] = 99
    rec["nosy_gtids"].add(77)
    rec["userkeyregexes"].append("x")
    rec["params"]["filter_tagnameid"].append(2)

    again = ctx.registry.load(tbid)
    assert again["weight"] == 1.0
    assert again["nosy_gtids"] == {STORY}
    assert again["userkeyregexes"] == ["^karma$"]
    assert again["params"] == {"filter_tagnameid": [1]}
    assert again["object"] is rec["object"]


def test_failed_construction_is_excluded(seed, make_context, caplog):
    seed.tagbox("Broken")
    seed.tagbox("Unregistered")
    ok = seed.tagbox("Fine")

    def broken():
        raise RuntimeError("boom")

    ctx = make_context({"Broken": broken, "Fine": RecordingScorer})
    with caplog.at_level(logging.INFO):
        records = ctx.registry.load()
    assert [r["tbid"] for r in records] == [ok]
    assert ctx.registry.load("Broken") is None
    assert ctx.registry.load("Unregistered") is None
    assert "Broken failed to construct" in caplog.text


def test_not_enabled_tagboxes_are_excluded(seed, make_context):
    seed.tagbox("Despam")
    seed.tagbox("Top")
    ctx = make_context(
        {"Despam": RecordingScorer, "Top": RecordingScorer},
        settings=Settings(ENABLED_TAGBOXES="Top"),
    )
    assert [r["name"] for r in ctx.registry.load()] == ["Top"]


def test_construction_happens_once(seed, make_context):
    seed.tagbox("Despam")
    built = []

    def factory():
        built.append(1)
        return RecordingScorer()

    ctx = make_context({"Despam": factory})
    ctx.registry.load()
    ctx.registry.load("Despam")
    ctx.registry.tagboxes()
    assert len(built) == 1


def test_exclude_drops_tagbox(seed, make_context):
    a = seed.tagbox("Despam")
    b = seed.tagbox("Top")
    ctx = make_context({"Despam": RecordingScorer, "Top": RecordingScorer})
    ctx.registry.exclude(a, "run not implemented")
    assert ctx.registry.get(a) is None
    assert [tb.tbid for tb in ctx.registry.tagboxes()] == [b]


def test_contexts_do_not_share_caches(seed, make_context):
    seed.tagbox("Despam")
    one = make_context({"Despam": RecordingScorer})
    two = make_context({})
    assert len(one.registry.load()) == 1
    assert two.registry.load() == []


def test_exclusion_survives_cache_rebuild(seed, make_context):
    a = seed.tagbox("Despam")
    b = seed.tagbox("Top")
    ctx = make_context({"Despam": RecordingScorer, "Top": RecordingScorer})
    assert len(ctx.registry.load()) == 2
    ctx.registry.exclude(a, "run not implemented")
    ctx.registry.clear()
    assert [r["tbid"] for r in ctx.registry.load()] == [b]
    assert ctx.registry.load(a) is None


def test_falsy_id_means_all_tagboxes(seed, make_context):
    a = seed.tagbox("Despam")
    b = seed.tagbox("Top")
    ctx = make_context({"Despam": RecordingScorer, "Top": RecordingScorer})
    for falsy in (None, 0, ""):
        assert [r["tbid"] for r in ctx.registry.load(falsy, ["tbid"])] == [a, b]
