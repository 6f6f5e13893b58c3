from tagbox_feeder.config import Settings, get_settings, parse_enabled_tagboxes, reset_settings
from tagbox_feeder.tagbox import is_installed


def test_parse_enabled_tagboxes():
    assert parse_enabled_tagboxes(None) == set()
    assert parse_enabled_tagboxes("") == set()
    assert parse_enabled_tagboxes("Despam, Top ,,") == {"Despam", "Top"}


def test_is_installed_defaults_to_everything():
    assert is_installed("Despam", Settings())
    assert is_installed("Despam", Settings(ENABLED_TAGBOXES="Despam,Top"))
    assert not is_installed("Despam", Settings(ENABLED_TAGBOXES="Top"))


def test_settings_read_environment(monkeypatch):
    monkeypatch.setenv("FEEDER_TOP_LIMIT", "25")
    monkeypatch.setenv("FORCE_RECALC_IMPORTANCE", "5000")
    reset_settings()
    try:
        s = get_settings()
        assert s.feeder_top_limit == 25
        assert s.force_recalc_importance == 5000
        assert get_settings() is s
    finally:
        reset_settings()
