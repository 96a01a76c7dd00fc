import pytest

from queuectl.config import RuntimeConfig, get_all, get_value, load_runtime_config, set_value
from queuectl.db import set_config
from queuectl.errors import InvalidConfig


def test_defaults_are_seeded(home):
    assert get_all() == {"backoff_base": "2", "job_timeout": "30000", "max_retries": "3", "stale_after": "0"}


def test_runtime_config_from_defaults(conn):
    assert load_runtime_config(conn) == RuntimeConfig(max_retries=3, backoff_base=2, job_timeout=30000, stale_after=0)


def test_runtime_config_picks_up_overrides(conn):
    set_value("max_retries", "5")
    set_value("job_timeout", " 1200 ")
    cfg = load_runtime_config(conn)
    assert cfg.max_retries == 5
    assert cfg.job_timeout == 1200
    assert cfg.backoff_base == 2


def test_bad_stored_value_falls_back_for_that_key_only(conn, capsys):
    set_value("backoff_base", "3")
    conn.execute("UPDATE config SET value='lots' WHERE key='max_retries'")
    conn.commit()
    cfg = load_runtime_config(conn)
    assert cfg.max_retries == 3
    assert cfg.backoff_base == 3
    assert "max_retries" in capsys.readouterr().out


def test_unreadable_config_falls_back_to_defaults_and_reports_it(conn, capsys):
    conn.execute("DROP TABLE config")
    conn.commit()
    assert load_runtime_config(conn, log_prefix="w1") == RuntimeConfig()
    assert "defaults" in capsys.readouterr().out


def test_set_reports_created_or_updated(conn):
    assert set_value("max_retries", "4") == "updated"
    assert set_config(conn, "brand_new", "1") == "created"
    assert set_config(conn, "brand_new", "2") == "updated"
    assert get_value("max_retries") == "4"


@pytest.mark.parametrize(
    "key,value",
    [("nope", "1"), ("max_retries", "three"), ("max_retries", "-1"), ("backoff_base", "0"), ("job_timeout", "0")],
)
def test_invalid_config_is_rejected_and_leaves_state_unchanged(home, key, value):
    before = get_all()
    with pytest.raises(InvalidConfig):
        set_value(key, value)
    assert get_all() == before
