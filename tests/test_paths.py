from training_registry import paths


def test_resolve_data_root_prefers_existing_database(monkeypatch, tmp_path):
    portable = tmp_path / "dist" / "data"
    portable.mkdir(parents=True)
    repo_like = tmp_path / "repo" / "data"
    repo_like.mkdir(parents=True)
    (repo_like / "training.sqlite").write_bytes(b"")

    monkeypatch.delenv("TRAINING_DATA_ROOT", raising=False)
    monkeypatch.setattr(paths, "_candidate_data_dirs", lambda: [portable, repo_like])

    assert paths.resolve_data_root() == repo_like


def test_resolve_data_root_takes_first_existing_dir(monkeypatch, tmp_path):
    missing = tmp_path / "missing"
    present = tmp_path / "present"
    present.mkdir()
    monkeypatch.delenv("TRAINING_DATA_ROOT", raising=False)
    monkeypatch.setattr(paths, "_candidate_data_dirs", lambda: [missing, present])

    assert paths.resolve_data_root() == present


def test_resolve_data_root_env_override(monkeypatch, tmp_path):
    target = tmp_path / "custom-root"
    monkeypatch.setenv("TRAINING_DATA_ROOT", str(target))
    monkeypatch.setattr(paths, "_candidate_data_dirs", lambda: [])

    assert paths.resolve_data_root() == target
    assert target.exists()


def test_resolve_data_root_falls_back_to_user_dir(monkeypatch, tmp_path):
    monkeypatch.delenv("TRAINING_DATA_ROOT", raising=False)
    monkeypatch.setattr(paths, "_candidate_data_dirs", lambda: [tmp_path / "nowhere"])
    monkeypatch.setattr(paths, "_dir_is_writable", lambda _: False)
    monkeypatch.setattr(paths, "_user_data_base", lambda: tmp_path / "userbase")

    assert paths.resolve_data_root() == tmp_path / "userbase" / "data"


def test_resolve_db_path_env_and_explicit(monkeypatch, tmp_path):
    env_db = tmp_path / "env" / "db.sqlite"
    monkeypatch.setenv("TRAINING_DB_PATH", str(env_db))
    assert paths.resolve_db_path() == env_db
    assert env_db.parent.exists()

    explicit = tmp_path / "explicit" / "x.sqlite"
    assert paths.resolve_db_path(explicit) == explicit


def test_duckdb_and_report_dirs_follow_data_root(monkeypatch, tmp_path):
    monkeypatch.setenv("TRAINING_DATA_ROOT", str(tmp_path / "root"))
    monkeypatch.delenv("TRAINING_DUCKDB_PATH", raising=False)

    assert paths.resolve_duckdb_path() == tmp_path / "root" / "snapshot.duckdb"
    reports = paths.resolve_report_dir()
    assert reports == tmp_path / "root" / "reports"
    assert reports.exists()
    assert paths.resolve_log_path() == tmp_path / "root" / "logs" / "app.log"

    monkeypatch.setenv("TRAINING_DUCKDB_PATH", str(tmp_path / "elsewhere.duckdb"))
    assert paths.resolve_duckdb_path() == tmp_path / "elsewhere.duckdb"
