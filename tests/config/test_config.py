import json

from ragstore.config import Config, config
from ragstore.config.settings import Settings


def test_defaults():
    cfg = Config(settings_obj=Settings())
    assert cfg.get("chunking.text_chunk_size") == 1000
    assert cfg.get("chunking.text_chunk_overlap") == 200
    assert cfg.get("chunking.code_max_lines") == 80
    assert cfg.get("retrieval.default_top_k") == 6
    assert cfg.get("retrieval.load_backend_on_query") is False
    assert cfg.get("store.accelerated_search") is True
    assert cfg.get("missing.key", "fallback") == "fallback"


def test_json_file_overrides(tmp_path):
    path = tmp_path / "ragstore_config.json"
    path.write_text(
        json.dumps({"retrieval": {"default_top_k": 3}, "chunking": {"text_chunk_size": 500}, "custom": 1}),
        encoding="utf-8",
    )
    cfg = Config(path, Settings())

    assert cfg.get("retrieval.default_top_k") == 3
    assert cfg.get("chunking.text_chunk_size") == 500
    assert cfg.get("chunking.text_chunk_overlap") == 200
    assert cfg.get("custom") == 1


def test_malformed_file_keeps_defaults(tmp_path):
    path = tmp_path / "bad.json"
    path.write_text("{oops", encoding="utf-8")
    cfg = Config(path, Settings())
    assert cfg.get("retrieval.default_top_k") == 6


def test_set_and_save(tmp_path):
    path = tmp_path / "out" / "cfg.json"
    cfg = Config(path, Settings())
    cfg.set("indexing.auto_indexing_enabled", False)
    cfg.set("extra.flag", True)
    cfg.save()

    saved = json.loads(path.read_text(encoding="utf-8"))
    assert saved["indexing"]["auto_indexing_enabled"] is False
    assert saved["extra.flag"] is True
    assert Config(path, Settings()).get("indexing.auto_indexing_enabled") is False


def test_environment_variables(monkeypatch):
    monkeypatch.setenv("RAGSTORE_STORE_ACCELERATED_SEARCH", "false")
    monkeypatch.setenv("RAGSTORE_EMBEDDING_BATCH_SIZE", "7")
    cfg = Config(settings_obj=Settings())
    assert cfg.get("store.accelerated_search") is False
    assert cfg.get("embedding.batch_size") == 7


def test_config_override_fixture_restores(config_override):
    original = config.get("retrieval.default_top_k")
    config_override("retrieval.default_top_k", 99)
    assert config.get("retrieval.default_top_k") == 99
    assert original == 6
