import pytest

from copper.cconfig import new_loader
from copper.cerrors import Error
from copper.chttp.http_config import Config, EmptyFS, load_config


def _loader(tmp_path, text):
    path = tmp_path / "app.toml"
    path.write_text(text, encoding="utf-8")
    return new_loader(path)


def test_load_config_reads_table(tmp_path):
    loader = _loader(
        tmp_path,
        "[chttp]\nport = 5902\nuse_local_html = true\nenable_single_page_routing = true\n",
    )

    config = load_config(loader)

    assert config == Config(
        port=5902,
        use_local_html=True,
        render_html_error=False,
        enable_single_page_routing=True,
    )


def test_load_config_missing_table_uses_defaults(tmp_path):
    config = load_config(_loader(tmp_path, '[other]\nkey = "val"\n'))

    assert config.port == 7501
    assert config == Config()


def test_load_config_partial_table_keeps_default_port(tmp_path):
    config = load_config(_loader(tmp_path, "[chttp]\nrender_html_error = true\n"))

    assert config.port == Config().port
    assert config.render_html_error is True


def test_load_config_wrong_type(tmp_path):
    with pytest.raises(Error) as exc_info:
        load_config(_loader(tmp_path, '[chttp]\nport = "abc"\n'))

    assert "failed to load chttp config" in str(exc_info.value)


def test_load_config_negative_port(tmp_path):
    with pytest.raises(Error) as exc_info:
        load_config(_loader(tmp_path, "[chttp]\nport = -1\n"))

    assert "failed to load chttp config" in str(exc_info.value)


def test_empty_fs_open_fails():
    with pytest.raises(FileNotFoundError) as exc_info:
        EmptyFS().open("index.html")

    assert exc_info.value.strerror == "empty fs"
    assert exc_info.value.filename == "index.html"