import pytest

from termvec_model import Config, ConfigError


def test_defaults():
    cfg = Config()
    assert cfg.dimension == 200
    assert cfg.vector_type == "real"
    assert cfg.seed_length == 10
    assert cfg.fields_to_index == ["contents"]
    assert cfg.max_nonalphabet_chars == -1


def test_binary_coupling_rule(caplog):
    cfg = Config(vector_type="binary", dimension=200, seed_length=10)
    assert cfg.dimension == 256
    assert cfg.seed_length == 128
    assert "multiple of 64" in caplog.text

    exact = Config(vector_type="binary", dimension=128)
    assert exact.dimension == 128 and exact.seed_length == 64


@pytest.mark.parametrize(
    "kwargs",
    [
        {"vector_type": "quaternion"},
        {"docvector_format": "xml"},
        {"dimension": 0},
        {"seed_length": -1},
        {"fields_to_index": []},
        {"log_interval": 0},
    ],
)
def test_invalid_settings(kwargs):
    with pytest.raises(ConfigError):
        Config(**kwargs)


def test_fields_from_comma_string():
    cfg = Config(fields_to_index="Title,body,title")
    assert cfg.fields_to_index == ["title", "body"]


def test_fields_list_is_lowercased(tmp_path):
    assert Config(fields_to_index=["Title", " body ", "TITLE"]).fields_to_index == [
        "title",
        "body",
    ]
    path = tmp_path / "c.yaml"
    path.write_text("fields_to_index:\n- Title\n- Body\n")
    assert Config.load(path).fields_to_index == ["title", "body"]


def test_from_flags():
    cfg = Config.from_flags(
        ["-dimension", "64", "--vector_type", "complex", "-verify_header", "-min_frequency", "3"]
    )
    assert (cfg.dimension, cfg.vector_type, cfg.min_frequency) == (64, "complex", 3)
    assert cfg.verify_header is True


def test_from_flags_errors():
    with pytest.raises(ConfigError, match="not defined"):
        Config.from_flags(["-nosuchflag", "1"])
    with pytest.raises(ConfigError, match="requires an argument"):
        Config.from_flags(["-dimension"])
    with pytest.raises(ConfigError, match="expects int"):
        Config.from_flags(["-dimension", "many"])


def test_header_round_trip():
    cfg = Config(dimension=512, vector_type="binary")
    back = Config.from_header(cfg.to_header())
    assert (back.dimension, back.vector_type, back.seed_length) == (512, "binary", 256)


def test_yaml_round_trip(tmp_path):
    path = tmp_path / "conf" / "termvec.yaml"
    Config(dimension=96, fields_to_index=["a", "b"], stoplist_file="stop.txt").save(path)
    loaded = Config.load(path)
    assert loaded == Config(dimension=96, fields_to_index=["a", "b"], stoplist_file="stop.txt")


def test_load_ignores_unknown_keys(tmp_path):
    path = tmp_path / "c.yaml"
    path.write_text("dimension: 32\nlegacy_option: 1\n")
    assert Config.load(path).dimension == 32


def test_load_missing(tmp_path):
    with pytest.raises(FileNotFoundError):
        Config.load(tmp_path / "nope.yaml")


def test_describe_lists_choices():
    schema = {opt["name"]: opt for opt in Config.describe()}
    assert schema["vector_type"]["choices"] == ("real", "binary", "complex")
    assert schema["fields_to_index"]["default"] == ["contents"]
    assert schema["dimension"]["help"]
