from sqlflow.config import FlowConfig


def test_defaults():
    config = FlowConfig.from_env({})
    assert config == FlowConfig()
    assert config.dialect == "spark"
    assert not config.contracted


def test_values_from_environment():
    config = FlowConfig.from_env({
        "SQLFLOW_CONTRACTED": "true",
        "SQLFLOW_COLUMN_TYPES": "1",
        "SQLFLOW_DIALECT": "hive",
        "SQLFLOW_IMAGE_FORMAT": "svg",
        "LOG_LEVEL": "DEBUG",
    })
    assert config.contracted
    assert config.include_column_types
    assert config.dialect == "hive"
    assert config.image_format == "svg"
    assert config.log_level == "DEBUG"


def test_falsy_and_blank_flags():
    config = FlowConfig.from_env({"SQLFLOW_CONTRACTED": "no", "SQLFLOW_COLUMN_TYPES": "  "})
    assert not config.contracted
    assert not config.include_column_types
