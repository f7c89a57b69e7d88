"""
Tests for the library config module

NOTE: Python makes it hard to change env vars in a way that will effect import
    time, so we're relying on the fact that aconfig is well tested and not
    actually validating the env-var override behavior!
"""

# Third Party
import pytest

# First Party
import aconfig

# Local
from numaplane import config
from numaplane.config import validation
from numaplane.config.config import library_config, validation_config


def test_config_keys():
    """Make sure that the expected keys are present with their types"""
    assert isinstance(config.num_workers, int)
    assert isinstance(config.requeue_after_seconds, (int, float))
    assert config.usde.default_upgrade_strategy == "pause-and-drain"
    assert "vertices" in config.usde.pause_required_fields.Pipeline


def test_config_missing_key():
    with pytest.raises(AttributeError):
        config.not_a_key  # pylint: disable=pointless-statement


def test_shipped_config_valid():
    """Make sure the shipped config passes its own validation"""
    assert not validation.get_invalid_params(library_config, validation_config)


########################
## get_invalid_params ##
########################


def test_get_invalid_params_all_valid_params():
    assert not validation.get_invalid_params(
        config=aconfig.Config({"key": 1}),
        validation_config=aconfig.Config({"key": {"type": "int", "min": 0, "max": 1}}),
    )


def test_get_invalid_params_some_invalid_params():
    """Test that get_invalid_params returns only the invalid parameters when
    some are invalid and some are valid
    """
    assert validation.get_invalid_params(
        config=aconfig.Config({"key": 3, "str": "foo"}),
        validation_config=aconfig.Config(
            {
                "key": {"type": "int", "min": 0, "max": 1},
                "str": {"type": "str"},
            }
        ),
    ) == ["key"]


def test_get_invalid_params_nested():
    """Make sure nested sections are validated with dotted keys"""
    assert validation.get_invalid_params(
        config=aconfig.Config({"usde": {"default_upgrade_strategy": "yolo"}}),
        validation_config=aconfig.Config(
            {
                "usde": {
                    "default_upgrade_strategy": {
                        "type": "enum",
                        "values": ["pause-and-drain", "progressive"],
                    }
                }
            }
        ),
    ) == ["usde.default_upgrade_strategy"]


def test_get_invalid_params_optional():
    """Make sure optional params accept None and nothing else of the wrong
    type
    """
    val_config = aconfig.Config({"port": {"type": "int", "optional": True}})
    assert not validation.get_invalid_params(aconfig.Config({"port": None}), val_config)
    assert validation.get_invalid_params(
        aconfig.Config({"port": "8080"}), val_config
    ) == ["port"]


################
## Parameters ##
################


def test_number_parameter():
    param = validation._NumberParameter(min=0, max=1.5)
    assert param.validate(0)
    assert param.validate(1.5)
    assert not param.validate(-1)
    assert not param.validate(2)
    assert not param.validate(True)
    assert not param.validate("1")


def test_int_parameter():
    param = validation._IntParameter(min=1)
    assert param.validate(1)
    assert not param.validate(0)
    assert not param.validate(1.0)


def test_str_parameter():
    param = validation._StrParameter(min_len=2, max_len=3)
    assert param.validate("5s")
    assert not param.validate("s")
    assert not param.validate("5000s")
    assert not param.validate(5)


def test_bool_parameter():
    param = validation._BoolParameter()
    assert param.validate(False)
    assert not param.validate("false")


def test_enum_parameter():
    param = validation._EnumParameter(values=["a", 1])
    assert param.validate("a")
    assert param.validate(1)
    assert not param.validate("b")


def test_enum_parameter_no_values():
    with pytest.raises(AssertionError):
        validation._EnumParameter(values=[])


def test_list_parameter():
    param = validation._ListParameter(min_len=1, item_type="str")
    assert param.validate(["vertices"])
    assert not param.validate([])
    assert not param.validate([1])
    assert not param.validate("vertices")


def test_dict_parameter():
    param = validation._DictParameter(value_type="str")
    assert param.validate({"ns": "progressive"})
    assert not param.validate({"ns": 1})
    assert not param.validate({1: "progressive"})


def test_construct_parameter_unknown_type():
    """Make sure an unknown type is treated as a nested section"""
    assert validation._construct_parameter({"type": "widget"}) is None


def test_construct_parameter_extra_params_error():
    with pytest.raises(TypeError):
        validation._construct_parameter({"type": "bool", "min": 1})
