# tests/unit/test_environment_utils.py
import pytest


def test_defaults_are_typed(environment_utils):
    assert environment_utils.get_env_variable("FLOW_MAX_STEPS") == 50
    assert environment_utils.get_env_variable("HTTP_ACTION_TIMEOUT_SECONDS") == 5.0
    assert environment_utils.get_env_variable("CHANNEL_SERVICE_URL") == "http://localhost:8017"


def test_unknown_variable_raises(environment_utils, log_util):
    with pytest.raises(ValueError):
        environment_utils.get_env_variable("DEBUG")
    log_util.error.assert_called_once()
