import pytest

from sample_convos import simple_tree

from convoflow import FlowOptions, FlowTreeBuilder, InvalidOptionsError

ENV_NAMES = ("CONVOFLOW_DETECT_LOOPS", "CONVOFLOW_SUMMARIZE_MULTI_STEPS", "CONVOFLOW_MAX_DEPTH")


@pytest.fixture
def clean_env(monkeypatch):
    for name in ENV_NAMES:
        monkeypatch.delenv(name, raising=False)
    return monkeypatch


def test_defaults():
    options = FlowOptions()
    assert options.detect_loops is False
    assert options.summarize_multi_steps is True
    assert options.max_depth is None


def test_coerce_applies_overrides_over_dict():
    options = FlowOptions.coerce({"detectLoops": True, "max_depth": 5}, detect_loops=False)
    assert options == FlowOptions(detect_loops=False, summarize_multi_steps=True, max_depth=5)


def test_coerce_keeps_instance():
    options = FlowOptions(detect_loops=True)
    assert FlowOptions.coerce(options) is options


@pytest.mark.parametrize("values", [
    {"max_depth": 0},
    {"max_depth": True},
    {"summarize_multi_steps": 1},
    {"colour": "red"},
])
def test_invalid_values_rejected(values):
    with pytest.raises(InvalidOptionsError):
        FlowOptions.coerce(values)


def test_unsupported_options_type_rejected():
    with pytest.raises(InvalidOptionsError):
        FlowTreeBuilder(["detect_loops"])


def test_options_are_immutable():
    options = FlowOptions()
    with pytest.raises(AttributeError):
        options.detect_loops = True


def test_from_env(clean_env):
    clean_env.setenv("CONVOFLOW_DETECT_LOOPS", "yes")
    clean_env.setenv("CONVOFLOW_SUMMARIZE_MULTI_STEPS", "0")
    clean_env.setenv("CONVOFLOW_MAX_DEPTH", "12")
    assert FlowOptions.from_env() == FlowOptions(detect_loops=True, summarize_multi_steps=False, max_depth=12)


def test_from_env_defaults(clean_env):
    assert FlowOptions.from_env() == FlowOptions()


def test_from_env_rejects_garbage(clean_env):
    clean_env.setenv("CONVOFLOW_DETECT_LOOPS", "maybe")
    with pytest.raises(InvalidOptionsError):
        FlowOptions.from_env()


def test_builder_exposes_its_options():
    builder = FlowTreeBuilder(detect_loops=True)
    forest = builder.build(simple_tree())
    assert forest.options is builder.options
