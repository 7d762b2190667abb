"""Run the examples embedded in module docstrings."""

from __future__ import annotations

import doctest
import importlib

import pytest

MODULES_WITH_EXAMPLES = [
    "dnstest.core.aggregator",
    "dnstest.core.comparator",
    "dnstest.core.config",
    "dnstest.core.server_list",
    "dnstest.utils.formatting",
    "dnstest.utils.http_client",
    "dnstest.utils.logging",
]


@pytest.mark.parametrize("module_name", MODULES_WITH_EXAMPLES)
def test_docstring_examples_pass(module_name: str, monkeypatch: pytest.MonkeyPatch) -> None:
    # Examples export these; registering them first lets monkeypatch restore them
    monkeypatch.setenv("DNSTEST_DOMAIN", "")
    monkeypatch.setenv("DNSTEST_DIR", "")
    module = importlib.import_module(module_name)

    result = doctest.testmod(module, verbose=False)

    assert result.failed == 0


def test_config_loader_example_does_not_touch_the_filesystem() -> None:
    module = importlib.import_module("dnstest.core.config")
    examples = [
        example
        for test in doctest.DocTestFinder().find(module)
        if test.name.endswith("load_main_config")
        for example in test.examples
    ]

    assert examples
    assert all(example.options.get(doctest.SKIP) for example in examples)
