from __future__ import annotations

from pathlib import Path

import pytest

from snipexec.registry import LanguageRegistry, SupportLevel, default_registry


def test_levels_are_ordered():
    order = [
        SupportLevel.UNSUPPORTED,
        SupportLevel.LINE,
        SupportLevel.BLOC,
        SupportLevel.IMPORT,
        SupportLevel.FILE,
        SupportLevel.PROJECT,
        SupportLevel.SYSTEM,
    ]
    assert sorted(order) == order


def test_parse_level_names_and_numbers():
    assert SupportLevel.parse("bloc") is SupportLevel.BLOC
    assert SupportLevel.parse(" Import ") is SupportLevel.IMPORT
    assert SupportLevel.parse(5) is SupportLevel.PROJECT
    with pytest.raises(ValueError):
        SupportLevel.parse("everything")


def test_lookup_by_name_and_alias():
    assert default_registry.lookup("python").name == "python"
    assert default_registry.lookup("Python3").name == "python"
    assert default_registry.lookup("rust-lang").name == "rust"
    assert default_registry.lookup("rs").name == "rust"
    assert default_registry.lookup("cobol") is None


def test_unregistered_language_is_unsupported():
    assert default_registry.level_of("cobol") is SupportLevel.UNSUPPORTED
    assert default_registry.level_of("java") is SupportLevel.SYSTEM


def test_fallback_names():
    assert default_registry.fallback_name("ts") == "typescript"
    assert default_registry.fallback_name("perl") == "perl"
    assert default_registry.fallback_name("cobol") is None


def test_detect_from_extension():
    assert default_registry.detect(Path("a/b/script.py")) == "python"
    assert default_registry.detect(Path("Main.java")) == "java"
    assert default_registry.detect(Path("x.pl")) == "perl"
    assert default_registry.detect(Path("README")) == ""


def test_every_descriptor_has_commands_and_extension():
    for descriptor in default_registry:
        assert descriptor.commands, descriptor.name
        assert descriptor.extension.startswith("."), descriptor.name
        assert descriptor.level > SupportLevel.UNSUPPORTED


def test_custom_registry_without_fallback():
    registry = LanguageRegistry(fallback={})
    assert registry.fallback_name("perl") is None
    assert registry.lookup("c").main_file == "main.c"
