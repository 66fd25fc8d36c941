import pytest

from modelhub.errors import UnknownModel
from modelhub.registry import (
    DEFAULT_CATALOG,
    ModelDescriptor,
    ModelRegistry,
    PackagingKind,
    QuantLevel,
    default_registry,
)


def test_list_is_sorted_by_identifier(registry):
    ids = [d.id for d in registry.list()]
    assert ids == sorted(ids)
    assert ids == [d.id for d in registry.list()]


def test_get_unknown_model_raises(registry):
    with pytest.raises(UnknownModel) as exc:
        registry.get("does-not-exist")
    assert exc.value.to_dict()["code"] == "unknown_model"


def test_contains_and_len(registry):
    assert "local-text-a" in registry
    assert "nope" not in registry
    assert len(registry) == 6


def test_duplicate_identifiers_rejected():
    descriptor = ModelDescriptor(
        id="dup", name="d", description="d",
        packaging_kind=PackagingKind.REMOTE_HOSTED, repo="org/dup",
    )
    with pytest.raises(ValueError, match="Duplicate"):
        ModelRegistry([descriptor, descriptor])


def test_local_model_requires_repository_reference():
    descriptor = ModelDescriptor(
        id="local", name="l", description="l",
        packaging_kind=PackagingKind.LOCAL_SELF_CONTAINED, files=("m.gguf",),
    )
    with pytest.raises(ValueError, match="repository reference"):
        ModelRegistry([descriptor])


def test_list_returns_a_copy(registry):
    models = registry.list()
    models.clear()
    assert len(registry.list()) == 6


def test_default_catalog_is_consistent():
    registry = default_registry()
    assert len(registry) == len(DEFAULT_CATALOG)
    for descriptor in registry.list():
        if descriptor.packaging_kind.is_local:
            assert descriptor.files
        if descriptor.packaging_kind is PackagingKind.LOCAL_MULTI_FILE_VISION:
            assert descriptor.is_vision
    assert registry.get("llama-3.2-11b-vision").is_vision
    assert not registry.get("smollm3-3b").is_vision


def test_quant_level_bits():
    assert QuantLevel.Q4K.bits == 4
    assert QuantLevel.Q5K.bits == 5
    assert QuantLevel.Q8_0.bits == 8
