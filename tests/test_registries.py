import pytest

from jobqueue.core.exceptions import (
    ConfigurationError,
    DuplicateHandlerError,
    RegistryFrozenError,
    UnregisteredJobTypeError,
)
from jobqueue.core.registries import ProcessorRegistry, Registry


def resize(payload, reporter):
    return {"resized": payload["id"]}


async def transcode(payload, reporter):
    return None


def test_registry_basic_operations():
    """Test basic registry register, get, list operations."""
    registry = Registry[str, str]("Test")

    # Test empty registry
    assert registry.list() == []

    # Test register and get
    registry.register("test_impl", "test_value")
    assert registry.get("test_impl") == "test_value"
    assert registry.list() == ["test_impl"]
    assert "test_impl" in registry

    # Test KeyError for missing implementation
    with pytest.raises(KeyError, match="No test implementation registered"):
        registry.get("nonexistent")


def test_registry_duplicate_registration():
    registry = Registry[str, str]("Test")
    registry.register("impl", "value1")

    with pytest.raises(KeyError, match="already registered"):
        registry.register("impl", "value2")

    assert registry.get("impl") == "value1"


def test_registry_freeze():
    """Test that frozen registries reject new registrations."""
    registry = Registry[str, str]("Test")
    registry.register("impl", "value")
    assert not registry.is_frozen()

    registry.freeze()

    assert registry.is_frozen()
    with pytest.raises(RegistryFrozenError):
        registry.register("other", "value")
    assert registry.get("impl") == "value"


def test_processor_registry_resolves_by_queue_and_type():
    registry = ProcessorRegistry()
    registry.register("media", "resize", resize)
    registry.register("media", "transcode", transcode)
    registry.register("thumbnails", "resize", transcode)

    assert registry.resolve("media", "resize") is resize
    assert registry.resolve("thumbnails", "resize") is transcode
    assert registry.has("media", "transcode")
    assert not registry.has("email", "resize")
    assert sorted(registry.handlers_for("media")) == ["resize", "transcode"]


def test_processor_registry_duplicate_pair():
    """Test that a (queue, type) pair can only have one handler."""
    registry = ProcessorRegistry()
    registry.register("media", "resize", resize)

    with pytest.raises(DuplicateHandlerError) as exc_info:
        registry.register("media", "resize", transcode)

    assert isinstance(exc_info.value, ConfigurationError)
    assert exc_info.value.details == {"queue": "media", "job_type": "resize"}
    assert registry.resolve("media", "resize") is resize


def test_processor_registry_unregistered_type():
    registry = ProcessorRegistry()
    registry.register("media", "resize", resize)

    with pytest.raises(UnregisteredJobTypeError, match="media:crop"):
        registry.resolve("media", "crop")


def test_processor_registry_rejects_non_callables():
    registry = ProcessorRegistry()

    with pytest.raises(TypeError, match="not callable"):
        registry.register("media", "resize", "resize")


def test_processor_registry_accepts_callable_objects():
    class Handler:
        def __call__(self, payload, reporter):
            return payload

    handler = Handler()
    registry = ProcessorRegistry()
    registry.register("media", "echo", handler)

    assert registry.resolve("media", "echo") is handler
