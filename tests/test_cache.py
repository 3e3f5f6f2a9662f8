import pytest

from rbackit.cache import Cache, DefaultCache, NoSuchKeyError


def test_set_and_get():
    cache = DefaultCache()
    cache.set("alice,data1,read", True)
    cache.set("bob,data2,write", False)
    assert cache.get("alice,data1,read") is True
    assert cache.get("bob,data2,write") is False


def test_set_overwrites_and_ignores_extra():
    cache = DefaultCache()
    cache.set("k", True, 10)
    cache.set("k", False)
    assert cache.get("k") is False
    assert len(cache) == 1


def test_get_missing_raises():
    cache = DefaultCache()
    with pytest.raises(NoSuchKeyError) as info:
        cache.get("missing")
    assert str(info.value) == "there's no such key existing in cache"


def test_delete():
    cache = DefaultCache()
    cache.set("k", True)
    cache.delete("k")
    assert "k" not in cache
    with pytest.raises(NoSuchKeyError):
        cache.get("k")


def test_delete_missing_raises():
    with pytest.raises(NoSuchKeyError):
        DefaultCache().delete("missing")


def test_clear():
    cache = DefaultCache()
    cache.set("a", True)
    cache.set("b", False)
    cache.clear()
    assert len(cache) == 0
    with pytest.raises(NoSuchKeyError):
        cache.get("a")


def test_no_such_key_is_key_error():
    with pytest.raises(KeyError):
        DefaultCache().get("x")


def test_cache_is_abstract():
    with pytest.raises(TypeError):
        Cache()