from halal_finder.cache import Cache, make_request_cache_key


def test_cache_key_includes_body_only_for_non_get():
    assert make_request_cache_key("get", "https://a.test/x") == "GET https://a.test/x"
    assert make_request_cache_key("GET", "https://a.test/x", "ignored") == "GET https://a.test/x"
    assert make_request_cache_key("post", "https://a.test/x", "q") == "POST https://a.test/x|q"


def test_cache_ttl_boundary(tmp_path):
    cache = Cache(str(tmp_path / "cache.db"), ttl_seconds=300)
    cache.set("GET https://a.test/x", "payload", now=1000.0)

    assert cache.get_fresh("GET https://a.test/x", now=1000.0 + 299) == "payload"
    assert cache.get_fresh("GET https://a.test/x", now=1000.0 + 301) is None
    # expired rows stay until overwritten or cleared
    assert cache.count() == 1
    assert cache.time_remaining("GET https://a.test/x", now=1100.0) == 200.0
    assert cache.time_remaining("GET https://a.test/x", now=2000.0) == 0.0
    assert cache.time_remaining("missing", now=1000.0) == 0.0
    cache.close()


def test_cache_persists_between_connections(tmp_path):
    path = str(tmp_path / "cache.db")
    cache = Cache(path)
    cache.set("k", "v", now=1.0)
    cache.close()

    reopened = Cache(path)
    entry = reopened.get_entry("k")
    assert entry is not None
    assert entry.payload == "v"
    assert entry.stored_at == 1.0
    reopened.close()


def test_cache_clear_by_literal_prefix():
    cache = Cache(":memory:")
    cache.set("GET https://overpass.test/a", "1", now=0.0)
    cache.set("GET https://overpass.test/b", "2", now=0.0)
    cache.set("GET https://places.test/%", "3", now=0.0)
    cache.set("POST https://overpass.test/a|q", "4", now=0.0)

    assert cache.clear("GET https://overpass.test/") == 2
    # "%" is not a wildcard
    assert cache.clear("GET https://places.test/%x") == 0
    assert [e.key for e in cache.entries()] == [
        "GET https://places.test/%",
        "POST https://overpass.test/a|q",
    ]
    assert cache.clear() == 2
    assert cache.count() == 0
