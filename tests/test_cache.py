from circlein.cache import TTLCache


class FakeClock:
    def __init__(self, now=1000.0):
        self.now = now

    def __call__(self):
        return self.now


def test_entry_expires_after_ttl():
    clock = FakeClock()
    cache = TTLCache("test", default_ttl=60, clock=clock)
    cache.set("keys", {"kid-1": "cert"})

    clock.now += 59
    assert cache.get("keys") == {"kid-1": "cert"}

    clock.now += 1
    assert cache.get("keys") is None


def test_per_entry_ttl_overrides_default():
    clock = FakeClock()
    cache = TTLCache("test", default_ttl=3600, clock=clock)
    cache.set("short", [1, 2], ttl=5)
    clock.now += 10
    assert cache.get("short") is None


def test_delete_and_clear():
    cache = TTLCache("test")
    cache.set("a", 1)
    cache.set("b", 2)
    cache.delete("a")
    assert cache.get("a") is None
    assert cache.get("b") == 2

    cache.clear()
    assert cache.get("b") is None


def test_namespaces_do_not_collide():
    amenities = TTLCache("amenities")
    certs = TTLCache("google_certs")
    amenities.set("comm-1", ["pool"])
    assert certs.get("comm-1") is None
