from concurrent.futures import ThreadPoolExecutor

from asset_crawler.storage.dedup_registry import DedupRegistry


def test_try_claim_only_succeeds_once_per_normalized_url():
    registry = DedupRegistry()

    assert registry.try_claim("https://Example.com/img/a.png")
    assert not registry.try_claim("https://example.com/img/a.png")
    assert not registry.try_claim("HTTPS://EXAMPLE.COM:443/img//a.png#x")
    assert registry.try_claim("https://example.com/img/A.png")

    assert "https://example.com/img/a.png" in registry
    assert len(registry) == 2


def test_try_claim_under_contention_has_single_winner():
    registry = DedupRegistry()
    url = "https://example.com/shared.js"

    with ThreadPoolExecutor(max_workers=8) as pool:
        results = list(pool.map(lambda _: registry.try_claim(url), range(64)))

    assert results.count(True) == 1
    assert len(registry) == 1
