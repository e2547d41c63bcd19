# tests/test_engine.py
import json
from datetime import datetime, timedelta, timezone
from unittest import mock

import pytest

from modules.job_aggregator.lib import engine
from modules.job_aggregator.lib.models import JobRecord, SiteConfig
from modules.job_aggregator.lib.scraper import SiteScraper
from modules.job_aggregator.lib.store import JobStore, StoreError

T0 = datetime(2025, 1, 1, 0, 0, tzinfo=timezone.utc)


def _job(id_, when=T0, source="Acme", keyword="audio", title=None):
    return JobRecord(
        id=id_,
        title=title or id_,
        company="",
        location="",
        link="",
        source=source,
        keyword=keyword,
        discovered_at=when,
    )


def _scraper(fetch, when=T0):
    return SiteScraper(fetch, clock=lambda: when)


# ----------------------------------------------------------------------
# merge / order
# ----------------------------------------------------------------------
def test_merge_prepends_only_unseen_ids():
    corpus = [_job("old")]
    merged, accepted = engine.merge_new(corpus, [_job("new"), _job("old")])
    assert [j.id for j in accepted] == ["new"]
    assert [j.id for j in merged] == ["new", "old"]


def test_merge_keeps_first_occurrence_within_batch():
    first = _job("dup", keyword="k1")
    second = _job("dup", keyword="k2")
    merged, _ = engine.merge_new([], [first, second])
    assert merged == [first]


def test_merge_never_updates_existing_record():
    existing = _job("x", keyword="original")
    merged, accepted = engine.merge_new([existing], [_job("x", keyword="later")])
    assert accepted == []
    assert merged[0].keyword == "original"


def test_sort_is_newest_first_and_stable_for_ties():
    a = _job("a", when=T0)
    b = _job("b", when=T0 + timedelta(hours=1))
    c = _job("c", when=T0)
    assert [j.id for j in engine.sort_corpus([a, b, c])] == ["b", "a", "c"]


# ----------------------------------------------------------------------
# run_pipeline
# ----------------------------------------------------------------------
def test_end_to_end_single_posting(make_site, fake_fetch, html):
    site = make_site(keywords=["audio"])
    fake_fetch.pages["https://acme.test/search?q=audio"] = html(
        {"title": "Sound Designer", "company": "Studio X", "href": "/job/42"}
    )

    corpus, summary = engine.run_pipeline([site], [], _scraper(fake_fetch))

    assert summary.job_count == 1
    assert summary.new_count == 1
    [job] = corpus
    assert job.id == "Acme-Sound-Designer-Studio-X"
    assert job.link == "https://acme.test/job/42"
    assert job.source == "Acme"
    assert job.keyword == "audio"


def test_second_run_over_same_pages_is_idempotent(make_site, fake_fetch, html):
    site = make_site(keywords=["audio", "music"])
    fake_fetch.pages["https://acme.test/search?q=audio"] = html({"title": "A", "company": "X"})
    fake_fetch.pages["https://acme.test/search?q=music"] = html({"title": "B", "company": "Y"})

    first, s1 = engine.run_pipeline([site], [], _scraper(fake_fetch, T0))
    second, s2 = engine.run_pipeline([site], first, _scraper(fake_fetch, T0 + timedelta(days=1)))

    assert {j.id for j in first} == {j.id for j in second}
    assert s1.new_count == 2
    assert s2.new_count == 0
    # first-seen timestamps survive
    assert all(j.discovered_at == T0 for j in second)


def test_same_posting_on_two_sites_is_kept_twice(make_site, fake_fetch, html):
    s1 = make_site(name="S1", base_url="https://one.test/?q=", keywords=["k"])
    s2 = make_site(name="S2", base_url="https://two.test/?q=", keywords=["k"])
    page = html({"title": "Engineer", "company": "Co"})
    fake_fetch.pages["https://one.test/?q=k"] = page
    fake_fetch.pages["https://two.test/?q=k"] = page

    corpus, summary = engine.run_pipeline([s1, s2], [], _scraper(fake_fetch))

    assert sorted(j.id for j in corpus) == ["S1-Engineer-Co", "S2-Engineer-Co"]
    assert summary.new_by_site == {"S1": 1, "S2": 1}


def test_same_posting_under_two_keywords_collapses_and_first_keyword_wins(make_site, fake_fetch, html):
    site = make_site(keywords=["k1", "k2"])
    fake_fetch.pages["https://acme.test/search?q=k1"] = html({"title": "Engineer", "company": "Co", "href": "/a"})
    fake_fetch.pages["https://acme.test/search?q=k2"] = html({"title": "Engineer", "company": "Co", "href": "/b"})

    corpus, _ = engine.run_pipeline([site], [], _scraper(fake_fetch))

    [job] = corpus
    assert job.keyword == "k1"
    assert job.link == "https://acme.test/a"


def test_failing_unit_is_isolated(make_site, fake_fetch, html):
    s1 = make_site(name="S1", base_url="https://one.test/?q=", keywords=["k1", "k2"])
    s2 = make_site(name="S2", base_url="https://two.test/?q=", keywords=["k1"])
    fake_fetch.pages["https://one.test/?q=k1"] = html({"title": "One"})
    fake_fetch.failing.add("https://one.test/?q=k2")
    fake_fetch.pages["https://two.test/?q=k1"] = html({"title": "Two"})

    corpus, summary = engine.run_pipeline([s1, s2], [], _scraper(fake_fetch))

    assert sorted(j.id for j in corpus) == ["S1-One-", "S2-Two-"]
    assert summary.failed_units == ["S1:k2"]


def test_result_is_ordered_newest_first(make_site, fake_fetch, html):
    site = make_site(keywords=["k"])
    fake_fetch.pages["https://acme.test/search?q=k"] = html({"title": "Fresh"})
    older = [_job("Old-1", when=T0 - timedelta(days=2)), _job("Old-2", when=T0 - timedelta(days=1))]

    corpus, _ = engine.run_pipeline([site], older, _scraper(fake_fetch, T0))

    assert [j.title for j in corpus] == ["Fresh", "Old-2", "Old-1"]
    stamps = [j.discovered_at for j in corpus]
    assert stamps == sorted(stamps, reverse=True)


def test_empty_titles_never_reach_the_corpus(make_site, fake_fetch, html):
    site = make_site(keywords=["k"])
    fake_fetch.pages["https://acme.test/search?q=k"] = html({"company": "NoTitle"}, {"title": "Real"})

    corpus, _ = engine.run_pipeline([site], [], _scraper(fake_fetch))

    assert [j.title for j in corpus] == ["Real"]


def test_registry_order_decides_prepend_order_not_fetch_completion(make_site, html):
    s1 = make_site(name="S1", base_url="https://one.test/?q=", keywords=["k"])
    s2 = make_site(name="S2", base_url="https://two.test/?q=", keywords=["k"])
    pages = {"https://one.test/?q=k": html({"title": "A"}), "https://two.test/?q=k": html({"title": "B"})}

    for _ in range(5):
        corpus, _ = engine.run_pipeline([s1, s2], [], _scraper(pages.__getitem__), max_threads=2)
        # later sites are prepended after earlier ones: S2 record comes first on equal stamps
        assert [j.source for j in corpus] == ["S2", "S1"]


def test_invalid_sites_are_skipped(make_site, fake_fetch, html):
    good = make_site(keywords=["k"])
    bad = SiteConfig(name="Broken", base_url="ftp://nope", keywords=("k",))
    fake_fetch.pages["https://acme.test/search?q=k"] = html({"title": "Kept"})

    corpus, summary = engine.run_pipeline([bad, good], [], _scraper(fake_fetch))

    assert [j.title for j in corpus] == ["Kept"]
    assert summary.skipped_sites == ["Broken"]
    assert all("nope" not in url for url in fake_fetch.calls)


def test_skip_network_fetches_nothing(make_site, fake_fetch):
    existing = [_job("keep")]
    corpus, summary = engine.run_pipeline([make_site()], existing, _scraper(fake_fetch), skip_network=True)
    assert fake_fetch.calls == []
    assert [j.id for j in corpus] == ["keep"]
    assert summary.new_count == 0


def test_pipeline_persists_sorted_corpus(tmp_path, make_site, fake_fetch, html):
    store = JobStore(str(tmp_path / "jobs.json"))
    site = make_site(keywords=["k"])
    fake_fetch.pages["https://acme.test/search?q=k"] = html({"title": "Saved"})

    engine.run_pipeline([site], [], _scraper(fake_fetch), store=store)

    on_disk = json.loads((tmp_path / "jobs.json").read_text(encoding="utf-8"))
    assert [r["title"] for r in on_disk] == ["Saved"]
    assert on_disk[0]["discovered_at"] == "2025-01-01T00:00:00Z"


def test_store_failure_is_fatal_and_leaves_prior_file(tmp_path, make_site, fake_fetch, html):
    path = tmp_path / "jobs.json"
    store = JobStore(str(path))
    store.save([_job("prior")])
    before = path.read_text(encoding="utf-8")

    site = make_site(keywords=["k"])
    fake_fetch.pages["https://acme.test/search?q=k"] = html({"title": "New"})

    with mock.patch("modules.job_aggregator.lib.store.os.replace", side_effect=OSError("disk full")):
        with pytest.raises(StoreError):
            engine.run_pipeline([site], store.load(), _scraper(fake_fetch), store=store)

    assert path.read_text(encoding="utf-8") == before
    assert [p.name for p in tmp_path.iterdir()] == ["jobs.json"]
